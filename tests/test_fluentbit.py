"""Tests for Fluent Bit configuration rendering."""

from __future__ import annotations

from audit_extension.fluentbit import FluentBitConfig, Input, Output, Service


class TestGenerate:
    """Tests for FluentBitConfig.generate."""

    def test_full_config(self) -> None:
        """Test all section groups render in order, separated by blank lines."""
        config = FluentBitConfig(
            service=Service({"flush": "1", "log_level": "info"}),
            inputs=[Input({"name": "http"})],
            outputs=[
                Output(
                    {
                        "name": ["    stdout  "],
                        "match": ["*"],
                        "event_field": ["key1 value1", "key2 value2"],
                    }
                ),
                Output({"name": ["null"]}),
            ],
            includes=["data/*.conf"],
        )

        assert config.generate() == (
            "[SERVICE]\n"
            "    flush 1\n"
            "    log_level info\n"
            "\n"
            "[INPUT]\n"
            "    name http\n"
            "\n"
            "[OUTPUT]\n"
            "    event_field key1 value1\n"
            "    event_field key2 value2\n"
            "    match *\n"
            "    name stdout\n"
            "[OUTPUT]\n"
            "    name null\n"
            "\n"
            "@INCLUDE data/*.conf"
        )

    def test_only_output_section(self) -> None:
        """Test an output-only model has no service or input block."""
        config = FluentBitConfig(
            outputs=[
                Output(
                    {
                        "name": ["stdout"],
                        "match": ["*"],
                        "event_field": ["key1 value1", "key2 value2"],
                    }
                )
            ]
        )

        result = config.generate()

        assert result == (
            "[OUTPUT]\n"
            "    event_field key1 value1\n"
            "    event_field key2 value2\n"
            "    match *\n"
            "    name stdout"
        )
        assert "[SERVICE]" not in result
        assert "[INPUT]" not in result

    def test_output_keys_sorted_values_in_insertion_order(self) -> None:
        """Test keys render lexically and repeated values keep their order."""
        output = Output()
        output.add("b", "v2", "v3")
        output.add("a", "v1")

        lines = FluentBitConfig(outputs=[output]).generate().splitlines()

        assert lines == ["[OUTPUT]", "    a v1", "    b v2", "    b v3"]

    def test_service_and_input_keep_insertion_order(self) -> None:
        """Test service and input options are not reordered."""
        config = FluentBitConfig(
            service=Service({"zeta": "1", "alpha": "2"}),
            inputs=[Input({"Name": "http", "Port": "9880"}), Input({"Name": "dummy"})],
        )

        assert config.generate() == (
            "[SERVICE]\n"
            "    zeta 1\n"
            "    alpha 2\n"
            "\n"
            "[INPUT]\n"
            "    Name http\n"
            "    Port 9880\n"
            "[INPUT]\n"
            "    Name dummy"
        )

    def test_includes_one_per_line(self) -> None:
        """Test every include pattern gets its own trimmed line."""
        config = FluentBitConfig(includes=["  a/*.conf ", "b.conf"])

        assert config.generate() == "@INCLUDE a/*.conf\n@INCLUDE b.conf"

    def test_empty_config_renders_empty_string(self) -> None:
        """Test an empty model renders nothing."""
        assert FluentBitConfig().generate() == ""

    def test_no_leading_or_trailing_whitespace(self) -> None:
        """Test the result is trimmed."""
        config = FluentBitConfig(
            inputs=[Input({"Name": "http"})],
            includes=["*.backend.conf"],
        )

        result = config.generate()

        assert result == result.strip()
        assert result == "[INPUT]\n    Name http\n\n@INCLUDE *.backend.conf"

    def test_generate_is_deterministic(self) -> None:
        """Test the same model always renders the same text."""
        output = Output()
        output.add("Name", "forward")
        output.add("Match", "audit")
        output.add("tls", "On")
        config = FluentBitConfig(outputs=[output], includes=["*.conf"])

        assert config.generate() == config.generate()

    def test_generate_does_not_mutate_model(self) -> None:
        """Test rendering leaves the section model untouched."""
        output = Output({"name": ["  stdout "]})
        config = FluentBitConfig(outputs=[output])

        config.generate()

        assert output == {"name": ["  stdout "]}


class TestOutputAdd:
    """Tests for Output.add."""

    def test_add_to_new_key(self) -> None:
        """Test adding to an absent key creates it."""
        output = Output()
        output.add("key", "one")
        assert output["key"] == ["one"]

    def test_add_to_empty_key(self) -> None:
        """Test adding to a key holding no values."""
        output = Output({"key": []})
        output.add("key", "one")
        assert output["key"] == ["one"]

    def test_add_to_existing_key(self) -> None:
        """Test adding appends after existing values."""
        output = Output({"key": ["one"]})
        output.add("key", "two")
        assert output["key"] == ["one", "two"]

    def test_add_multiple_values(self) -> None:
        """Test several values are appended in order."""
        output = Output()
        output.add("key", "one", "two", "three")
        assert output["key"] == ["one", "two", "three"]
