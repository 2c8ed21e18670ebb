"""Fluent Bit configuration rendering.

The section model mirrors the classic Fluent Bit configuration format:

    [SERVICE]
        flush 1

    [INPUT]
        name http

    [OUTPUT]
        match *
        name stdout

    @INCLUDE *.backend.conf

Section groups are separated by a blank line. Within the OUTPUT group the
blocks are adjacent, as are the INPUT blocks.
"""

from __future__ import annotations

from dataclasses import dataclass, field

INDENT = "    "


class Service(dict[str, str]):
    """SERVICE options, rendered in insertion order."""


class Input(dict[str, str]):
    """One INPUT block, rendered in insertion order."""


class Output(dict[str, list[str]]):
    """One OUTPUT block.

    A key may carry several values, each rendered on its own line. Keys are
    rendered in lexical order.
    """

    def add(self, key: str, *values: str) -> None:
        """Append ``values`` to ``key``, creating the key if needed."""
        self.setdefault(key, []).extend(values)


Include = str


def _line(key: str, value: str) -> str:
    return f"{INDENT}{key.strip()} {value.strip()}"


@dataclass
class FluentBitConfig:
    """A complete Fluent Bit configuration file."""

    service: Service = field(default_factory=Service)
    inputs: list[Input] = field(default_factory=list)
    outputs: list[Output] = field(default_factory=list)
    includes: list[Include] = field(default_factory=list)

    def generate(self) -> str:
        """Render the configuration as text.

        Rendering is deterministic: the same model always produces the same
        text. Leading and trailing whitespace is trimmed from every key,
        value and include pattern as well as from the result.
        """
        groups: list[list[str]] = []

        if self.service:
            block = ["[SERVICE]"]
            block.extend(_line(key, value) for key, value in self.service.items())
            groups.append(block)

        if self.inputs:
            block = []
            for section in self.inputs:
                block.append("[INPUT]")
                block.extend(_line(key, value) for key, value in section.items())
            groups.append(block)

        if self.outputs:
            block = []
            for section in self.outputs:
                block.append("[OUTPUT]")
                for key in sorted(section):
                    block.extend(_line(key, value) for value in section[key])
            groups.append(block)

        if self.includes:
            groups.append([f"@INCLUDE {pattern.strip()}" for pattern in self.includes])

        return "\n\n".join("\n".join(group) for group in groups).strip()
