"""Tests for image vector lookup."""

from __future__ import annotations

from pathlib import Path

import pytest

from audit_extension.errors import DependencyError, ImageNotFoundError
from audit_extension.images import DEFAULT_IMAGES, Image, ImageVector


class TestImage:
    """Tests for Image references."""

    def test_tag(self) -> None:
        assert str(Image("x", "repo/x", "v1")) == "repo/x:v1"

    def test_digest(self) -> None:
        assert str(Image("x", "repo/x", "sha256:abc")) == "repo/x@sha256:abc"

    def test_untagged(self) -> None:
        assert str(Image("x", "repo/x")) == "repo/x"


class TestImageVector:
    """Tests for ImageVector."""

    def test_defaults(self) -> None:
        """Test the built-in vector knows every workload image."""
        vector = ImageVector()

        assert str(vector.find_image("fluent-bit")) == "fluent/fluent-bit:2.1.10"
        assert vector.find_image("audittailer").repository == "ghcr.io/metal-stack/audittailer"
        assert vector.find_image("audit-forwarder").name == "audit-forwarder"

    def test_unknown_image(self) -> None:
        """Test an unknown name raises a dependency error."""
        with pytest.raises(ImageNotFoundError) as exc_info:
            ImageVector().find_image("nginx")

        assert "failed to find nginx image" in str(exc_info.value)
        assert isinstance(exc_info.value, DependencyError)

    def test_from_file_overrides_defaults(self, tmp_path: Path) -> None:
        """Test a file entry replaces the default of the same name."""
        path = tmp_path / "images.yaml"
        path.write_text(
            "images:\n"
            "  - name: audittailer\n"
            "    repository: registry.local/audittailer\n"
            "    tag: v9\n"
            "  - name: extra\n"
            "    repository: registry.local/extra\n"
        )

        vector = ImageVector.from_file(path)

        assert str(vector.find_image("audittailer")) == "registry.local/audittailer:v9"
        assert str(vector.find_image("extra")) == "registry.local/extra"
        assert vector.find_image("fluent-bit") == DEFAULT_IMAGES[1]

    def test_from_file_numeric_tag(self, tmp_path: Path) -> None:
        """Test YAML numbers are accepted as tags."""
        path = tmp_path / "images.yaml"
        path.write_text("images:\n  - name: fluent-bit\n    repository: fb\n    tag: 3.0\n")

        assert ImageVector.from_file(path).find_image("fluent-bit").tag == "3.0"

    def test_from_file_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ImageNotFoundError):
            ImageVector.from_file(tmp_path / "missing.yaml")

    def test_from_file_without_images_list(self, tmp_path: Path) -> None:
        path = tmp_path / "images.yaml"
        path.write_text("images: nope\n")

        with pytest.raises(ImageNotFoundError) as exc_info:
            ImageVector.from_file(path)

        assert "'images' list" in str(exc_info.value)

    def test_from_file_incomplete_entry(self, tmp_path: Path) -> None:
        path = tmp_path / "images.yaml"
        path.write_text("images:\n  - name: audittailer\n")

        with pytest.raises(ImageNotFoundError):
            ImageVector.from_file(path)

    def test_from_file_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "images.yaml"
        path.write_text("images: [\n")

        with pytest.raises(ImageNotFoundError):
            ImageVector.from_file(path)
