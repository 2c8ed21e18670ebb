"""Image reference lookup.

Images are resolved by name from an image vector. The built-in vector can
be overridden by a YAML file of the form:

    images:
      - name: audittailer
        repository: ghcr.io/metal-stack/audittailer
        tag: v0.3.0
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from .errors import ImageNotFoundError

logger = logging.getLogger(__name__)

MAX_IMAGE_VECTOR_FILE_SIZE_BYTES = 256 * 1024


@dataclass(frozen=True)
class Image:
    """A resolved container image reference."""

    name: str
    repository: str
    tag: str | None = None

    def __str__(self) -> str:
        if self.tag is None:
            return self.repository
        separator = "@" if self.tag.startswith("sha256:") else ":"
        return f"{self.repository}{separator}{self.tag}"


DEFAULT_IMAGES: tuple[Image, ...] = (
    Image(name="audittailer", repository="ghcr.io/metal-stack/audittailer", tag="v0.3.0"),
    Image(name="fluent-bit", repository="fluent/fluent-bit", tag="2.1.10"),
    Image(name="audit-forwarder", repository="ghcr.io/metal-stack/audit-forwarder", tag="latest"),
)


class ImageVector:
    """Name to image lookup table."""

    def __init__(self, images: tuple[Image, ...] | list[Image] = DEFAULT_IMAGES) -> None:
        self._images = {image.name: image for image in images}

    def find_image(self, name: str) -> Image:
        """Look up an image by name.

        Raises:
            ImageNotFoundError: If no image with that name is known.
        """
        image = self._images.get(name)
        if image is None:
            raise ImageNotFoundError(
                f"failed to find {name} image, known images: {sorted(self._images)}"
            )
        return image

    @classmethod
    def from_file(cls, path: Path) -> ImageVector:
        """Load an image vector, layered over the built-in defaults.

        Raises:
            ImageNotFoundError: If the file cannot be read or is malformed.
        """
        try:
            if path.stat().st_size > MAX_IMAGE_VECTOR_FILE_SIZE_BYTES:
                raise ImageNotFoundError(
                    f"Image vector exceeds maximum size of "
                    f"{MAX_IMAGE_VECTOR_FILE_SIZE_BYTES} bytes: {path}"
                )
            raw = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as e:
            raise ImageNotFoundError(f"Failed to read image vector {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ImageNotFoundError(f"Invalid YAML in image vector {path}: {e}") from e

        entries = raw.get("images") if isinstance(raw, dict) else None
        if not isinstance(entries, list):
            raise ImageNotFoundError(f"Image vector must contain an 'images' list: {path}")

        images = {image.name: image for image in DEFAULT_IMAGES}
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("name") or not entry.get("repository"):
                raise ImageNotFoundError(
                    f"Image vector entries need 'name' and 'repository': {entry!r}"
                )
            tag = entry.get("tag")
            images[entry["name"]] = Image(
                name=entry["name"],
                repository=entry["repository"],
                tag=str(tag) if tag is not None else None,
            )

        logger.info(
            "Loaded image vector",
            extra={"path": str(path), "images": sorted(images)},
        )
        return cls(list(images.values()))
