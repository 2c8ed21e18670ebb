"""Provider configuration decoding with validation.

The provider configuration arrives as the raw payload of the tenant's
extension record. It is usually JSON, but YAML is accepted as well since
every JSON document is valid YAML.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import yaml
from pydantic import ValidationError

from .errors import ProviderConfigError
from .models import AuditConfig

logger = logging.getLogger(__name__)

API_GROUP = "audit.metal-stack.io"
API_VERSION = f"{API_GROUP}/v1alpha1"
KIND = "AuditConfig"

MAX_PROVIDER_CONFIG_SIZE_BYTES = 1024 * 1024  # 1MB max payload


def decode_provider_config(raw: bytes | str | Mapping[str, Any] | None) -> AuditConfig:
    """Decode a provider configuration payload into an AuditConfig.

    An absent or empty payload decodes to an empty configuration. Unknown
    fields are rejected.

    Args:
        raw: JSON/YAML bytes or text, an already parsed mapping, or None.

    Returns:
        The decoded, not yet defaulted, configuration.

    Raises:
        ProviderConfigError: If the payload cannot be decoded or validated.
    """
    if raw is None:
        return AuditConfig()

    if isinstance(raw, Mapping):
        data: Any = dict(raw)
    else:
        data = _load_document(raw)

    if data is None:
        return AuditConfig()

    if not isinstance(data, dict):
        raise ProviderConfigError(
            f"failed to decode provider config: expected a mapping, got {type(data).__name__}"
        )

    data = _strip_type_meta(data)

    try:
        config = AuditConfig.model_validate(data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise ProviderConfigError(f"failed to decode provider config:\n{error_list}") from e

    logger.debug(
        "Decoded provider config",
        extra={"fields": sorted(config.model_fields_set)},
    )
    return config


def _load_document(raw: bytes | str) -> Any:
    if isinstance(raw, bytes):
        if len(raw) > MAX_PROVIDER_CONFIG_SIZE_BYTES:
            raise ProviderConfigError(
                f"provider config exceeds maximum size of {MAX_PROVIDER_CONFIG_SIZE_BYTES} bytes"
            )
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProviderConfigError(f"provider config is not valid UTF-8: {e}") from e
    else:
        text = raw
        if len(text.encode("utf-8")) > MAX_PROVIDER_CONFIG_SIZE_BYTES:
            raise ProviderConfigError(
                f"provider config exceeds maximum size of {MAX_PROVIDER_CONFIG_SIZE_BYTES} bytes"
            )

    if not text.strip():
        return None

    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ProviderConfigError(f"failed to decode provider config: {e}") from e


def _strip_type_meta(data: dict[str, Any]) -> dict[str, Any]:
    """Check and remove apiVersion/kind if the payload carries them."""
    data = dict(data)
    api_version = data.pop("apiVersion", None)
    kind = data.pop("kind", None)

    if api_version is not None and api_version != API_VERSION:
        raise ProviderConfigError(
            f"failed to decode provider config: unsupported apiVersion {api_version!r}, "
            f"expected {API_VERSION!r}"
        )

    if kind is not None and kind != KIND:
        raise ProviderConfigError(
            f"failed to decode provider config: unsupported kind {kind!r}, expected {KIND!r}"
        )

    return data
