"""
Enigma Configuration — Master secret loading and validated settings.

Reads master secrets from environment variables in the format:
    ENIGMA_MASTER_SECRET_v{N} = <base64-encoded master secret>
    ENIGMA_SECRET_VERSION = <integer>
    ENIGMA_APP_KEY = <tenant app key>
    ENIGMA_BASE_URL = <ingestion base URL>

Security Note:
    Never log secret material. Only log app keys and version numbers.
"""
import os
import re
import base64
import binascii
import secrets
import logging
from typing import Optional, Union

from pydantic import BaseModel, Field, field_validator

from ..exceptions import InvalidKeyMaterial
from .crypto import MIN_SECRET_LENGTH

logger = logging.getLogger("nexus.enigma")

_SECRET_ENV_PATTERN = re.compile(r"^ENIGMA_MASTER_SECRET_v(\d+)$")
_TRUE_VALUES = ("1", "true", "yes", "on")


def decode_master_secret(value: Union[str, bytes]) -> bytes:
    """Return raw master secret bytes from raw bytes or base64 text.

    Raises:
        InvalidKeyMaterial: If the value is not valid base64 or is too short.
    """
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    elif isinstance(value, str):
        try:
            raw = base64.b64decode(value.strip(), validate=True)
        except (binascii.Error, ValueError):
            raise InvalidKeyMaterial("Master secret is not valid base64") from None
    else:
        raise InvalidKeyMaterial("Master secret must be bytes or base64 text")
    if len(raw) < MIN_SECRET_LENGTH:
        raise InvalidKeyMaterial(
            f"Master secret too short: {len(raw)} bytes "
            f"(minimum {MIN_SECRET_LENGTH})"
        )
    return raw


def load_master_secrets() -> dict[int, bytes]:
    """Load master secrets from ENIGMA_MASTER_SECRET_v{N} environment variables.

    Returns:
        Mapping of secret version (int) to raw secret bytes.

    Raises:
        RuntimeError: If no master secrets are found in the environment.
        InvalidKeyMaterial: If a secret is not base64 or is too short.
    """
    found: dict[int, bytes] = {}
    for name, value in os.environ.items():
        match = _SECRET_ENV_PATTERN.match(name)
        if match:
            version = int(match.group(1))
            if version < 1:
                raise ValueError(f"{name}: secret versions start at 1")
            found[version] = decode_master_secret(value)
    if not found:
        raise RuntimeError(
            "No Enigma master secrets found in environment. "
            "Set ENIGMA_MASTER_SECRET_v1=<base64-encoded-secret>"
        )
    logger.debug(
        "Loaded %d master secret version(s): %s", len(found), sorted(found.keys())
    )
    return found


def get_secret_version() -> int:
    """Read the active secret version from ENIGMA_SECRET_VERSION.

    Raises:
        RuntimeError: If ENIGMA_SECRET_VERSION is not set.
        ValueError: If the value is not a valid integer.
    """
    raw = os.environ.get("ENIGMA_SECRET_VERSION")
    if raw is None:
        raise RuntimeError(
            "ENIGMA_SECRET_VERSION environment variable is not set"
        )
    return int(raw)


def generate_master_secret() -> str:
    """Generate a random 32-byte master secret and return it as base64.

    Utility for operators and for the registry when issuing new tenants.
    """
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE_VALUES


class ClientConfig(BaseModel):
    """Validated sender configuration."""

    app_key: str = Field(min_length=1)
    master_secret: bytes
    secret_version: int = Field(default=1, ge=1)
    base_url: str = Field(default="http://localhost:8080", min_length=1)
    ingress_path: str = Field(default="/ingress")
    bind_context: bool = False
    timeout: float = Field(default=10.0, gt=0)

    @field_validator("master_secret", mode="before")
    @classmethod
    def validate_master_secret(cls, v: Union[str, bytes]) -> bytes:
        """Accept raw bytes or base64 text."""
        return decode_master_secret(v)

    @field_validator("ingress_path")
    @classmethod
    def validate_ingress_path(cls, v: str) -> str:
        """Ensure the ingress path is absolute."""
        if not v.startswith("/"):
            raise ValueError(f"ingress_path must start with '/': {v}")
        return v

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Create ClientConfig by loading values from environment.

        Raises:
            RuntimeError: If required variables are missing.
            KeyError: If the active version has no master secret.
        """
        app_key = os.environ.get("ENIGMA_APP_KEY")
        if not app_key:
            raise RuntimeError("ENIGMA_APP_KEY environment variable is not set")
        master_secrets = load_master_secrets()
        version = get_secret_version()
        if version not in master_secrets:
            raise KeyError(
                f"Active secret version {version} not found in environment"
            )
        return cls(
            app_key=app_key,
            master_secret=master_secrets[version],
            secret_version=version,
            base_url=os.environ.get("ENIGMA_BASE_URL", "http://localhost:8080"),
            bind_context=_env_flag("ENIGMA_BIND_CONTEXT"),
            timeout=float(os.environ.get("ENIGMA_TIMEOUT", "10")),
        )


class ServerConfig(BaseModel):
    """Validated receiver configuration."""

    bind_context: bool = False
    grace_versions: int = Field(default=1, ge=0, le=10)
    max_key_age_days: Optional[int] = Field(default=None, ge=0)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Create ServerConfig from ENIGMA_* environment variables."""
        max_age = os.environ.get("ENIGMA_MAX_KEY_AGE_DAYS")
        return cls(
            bind_context=_env_flag("ENIGMA_BIND_CONTEXT"),
            grace_versions=int(os.environ.get("ENIGMA_GRACE_VERSIONS", "1")),
            max_key_age_days=int(max_age) if max_age else None,
        )
