"""Exceptions raised by the Enigma envelope protocol."""
from typing import Any, Optional


class EnigmaError(Exception):
    """Base class for every Enigma failure."""


class InvalidKeyMaterial(EnigmaError, ValueError):
    """Master secret or derived key is missing or too short."""


class InvalidContext(EnigmaError, ValueError):
    """App key or key date is empty."""


class MalformedEnvelope(EnigmaError, ValueError):
    """Envelope failed structural validation."""


class AuthenticationFailed(EnigmaError):
    """AEAD tag check failed.

    Tampering, corruption and a wrong key are reported identically.
    """


class UnknownTenant(EnigmaError):
    """No secrets are registered for the app key."""

    def __init__(self, app_key: str):
        self.app_key = app_key
        super().__init__(f"No secrets registered for app key {app_key!r}")


class UnknownSecretVersion(EnigmaError):
    """Envelope claims a secret version the registry does not hold."""

    def __init__(self, app_key: str, version: int):
        self.app_key = app_key
        self.version = version
        super().__init__(
            f"Secret version {version} is not registered for app key {app_key!r}"
        )


class EnvelopeExpired(EnigmaError):
    """Envelope key date falls outside the accepted window."""

    def __init__(self, key_date: str, max_age_days: int):
        self.key_date = key_date
        self.max_age_days = max_age_days
        super().__init__(
            f"keyDate {key_date} is more than {max_age_days} day(s) "
            "from the current UTC date"
        )


class IngestionError(EnigmaError):
    """Ingestion endpoint answered with a non-2xx status."""

    def __init__(self, status: int, body: Optional[Any] = None):
        self.status = status
        self.body = body
        super().__init__(f"Ingestion endpoint returned HTTP {status}")
