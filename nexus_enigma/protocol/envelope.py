"""
Enigma Envelope — Wire representation of an encrypted payload.

Wire format (JSON object):
    {
        "encrypted": true,
        "keyDate": "YYYY-MM-DD",
        "secretVersion": <int >= 1>,
        "nonce": "<base64, 12 bytes>",
        "data": "<base64, ciphertext || 16-byte tag>"
    }

Only structure is validated here; the tag is checked by the crypto core.
"""
import re
import base64
import binascii
from datetime import date
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict

from ..exceptions import MalformedEnvelope
from .crypto import NONCE_SIZE, TAG_SIZE

_KEY_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# tenant identity travels in this transport header, never in the envelope
API_KEY_HEADER = "X-API-Key"


class Envelope(BaseModel):
    """Decoded envelope fields."""

    model_config = ConfigDict(frozen=True)

    key_date: str
    secret_version: int
    nonce: bytes
    ciphertext: bytes

    def to_wire(self) -> dict[str, Any]:
        """Return the JSON-ready wire object."""
        return {
            "encrypted": True,
            "keyDate": self.key_date,
            "secretVersion": self.secret_version,
            "nonce": base64.b64encode(self.nonce).decode("ascii"),
            "data": base64.b64encode(self.ciphertext).decode("ascii"),
        }


def serialize_envelope(
    key_date: str,
    secret_version: int,
    nonce: bytes,
    ciphertext: bytes,
) -> dict[str, Any]:
    """Build the wire object for an encrypted payload."""
    return Envelope(
        key_date=key_date,
        secret_version=secret_version,
        nonce=nonce,
        ciphertext=ciphertext,
    ).to_wire()


def _valid_key_date(value: Any) -> bool:
    if not isinstance(value, str) or not _KEY_DATE_PATTERN.match(value):
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _b64_field(wire: Mapping[str, Any], name: str) -> bytes:
    value = wire.get(name)
    if not isinstance(value, str):
        raise MalformedEnvelope(f"'{name}' must be a base64 string")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedEnvelope(f"'{name}' is not valid base64") from None


def parse_envelope(wire: Any) -> Envelope:
    """Validate a wire object and decode it into an :class:`Envelope`.

    Args:
        wire: Decoded JSON request body.

    Returns:
        Envelope with raw nonce and ciphertext bytes.

    Raises:
        MalformedEnvelope: On any structural problem.
    """
    if not isinstance(wire, Mapping):
        raise MalformedEnvelope("Envelope must be a JSON object")
    if wire.get("encrypted") is not True:
        raise MalformedEnvelope("Envelope is not flagged as encrypted")

    key_date = wire.get("keyDate")
    if not _valid_key_date(key_date):
        raise MalformedEnvelope("'keyDate' must be a YYYY-MM-DD date")

    version = wire.get("secretVersion")
    # bool is an int subclass
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise MalformedEnvelope("'secretVersion' must be a positive integer")

    nonce = _b64_field(wire, "nonce")
    if len(nonce) != NONCE_SIZE:
        raise MalformedEnvelope(
            f"'nonce' must decode to {NONCE_SIZE} bytes, got {len(nonce)}"
        )
    ciphertext = _b64_field(wire, "data")
    if len(ciphertext) < TAG_SIZE:
        raise MalformedEnvelope(
            f"'data' too short: {len(ciphertext)} bytes (minimum {TAG_SIZE})"
        )

    return Envelope(
        key_date=key_date,
        secret_version=version,
        nonce=nonce,
        ciphertext=ciphertext,
    )
