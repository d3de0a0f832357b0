"""
Enigma Crypto Core — Daily key derivation, AES-256-GCM and payload encoding.

Key schedule:
    HKDF-SHA256(ikm=master_secret, salt=app_key, info=key_date) → 32-byte key

Every tenant gets a fresh key each UTC calendar day without any coordination
between sender and receiver: both sides compute the same key from the date.

Security Note:
    Never log master secrets, derived keys, nonces, ciphertext or plaintext.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import logging
from typing import Any, Optional
from datetime import datetime, timezone

import orjson
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import AuthenticationFailed, InvalidContext, InvalidKeyMaterial

logger = logging.getLogger("nexus.enigma")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
KEY_LENGTH = 32  # AES-256
MIN_SECRET_LENGTH = 16
KEY_DATE_FORMAT = "%Y-%m-%d"


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def key_date_for(moment: datetime) -> str:
    """Format the UTC calendar date of ``moment`` as ``YYYY-MM-DD``.

    Naive datetimes are taken to be UTC already.
    """
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(KEY_DATE_FORMAT)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(master_secret: bytes, app_key: str, key_date: str) -> bytes:
    """Derive the 32-byte key of one tenant for one calendar day.

    Args:
        master_secret: Input key material for the tenant's secret version.
        app_key: Tenant identifier, used as HKDF salt.
        key_date: UTC date ``YYYY-MM-DD``, used as HKDF info.

    Returns:
        32-byte derived key.

    Raises:
        InvalidKeyMaterial: If master_secret is empty or shorter than 16 bytes.
        InvalidContext: If app_key or key_date is empty.
    """
    if not isinstance(master_secret, (bytes, bytearray)) or not master_secret:
        raise InvalidKeyMaterial("Master secret is missing")
    if len(master_secret) < MIN_SECRET_LENGTH:
        raise InvalidKeyMaterial(
            f"Master secret too short: {len(master_secret)} bytes "
            f"(minimum {MIN_SECRET_LENGTH})"
        )
    if not app_key:
        raise InvalidContext("App key cannot be empty")
    if not key_date:
        raise InvalidContext("Key date cannot be empty")
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=app_key.encode("utf-8"),
        info=key_date.encode("utf-8"),
    )
    return hkdf.derive(bytes(master_secret))


def associated_data(app_key: str, key_date: str, secret_version: int) -> bytes:
    """Build the associated data that binds envelope headers to the ciphertext."""
    return f"{app_key}|{key_date}|{secret_version}".encode("utf-8")


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def _cipher(key: bytes) -> AESGCM:
    if len(key) != KEY_LENGTH:
        raise InvalidKeyMaterial(
            f"Derived key must be {KEY_LENGTH} bytes, got {len(key)}"
        )
    return AESGCM(key)


def encrypt(
    key: bytes,
    plaintext: bytes,
    aad: Optional[bytes] = None,
) -> tuple[bytes, bytes]:
    """Encrypt plaintext under a derived key with a fresh random nonce.

    Args:
        key: 32-byte derived key.
        plaintext: Data to encrypt.
        aad: Optional associated data to authenticate.

    Returns:
        Tuple of (ciphertext with 16-byte tag appended, 12-byte nonce).
    """
    cipher = _cipher(key)
    nonce = os.urandom(NONCE_SIZE)
    ct = cipher.encrypt(nonce, plaintext, aad)
    return ct, nonce


def decrypt(
    key: bytes,
    nonce: bytes,
    ciphertext: bytes,
    aad: Optional[bytes] = None,
) -> bytes:
    """Verify and decrypt ciphertext produced by :func:`encrypt`.

    Raises:
        AuthenticationFailed: If the tag does not verify.
    """
    cipher = _cipher(key)
    if len(nonce) != NONCE_SIZE or len(ciphertext) < TAG_SIZE:
        raise AuthenticationFailed("Ciphertext failed authentication")
    try:
        return cipher.decrypt(nonce, ciphertext, aad)
    except InvalidTag:
        raise AuthenticationFailed("Ciphertext failed authentication") from None


# ---------------------------------------------------------------------------
# Payload serialization
# ---------------------------------------------------------------------------

def serialize_payload(payload: Any) -> bytes:
    """Serialize a JSON-compatible payload to canonical bytes (sorted keys)."""
    return orjson.dumps(payload, option=orjson.OPT_SORT_KEYS)


def deserialize_payload(data: bytes) -> Any:
    """Decode JSON bytes produced by :func:`serialize_payload`."""
    return orjson.loads(data)
