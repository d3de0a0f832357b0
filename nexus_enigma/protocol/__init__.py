"""Enigma Protocol — Daily-keyed envelope encryption for ingestion payloads.

Security Note (Threat Model):
    Envelopes protect payloads from the gateway's storage and transport
    layers. Master secrets live only with the client and the secret
    registry; derived keys are recomputed per operation and never stored.
    Without context binding, keyDate and secretVersion are unauthenticated
    metadata: a tamperer can only cause a decryption failure, never a
    plaintext substitution.
"""

from .crypto import (
    derive_key,
    encrypt,
    decrypt,
    associated_data,
    key_date_for,
    utc_now,
)
from .envelope import Envelope, serialize_envelope, parse_envelope
from .registry import SecretRegistry, TenantSecrets
from .config import (
    ClientConfig,
    ServerConfig,
    load_master_secrets,
    generate_master_secret,
)

__all__ = [
    "derive_key",
    "encrypt",
    "decrypt",
    "associated_data",
    "key_date_for",
    "utc_now",
    "Envelope",
    "serialize_envelope",
    "parse_envelope",
    "SecretRegistry",
    "TenantSecrets",
    "ClientConfig",
    "ServerConfig",
    "load_master_secrets",
    "generate_master_secret",
]
