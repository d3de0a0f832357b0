"""Nexus Enigma.

End-to-end encryption for Nexus data ingestion: AES-256-GCM with keys
derived per tenant and per UTC day via HKDF-SHA256.
"""
from .version import __version__
from .exceptions import (
    EnigmaError,
    InvalidKeyMaterial,
    InvalidContext,
    MalformedEnvelope,
    AuthenticationFailed,
    UnknownTenant,
    UnknownSecretVersion,
    EnvelopeExpired,
    IngestionError,
)
from .protocol import (
    ClientConfig,
    ServerConfig,
    SecretRegistry,
    generate_master_secret,
)
from .client import EnigmaClient, create_client
from .server import EnigmaServer, ingress_handler

__all__ = [
    "__version__",
    "EnigmaClient",
    "create_client",
    "EnigmaServer",
    "ingress_handler",
    "SecretRegistry",
    "ClientConfig",
    "ServerConfig",
    "generate_master_secret",
    "EnigmaError",
    "InvalidKeyMaterial",
    "InvalidContext",
    "MalformedEnvelope",
    "AuthenticationFailed",
    "UnknownTenant",
    "UnknownSecretVersion",
    "EnvelopeExpired",
    "IngestionError",
]
