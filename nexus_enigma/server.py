"""
EnigmaServer — Receiver side of the Enigma envelope protocol.

Pipeline for one request:
    parse envelope → lookup (app_key, secretVersion) → derive key for keyDate
    → AES-GCM verify/decrypt → JSON decode

The tenant is identified by the ``X-API-Key`` transport header, never by
envelope fields.

Security Note:
    Never log plaintext, ciphertext or key material. Authentication failures
    are logged as security events with the app key, version and key date only.
"""
import logging
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Optional

from aiohttp import web

from .exceptions import (
    AuthenticationFailed,
    EnvelopeExpired,
    MalformedEnvelope,
    UnknownSecretVersion,
    UnknownTenant,
)
from .protocol.config import ServerConfig
from .protocol.crypto import (
    associated_data,
    decrypt,
    derive_key,
    deserialize_payload,
    key_date_for,
    utc_now,
)
from .protocol.envelope import API_KEY_HEADER, parse_envelope
from .protocol.registry import SecretRegistry

logger = logging.getLogger("nexus.enigma")

PayloadCallback = Callable[[str, Any], Awaitable[Any]]


class EnigmaServer:
    """Verify and decrypt envelopes sent by :class:`EnigmaClient`.

    Args:
        registry: Tenant secret registry; an empty one using the
            configured grace window is created when omitted. A supplied
            registry keeps its own grace window.
        config: Receiver policy (context binding, replay window).
        clock: Returns the current time; injected for testing.
    """

    def __init__(
        self,
        registry: Optional[SecretRegistry] = None,
        config: Optional[ServerConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._config = config or ServerConfig()
        if registry is None:
            registry = SecretRegistry(grace_versions=self._config.grace_versions)
        self._registry = registry
        self._clock = clock

    @property
    def registry(self) -> SecretRegistry:
        return self._registry

    @property
    def config(self) -> ServerConfig:
        return self._config

    def _check_window(self, key_date: str) -> None:
        max_age = self._config.max_key_age_days
        if max_age is None:
            return
        today = date.fromisoformat(key_date_for(self._clock()))
        distance = abs((today - date.fromisoformat(key_date)).days)
        if distance > max_age:
            logger.warning(
                "Rejected envelope outside replay window: keyDate=%s (%d day(s))",
                key_date, distance,
            )
            raise EnvelopeExpired(key_date, max_age)

    def open_envelope(self, app_key: str, wire: Any) -> bytes:
        """Verify and decrypt an envelope for a tenant.

        Args:
            app_key: Tenant identity from the transport credential.
            wire: Decoded JSON envelope.

        Returns:
            Plaintext bytes.

        Raises:
            MalformedEnvelope: If the envelope is structurally invalid.
            UnknownTenant: If app_key is not registered.
            UnknownSecretVersion: If secretVersion is not on record.
            EnvelopeExpired: If keyDate is outside the replay window.
            AuthenticationFailed: If the tag check fails.
        """
        envelope = parse_envelope(wire)
        master_secret = self._registry.lookup(app_key, envelope.secret_version)
        self._check_window(envelope.key_date)
        key = derive_key(master_secret, app_key, envelope.key_date)
        aad = None
        if self._config.bind_context:
            aad = associated_data(
                app_key, envelope.key_date, envelope.secret_version,
            )
        try:
            plaintext = decrypt(key, envelope.nonce, envelope.ciphertext, aad)
        except AuthenticationFailed:
            logger.warning(
                "Authentication failed: app=%s v%d keyDate=%s",
                app_key, envelope.secret_version, envelope.key_date,
            )
            raise
        logger.debug(
            "Decrypted envelope: app=%s v%d keyDate=%s",
            app_key, envelope.secret_version, envelope.key_date,
        )
        return plaintext

    def decrypt(self, app_key: str, wire: Any) -> Any:
        """Open an envelope and decode its JSON payload.

        Raises:
            MalformedEnvelope: If the authenticated plaintext is not JSON.
        """
        plaintext = self.open_envelope(app_key, wire)
        try:
            return deserialize_payload(plaintext)
        except ValueError:
            logger.warning("Undecodable payload: app=%s", app_key)
            raise MalformedEnvelope("Payload is not valid JSON") from None

    async def decrypt_request(self, request: web.Request) -> tuple[str, Any]:
        """Decrypt the envelope carried by an aiohttp request.

        Returns:
            Tuple of (app_key, payload).

        Raises:
            UnknownTenant: If the API key header is missing or unknown.
            MalformedEnvelope: If the body is not a JSON envelope.
        """
        app_key = request.headers.get(API_KEY_HEADER, "")
        if not app_key:
            raise UnknownTenant(app_key)
        try:
            wire = await request.json(loads=deserialize_payload)
        except ValueError:
            raise MalformedEnvelope("Request body is not valid JSON") from None
        return app_key, self.decrypt(app_key, wire)


def _error(status: int, code: str, message: str) -> web.Response:
    return web.json_response(
        {"success": False, "error": code, "message": message}, status=status,
    )


def ingress_handler(
    server: EnigmaServer,
    on_payload: Optional[PayloadCallback] = None,
) -> Callable[[web.Request], Awaitable[web.Response]]:
    """Build an aiohttp handler that decrypts ingress requests.

    Args:
        server: Receiver that decrypts envelopes.
        on_payload: Awaited with (app_key, payload) after decryption; its
            return value becomes the JSON response body.

    Returns:
        Request handler suitable for ``app.router.add_post``.
    """
    async def handler(request: web.Request) -> web.Response:
        try:
            app_key, payload = await server.decrypt_request(request)
        except MalformedEnvelope as err:
            return _error(400, "malformed_envelope", str(err))
        except (UnknownTenant, AuthenticationFailed):
            # same response for both: no oracle
            return _error(401, "unauthorized", "Request could not be authenticated")
        except EnvelopeExpired as err:
            return _error(403, "envelope_expired", str(err))
        except UnknownSecretVersion as err:
            return _error(409, "unknown_secret_version", str(err))
        result = None
        if on_payload is not None:
            result = await on_payload(app_key, payload)
        if result is None:
            result = {"success": True}
        return web.json_response(result)

    return handler
