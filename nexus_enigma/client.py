"""
EnigmaClient — Sender side of the Enigma envelope protocol.

Usage::

    async with EnigmaClient(
        app_key="my_app_key",
        master_secret="<base64 master secret>",
        base_url="http://localhost:8080",
    ) as client:
        result = await client.send({"temperature": 25.5, "humidity": 60})

All cryptographic work happens in :meth:`EnigmaClient.seal` before any I/O,
so cancelling :meth:`EnigmaClient.send` never leaves crypto state half-done.
The client does not retry.

Security Note:
    Never log the master secret, derived keys or payload contents.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Optional, Union

import aiohttp
import orjson

from .exceptions import IngestionError
from .protocol.config import ClientConfig, decode_master_secret
from .protocol.crypto import (
    associated_data,
    derive_key,
    encrypt,
    key_date_for,
    serialize_payload,
    utc_now,
)
from .protocol.envelope import API_KEY_HEADER, serialize_envelope

logger = logging.getLogger("nexus.enigma")


class EnigmaClient:
    """Encrypt payloads and post them to a Nexus ingestion endpoint.

    Args:
        app_key: Tenant app key, sent as the ``X-API-Key`` header.
        master_secret: Raw bytes or base64 text issued by the registry.
        base_url: Ingestion API base URL.
        secret_version: Version of ``master_secret`` (default 1).
        ingress_path: Path of the ingestion endpoint.
        bind_context: Authenticate app key, key date and version as
            associated data. Must match the receiver's setting.
        timeout: Total request timeout in seconds.
        clock: Returns the current time; injected for testing.
        session: Optional shared ``aiohttp.ClientSession``; not closed by
            the client.
    """

    def __init__(
        self,
        app_key: str,
        master_secret: Union[str, bytes],
        base_url: str = "http://localhost:8080",
        secret_version: int = 1,
        *,
        ingress_path: str = "/ingress",
        bind_context: bool = False,
        timeout: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        if secret_version < 1:
            raise ValueError("secret_version must be a positive integer")
        self._app_key = app_key
        self._master_secret = decode_master_secret(master_secret)
        self._secret_version = secret_version
        self._url = f"{base_url.rstrip('/')}{ingress_path}"
        self._bind_context = bind_context
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._clock = clock
        self._session = session
        self._owns_session = session is None
        self._cached_key: Optional[tuple[str, bytes]] = None
        # fail fast on a bad app key instead of on first send
        derive_key(self._master_secret, app_key, key_date_for(clock()))

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        clock: Callable[[], datetime] = utc_now,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> "EnigmaClient":
        """Create a client from a validated :class:`ClientConfig`."""
        return cls(
            app_key=config.app_key,
            master_secret=config.master_secret,
            base_url=config.base_url,
            secret_version=config.secret_version,
            ingress_path=config.ingress_path,
            bind_context=config.bind_context,
            timeout=config.timeout,
            clock=clock,
            session=session,
        )

    @property
    def app_key(self) -> str:
        return self._app_key

    @property
    def secret_version(self) -> int:
        return self._secret_version

    @property
    def url(self) -> str:
        return self._url

    # ------------------------------------------------------------------
    # Crypto
    # ------------------------------------------------------------------

    def _key_for(self, key_date: str) -> bytes:
        """Return today's derived key, re-deriving at UTC day rollover."""
        cached = self._cached_key
        if cached is not None and cached[0] == key_date:
            return cached[1]
        key = derive_key(self._master_secret, self._app_key, key_date)
        self._cached_key = (key_date, key)
        logger.debug("Derived key: app=%s keyDate=%s", self._app_key, key_date)
        return key

    def seal(self, payload: Any) -> dict[str, Any]:
        """Encrypt a JSON-serializable payload into a wire envelope.

        Args:
            payload: Data to send.

        Returns:
            Envelope dict ready to be posted as JSON.
        """
        key_date = key_date_for(self._clock())
        key = self._key_for(key_date)
        aad = None
        if self._bind_context:
            aad = associated_data(self._app_key, key_date, self._secret_version)
        ciphertext, nonce = encrypt(key, serialize_payload(payload), aad)
        return serialize_envelope(key_date, self._secret_version, nonce, ciphertext)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
            self._owns_session = True
        return self._session

    async def send(self, payload: Any) -> Any:
        """Encrypt a payload and post it to the ingestion endpoint.

        Returns:
            Decoded JSON response body.

        Raises:
            IngestionError: If the endpoint answers with a non-2xx status.
            aiohttp.ClientError: On transport failures.
        """
        envelope = self.seal(payload)
        session = self._get_session()
        headers = {
            "Content-Type": "application/json",
            API_KEY_HEADER: self._app_key,
        }
        async with session.post(
            self._url,
            data=orjson.dumps(envelope),
            headers=headers,
            timeout=self._timeout,
        ) as resp:
            raw = await resp.read()
            try:
                body = orjson.loads(raw) if raw else None
            except orjson.JSONDecodeError:
                body = raw.decode("utf-8", errors="replace")
            if not 200 <= resp.status < 300:
                logger.error(
                    "Ingestion failed: app=%s status=%s", self._app_key, resp.status,
                )
                raise IngestionError(resp.status, body)
        logger.debug(
            "Sent envelope: app=%s v%d keyDate=%s",
            self._app_key, self._secret_version, envelope["keyDate"],
        )
        return body

    async def close(self) -> None:
        """Close the HTTP session if the client created it."""
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "EnigmaClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


def create_client(
    app_key: str,
    master_secret: Union[str, bytes],
    base_url: str = "http://localhost:8080",
    secret_version: int = 1,
) -> EnigmaClient:
    """Create a new Enigma client."""
    return EnigmaClient(
        app_key=app_key,
        master_secret=master_secret,
        base_url=base_url,
        secret_version=secret_version,
    )
