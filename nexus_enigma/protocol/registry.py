"""
Enigma Secret Registry — Versioned master secrets per tenant (receiver side).

Readers take the current snapshot without locking. Writers (register, rotate,
revoke) serialize on a lock, build a new mapping and publish it with a single
reference assignment, so a reader sees either the old or the new state of a
tenant and never a version without its secret.

Security Note:
    Never log secret material. Only log app keys and version numbers.
"""
import base64
import logging
import threading
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Union

from ..exceptions import UnknownSecretVersion, UnknownTenant
from .config import (
    decode_master_secret,
    generate_master_secret,
    ServerConfig,
    get_secret_version,
    load_master_secrets,
)

logger = logging.getLogger("nexus.enigma")


class TenantSecrets:
    """Immutable view of one tenant's secret generations."""

    __slots__ = ("_active_version", "_versions")

    def __init__(self, active_version: int, versions: Mapping[int, bytes]):
        if active_version not in versions:
            raise ValueError(
                f"active_version {active_version} not found in versions "
                f"(available: {sorted(versions)})"
            )
        self._active_version = active_version
        self._versions = MappingProxyType(dict(versions))

    @property
    def active_version(self) -> int:
        return self._active_version

    @property
    def versions(self) -> Mapping[int, bytes]:
        return self._versions

    @property
    def active_secret(self) -> bytes:
        return self._versions[self._active_version]

    def __repr__(self) -> str:
        return (
            f"<TenantSecrets active=v{self._active_version} "
            f"versions={sorted(self._versions)}>"
        )


class SecretRegistry:
    """Tenant app key → versioned master secrets.

    Args:
        grace_versions: How many versions older than the active one are
            retained after a rotation.
    """

    def __init__(self, grace_versions: int = 1):
        if grace_versions < 0:
            raise ValueError("grace_versions cannot be negative")
        self._grace_versions = grace_versions
        self._lock = threading.Lock()
        self._snapshot: Mapping[str, TenantSecrets] = MappingProxyType({})

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def snapshot(self) -> Mapping[str, TenantSecrets]:
        """Return the current immutable mapping of all tenants."""
        return self._snapshot

    def get(self, app_key: str) -> TenantSecrets:
        """Return the secrets of a tenant.

        Raises:
            UnknownTenant: If app_key is not registered.
        """
        tenant = self._snapshot.get(app_key)
        if tenant is None:
            raise UnknownTenant(app_key)
        return tenant

    def lookup(self, app_key: str, version: int) -> bytes:
        """Return the master secret of one version.

        Raises:
            UnknownTenant: If app_key is not registered.
            UnknownSecretVersion: If the version is not on record.
        """
        tenant = self.get(app_key)
        secret = tenant.versions.get(version)
        if secret is None:
            logger.warning(
                "Unknown secret version v%s for app=%s (known: %s)",
                version, app_key, sorted(tenant.versions),
            )
            raise UnknownSecretVersion(app_key, version)
        return secret

    def tenants(self) -> list[str]:
        return list(self._snapshot.keys())

    def __contains__(self, app_key: object) -> bool:
        return app_key in self._snapshot

    def __iter__(self) -> Iterator[str]:
        return iter(self.tenants())

    def __len__(self) -> int:
        return len(self._snapshot)

    # ------------------------------------------------------------------
    # Writers
    # ------------------------------------------------------------------

    def _publish(self, app_key: str, tenant: Optional[TenantSecrets]) -> None:
        """Swap in a new snapshot. Caller must hold the lock."""
        updated = dict(self._snapshot)
        if tenant is None:
            updated.pop(app_key, None)
        else:
            updated[app_key] = tenant
        self._snapshot = MappingProxyType(updated)

    def register(
        self,
        app_key: str,
        master_secret: Union[str, bytes],
        version: int = 1,
    ) -> TenantSecrets:
        """Install a tenant with a single active secret version.

        Replaces any secrets previously registered for app_key.
        """
        if not app_key:
            raise ValueError("App key cannot be empty")
        if version < 1:
            raise ValueError("Secret versions start at 1")
        tenant = TenantSecrets(version, {version: decode_master_secret(master_secret)})
        with self._lock:
            self._publish(app_key, tenant)
        logger.info("Registered app=%s with secret v%d", app_key, version)
        return tenant

    def register_versions(
        self,
        app_key: str,
        master_secrets: Mapping[int, Union[str, bytes]],
        active_version: int,
    ) -> TenantSecrets:
        """Install a tenant with several secret versions at once."""
        if not app_key:
            raise ValueError("App key cannot be empty")
        versions = {
            int(v): decode_master_secret(secret)
            for v, secret in master_secrets.items()
        }
        if any(v < 1 for v in versions):
            raise ValueError("Secret versions start at 1")
        tenant = TenantSecrets(active_version, versions)
        with self._lock:
            self._publish(app_key, tenant)
        logger.info(
            "Registered app=%s with secret versions %s (active v%d)",
            app_key, sorted(versions), active_version,
        )
        return tenant

    def issue(self, app_key: str) -> tuple[int, str]:
        """Create a tenant with a freshly generated secret.

        Returns:
            Tuple of (secret_version, base64 master secret) to hand to the
            client; the registry keeps its own copy.

        Raises:
            ValueError: If app_key is empty or already registered.
        """
        if not app_key:
            raise ValueError("App key cannot be empty")
        secret = generate_master_secret()
        with self._lock:
            if app_key in self._snapshot:
                raise ValueError(f"App key {app_key!r} is already registered")
            self._publish(
                app_key, TenantSecrets(1, {1: base64.b64decode(secret)}),
            )
        logger.info("Issued secret v1 for app=%s", app_key)
        return 1, secret

    def rotate(
        self,
        app_key: str,
        master_secret: Optional[Union[str, bytes]] = None,
    ) -> tuple[int, str]:
        """Activate a new secret version for a tenant.

        The new version is ``active + 1``. Versions older than the grace
        window are dropped in the same swap.

        Args:
            app_key: Tenant to rotate.
            master_secret: New secret; generated when omitted.

        Returns:
            Tuple of (new_version, base64 master secret).

        Raises:
            UnknownTenant: If app_key is not registered.
        """
        if master_secret is None:
            master_secret = generate_master_secret()
        raw = decode_master_secret(master_secret)
        with self._lock:
            current = self._snapshot.get(app_key)
            if current is None:
                raise UnknownTenant(app_key)
            new_version = max(current.versions) + 1
            versions = dict(current.versions)
            versions[new_version] = raw
            keep = sorted(versions, reverse=True)[:self._grace_versions + 1]
            pruned = sorted(set(versions) - set(keep))
            tenant = TenantSecrets(new_version, {v: versions[v] for v in keep})
            self._publish(app_key, tenant)
        logger.info(
            "Rotated app=%s from v%d to v%d (retired: %s)",
            app_key, current.active_version, new_version, pruned or "none",
        )
        return new_version, base64.b64encode(raw).decode("ascii")

    def revoke(self, app_key: str, version: int) -> TenantSecrets:
        """Drop a non-active secret version.

        Raises:
            UnknownTenant: If app_key is not registered.
            UnknownSecretVersion: If the version is not on record.
            ValueError: If version is the active one.
        """
        with self._lock:
            current = self._snapshot.get(app_key)
            if current is None:
                raise UnknownTenant(app_key)
            if version not in current.versions:
                raise UnknownSecretVersion(app_key, version)
            if version == current.active_version:
                raise ValueError(
                    f"Cannot revoke active secret v{version} of app {app_key!r}"
                )
            versions = {
                v: s for v, s in current.versions.items() if v != version
            }
            tenant = TenantSecrets(current.active_version, versions)
            self._publish(app_key, tenant)
        logger.info("Revoked secret v%d for app=%s", version, app_key)
        return tenant

    def remove(self, app_key: str) -> None:
        """Forget a tenant entirely."""
        with self._lock:
            if app_key not in self._snapshot:
                raise UnknownTenant(app_key)
            self._publish(app_key, None)
        logger.info("Removed app=%s", app_key)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    @classmethod
    def from_env(
        cls, app_key: str, grace_versions: Optional[int] = None,
    ) -> "SecretRegistry":
        """Build a single-tenant registry from ENIGMA_MASTER_SECRET_v{N}.

        The active version is read from ENIGMA_SECRET_VERSION. Unless given,
        the grace window comes from ENIGMA_GRACE_VERSIONS.
        """
        if grace_versions is None:
            grace_versions = ServerConfig.from_env().grace_versions
        registry = cls(grace_versions=grace_versions)
        registry.register_versions(
            app_key, load_master_secrets(), get_secret_version(),
        )
        return registry
