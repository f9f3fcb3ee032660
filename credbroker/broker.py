"""
Broker facade — the operation set the CLI calls.

Composes the Secret Registry, Grant Manager and Audit Log over one state
directory. Each public call is a single critical section under the state
lock: tier check → grant check → unseal → audit write.

Usage:
    from credbroker.broker import Broker
    broker = Broker()
    broker.set_secret("db-pass", "s3cr3t", "restricted")
    broker.grant_secret("db-pass", "123456", ttl_minutes=5)
    broker.get_secret("db-pass")
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from credbroker.audit.logger import AuditLog
from credbroker.config import MAX_TTL_MINUTES, BrokerConfig, get_config
from credbroker.errors import ValidationError
from credbroker.vault import crypto
from credbroker.vault.grants import GrantManager
from credbroker.vault.models import (
    BrokerInfo,
    GrantResult,
    GrantStatus,
    SecretSummary,
    Tier,
    TotpSetup,
    parse_tier,
)
from credbroker.vault.registry import SecretRegistry
from credbroker.vault.store import StateStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def validate_ttl(ttl_minutes: object) -> int | None:
    """None passes through; anything else must be an int in 1..MAX_TTL_MINUTES."""
    if ttl_minutes is None:
        return None
    if isinstance(ttl_minutes, bool) or not isinstance(ttl_minutes, int):
        raise ValidationError(f"TTL must be a whole number of minutes, got {ttl_minutes!r}")
    if ttl_minutes <= 0:
        raise ValidationError("TTL must be a positive number")
    if ttl_minutes > MAX_TTL_MINUTES:
        raise ValidationError(f"TTL must be at most {MAX_TTL_MINUTES} minutes (one year)")
    return ttl_minutes


def _require(value: str | None, what: str) -> str:
    if not isinstance(value, str) or not value:
        raise ValidationError(f"No {what} provided")
    return value


class Broker:
    """Credential broker bound to one state directory."""

    def __init__(
        self,
        config: BrokerConfig | None = None,
        *,
        master_key: bytes | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.config = config or get_config()
        self.clock = clock or _utcnow
        self.store = StateStore(self.config)
        self._master_key = master_key
        self._registry: SecretRegistry | None = None
        self._grants: GrantManager | None = None
        self.audit = AuditLog(self.config.audit_path)

    def _components(self) -> tuple[SecretRegistry, GrantManager]:
        """Wire the registry and grant manager on first use (needs the master key)."""
        if self._registry is None or self._grants is None:
            if self._master_key is None:
                self.store.ensure_dir()
                crypto.init_master_key(self.config.state_dir)
                self._master_key = crypto.get_master_key(self.config.state_dir)
            registry = SecretRegistry(self.store, self._master_key, self.audit)
            grants = GrantManager(
                self.store,
                self._master_key,
                self.audit,
                registry.tier_of,
                totp_window=self.config.totp_window,
            )
            registry.attach_grants(grants)
            self._registry, self._grants = registry, grants
        return self._registry, self._grants

    # ── Operations ──

    def list_secrets(self) -> list[SecretSummary]:
        with self.store.locked():
            registry, _ = self._components()
            return registry.list(self.clock())

    def get_secret(self, name: str) -> str | None:
        """Value if readable now, else None (missing and denied look the same)."""
        with self.store.locked():
            registry, _ = self._components()
            return registry.get(name, self.clock())

    def set_secret(
        self,
        name: str,
        value: str,
        tier: Tier | str | None = Tier.CONTROLLED,
        description: str | None = None,
    ) -> None:
        _require(name, "secret name")
        _require(value, "value")
        parsed = parse_tier(tier)
        with self.store.locked():
            registry, _ = self._components()
            registry.set(name, value, parsed, description or None, self.clock())

    def grant_secret(self, name: str, code: str, ttl_minutes: int | None = None) -> GrantResult:
        ttl = validate_ttl(ttl_minutes) or self.config.default_ttl_minutes
        with self.store.locked():
            _, grants = self._components()
            return grants.issue(name, code, ttl, self.clock())

    def grant_status(self, name: str) -> GrantStatus:
        with self.store.locked():
            _, grants = self._components()
            return grants.status(name, self.clock())

    def revoke_secret(self, name: str) -> None:
        with self.store.locked():
            _, grants = self._components()
            grants.revoke(name, self.clock())

    def delete_secret(self, name: str) -> None:
        with self.store.locked():
            registry, _ = self._components()
            registry.delete(name, self.clock())

    def setup_totp(self) -> TotpSetup:
        with self.store.locked():
            _, grants = self._components()
            return grants.setup_totp(
                self.config.totp_issuer, self.config.totp_account, self.clock()
            )

    def count_secrets(self) -> int:
        with self.store.locked():
            registry, _ = self._components()
            return registry.count()

    def info(self) -> BrokerInfo:
        with self.store.locked():
            registry, grants = self._components()
            now = self.clock()
            return BrokerInfo(
                state_dir=self.config.state_dir,
                secrets_count=registry.count(),
                active_grants=sum(1 for s in grants.statuses(now).values() if s.valid),
                totp_enrolled=grants.totp_enrolled(),
                default_ttl_minutes=self.config.default_ttl_minutes,
                totp_window=self.config.totp_window,
                audit_log=self.config.audit_path,
            )
