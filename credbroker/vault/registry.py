"""
Secret Registry — name → tier, description and sealed value.

Reads of controlled/restricted secrets go through the Grant Manager. A
missing secret and a secret without an active grant look the same to the
caller (both return None); only the audit entry records which it was.

Callers must hold the state lock (see StateStore.locked).
"""

from __future__ import annotations

import logging
from datetime import datetime

from credbroker.audit.logger import AuditLog
from credbroker.errors import NotFound, StorageError
from credbroker.vault import crypto
from credbroker.vault.grants import GrantManager
from credbroker.vault.models import (
    AuditAction,
    AuditOutcome,
    GrantStatus,
    SecretRecord,
    SecretSummary,
    Tier,
)
from credbroker.vault.store import StateStore

logger = logging.getLogger(__name__)


class SecretRegistry:
    def __init__(self, store: StateStore, master_key: bytes, audit: AuditLog):
        self.store = store
        self.master_key = master_key
        self.audit = audit
        self.grants: GrantManager | None = None

    def attach_grants(self, grants: GrantManager) -> None:
        self.grants = grants

    def lookup(self, name: str) -> SecretRecord | None:
        return self.store.load_secrets().get(name)

    def tier_of(self, name: str) -> Tier | None:
        record = self.lookup(name)
        return record.tier if record else None

    def set(
        self,
        name: str,
        value: str,
        tier: Tier,
        description: str | None,
        now: datetime,
    ) -> SecretRecord:
        """Seal and upsert. Overwriting an existing secret is not an error."""
        secrets = self.store.load_secrets()
        previous = secrets.get(name)
        record = SecretRecord(
            name=name,
            tier=tier,
            description=description,
            sealed=crypto.seal(value, self.master_key, name),
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        secrets[name] = record
        self.store.save_secrets(secrets)
        try:
            self.audit.append(AuditAction.SET, name, AuditOutcome.SUCCESS, now=now)
        except StorageError:
            if previous is None:
                del secrets[name]
            else:
                secrets[name] = previous
            self.store.save_secrets(secrets)
            raise
        logger.info("Stored secret %s (tier: %s)", name, tier)
        return record

    def get(self, name: str, now: datetime) -> str | None:
        record = self.lookup(name)
        if record is None:
            self._deny(name, "not_found", now)
            return None

        if record.tier.gated:
            status = self._grants().status(name, now)
            if not status.valid:
                self._deny(name, "grant_expired" if status.state == "expired" else "no_grant", now)
                return None

        value = crypto.unseal(record.sealed, self.master_key, name)
        self.audit.append(AuditAction.GET, name, AuditOutcome.SUCCESS, now=now)
        return value

    def list(self, now: datetime) -> list[SecretSummary]:
        """Ordered by name. Never includes sealed or plaintext values."""
        statuses = self._grants().statuses(now)
        return [
            SecretSummary(
                name=r.name,
                tier=r.tier,
                description=r.description,
                grant=statuses.get(r.name, GrantStatus()) if r.tier.gated else GrantStatus(),
            )
            for r in sorted(self.store.load_secrets().values(), key=lambda r: r.name)
        ]

    def delete(self, name: str, now: datetime) -> None:
        """Remove the secret and its grant. Irreversible."""
        secrets = self.store.load_secrets()
        if name not in secrets:
            self.audit.append(
                AuditAction.DELETE, name, AuditOutcome.FAILURE, reason="not_found", now=now
            )
            raise NotFound(f"Secret '{name}' not found")
        # Grant first: an interrupted delete must not leave a grant for a
        # future secret of the same name.
        removed_grant = self._grants().discard(name)
        record = secrets.pop(name)
        self.store.save_secrets(secrets)
        try:
            self.audit.append(AuditAction.DELETE, name, AuditOutcome.SUCCESS, now=now)
        except StorageError:
            secrets[name] = record
            self.store.save_secrets(secrets)
            if removed_grant is not None:
                self._grants().restore(removed_grant)
            raise
        logger.info("Deleted secret %s", name)

    def count(self) -> int:
        return len(self.store.load_secrets())

    def _grants(self) -> GrantManager:
        if self.grants is None:
            raise RuntimeError("SecretRegistry used before a GrantManager was attached")
        return self.grants

    def _deny(self, name: str, reason: str, now: datetime) -> None:
        self.audit.append(AuditAction.DENIED, name, AuditOutcome.FAILURE, reason=reason, now=now)
        logger.warning("Denied read of %s", name)
