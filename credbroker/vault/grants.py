"""
Grant Manager — time-limited read grants for gated secrets, issued on a valid TOTP code.

Per-secret lifecycle: none → active → expired | revoked | replaced.
Expiry is lazy: a grant whose expires_at has passed stays on disk (so
listings can say "expired") but authorizes nothing. There is at most one
grant per secret; issuing again overwrites the old one.

Callers must hold the state lock (see StateStore.locked).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from datetime import datetime, timedelta

from credbroker.audit.logger import AuditLog
from credbroker.errors import InvalidCode, InvalidTier, NotFound, StorageError
from credbroker.vault import crypto, totp
from credbroker.vault.models import (
    AuditAction,
    AuditOutcome,
    GrantRecord,
    GrantResult,
    GrantStatus,
    Tier,
    TotpEnrollment,
    TotpSetup,
)
from credbroker.vault.store import StateStore

logger = logging.getLogger(__name__)

TOTP_CONTEXT = "totp"


def grant_status(grant: GrantRecord | None, now: datetime) -> GrantStatus:
    """Pure view of a grant at time now."""
    if grant is None:
        return GrantStatus()
    if not grant.is_active(now):
        return GrantStatus(valid=False, state="expired", expires_at=grant.expires_at)
    remaining = (grant.expires_at - now).total_seconds()
    return GrantStatus(
        valid=True,
        state="active",
        expires_at=grant.expires_at,
        remaining_minutes=math.ceil(remaining / 60),
    )


class GrantManager:
    def __init__(
        self,
        store: StateStore,
        master_key: bytes,
        audit: AuditLog,
        lookup_tier: Callable[[str], Tier | None],
        *,
        totp_window: int = 1,
    ):
        self.store = store
        self.master_key = master_key
        self.audit = audit
        self.lookup_tier = lookup_tier
        self.totp_window = totp_window

    # ── TOTP enrollment ──

    def setup_totp(self, issuer: str, account: str, now: datetime) -> TotpSetup:
        """Generate (or regenerate) the broker-wide TOTP secret.

        Regenerating invalidates every previously shown URI/QR code.
        """
        secret = totp.generate_secret()
        self.store.save_totp(
            TotpEnrollment(
                sealed=crypto.seal(secret, self.master_key, TOTP_CONTEXT),
                issuer=issuer,
                account=account,
                created_at=now,
            )
        )
        logger.info("TOTP enrollment (re)generated for %s", account)
        return TotpSetup(secret=secret, uri=totp.provisioning_uri(secret, issuer, account))

    def totp_enrolled(self) -> bool:
        return self.store.load_totp() is not None

    def _consume_code(self, code: str, now: datetime) -> str | None:
        """Verify code and burn its time step. Returns a failure reason or None."""
        enrollment = self.store.load_totp()
        if enrollment is None:
            return "totp_not_enrolled"
        secret = crypto.unseal(enrollment.sealed, self.master_key, TOTP_CONTEXT)
        step = totp.matched_step(code, secret, now, window=self.totp_window)
        if step is None:
            return "invalid_code"
        if enrollment.last_used_step is not None and step <= enrollment.last_used_step:
            return "code_reused"
        enrollment.last_used_step = step
        self.store.save_totp(enrollment)
        return None

    # ── Grants ──

    def status(self, secret_name: str, now: datetime) -> GrantStatus:
        """isValid: no side effects, no audit entry."""
        return grant_status(self.store.load_grants().get(secret_name), now)

    def statuses(self, now: datetime) -> dict[str, GrantStatus]:
        return {name: grant_status(g, now) for name, g in self.store.load_grants().items()}

    def issue(self, secret_name: str, code: str, ttl_minutes: int, now: datetime) -> GrantResult:
        tier = self.lookup_tier(secret_name)
        if tier is None:
            self._audit_failure(secret_name, "not_found", now)
            raise NotFound(f"Secret '{secret_name}' not found")
        if not tier.gated:
            self._audit_failure(secret_name, "open_tier", now)
            raise InvalidTier(f"Secret '{secret_name}' is open tier; grants are not needed")
        failure = self._consume_code(code, now)
        if failure == "totp_not_enrolled":
            self._audit_failure(secret_name, failure, now)
            raise InvalidCode("TOTP is not set up. Run setup-totp first.")
        if failure == "code_reused":
            self._audit_failure(secret_name, failure, now)
            logger.warning("Rejected grant for %s: TOTP code already used", secret_name)
            raise InvalidCode("TOTP code already used; wait for the next code")
        if failure is not None:
            self._audit_failure(secret_name, failure, now)
            logger.warning("Rejected grant for %s: invalid TOTP code", secret_name)
            raise InvalidCode("Invalid TOTP code")

        grant = GrantRecord(
            secret_name=secret_name,
            issued_at=now,
            expires_at=now + timedelta(minutes=ttl_minutes),
        )
        grants = self.store.load_grants()
        previous = dict(grants)
        grants[secret_name] = grant
        self.store.save_grants(grants)
        try:
            self.audit.append(
                AuditAction.GRANT,
                secret_name,
                AuditOutcome.SUCCESS,
                reason="replaced" if secret_name in previous else None,
                now=now,
            )
        except StorageError:
            # No grant may stand without its audit entry.
            self.store.save_grants(previous)
            raise
        logger.info("Granted %s for %d min (until %s)", secret_name, ttl_minutes, grant.expires_at)
        return GrantResult(name=secret_name, expires_at=grant.expires_at)

    def revoke(self, secret_name: str, now: datetime) -> None:
        """Drop the grant. Succeeds whether or not one exists."""
        grants = self.store.load_grants()
        previous = grants.pop(secret_name, None)
        if previous is not None:
            self.store.save_grants(grants)
        try:
            self.audit.append(
                AuditAction.REVOKE,
                secret_name,
                AuditOutcome.SUCCESS,
                reason=None if previous is not None else "no_grant",
                now=now,
            )
        except StorageError:
            if previous is not None:
                grants[secret_name] = previous
                self.store.save_grants(grants)
            raise
        logger.info("Revoked grant for %s", secret_name)

    def discard(self, secret_name: str) -> GrantRecord | None:
        """Remove the grant without auditing. Returns the removed grant, if any."""
        grants = self.store.load_grants()
        removed = grants.pop(secret_name, None)
        if removed is not None:
            self.store.save_grants(grants)
        return removed

    def restore(self, grant: GrantRecord) -> None:
        grants = self.store.load_grants()
        grants[grant.secret_name] = grant
        self.store.save_grants(grants)

    def _audit_failure(self, secret_name: str, reason: str, now: datetime) -> None:
        self.audit.append(
            AuditAction.GRANT, secret_name, AuditOutcome.FAILURE, reason=reason, now=now
        )
