"""Broker data models — persisted records and operation results.

Sealed values are the only form in which secret material appears here;
result models never carry ciphertext.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from pathlib import Path

from pydantic import BaseModel, Field

from credbroker.errors import InvalidTier


class Tier(StrEnum):
    OPEN = "open"
    CONTROLLED = "controlled"
    RESTRICTED = "restricted"

    @property
    def gated(self) -> bool:
        return self is not Tier.OPEN


def parse_tier(tier: str | Tier | None) -> Tier:
    """Normalize a tier string. Missing tier defaults to controlled."""
    if tier is None:
        return Tier.CONTROLLED
    if isinstance(tier, Tier):
        return tier
    try:
        return Tier(str(tier).strip().lower())
    except ValueError:
        raise InvalidTier(
            f"Invalid tier: {tier}. Must be open, controlled, or restricted."
        ) from None


class SealedValue(BaseModel):
    """AEAD envelope: base64 nonce + ciphertext (tag appended)."""

    alg: str = "AES-256-GCM"
    nonce: str
    ciphertext: str


class SecretRecord(BaseModel):
    """A registered secret (value only in sealed form)."""

    name: str
    tier: Tier
    description: str | None = None
    sealed: SealedValue
    created_at: datetime
    updated_at: datetime


class GrantRecord(BaseModel):
    secret_name: str
    issued_at: datetime
    expires_at: datetime

    def is_active(self, now: datetime) -> bool:
        return now < self.expires_at


class TotpEnrollment(BaseModel):
    """Broker-wide TOTP shared secret, stored sealed."""

    sealed: SealedValue
    issuer: str
    account: str
    created_at: datetime
    last_used_step: int | None = None  # replay guard


class AuditAction(StrEnum):
    SET = "set"
    GET = "get"
    GRANT = "grant"
    REVOKE = "revoke"
    DELETE = "delete"
    DENIED = "denied"


class AuditOutcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"


class AuditEntry(BaseModel):
    seq: int
    timestamp: datetime
    action: AuditAction
    secret_name: str
    outcome: AuditOutcome
    reason: str | None = None
    prev_hash: str
    hash: str = ""


# ── Results ──────────────────────────────────────────────────────────


class GrantStatus(BaseModel):
    """Grant view for one secret. state is none, active or expired."""

    valid: bool = False
    state: str = "none"
    expires_at: datetime | None = None
    remaining_minutes: int | None = None


class SecretSummary(BaseModel):
    name: str
    tier: Tier
    description: str | None = None
    grant: GrantStatus = Field(default_factory=GrantStatus)


class GrantResult(BaseModel):
    name: str
    expires_at: datetime


class TotpSetup(BaseModel):
    secret: str
    uri: str


class BrokerInfo(BaseModel):
    state_dir: Path
    backend: str = "file"
    secrets_count: int
    active_grants: int
    totp_enrolled: bool
    default_ttl_minutes: int
    totp_window: int
    audit_log: Path
