"""
Credbroker — local credential broker with tiered access and TOTP-gated grants.

Public API:
    credbroker.list_secrets()                → [SecretSummary]
    credbroker.get_secret(name)              → value or None
    credbroker.set_secret(name, value, tier) → store sealed
    credbroker.grant_secret(name, code)      → GrantResult
    credbroker.revoke_secret(name)           → drop grant
    credbroker.delete_secret(name)           → remove secret + grant
    credbroker.setup_totp()                  → TotpSetup
"""

from __future__ import annotations

from credbroker.broker import Broker
from credbroker.vault.models import (
    BrokerInfo,
    GrantResult,
    GrantStatus,
    SecretSummary,
    Tier,
    TotpSetup,
)

__version__ = "0.1.0"

# Singleton
_broker: Broker | None = None


def get_broker() -> Broker:
    """Get or create the default broker bound to get_config()."""
    global _broker
    if _broker is None:
        _broker = Broker()
    return _broker


def reset_broker() -> None:
    """Drop the default broker (for testing)."""
    global _broker
    _broker = None


def list_secrets() -> list[SecretSummary]:
    return get_broker().list_secrets()


def get_secret(name: str) -> str | None:
    """Return the value, or None if missing or not currently granted."""
    return get_broker().get_secret(name)


def set_secret(
    name: str, value: str, tier: Tier | str = Tier.CONTROLLED, description: str | None = None
) -> None:
    get_broker().set_secret(name, value, tier, description)


def grant_secret(name: str, code: str, ttl_minutes: int | None = None) -> GrantResult:
    return get_broker().grant_secret(name, code, ttl_minutes)


def revoke_secret(name: str) -> None:
    get_broker().revoke_secret(name)


def delete_secret(name: str) -> None:
    get_broker().delete_secret(name)


def setup_totp() -> TotpSetup:
    return get_broker().setup_totp()


def info() -> BrokerInfo:
    return get_broker().info()


__all__ = [
    "Broker",
    "BrokerInfo",
    "GrantResult",
    "GrantStatus",
    "SecretSummary",
    "Tier",
    "TotpSetup",
    "delete_secret",
    "get_broker",
    "get_secret",
    "grant_secret",
    "info",
    "list_secrets",
    "reset_broker",
    "revoke_secret",
    "set_secret",
    "setup_totp",
]
