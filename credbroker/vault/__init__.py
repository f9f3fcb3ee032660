"""
Credbroker vault — sealed secret storage and TOTP-gated grants.

Modules:
    crypto    AES-256-GCM sealing + master key file
    totp      RFC 6238 enrollment secrets and code checks (pyotp)
    store     JSON state files, atomic writes, cross-process lock
    registry  secret records and tier-aware reads
    grants    grant lifecycle and TOTP enrollment
"""

from __future__ import annotations

from credbroker.vault.models import Tier, parse_tier

__all__ = ["Tier", "parse_tier"]
