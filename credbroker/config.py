"""
Centralized configuration for Credbroker.

All configuration is loaded from environment variables with sensible defaults.

Usage:
    from credbroker.config import get_config
    cfg = get_config()
    print(cfg.state_dir)            # "/home/user/.credbroker" or $CREDBROKER_STATE_DIR
    print(cfg.default_ttl_minutes)  # 60
"""

from __future__ import annotations

import getpass
import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

from credbroker.errors import ValidationError

DEFAULT_TTL_MINUTES = 60
MAX_TTL_MINUTES = 365 * 24 * 60  # one year
DEFAULT_TOTP_WINDOW = 1  # ±1 step (±30 s)
DEFAULT_LOCK_TIMEOUT = 10.0


def _default_account() -> str:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "user"
    return f"{user}@{socket.gethostname()}"


@dataclass(frozen=True)
class BrokerConfig:
    """Top-level broker configuration."""

    state_dir: Path = field(default_factory=lambda: Path.home() / ".credbroker")

    # Grants
    default_ttl_minutes: int = DEFAULT_TTL_MINUTES

    # TOTP
    totp_window: int = DEFAULT_TOTP_WINDOW
    totp_issuer: str = "credbroker"
    totp_account: str = field(default_factory=_default_account)

    # Seconds to wait for the state lock before giving up
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    def __post_init__(self) -> None:
        if not 0 < self.default_ttl_minutes <= MAX_TTL_MINUTES:
            raise ValidationError(
                f"Default grant TTL must be between 1 and {MAX_TTL_MINUTES} minutes, "
                f"got {self.default_ttl_minutes}"
            )
        if self.totp_window not in (0, 1):
            raise ValidationError(f"TOTP window must be 0 or 1, got {self.totp_window}")
        if self.lock_timeout < 0:
            raise ValidationError(f"Lock timeout must not be negative, got {self.lock_timeout}")

    @property
    def registry_path(self) -> Path:
        return self.state_dir / "registry.json"

    @property
    def grants_path(self) -> Path:
        return self.state_dir / "grants.json"

    @property
    def totp_path(self) -> Path:
        return self.state_dir / "totp.json"

    @property
    def audit_path(self) -> Path:
        return self.state_dir / "audit" / "credentials.jsonl"

    @property
    def lock_path(self) -> Path:
        return self.state_dir / ".lock"


# Singleton
_config: BrokerConfig | None = None


def get_config() -> BrokerConfig:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _env_number(name: str, default: str, kind: type) -> int | float:
    raw = os.environ.get(name, default)
    try:
        return kind(raw)
    except ValueError as e:
        raise ValidationError(f"{name} must be a number, got {raw!r}") from e


def _load_from_env() -> BrokerConfig:
    """Load configuration from environment variables."""
    state_dir = Path(os.environ.get("CREDBROKER_STATE_DIR", Path.home() / ".credbroker"))

    return BrokerConfig(
        state_dir=state_dir.expanduser(),
        default_ttl_minutes=int(
            _env_number("CREDBROKER_GRANT_TTL_MINUTES", str(DEFAULT_TTL_MINUTES), int)
        ),
        totp_window=int(_env_number("CREDBROKER_TOTP_WINDOW", str(DEFAULT_TOTP_WINDOW), int)),
        totp_issuer=os.environ.get("CREDBROKER_TOTP_ISSUER", "credbroker"),
        totp_account=os.environ.get("CREDBROKER_TOTP_ACCOUNT") or _default_account(),
        lock_timeout=float(
            _env_number("CREDBROKER_LOCK_TIMEOUT", str(DEFAULT_LOCK_TIMEOUT), float)
        ),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
