"""
Root-level shared test fixtures.

Inherited by tests/ and credbroker/vault/tests/. Every broker fixture works
on a throwaway state directory and a controllable clock.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from credbroker import reset_broker
from credbroker.broker import Broker
from credbroker.config import BrokerConfig, reset_config
from credbroker.vault.crypto import reset_key_cache

START = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)  # on a 30 s TOTP boundary


class FakeClock:
    """Callable clock for simulated time."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clean_env(monkeypatch):
    """Remove credbroker env vars that leak between tests."""
    for key in [
        "CREDBROKER_STATE_DIR",
        "CREDBROKER_GRANT_TTL_MINUTES",
        "CREDBROKER_TOTP_WINDOW",
        "CREDBROKER_TOTP_ISSUER",
        "CREDBROKER_TOTP_ACCOUNT",
        "CREDBROKER_LOCK_TIMEOUT",
    ]:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_singletons():
    reset_config()
    reset_broker()
    reset_key_cache()
    yield
    reset_config()
    reset_broker()
    reset_key_cache()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def broker_config(state_dir: Path) -> BrokerConfig:
    return BrokerConfig(
        state_dir=state_dir,
        totp_issuer="credbroker-test",
        totp_account="tester@localhost",
        lock_timeout=0.2,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def broker(broker_config: BrokerConfig, clock: FakeClock) -> Broker:
    return Broker(broker_config, clock=clock)
