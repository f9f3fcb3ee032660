"""Tests for the module-level API in credbroker/__init__.py."""

import pytest

import credbroker


@pytest.fixture(autouse=True)
def api_state(clean_env, monkeypatch, tmp_path):
    monkeypatch.setenv("CREDBROKER_STATE_DIR", str(tmp_path / "state"))


class TestModuleApi:
    def test_default_broker_singleton(self):
        assert credbroker.get_broker() is credbroker.get_broker()

    def test_roundtrip(self):
        credbroker.set_secret("token", "abc", "open", "CI token")
        assert credbroker.get_secret("token") == "abc"
        assert [s.name for s in credbroker.list_secrets()] == ["token"]
        assert credbroker.info().secrets_count == 1

    def test_gated_needs_grant(self):
        credbroker.set_secret("db", "s3cr3t")
        assert credbroker.get_secret("db") is None
        credbroker.revoke_secret("db")
        credbroker.delete_secret("db")
        assert credbroker.list_secrets() == []

    def test_setup_totp(self):
        result = credbroker.setup_totp()
        assert result.uri.startswith("otpauth://totp/")
