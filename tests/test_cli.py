"""Tests for credbroker.cli — command line interface."""

import json
from datetime import UTC, datetime

import pytest

from credbroker.cli import main
from credbroker.vault import totp


@pytest.fixture(autouse=True)
def cli_state(clean_env, monkeypatch, tmp_path):
    monkeypatch.setenv("CREDBROKER_STATE_DIR", str(tmp_path / "state"))
    monkeypatch.setenv("CREDBROKER_TOTP_ACCOUNT", "tester@localhost")
    return tmp_path / "state"


def _setup_totp(capsys) -> str:
    assert main(["setup-totp", "--json"]) == 0
    return json.loads(capsys.readouterr().out)["secret"]


class TestCli:
    def test_version(self, capsys):
        assert main(["version"]) == 0
        out = capsys.readouterr().out
        assert "credbroker" in out
        assert "0.1.0" in out

    def test_no_args(self, capsys):
        assert main([]) == 0

    def test_list_empty(self, capsys):
        assert main(["list"]) == 0
        assert "No secrets registered." in capsys.readouterr().out

    def test_set_and_get_open(self, capsys):
        assert main(["set", "greeting", "--tier", "open", "--value", "hello"]) == 0
        assert "stored (tier: open)" in capsys.readouterr().out
        assert main(["get", "greeting"]) == 0
        assert capsys.readouterr().out.strip() == "hello"

    def test_get_json(self, capsys):
        main(["set", "greeting", "--tier", "open", "--value", "hello"])
        capsys.readouterr()
        assert main(["get", "greeting", "--json"]) == 0
        assert json.loads(capsys.readouterr().out) == {"name": "greeting", "value": "hello"}

    def test_get_denied_exit_code(self, capsys):
        main(["set", "db-pass", "--tier", "restricted", "--value", "s3cr3t"])
        capsys.readouterr()
        assert main(["get", "db-pass"]) == 2
        assert main(["get", "missing"]) == 2
        err = capsys.readouterr().err
        assert "'db-pass' not found or access denied" in err
        assert "'missing' not found or access denied" in err

    def test_invalid_tier(self, capsys):
        assert main(["set", "k", "--tier", "secret", "--value", "v"]) == 1
        assert "Invalid tier" in capsys.readouterr().err

    def test_grant_flow(self, capsys):
        secret = _setup_totp(capsys)
        main(["set", "db-pass", "--tier", "restricted", "--value", "s3cr3t"])
        code = totp.current_code(secret, datetime.now(UTC))
        assert main(["grant", "db-pass", code, "--ttl", "5", "--json"]) == 0
        out = json.loads(capsys.readouterr().out)
        assert out["name"] == "db-pass"
        assert "expires_at" in out

        assert main(["get", "db-pass"]) == 0
        assert capsys.readouterr().out.strip() == "s3cr3t"

        assert main(["list", "--json"]) == 0
        listed = json.loads(capsys.readouterr().out)
        assert listed[0]["grant"]["valid"] is True
        assert listed[0]["grant"]["remaining_minutes"] == 5

        assert main(["revoke", "db-pass"]) == 0
        assert main(["get", "db-pass"]) == 2

    def test_grant_bad_ttl(self, capsys):
        assert main(["grant", "db-pass", "123456", "--ttl", "abc"]) == 1
        assert "TTL must be a positive number" in capsys.readouterr().err
        assert main(["grant", "db-pass", "123456", "--ttl", "0"]) == 1

    def test_grant_bad_code(self, capsys):
        _setup_totp(capsys)
        main(["set", "db-pass", "--value", "s3cr3t"])
        assert main(["grant", "db-pass", "abcdef"]) == 1
        assert "Invalid TOTP code" in capsys.readouterr().err

    def test_delete_requires_confirm(self, capsys):
        main(["set", "k", "--value", "v"])
        assert main(["delete", "k"]) == 1
        assert "--confirm" in capsys.readouterr().err
        assert main(["delete", "k", "--confirm"]) == 0
        assert main(["delete", "k", "--confirm"]) == 1

    def test_list_table(self, capsys):
        main(["set", "a-open", "--tier", "open", "--value", "1"])
        main(["set", "b-ctl", "--value", "2"])
        capsys.readouterr()
        assert main(["list"]) == 0
        out = capsys.readouterr().out
        assert "Grant Status" in out
        assert "always" in out
        assert "needs grant" in out

    def test_setup_totp_text(self, capsys):
        assert main(["setup-totp"]) == 0
        out = capsys.readouterr().out
        assert "otpauth://totp/" in out
        assert "Secret:" in out

    def test_info(self, capsys, cli_state):
        main(["set", "k", "--value", "v"])
        capsys.readouterr()
        assert main(["info", "--json"]) == 0
        info = json.loads(capsys.readouterr().out)
        assert info["secrets_count"] == 1
        assert info["totp_enrolled"] is False
        assert info["state_dir"] == str(cli_state)
