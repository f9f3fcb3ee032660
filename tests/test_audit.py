"""Tests for credbroker.audit.logger — hash-chained JSONL audit trail."""

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from credbroker.audit.logger import GENESIS_HASH, AuditLog, entry_hash
from credbroker.errors import StorageError
from credbroker.vault.models import AuditAction, AuditOutcome

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture
def log(tmp_path: Path) -> AuditLog:
    return AuditLog(tmp_path / "audit" / "credentials.jsonl")


def _fill(log: AuditLog) -> None:
    log.append("set", "db-pass", now=T0)
    log.append("denied", "db-pass", "failure", reason="no_grant", now=T0 + timedelta(seconds=1))
    log.append("grant", "db-pass", now=T0 + timedelta(seconds=2))
    log.append("get", "db-pass", now=T0 + timedelta(seconds=3))
    log.append("set", "api-key", now=T0 + timedelta(seconds=4))


class TestAppend:
    def test_first_entry(self, log):
        entry = log.append(AuditAction.SET, "db-pass", now=T0)
        assert entry.seq == 1
        assert entry.prev_hash == GENESIS_HASH
        assert entry.hash == entry_hash(entry)
        assert entry.outcome == AuditOutcome.SUCCESS

    def test_one_line_per_entry(self, log):
        _fill(log)
        lines = log.path.read_text().splitlines()
        assert len(lines) == 5
        record = json.loads(lines[1])
        assert record["action"] == "denied"
        assert record["outcome"] == "failure"
        assert record["reason"] == "no_grant"
        assert record["secret_name"] == "db-pass"

    def test_chained(self, log):
        a = log.append("set", "a", now=T0)
        b = log.append("set", "b", now=T0)
        assert b.seq == 2
        assert b.prev_hash == a.hash

    def test_survives_reopen(self, log):
        first = log.append("set", "a", now=T0)
        second = AuditLog(log.path).append("revoke", "a", now=T0)
        assert second.prev_hash == first.hash

    def test_file_private(self, log):
        log.append("set", "a", now=T0)
        assert log.path.stat().st_mode & 0o077 == 0

    def test_never_contains_values(self, log):
        log.append("set", "db-pass", now=T0)
        assert "s3cr3t" not in log.path.read_text()

    def test_rejects_unknown_action(self, log):
        with pytest.raises(ValueError):
            log.append("peek", "a", now=T0)

    def test_long_lines_tail(self, log):
        log.append("set", "x" * 10_000, now=T0)
        entry = log.append("set", "y", now=T0)
        assert entry.seq == 2

    def test_corrupt_tail(self, log):
        log.path.parent.mkdir(parents=True)
        log.path.write_text("not json\n")
        with pytest.raises(StorageError, match="corrupt"):
            log.append("set", "a", now=T0)

    def test_torn_tail_is_dropped(self, log):
        first = log.append("set", "a", now=T0)
        with open(log.path, "ab") as f:
            f.write(b'{"seq": 2, "timest')
        entry = log.append("set", "b", now=T0)
        assert entry.seq == 2
        assert entry.prev_hash == first.hash
        assert len(log.path.read_text().splitlines()) == 2
        assert log.verify_chain() == (True, None)

    def test_torn_first_line(self, log):
        log.path.parent.mkdir(parents=True)
        log.path.write_bytes(b'{"se')
        entry = log.append("set", "a", now=T0)
        assert entry.seq == 1
        assert entry.prev_hash == GENESIS_HASH

    def test_torn_tail_after_long_line(self, log):
        first = log.append("set", "x" * 10_000, now=T0)
        with open(log.path, "ab") as f:
            f.write(b'{"seq": 2, "action": "se')
        entry = log.append("set", "y", now=T0)
        assert entry.prev_hash == first.hash
        assert log.verify_chain() == (True, None)


class TestQueryLog:
    def test_newest_first(self, log):
        _fill(log)
        results = log.query_log(limit=2)
        assert [e.seq for e in results] == [5, 4]

    def test_filters(self, log):
        _fill(log)
        results = log.query_log(secret_name="db-pass", action="denied")
        assert len(results) == 1
        assert results[0].reason == "no_grant"

    def test_empty(self, log):
        assert log.query_log() == []


class TestStats:
    def test_basic_stats(self, log):
        _fill(log)
        result = log.stats()
        assert result["total_events"] == 5
        assert result["by_action"]["set"] == 2
        assert result["earliest"] == T0.isoformat()
        assert result["latest"] == (T0 + timedelta(seconds=4)).isoformat()

    def test_empty_stats(self, log):
        assert log.stats() == {"total_events": 0, "by_action": {}, "earliest": None, "latest": None}


class TestVerifyChain:
    def test_intact(self, log):
        _fill(log)
        assert log.verify_chain() == (True, None)

    def test_empty_is_intact(self, log):
        assert log.verify_chain() == (True, None)

    def test_edited_entry(self, log):
        _fill(log)
        lines = log.path.read_text().splitlines()
        record = json.loads(lines[2])
        record["secret_name"] = "something-else"
        lines[2] = json.dumps(record)
        log.path.write_text("\n".join(lines) + "\n")
        assert log.verify_chain() == (False, 3)

    def test_deleted_entry(self, log):
        _fill(log)
        lines = log.path.read_text().splitlines()
        del lines[1]
        log.path.write_text("\n".join(lines) + "\n")
        assert log.verify_chain() == (False, 3)
