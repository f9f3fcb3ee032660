"""
Credbroker Audit Log — append-only, hash-chained record of access decisions.

Actions:
  - set, delete — registry mutations
  - grant, revoke — grant lifecycle (failed grants are recorded too)
  - get — successful reads
  - denied — reads refused (missing secret or no active grant)

Each line is one JSON object. ``hash`` is SHA-256 over the canonical JSON of
the entry without ``hash``; ``prev_hash`` links to the previous line, so an
edited or removed line breaks the chain from that point on.

Usage:
    from credbroker.audit.logger import AuditLog
    log = AuditLog(cfg.audit_path)
    log.append("grant", "db-pass", "success", now=now)
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import stat
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pydantic

from credbroker.errors import StorageError
from credbroker.vault.models import AuditAction, AuditEntry, AuditOutcome

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64
_TAIL_CHUNK = 4096


def entry_hash(entry: AuditEntry) -> str:
    payload = entry.model_dump(mode="json", exclude={"hash"})
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class AuditLog:
    """JSONL audit trail. Callers serialize appends via the state lock."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def append(
        self,
        action: AuditAction | str,
        secret_name: str,
        outcome: AuditOutcome | str = AuditOutcome.SUCCESS,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> AuditEntry:
        """Write one entry and fsync before returning it."""
        last = self._last_entry()
        entry = AuditEntry(
            seq=last.seq + 1 if last else 1,
            timestamp=now or datetime.now(UTC),
            action=AuditAction(action),
            secret_name=secret_name,
            outcome=AuditOutcome(outcome),
            reason=reason,
            prev_hash=last.hash if last else GENESIS_HASH,
        )
        entry.hash = entry_hash(entry)
        line = json.dumps(entry.model_dump(mode="json"), sort_keys=True) + "\n"

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(
                self.path,
                os.O_WRONLY | os.O_APPEND | os.O_CREAT,
                stat.S_IRUSR | stat.S_IWUSR,
            )
            with os.fdopen(fd, "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StorageError(f"Cannot append to audit log {self.path}: {e}") from e
        return entry

    def _last_entry(self) -> AuditEntry | None:
        """Parse the final line without reading the whole file.

        A final line without its newline is a torn write from an append that
        never returned; it is cut off and the chain resumes from the last
        whole entry.
        """
        start, line, complete = self._read_tail()
        if line and not complete:
            logger.warning("Dropping torn audit record at byte %d of %s", start, self.path)
            try:
                os.truncate(self.path, start)
            except OSError as e:
                raise StorageError(f"Cannot repair audit log {self.path}: {e}") from e
            start, line, complete = self._read_tail()
        if not line.strip():
            return None
        return self._parse(line, lineno=None)

    def _read_tail(self) -> tuple[int, bytes, bool]:
        """(offset, bytes, newline-terminated) of the final line."""
        try:
            with open(self.path, "rb") as f:
                end = f.seek(0, os.SEEK_END)
                if end == 0:
                    return 0, b"", True
                f.seek(end - 1)
                complete = f.read(1) == b"\n"
                body_end = end - 1 if complete else end
                pos, buf = end, b""
                while pos > 0:
                    step = min(_TAIL_CHUNK, pos)
                    pos -= step
                    f.seek(pos)
                    buf = f.read(step) + buf
                    cut = buf.rfind(b"\n", 0, body_end - pos)
                    if cut >= 0:
                        return pos + cut + 1, buf[cut + 1 : body_end - pos], complete
                return 0, buf[:body_end], complete
        except FileNotFoundError:
            return 0, b"", True
        except OSError as e:
            raise StorageError(f"Cannot read audit log {self.path}: {e}") from e

    def _parse(self, line: str | bytes, lineno: int | None) -> AuditEntry:
        try:
            return AuditEntry.model_validate_json(line)
        except pydantic.ValidationError as e:
            where = f"line {lineno}" if lineno else "last line"
            raise StorageError(f"Audit log {self.path} is corrupt at {where}: {e}") from e

    def entries(self) -> Iterator[AuditEntry]:
        """Yield entries in write order."""
        try:
            with open(self.path, encoding="utf-8") as f:
                for lineno, line in enumerate(f, start=1):
                    if line.strip():
                        yield self._parse(line, lineno)
        except FileNotFoundError:
            return
        except OSError as e:
            raise StorageError(f"Cannot read audit log {self.path}: {e}") from e

    # ── Inspection (operational; the broker itself never reads the log) ──

    def query_log(
        self,
        limit: int = 50,
        action: AuditAction | str | None = None,
        secret_name: str | None = None,
        outcome: AuditOutcome | str | None = None,
    ) -> list[AuditEntry]:
        """Newest-first entries matching all given filters."""
        matched = [
            e
            for e in self.entries()
            if (action is None or e.action == action)
            and (secret_name is None or e.secret_name == secret_name)
            and (outcome is None or e.outcome == outcome)
        ]
        matched.reverse()
        return matched[:limit]

    def stats(self) -> dict:
        total = 0
        by_action: dict[str, int] = {}
        earliest = latest = None
        for e in self.entries():
            total += 1
            by_action[e.action.value] = by_action.get(e.action.value, 0) + 1
            if earliest is None:
                earliest = e.timestamp
            latest = e.timestamp
        return {
            "total_events": total,
            "by_action": by_action,
            "earliest": earliest.isoformat() if earliest else None,
            "latest": latest.isoformat() if latest else None,
        }

    def verify_chain(self) -> tuple[bool, int | None]:
        """Check hashes and links. Returns (ok, seq of first bad entry)."""
        prev = GENESIS_HASH
        expected_seq = 1
        try:
            for e in self.entries():
                if e.seq != expected_seq or e.prev_hash != prev or e.hash != entry_hash(e):
                    logger.warning("Audit chain broken at seq %d", e.seq)
                    return False, e.seq
                prev = e.hash
                expected_seq += 1
        except StorageError:
            logger.warning("Audit chain unreadable after seq %d", expected_seq - 1)
            return False, expected_seq
        return True, None
