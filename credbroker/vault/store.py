"""
State store — JSON files under the state directory, guarded by one file lock.

Every read-modify-write cycle runs inside ``locked()``, which takes an
exclusive cross-process lock on ``<state_dir>/.lock`` with a bounded wait.
Writes go to a temp file in the same directory and are moved into place
with os.replace, so readers only ever see the old or the new file.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pydantic
from filelock import FileLock, Timeout

from credbroker.config import BrokerConfig
from credbroker.errors import LockTimeout, StorageError
from credbroker.vault.models import GrantRecord, SecretRecord, TotpEnrollment

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


def write_json_atomic(path: Path, data: Any) -> None:
    """Atomically write data as JSON (mode 600)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp, stat.S_IRUSR | stat.S_IWUSR)
        os.replace(tmp, path)
    except Exception:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


def read_json(path: Path, default: Any = None) -> Any:
    """Load JSON from path, or default if the file does not exist."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        return default
    except json.JSONDecodeError as e:
        raise StorageError(f"State file {path} is not valid JSON: {e}") from e
    except OSError as e:
        raise StorageError(f"Cannot read state file {path}: {e}") from e


class StateStore:
    """Typed access to the registry, grants and TOTP enrollment files."""

    def __init__(self, config: BrokerConfig):
        self.config = config
        self._lock = FileLock(str(config.lock_path), timeout=config.lock_timeout)

    def ensure_dir(self) -> None:
        try:
            # 700 on creation only; an existing directory keeps its mode.
            self.config.state_dir.mkdir(mode=stat.S_IRWXU, parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create state directory {self.config.state_dir}: {e}") from e

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the exclusive state lock for the duration of the block."""
        self.ensure_dir()
        try:
            self._lock.acquire()
        except Timeout as e:
            raise LockTimeout(
                f"Could not lock {self.config.state_dir} within {self.config.lock_timeout:g}s; "
                "another broker process is holding it"
            ) from e
        try:
            yield
        finally:
            self._lock.release()

    def _write(self, path: Path, data: Any) -> None:
        try:
            write_json_atomic(path, data)
        except OSError as e:
            raise StorageError(f"Cannot write state file {path}: {e}") from e

    # ── Registry ──

    def load_secrets(self) -> dict[str, SecretRecord]:
        raw = read_json(self.config.registry_path, default={})
        try:
            return {
                name: SecretRecord.model_validate(rec)
                for name, rec in raw.get("secrets", {}).items()
            }
        except (pydantic.ValidationError, AttributeError) as e:
            raise StorageError(f"Registry file {self.config.registry_path} is malformed: {e}") from e

    def save_secrets(self, secrets: dict[str, SecretRecord]) -> None:
        self._write(
            self.config.registry_path,
            {
                "version": FORMAT_VERSION,
                "secrets": {n: r.model_dump(mode="json") for n, r in sorted(secrets.items())},
            },
        )

    # ── Grants ──

    def load_grants(self) -> dict[str, GrantRecord]:
        raw = read_json(self.config.grants_path, default={})
        try:
            return {
                name: GrantRecord.model_validate(rec)
                for name, rec in raw.get("grants", {}).items()
            }
        except (pydantic.ValidationError, AttributeError) as e:
            raise StorageError(f"Grants file {self.config.grants_path} is malformed: {e}") from e

    def save_grants(self, grants: dict[str, GrantRecord]) -> None:
        self._write(
            self.config.grants_path,
            {
                "version": FORMAT_VERSION,
                "grants": {n: g.model_dump(mode="json") for n, g in sorted(grants.items())},
            },
        )

    # ── TOTP enrollment ──

    def load_totp(self) -> TotpEnrollment | None:
        raw = read_json(self.config.totp_path)
        if raw is None:
            return None
        try:
            return TotpEnrollment.model_validate(raw)
        except pydantic.ValidationError as e:
            raise StorageError(f"TOTP file {self.config.totp_path} is malformed: {e}") from e

    def save_totp(self, enrollment: TotpEnrollment) -> None:
        self._write(self.config.totp_path, enrollment.model_dump(mode="json"))
