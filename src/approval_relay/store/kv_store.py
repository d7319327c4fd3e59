"""File-backed JSON key-value store with namespaces and read-time expiry.

Storage layout::

    {root}/
    ├── {key}.json                 # records without a namespace
    └── {namespace}/
        └── {key}.json

Every record is a JSON object stamped with a store-assigned ``timestamp``
(epoch milliseconds) on write.  A record older than the store TTL is treated
as absent and deleted by whichever read finds it first; :meth:`TTLStore.sweep`
does the same for the whole tree and is only needed to bound disk usage.

Writes go through a temporary file and :func:`os.replace`, so readers never
observe a half-written record.

Dependencies: errors
Wired in: store/webhooks.py, store/results.py
"""

from __future__ import annotations

import contextlib
import json
import logging
import os
import re
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, cast

from approval_relay.errors import DuplicateApprovalError, StorageError, ValidationError

_log = logging.getLogger(__name__)

_RECORD_SUFFIX = ".json"
_TMP_SUFFIX = ".tmp"
_SAFE_COMPONENT = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,127}$")

Record = dict[str, Any]


def _now_seconds() -> float:
    return time.time()


def _check_component(value: str, kind: str) -> str:
    if not _SAFE_COMPONENT.fullmatch(value) or ".." in value:
        raise ValidationError(f"Unsafe {kind} for storage: {value!r}", code=f"invalid_{kind}")
    return value


@dataclass(frozen=True)
class SweepReport:
    """Counts produced by one :meth:`TTLStore.sweep` pass."""

    evicted: int = 0
    namespaces_removed: int = 0
    unreadable: int = 0


class TTLStore:
    """Namespaced JSON record store where each record lives for ``ttl_seconds``."""

    def __init__(
        self,
        root: Path,
        *,
        ttl_seconds: float,
        clock: Callable[[], float] = _now_seconds,
    ) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be > 0.")
        self._root = root
        self._ttl_ms = int(ttl_seconds * 1000)
        self._clock = clock

    @property
    def root(self) -> Path:
        return self._root

    @property
    def ttl_seconds(self) -> float:
        return self._ttl_ms / 1000

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def put(self, key: str, record: Record, *, namespace: str | None = None) -> Record:
        """Write *record* under *key*, replacing any existing value.

        Returns the stored record including its ``timestamp``.
        """
        path = self._path(key, namespace)
        stored = {**record, "timestamp": self._now_ms()}
        self._write(path, stored)
        _log.debug("Stored %s", self._label(key, namespace))
        return stored

    def create(self, key: str, record: Record, *, namespace: str | None = None) -> Record:
        """Write *record* only if no live record exists under *key*.

        An expired record is evicted first and does not block creation.
        Raises :class:`DuplicateApprovalError` when a live record is present.
        """
        if self.get(key, namespace=namespace) is not None:
            raise DuplicateApprovalError(f"Record already exists: {self._label(key, namespace)}")
        path = self._path(key, namespace)
        stored = {**record, "timestamp": self._now_ms()}
        tmp_path = self._write_tmp(path, stored)
        try:
            # link() refuses to overwrite, so concurrent creators cannot both win.
            os.link(tmp_path, path)
        except FileExistsError as exc:
            raise DuplicateApprovalError(
                f"Record already exists: {self._label(key, namespace)}"
            ) from exc
        except OSError as exc:
            raise StorageError(f"Failed to create {path}: {exc}") from exc
        finally:
            with contextlib.suppress(FileNotFoundError):
                tmp_path.unlink()
        return stored

    def get(self, key: str, *, namespace: str | None = None) -> Record | None:
        """Return the live record under *key*, or ``None`` if absent or expired."""
        path = self._path(key, namespace)
        record = self._read(path)
        if record is None:
            return None
        if self._is_expired(record):
            _log.info("Record expired: %s", self._label(key, namespace))
            self._unlink(path)
            return None
        return record

    def list(self, namespace: str | None = None) -> list[Record]:
        """Return every live record in *namespace*, evicting expired ones seen on the way."""
        directory = self._dir(namespace)
        records: list[Record] = []
        for path in self._record_files(directory):
            record = self._read(path)
            if record is None:
                continue
            if self._is_expired(record):
                _log.info("Record expired: %s", path.name)
                self._unlink(path)
                continue
            records.append(record)
        return records

    def delete(self, key: str, *, namespace: str | None = None) -> bool:
        """Remove *key*; returns whether a record was removed.  Absent keys are fine."""
        removed = self._unlink(self._path(key, namespace))
        if removed:
            _log.debug("Deleted %s", self._label(key, namespace))
        return removed

    def namespaces(self) -> list[str]:
        """Return the names of existing namespace directories."""
        if not self._root.is_dir():
            return []
        try:
            return sorted(entry.name for entry in self._root.iterdir() if entry.is_dir())
        except OSError as exc:
            raise StorageError(f"Failed to list {self._root}: {exc}") from exc

    def sweep(self) -> SweepReport:
        """Evict every expired record and remove namespaces left empty."""
        evicted = 0
        unreadable = 0
        removed_namespaces = 0
        directories = [self._root, *(self._root / name for name in self.namespaces())]
        for directory in directories:
            for path in self._record_files(directory):
                try:
                    record = self._read(path)
                except StorageError:
                    _log.warning("Skipping unreadable record during sweep: %s", path)
                    unreadable += 1
                    continue
                if record is not None and self._is_expired(record):
                    if self._unlink(path):
                        evicted += 1
            if directory != self._root and self._remove_if_empty(directory):
                removed_namespaces += 1
        report = SweepReport(
            evicted=evicted,
            namespaces_removed=removed_namespaces,
            unreadable=unreadable,
        )
        _log.info(
            "Sweep of %s evicted %d record(s), removed %d empty namespace(s)",
            self._root,
            report.evicted,
            report.namespaces_removed,
        )
        return report

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_expired(self, record: Record) -> bool:
        timestamp = record.get("timestamp")
        if not isinstance(timestamp, int):
            return True
        return self._now_ms() - timestamp > self._ttl_ms

    def _dir(self, namespace: str | None) -> Path:
        if namespace is None:
            return self._root
        return self._root / _check_component(namespace, "namespace")

    def _path(self, key: str, namespace: str | None) -> Path:
        return self._dir(namespace) / f"{_check_component(key, 'key')}{_RECORD_SUFFIX}"

    @staticmethod
    def _label(key: str, namespace: str | None) -> str:
        return key if namespace is None else f"{namespace}/{key}"

    def _record_files(self, directory: Path) -> list[Path]:
        try:
            return sorted(
                entry
                for entry in directory.iterdir()
                if entry.is_file() and entry.name.endswith(_RECORD_SUFFIX)
            )
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise StorageError(f"Failed to list {directory}: {exc}") from exc

    def _read(self, path: Path) -> Record | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageError(f"Corrupt record at {path}: {exc}") from exc
        if not isinstance(parsed, dict):
            raise StorageError(f"Corrupt record at {path}: expected a JSON object")
        return cast(Record, parsed)

    def _write_tmp(self, path: Path, record: Record) -> Path:
        payload = json.dumps(record, ensure_ascii=True, allow_nan=False, indent=2)
        tmp_path = path.with_name(f".{path.name}.{secrets.token_hex(4)}{_TMP_SUFFIX}")
        for attempt in range(2):
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp_path.write_text(payload, encoding="utf-8")
                return tmp_path
            except FileNotFoundError:
                # A concurrent sweep removed the namespace directory; recreate once.
                if attempt:
                    raise StorageError(f"Storage directory vanished: {path.parent}") from None
            except OSError as exc:
                raise StorageError(f"Failed to write {path}: {exc}") from exc
        raise StorageError(f"Failed to write {path}")

    def _write(self, path: Path, record: Record) -> None:
        tmp_path = self._write_tmp(path, record)
        try:
            os.replace(tmp_path, path)
        except OSError as exc:
            with contextlib.suppress(FileNotFoundError):
                tmp_path.unlink()
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    @staticmethod
    def _unlink(path: Path) -> bool:
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"Failed to delete {path}: {exc}") from exc
        return True

    @staticmethod
    def _remove_if_empty(directory: Path) -> bool:
        try:
            next(directory.iterdir())
        except StopIteration:
            pass
        except OSError:
            return False
        else:
            return False
        try:
            directory.rmdir()
        except OSError:
            # A concurrent put repopulated it.
            return False
        _log.info("Removed empty namespace %s", directory.name)
        return True
