#!/usr/bin/env python3
"""
store.py — Versioned, validated key/value persistence for session records

Every logical record ("players", "progressState", "visitHistory", ...) is
stored under its own versioned key and wrapped in an envelope:

    {"timestamp": <ms>, "version": "1.2", "type": <record type>, "data": <payload>}

Rules:
- a validator registered for a record type runs on save AND on load;
  a rejected payload returns False / None and evicts the cached entry
- the cache holds the last validated payload per type; callers always get copies
- storage failures are logged and reported as False / None, never raised
- subscribers are notified per type through the event bus, debounced so a burst
  of writes to one type yields a single notification carrying the final value
- changes written by another process (another tab, another server worker) are
  fed in through `receive_external_change()` and re-validated before use

Two backends: in-memory (default) and a directory of JSON files.

by Sziller
"""

from __future__ import annotations

import copy
import errno
import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from config import STORE_PREFIX, STORE_VERSION
from events import STORE_CHANGED, Debouncer, EventBus, GameEvent
from state import RECORD_VALIDATORS


log = logging.getLogger(__name__)


Validator = Callable[[Any], bool]

# Records that may be dropped to make room when storage is full
NON_ESSENTIAL_RECORDS: Tuple[str, ...] = ("visitHistory", "scores")


class StorageFullError(OSError):
    """Raised by a backend when it cannot hold the new value."""


# -----------------------------
# Backends
# -----------------------------
class MemoryBackend:
    """Process-local dict of raw strings. `capacity` (characters) simulates a quota."""

    def __init__(self, capacity: Optional[int] = None) -> None:
        self.capacity = capacity
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, raw: str) -> None:
        if self.capacity is not None:
            used = sum(len(v) for k, v in self._data.items() if k != key)
            if used + len(raw) > self.capacity:
                raise StorageFullError(errno.ENOSPC, f"quota exceeded writing {key}")
        self._data[key] = raw

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._data.keys())


class FileBackend:
    """One JSON file per key inside `directory`; writes go through a temp file."""

    def __init__(self, directory: Path) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        p = self._path(key)
        if not p.exists():
            return None
        return p.read_text(encoding="utf-8")

    def set(self, key: str, raw: str) -> None:
        p = self._path(key)
        tmp = p.with_suffix(".json.tmp")
        try:
            tmp.write_text(raw, encoding="utf-8")
            os.replace(tmp, p)
        except OSError as exc:
            if exc.errno in (errno.ENOSPC, errno.EDQUOT):
                raise StorageFullError(exc.errno, str(exc)) from exc
            raise

    def delete(self, key: str) -> None:
        p = self._path(key)
        if p.exists():
            p.unlink()

    def keys(self) -> List[str]:
        return [p.stem for p in self.directory.glob("*.json")]


# -----------------------------
# Store
# -----------------------------
class Store:
    def __init__(
        self,
        backend: Any = None,
        *,
        bus: Optional[EventBus] = None,
        debounce_ms: int = 100,
        version: str = STORE_VERSION,
        prefix: str = STORE_PREFIX,
        validators: Optional[Dict[str, Validator]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.backend = backend if backend is not None else MemoryBackend()
        self.bus = bus if bus is not None else EventBus()
        self.version = version
        self.prefix = prefix
        self._clock = clock
        self._cache: Dict[str, Any] = {}
        self._validators: Dict[str, Validator] = dict(RECORD_VALIDATORS)
        if validators:
            self._validators.update(validators)
        self._debouncer = Debouncer(debounce_ms / 1000.0)

    # ---- keys
    def key_for(self, record_type: str) -> str:
        return f"{self.prefix}{record_type}_v{self.version}"

    def type_for_key(self, key: str) -> Optional[str]:
        suffix = f"_v{self.version}"
        if not key.startswith(self.prefix) or not key.endswith(suffix):
            return None
        return key[len(self.prefix):-len(suffix)] or None

    def register_validator(self, record_type: str, validator: Validator) -> None:
        if not record_type:
            raise ValueError("record_type is required")
        self._validators[record_type] = validator

    def _is_valid(self, record_type: str, data: Any) -> bool:
        validator = self._validators.get(record_type)
        if validator is None:
            return True
        try:
            return bool(validator(data))
        except Exception:
            log.exception("Validator for %s raised", record_type)
            return False

    def _envelope(self, record_type: str, data: Any) -> str:
        return json.dumps(
            {
                "timestamp": int(self._clock() * 1000),
                "version": self.version,
                "type": record_type,
                "data": data,
            }
        )

    def _unwrap(self, record_type: str, raw: str) -> Tuple[bool, Any]:
        """Parse an envelope. Returns (ok, payload)."""
        try:
            env = json.loads(raw)
        except (TypeError, ValueError):
            log.warning("Corrupt record for %s; ignoring", record_type)
            return False, None

        if not isinstance(env, dict) or "data" not in env:
            log.warning("Record for %s has no envelope; ignoring", record_type)
            return False, None

        if env.get("version") != self.version:
            log.warning(
                "Record %s has version %s, expected %s; reading anyway",
                record_type, env.get("version"), self.version,
            )
        return True, env["data"]

    # ---- notification
    def subscribe(self, callback: Callable[[GameEvent], None]) -> Callable[[], None]:
        """Receive STORE_CHANGED events: data = {"record_type", "value"}."""
        return self.bus.subscribe(STORE_CHANGED, callback)

    def _notify(self, record_type: str, value: Any) -> None:
        snapshot = copy.deepcopy(value)

        def _deliver() -> None:
            self.bus.emit(STORE_CHANGED, record_type=record_type, value=snapshot)

        self._debouncer.submit(record_type, _deliver)

    def flush_notifications(self) -> None:
        self._debouncer.flush()

    def close(self) -> None:
        self._debouncer.flush()

    # ---- core contract
    def save(self, record_type: str, data: Any) -> bool:
        if not record_type:
            raise ValueError("record_type is required")

        if not self._is_valid(record_type, data):
            log.warning("Rejected invalid %s payload", record_type)
            self._cache.pop(record_type, None)
            return False

        try:
            raw = self._envelope(record_type, data)
        except (TypeError, ValueError) as exc:
            log.error("Could not serialize %s: %s", record_type, exc)
            self._cache.pop(record_type, None)
            return False

        if not self._write(record_type, raw):
            self._cache.pop(record_type, None)
            return False

        self._cache[record_type] = copy.deepcopy(data)
        self._notify(record_type, data)
        return True

    def _write(self, record_type: str, raw: str) -> bool:
        key = self.key_for(record_type)
        try:
            self.backend.set(key, raw)
            return True
        except StorageFullError:
            log.warning("Storage full while writing %s; dropping non-essential records", record_type)
            self._drop_non_essential(keep=record_type)
            try:
                self.backend.set(key, raw)
                return True
            except OSError as exc:
                log.error("Write of %s failed after freeing space: %s", record_type, exc)
                return False
        except OSError as exc:
            log.error("Write of %s failed: %s", record_type, exc)
            return False

    def _drop_non_essential(self, keep: str) -> None:
        for rt in NON_ESSENTIAL_RECORDS:
            if rt == keep:
                continue
            try:
                self.backend.delete(self.key_for(rt))
            except OSError as exc:
                log.error("Could not drop %s: %s", rt, exc)
            self._cache.pop(rt, None)

    def load(self, record_type: str) -> Optional[Any]:
        if not record_type:
            raise ValueError("record_type is required")

        if record_type in self._cache:
            return copy.deepcopy(self._cache[record_type])

        try:
            raw = self.backend.get(self.key_for(record_type))
        except OSError as exc:
            log.error("Read of %s failed: %s", record_type, exc)
            return None
        if raw is None:
            return None

        ok, data = self._unwrap(record_type, raw)
        if not ok:
            return None

        if not self._is_valid(record_type, data):
            log.warning("Stored %s failed validation; ignoring", record_type)
            self._cache.pop(record_type, None)
            return None

        self._cache[record_type] = data
        return copy.deepcopy(data)

    def clear(self, record_type: str) -> bool:
        if not record_type:
            raise ValueError("record_type is required")
        self._cache.pop(record_type, None)
        try:
            self.backend.delete(self.key_for(record_type))
        except OSError as exc:
            log.error("Clear of %s failed: %s", record_type, exc)
            return False
        self._notify(record_type, None)
        return True

    def clear_all(self) -> bool:
        ok = True
        for key in self.backend.keys():
            rt = self.type_for_key(key)
            if rt is None:
                continue
            ok = self.clear(rt) and ok
        self._cache.clear()
        return ok

    # ---- multi-record and session-level helpers
    def save_many(self, records: Dict[str, Any]) -> bool:
        """
        Write several records all-or-nothing.
        Every payload is validated and serialized before the first write; if a
        write fails, already-written keys are restored to their previous raw value.
        """
        prepared: List[Tuple[str, str]] = []
        for record_type, data in records.items():
            if not self._is_valid(record_type, data):
                log.warning("save_many: invalid %s payload; nothing written", record_type)
                self._cache.pop(record_type, None)
                return False
            try:
                prepared.append((record_type, self._envelope(record_type, data)))
            except (TypeError, ValueError) as exc:
                log.error("save_many: could not serialize %s: %s", record_type, exc)
                self._cache.pop(record_type, None)
                return False

        previous: Dict[str, Optional[str]] = {}
        for record_type, raw in prepared:
            key = self.key_for(record_type)
            try:
                previous[key] = self.backend.get(key)
            except OSError:
                previous[key] = None
            if not self._write(record_type, raw):
                self._rollback(previous)
                for rt in records:
                    self._cache.pop(rt, None)
                return False

        for record_type, data in records.items():
            self._cache[record_type] = copy.deepcopy(data)
            self._notify(record_type, data)
        return True

    def _rollback(self, previous: Dict[str, Optional[str]]) -> None:
        for key, raw in previous.items():
            try:
                if raw is None:
                    self.backend.delete(key)
                else:
                    self.backend.set(key, raw)
            except OSError as exc:
                log.error("Rollback of %s failed: %s", key, exc)

    def export_state(self, record_types: Optional[Iterable[str]] = None) -> Dict[str, Any]:
        types = list(record_types) if record_types is not None else self.stored_types()
        records = {}
        for rt in types:
            data = self.load(rt)
            if data is not None:
                records[rt] = data
        return {
            "version": self.version,
            "exported_at": int(self._clock() * 1000),
            "records": records,
        }

    def import_state(self, snapshot: Dict[str, Any]) -> bool:
        if not isinstance(snapshot, dict) or not isinstance(snapshot.get("records"), dict):
            log.warning("import_state: malformed snapshot")
            return False
        if snapshot.get("version") != self.version:
            log.warning(
                "import_state: snapshot version %s, expected %s; importing anyway",
                snapshot.get("version"), self.version,
            )
        return self.save_many(snapshot["records"])

    def stored_types(self) -> List[str]:
        out = []
        for key in self.backend.keys():
            rt = self.type_for_key(key)
            if rt is not None:
                out.append(rt)
        return sorted(out)

    def is_new_game(self) -> bool:
        return self.load("players") is None or self.load("progressState") is None

    def cleanup_old_versions(self) -> int:
        """Delete keys with our prefix but another version tag. Returns how many."""
        removed = 0
        for key in self.backend.keys():
            if key.startswith(self.prefix) and self.type_for_key(key) is None:
                try:
                    self.backend.delete(key)
                    removed += 1
                except OSError as exc:
                    log.error("Could not remove stale key %s: %s", key, exc)
        if removed:
            log.info("Removed %d record(s) from older store versions", removed)
        return removed

    def receive_external_change(self, key: str, raw: Optional[str]) -> bool:
        """
        Apply a change written by another context to the same storage.
        The payload is validated before it replaces the cached entry.
        """
        record_type = self.type_for_key(key)
        if record_type is None:
            return False

        if raw is None:
            self._cache.pop(record_type, None)
            self._notify(record_type, None)
            return True

        ok, data = self._unwrap(record_type, raw)
        if not ok or not self._is_valid(record_type, data):
            log.warning("Rejected external change for %s", record_type)
            self._cache.pop(record_type, None)
            return False

        self._cache[record_type] = data
        self._notify(record_type, data)
        return True
