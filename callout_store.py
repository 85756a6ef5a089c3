"""
Callout Tracker Store — Position Persistence
=============================================

Ordered collection of Position records with whole-collection read/write.
Stores data in a single JSON file under two fixed keys:

    stockTracker_positions     ordered list of position dicts
    stockTracker_lastUpdated   ISO timestamp of the last successful write

Features:
- Atomic writes (.tmp + os.replace) under a cross-platform file lock
- Callout price change rebaselines hit history through the target engine
- Bulk import with per-record validation (skip + count, never abort)

NO network calls. NO UI code.

Version: 1.0.0 (2026-10-18)
"""

import json
import os
import random
import string
import sys
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from callout_models import (
    CalloutValidationError, Position, PositionUpdate, coerce_optional_price,
)
from target_engine import evaluate, reset_hit_history

# Cross-platform file locking
try:
    if sys.platform == 'win32':
        import msvcrt
    else:
        import fcntl
    FILE_LOCKING_AVAILABLE = True
except ImportError:
    FILE_LOCKING_AVAILABLE = False
    print("[callout_store] WARNING: File locking not available on this platform")


# =============================================================================
# CONSTANTS
# =============================================================================

STORAGE_KEY = "stockTracker_positions"
LAST_UPDATED_KEY = "stockTracker_lastUpdated"
FILE_LOCK_TIMEOUT = 5.0

_ID_ALPHABET = string.digits + string.ascii_lowercase


class CalloutNotFoundError(KeyError):
    """No position with the requested id."""


class StorePersistenceError(RuntimeError):
    """Writing the store to disk failed. Previously committed data is intact."""


def now_utc_str() -> str:
    return datetime.now(timezone.utc).isoformat()


def generate_id() -> str:
    suffix = "".join(random.choice(_ID_ALPHABET) for _ in range(9))
    return f"stock_{int(time.time() * 1000)}_{suffix}"


class StoreLockTimeout(StorePersistenceError, TimeoutError):
    """The store's lock file stayed held past the timeout."""


# =============================================================================
# FILE LOCKING CONTEXT MANAGER
# =============================================================================

class FileLock:
    """
    Lock on <file>.lock for the duration of a with-block.

    shared=True takes a read lock where the platform has one (flock);
    msvcrt only offers exclusive locks. Raises StoreLockTimeout when the
    lock cannot be taken within timeout seconds.
    """

    def __init__(self, file_path: Path, timeout: float = FILE_LOCK_TIMEOUT,
                 shared: bool = False):
        self.file_path = file_path
        self.timeout = timeout
        self.shared = shared
        self.lock_file = None

    @property
    def lock_path(self) -> Path:
        return self.file_path.with_suffix(self.file_path.suffix + '.lock')

    def _try_lock(self) -> None:
        if sys.platform == 'win32':
            msvcrt.locking(self.lock_file.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            mode = fcntl.LOCK_SH if self.shared else fcntl.LOCK_EX
            fcntl.flock(self.lock_file.fileno(), mode | fcntl.LOCK_NB)

    def _unlock(self) -> None:
        if sys.platform == 'win32':
            msvcrt.locking(self.lock_file.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            fcntl.flock(self.lock_file.fileno(), fcntl.LOCK_UN)

    def __enter__(self):
        if not FILE_LOCKING_AVAILABLE:
            return self

        deadline = time.time() + self.timeout
        self.lock_file = open(self.lock_path, 'a')
        while True:
            try:
                self._try_lock()
                return self
            except OSError:
                if time.time() >= deadline:
                    self.lock_file.close()
                    self.lock_file = None
                    raise StoreLockTimeout(
                        f"Could not acquire lock for {self.file_path} within {self.timeout}s"
                    )
                time.sleep(0.05)

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.lock_file is None:
            return
        try:
            self._unlock()
        except OSError as e:
            print(f"[callout_store] Error releasing lock: {e}")
        finally:
            self.lock_file.close()
            self.lock_file = None


# =============================================================================
# KEY-VALUE PERSISTENCE
# =============================================================================

class JsonKeyValueStore:
    """
    Named keys in one JSON file.

    Plain reads degrade to empty when the file is missing, corrupted or
    locked. Read-modify-write operations read strictly: anything short of
    a missing file or a valid JSON object raises StorePersistenceError, so
    an existing file is never rewritten from an empty read. Writes replace
    the whole file atomically.
    """

    def __init__(self, json_path: Union[str, Path], lock_timeout: float = FILE_LOCK_TIMEOUT):
        self.path = Path(json_path)
        self.lock_timeout = lock_timeout

    def _read(self, strict: bool = False) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with FileLock(self.path, self.lock_timeout, shared=True):
                with open(self.path, "r") as f:
                    data = json.load(f)
        except StoreLockTimeout:
            if strict:
                raise
            print(f"[callout_store] WARNING: Timeout acquiring lock for {self.path}, reading as empty")
            return {}
        except (json.JSONDecodeError, OSError) as e:
            if strict:
                raise StorePersistenceError(f"Refusing to overwrite unreadable {self.path}: {e}") from e
            print(f"[callout_store] Corrupted or unreadable {self.path}, reading as empty: {e}")
            return {}
        if not isinstance(data, dict):
            if strict:
                raise StorePersistenceError(
                    f"Refusing to overwrite {self.path}: top level is {type(data).__name__}"
                )
            print(f"[callout_store] WARNING: {self.path} contained {type(data).__name__}, reading as empty")
            return {}
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        """Atomic write: write to .tmp then os.replace to prevent corruption."""
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            if self.path.parent and not self.path.parent.exists():
                self.path.parent.mkdir(parents=True, exist_ok=True)
            with FileLock(self.path, self.lock_timeout):
                with open(temp_path, "w") as f:
                    json.dump(data, f, indent=2, default=str)
                os.replace(temp_path, self.path)
        except StoreLockTimeout:
            raise
        except Exception as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError:
                    pass
            raise StorePersistenceError(f"Failed to save {self.path}: {e}") from e

    def get(self, key: str, default: Any = None, strict: bool = False) -> Any:
        return self._read(strict=strict).get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.set_many({key: value})

    def set_many(self, values: Dict[str, Any]) -> None:
        data = self._read(strict=True)
        data.update(values)
        self._write(data)

    def remove(self, *keys: str) -> None:
        data = self._read(strict=True)
        if not any(k in data for k in keys):
            return
        for key in keys:
            data.pop(key, None)
        self._write(data)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class ImportResult:
    imported: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"imported": self.imported, "errors": self.errors}


def callout_price_changed(existing: Position, update: PositionUpdate) -> bool:
    """True when the update carries a callout price different from the stored one."""
    return update.has("callout_price") and update.get("callout_price") != existing.callout_price


# =============================================================================
# CALLOUT STORE
# =============================================================================

class CalloutStore:
    """
    CRUD over the ordered list of positions.

    Every operation reads the whole collection, and every write replaces it
    and stamps the last-updated key.
    """

    def __init__(self, backend: Union[JsonKeyValueStore, str, Path]):
        if isinstance(backend, (str, Path)):
            backend = JsonKeyValueStore(backend)
        self.backend = backend
        self._lock = threading.RLock()

    # --- Persistence ---------------------------------------------------------

    def _load_positions(self, strict: bool = False) -> List[Position]:
        """Stored positions. strict=True is the read half of a write and raises instead of degrading."""
        raw = self.backend.get(STORAGE_KEY, [], strict=strict)
        if not isinstance(raw, list):
            if strict:
                raise StorePersistenceError(f"{STORAGE_KEY} held {type(raw).__name__}, refusing to overwrite")
            print(f"[callout_store] WARNING: {STORAGE_KEY} held {type(raw).__name__}, treating as empty")
            return []
        positions = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                positions.append(Position.from_dict(item))
            except CalloutValidationError as e:
                print(f"[callout_store] Skipping unreadable record {item.get('id', '?')}: {e}")
        return positions

    def _save_positions(self, positions: List[Position]) -> None:
        self.backend.set_many({
            STORAGE_KEY: [p.to_dict() for p in positions],
            LAST_UPDATED_KEY: now_utc_str(),
        })

    # --- Reads ---------------------------------------------------------------

    def list(self) -> List[Position]:
        return self._load_positions()

    def get_by_id(self, position_id: str) -> Optional[Position]:
        for p in self._load_positions():
            if p.id == position_id:
                return p
        return None

    def require(self, position_id: str) -> Position:
        position = self.get_by_id(position_id)
        if position is None:
            raise CalloutNotFoundError(position_id)
        return position

    def last_updated(self) -> Optional[datetime]:
        stamp = self.backend.get(LAST_UPDATED_KEY)
        if not stamp:
            return None
        try:
            return datetime.fromisoformat(str(stamp))
        except ValueError:
            print(f"[callout_store] Ignoring malformed {LAST_UPDATED_KEY}: {stamp!r}")
            return None

    def export_all(self) -> List[Dict[str, Any]]:
        """All positions as camelCase dicts, in stored order."""
        return [p.to_dict() for p in self._load_positions()]

    # --- Writes --------------------------------------------------------------

    def add(self, fields: Union[Dict[str, Any], Position]) -> Position:
        """
        Store a new position and return it.

        Assigns a fresh id and created/updated timestamps. Raises
        CalloutValidationError for an empty ticker or a missing/non-finite
        callout price; nothing is written in that case.
        """
        if isinstance(fields, Position):
            position = fields.copy()
        else:
            if coerce_optional_price(fields.get("calloutPrice", fields.get("callout_price"))) is None:
                raise CalloutValidationError("Callout price is required")
            position = Position.from_dict(fields)

        position.ticker = position.ticker.upper().strip()
        if not position.ticker:
            raise CalloutValidationError("Ticker is required")

        now = now_utc_str()
        position.id = generate_id()
        position.created_at = now
        position.updated_at = now

        with self._lock:
            positions = self._load_positions(strict=True)
            positions.append(position)
            self._save_positions(positions)
        return position

    def update(self, position_id: str,
               update: Union[PositionUpdate, Dict[str, Any]]) -> Optional[Position]:
        """
        Merge provided fields into a stored position.

        Returns None when the id is unknown. A changed callout price
        invalidates all prior hit history (see _rebaseline).
        """
        if not isinstance(update, PositionUpdate):
            update = PositionUpdate.from_dict(update)

        with self._lock:
            positions = self._load_positions(strict=True)
            index = next((i for i, p in enumerate(positions) if p.id == position_id), None)
            if index is None:
                return None

            existing = positions[index]
            updated = update.apply_to(existing)
            if callout_price_changed(existing, update):
                print(f"[callout_store] Callout price changed for {existing.ticker}: "
                      f"{existing.callout_price} -> {updated.callout_price}")
                updated = self._rebaseline(updated)

            updated.updated_at = now_utc_str()
            positions[index] = updated
            self._save_positions(positions)
        return updated

    @staticmethod
    def _rebaseline(position: Position) -> Position:
        """Reset hit history and re-evaluate at the stored current price."""
        reset = reset_hit_history(position)
        if position.current_price <= 0:
            # Unknown price: keep the reset state until the next refresh
            reset.percent_since_callout = 0.0
            return reset
        return evaluate(reset, position.current_price)

    def delete(self, position_id: str) -> bool:
        with self._lock:
            positions = self._load_positions(strict=True)
            remaining = [p for p in positions if p.id != position_id]
            if len(remaining) == len(positions):
                return False
            self._save_positions(remaining)
        return True

    def clear(self) -> int:
        """Remove every position and the last-updated stamp. Returns the count removed."""
        with self._lock:
            count = len(self._load_positions(strict=True))
            self.backend.remove(STORAGE_KEY, LAST_UPDATED_KEY)
        return count

    def import_many(self, records: Iterable[Dict[str, Any]],
                    clear_existing: bool = False) -> ImportResult:
        """
        Bulk add.

        Each record needs a non-empty ticker and a callout price > 0; other
        records are skipped and counted as errors. Valid records are
        evaluated once at their own current price. One write at the end.
        """
        result = ImportResult()
        incoming: List[Position] = []

        for record in records:
            try:
                position = _position_from_import(record)
                if not position.ticker or position.callout_price <= 0:
                    result.errors += 1
                    continue
                if position.current_price > 0:
                    position = evaluate(position, position.current_price)
                incoming.append(position)
                result.imported += 1
            except (CalloutValidationError, TypeError, AttributeError) as e:
                print(f"[callout_store] Error importing record: {e}")
                result.errors += 1

        with self._lock:
            positions = [] if clear_existing else self._load_positions(strict=True)
            self._save_positions(positions + incoming)
        return result


def _position_from_import(record: Dict[str, Any]) -> Position:
    position = Position.from_dict(record)
    # Imported sheets use 0 / blanks for "no level"
    for name in ("target1", "target2", "target3", "stop_loss", "buy_zone_low", "buy_zone_high"):
        if not getattr(position, name):
            setattr(position, name, None)
    now = now_utc_str()
    position.id = generate_id()
    position.created_at = now
    position.updated_at = now
    return position
