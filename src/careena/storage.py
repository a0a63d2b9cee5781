"""
Local key-value storage.

Values are strings (JSON where structured), mirroring browser storage.
`RedundantKeyValueStore` keeps a value in three slots (primary persistent,
backup persistent, ephemeral) and repairs missing slots on read.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Protocol

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def remove(self, key: str) -> None: ...

    def keys(self) -> list[str]: ...


class MemoryStore:
    """In-process store. Used for the ephemeral slot and in tests."""

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._data)

    def clear(self) -> None:
        self._data.clear()


class JsonFileStore:
    """Store backed by a single JSON object on disk.

    The file is re-read on every access so that several processes sharing
    the file see each other's writes (last write wins).
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, str]:
        try:
            data = json.loads(self._path.read_text())
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError:
            logger.warning(f"Ignoring corrupt store file {self._path}")
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _write(self, data: dict[str, str]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, ensure_ascii=False))
        tmp.replace(self._path)

    def get(self, key: str) -> Optional[str]:
        return self._read().get(key)

    def set(self, key: str, value: str) -> None:
        data = self._read()
        if data.get(key) == value:
            return
        data[key] = value
        self._write(data)

    def remove(self, key: str) -> None:
        data = self._read()
        if key in data:
            del data[key]
            self._write(data)

    def keys(self) -> list[str]:
        return list(self._read())


class RedundantKeyValueStore:
    """Three-slot store with read-repair.

    A key counts as present if any slot holds it. Reads prefer primary,
    then backup, then ephemeral, and write the found value back into every
    slot that is missing or disagrees.
    """

    def __init__(self, primary: KeyValueStore, backup: KeyValueStore, ephemeral: KeyValueStore) -> None:
        self.primary = primary
        self.backup = backup
        self.ephemeral = ephemeral

    @property
    def slots(self) -> tuple[KeyValueStore, KeyValueStore, KeyValueStore]:
        return (self.primary, self.backup, self.ephemeral)

    def get(self, key: str) -> Optional[str]:
        return self.reconcile(key)

    def has(self, key: str) -> bool:
        return any(slot.get(key) is not None for slot in self.slots)

    def set(self, key: str, value: str) -> None:
        for slot in self.slots:
            slot.set(key, value)

    def remove(self, key: str) -> None:
        for slot in self.slots:
            slot.remove(key)

    def keys(self) -> list[str]:
        seen: dict[str, None] = {}
        for slot in self.slots:
            for key in slot.keys():
                seen.setdefault(key, None)
        return list(seen)

    def reconcile(self, key: str) -> Optional[str]:
        """Recover `key` from the first slot that has it and copy it into the others."""
        values = [slot.get(key) for slot in self.slots]
        found = next((v for v in values if v is not None), None)
        if found is None:
            return None
        for slot, value in zip(self.slots, values):
            if value != found:
                slot.set(key, found)
        if any(v is None for v in values):
            logger.debug(f"Repaired storage key {key!r}")
        return found


def get_json(store: KeyValueStore, key: str, default: Any = None) -> Any:
    raw = store.get(key)
    if raw is None:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning(f"Discarding unreadable value for {key!r}")
        return default


def set_json(store: KeyValueStore, key: str, value: Any) -> None:
    store.set(key, json.dumps(value, ensure_ascii=False))
