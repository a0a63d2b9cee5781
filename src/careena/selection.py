"""
Selection/disablement tracker.

Remembers, per (identity, session, message), which option the user
picked and whether that message's menu is locked. Locks are one-way for
the life of the session. Every change is written through to storage
straight away so a reload sees it.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel, Field

from careena.storage import KeyValueStore, get_json, set_json

logger = logging.getLogger(__name__)

SELECTED_PREFIX = "selected_options"
DISABLED_PREFIX = "disabled_options"
TREATMENT_PREFIX = "selected_treatments"
SCOPED_PREFIXES = (SELECTED_PREFIX, DISABLED_PREFIX, TREATMENT_PREFIX)


class SelectionState(BaseModel):
    selected_option_value: Optional[str] = Field(default=None, alias="selectedOptionValue")
    is_locked: bool = Field(default=False, alias="isLocked")

    model_config = {"populate_by_name": True, "frozen": True}


def scope_key(prefix: str, identity: str, session_id: str) -> str:
    return f"{prefix}_{identity}_{session_id}"


def purge_scope(store: KeyValueStore, identity: str, session_id: Optional[str] = None) -> None:
    """Drop selection maps for one session of `identity`, or for all of its sessions."""
    for key in store.keys():
        for prefix in SCOPED_PREFIXES:
            if not key.startswith(f"{prefix}_"):
                continue
            owner, _, sid = key[len(prefix) + 1:].rpartition("_")
            if owner == identity and (session_id is None or sid == session_id):
                store.remove(key)


class SelectionTracker:
    def __init__(self, store: KeyValueStore):
        self._store = store
        self._identity: Optional[str] = None
        self._session_id: Optional[str] = None
        self._selected: dict[str, str] = {}
        self._locked: dict[str, bool] = {}
        self._treatments: dict[str, str] = {}

    @property
    def scope(self) -> Optional[tuple[str, str]]:
        if self._identity is None or self._session_id is None:
            return None
        return self._identity, self._session_id

    def bind(self, identity: str, session_id: str) -> None:
        """Switch to a session's scope and load whatever was persisted for it."""
        self._identity = identity
        self._session_id = session_id
        self._selected = self._load(SELECTED_PREFIX)
        self._locked = {k: bool(v) for k, v in self._load(DISABLED_PREFIX).items()}
        self._treatments = self._load(TREATMENT_PREFIX)

    def unbind(self) -> None:
        self._identity = None
        self._session_id = None
        self._reset_memory()

    def clear(self) -> None:
        """Forget every choice in the current scope, in memory and in storage."""
        if self.scope is not None:
            purge_scope(self._store, self._identity, self._session_id)  # type: ignore[arg-type]
        self._reset_memory()

    def _reset_memory(self) -> None:
        self._selected = {}
        self._locked = {}
        self._treatments = {}

    def _key(self, prefix: str) -> str:
        return scope_key(prefix, self._identity or "anonymous", self._session_id or "none")

    def _load(self, prefix: str) -> dict[str, str]:
        data = get_json(self._store, self._key(prefix), {})
        return data if isinstance(data, dict) else {}

    def _sync(self) -> None:
        """Pick up choices written to this scope by other processes."""
        if self.scope is None:
            return
        self._selected.update(self._load(SELECTED_PREFIX))
        self._locked.update({k: bool(v) for k, v in self._load(DISABLED_PREFIX).items()})
        self._treatments.update(self._load(TREATMENT_PREFIX))

    def _persist(self, prefix: str, message_id: str, value: Any) -> None:
        if self.scope is None:
            logger.debug("Selection tracker not bound to a session; keeping choices in memory only")
            return
        data = self._load(prefix)
        data[message_id] = value
        set_json(self._store, self._key(prefix), data)

    def choose(self, message_id: str, option_value: str) -> bool:
        """Record the pick and lock the message. Returns False if it was already locked."""
        self._sync()
        if self._locked.get(message_id):
            return False
        self._selected[message_id] = option_value
        self._locked[message_id] = True
        self._persist(SELECTED_PREFIX, message_id, option_value)
        self._persist(DISABLED_PREFIX, message_id, True)
        return True

    def is_locked(self, message_id: str) -> bool:
        return bool(self._locked.get(message_id))

    def selection_for(self, message_id: str) -> Optional[str]:
        return self._selected.get(message_id)

    def state_for(self, message_id: str) -> SelectionState:
        return SelectionState(
            selected_option_value=self._selected.get(message_id),
            is_locked=self.is_locked(message_id),
        )

    def choose_treatment(self, message_id: str, name: str) -> bool:
        """Free-text treatment names are accepted verbatim, once per message."""
        self._sync()
        if message_id in self._treatments:
            return False
        self._treatments[message_id] = name
        self._persist(TREATMENT_PREFIX, message_id, name)
        return True

    def treatment_for(self, message_id: str) -> Optional[str]:
        return self._treatments.get(message_id)
