"""
Locally cached chat history per identity: newest first, one entry per
session, capped.
"""

from datetime import datetime, timezone
from typing import Optional

from careena.models.session import ChatHistoryEntry
from careena.storage import KeyValueStore, get_json, set_json

HISTORY_PREFIX = "chat_history"
DEFAULT_LIMIT = 30
TITLE_LENGTH = 30
NEW_CHAT_TITLE = "New Chat"


def history_key(identity: str) -> str:
    return f"{HISTORY_PREFIX}_{identity}"


def chat_title(message: str) -> str:
    if len(message) <= TITLE_LENGTH:
        return message
    return message[:TITLE_LENGTH] + "..."


class ChatHistory:
    def __init__(self, store: KeyValueStore, identity: str, limit: int = DEFAULT_LIMIT):
        self._store = store
        self._identity = identity
        self._limit = limit

    @property
    def key(self) -> str:
        return history_key(self._identity)

    def entries(self) -> list[ChatHistoryEntry]:
        raw = get_json(self._store, self.key, [])
        if not isinstance(raw, list):
            return []
        entries = []
        for item in raw:
            try:
                entries.append(ChatHistoryEntry.model_validate(item))
            except ValueError:
                continue
        return entries

    def latest(self) -> Optional[ChatHistoryEntry]:
        entries = self.entries()
        return entries[0] if entries else None

    def get(self, session_id: str) -> Optional[ChatHistoryEntry]:
        return next((e for e in self.entries() if e.id == session_id), None)

    def save(self, entry: ChatHistoryEntry) -> list[ChatHistoryEntry]:
        entries = [entry] + [e for e in self.entries() if e.id != entry.id]
        entries = entries[: self._limit]
        set_json(self._store, self.key, [e.model_dump(mode="json", by_alias=True) for e in entries])
        return entries

    def record_message(
        self, session_id: str, text: str, first_message: bool, when: Optional[datetime] = None,
    ) -> ChatHistoryEntry:
        """Move the session to the top; its title comes from the first user message."""
        existing = self.get(session_id)
        if first_message:
            title = chat_title(text)
        else:
            title = existing.title if existing else NEW_CHAT_TITLE
        entry = ChatHistoryEntry(
            id=session_id,
            title=title,
            timestamp=when or datetime.now(timezone.utc),
            last_message=text,
        )
        self.save(entry)
        return entry

    def adopt(self, session_id: str, first_user_text: str, when: Optional[datetime] = None) -> Optional[ChatHistoryEntry]:
        """Title a rehydrated session from its first user message unless it already has a title."""
        existing = self.get(session_id)
        if existing is not None and existing.title != NEW_CHAT_TITLE:
            return None
        entry = ChatHistoryEntry(
            id=session_id,
            title=chat_title(first_user_text),
            timestamp=when or datetime.now(timezone.utc),
            last_message=first_user_text,
        )
        self.save(entry)
        return entry

    def search(self, query: str) -> list[ChatHistoryEntry]:
        q = query.lower()
        return [e for e in self.entries() if q in e.title.lower() or q in e.last_message.lower()]

    def clear(self) -> None:
        self._store.remove(self.key)
