"""Shared fakes for unit tests."""

from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from careena.models.session import SessionDetails
from careena.storage import MemoryStore, RedundantKeyValueStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeBackend:
    """In-memory session backend: create() hands out new-1, new-2, ..."""

    def __init__(self) -> None:
        self.sessions: dict[str, dict[str, Any]] = {}
        self.created = 0
        self.get_calls: list[str] = []
        self.get_error: Optional[Exception] = None
        self.create_response: Optional[dict[str, Any]] = None

    async def create(self) -> dict[str, Any]:
        if self.create_response is not None:
            return self.create_response
        self.created += 1
        session_id = f"new-{self.created}"
        self.sessions[session_id] = {"status": "success", "history": []}
        return {"status": "success", "session_id": session_id}

    async def get(self, session_id: str) -> SessionDetails:
        self.get_calls.append(session_id)
        if self.get_error is not None:
            raise self.get_error
        data = self.sessions.get(session_id)
        if data is None:
            return SessionDetails(status="error", message="Session not found")
        return SessionDetails.model_validate(data)


@pytest.fixture
def store() -> RedundantKeyValueStore:
    return RedundantKeyValueStore(MemoryStore(), MemoryStore(), MemoryStore())


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def clock():
    return lambda: NOW
