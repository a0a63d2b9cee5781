"""
Session models: the stored session record, backend session details and
the locally cached chat history entries.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

HUMAN_MESSAGE = "HumanMessage"


class SessionRecord(BaseModel):
    """Stored as {"id": ..., "expiresAt": ...} under the identity-scoped key."""

    session_id: str = Field(alias="id")
    expires_at: Optional[datetime] = Field(default=None, alias="expiresAt")

    model_config = {"populate_by_name": True}

    @classmethod
    def issue(cls, session_id: str, now: datetime, ttl_days: int) -> "SessionRecord":
        return cls(session_id=session_id, expires_at=now + timedelta(days=ttl_days))

    def is_expired(self, now: datetime) -> bool:
        if self.expires_at is None:
            return False
        expires = self.expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires <= now

    def to_storage(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_storage(cls, raw: str) -> Optional["SessionRecord"]:
        try:
            return cls.model_validate_json(raw)
        except ValueError:
            return None


class HistoryItem(BaseModel):
    type: str = ""
    content: str = ""


class SessionDetails(BaseModel):
    """Response of GET /session-details/<id>/"""

    status: Optional[str] = None
    session_id: Optional[str] = None
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    user_id: Optional[str] = Field(default=None, alias="userId")
    bureau_decision_details: Optional[Any] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    history: list[HistoryItem] = Field(default_factory=list)
    message: Optional[str] = None

    model_config = {"populate_by_name": True}

    @field_validator("status", "session_id", "phone_number", "user_id", mode="before")
    @classmethod
    def _as_text(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @field_validator("history", mode="before")
    @classmethod
    def _history_list(cls, v: Any) -> Any:
        return v if isinstance(v, list) else []

    @property
    def exists(self) -> bool:
        if (self.status or "").lower() in ("error", "not_found", "not found"):
            return False
        return (self.message or "").lower() != "session not found"


class ChatHistoryEntry(BaseModel):
    id: str
    title: str
    timestamp: datetime
    last_message: str = Field(default="", alias="lastMessage")

    model_config = {"populate_by_name": True}
