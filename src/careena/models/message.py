"""
Chat transcript models.
"""

from datetime import datetime, timezone
from typing import Iterator, Literal, Optional

from pydantic import BaseModel, Field

Sender = Literal["user", "agent"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    id: str
    text: str
    sender: Sender
    timestamp: datetime = Field(default_factory=_now)
    image_preview: Optional[str] = None
    file_name: Optional[str] = None

    model_config = {"frozen": True}

    @property
    def is_agent(self) -> bool:
        return self.sender == "agent"


class Transcript:
    """Insertion-ordered message list; the only record of the conversation.

    Messages are never edited except to swap the text of an existing id
    (upload progress turning into success or failure).
    """

    def __init__(self, messages: Optional[list[Message]] = None) -> None:
        self._messages: list[Message] = list(messages or [])

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def replace_text(self, message_id: str, text: str) -> Optional[Message]:
        for i, existing in enumerate(self._messages):
            if existing.id == message_id:
                updated = existing.model_copy(update={"text": text})
                self._messages[i] = updated
                return updated
        return None

    def reset(self, messages: Optional[list[Message]] = None) -> None:
        self._messages = list(messages or [])

    def get(self, message_id: str) -> Optional[Message]:
        return next((m for m in self._messages if m.id == message_id), None)

    def has_user_messages(self) -> bool:
        return any(m.sender == "user" for m in self._messages)

    def last(self) -> Optional[Message]:
        return self._messages[-1] if self._messages else None
