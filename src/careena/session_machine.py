"""
Session lifecycle state machine.

Decides on every load whether to restore the stored conversation or
start a new one, owns the transcript, and handles login, "new inquiry"
and logout. Storage and the backend are injected so the whole machine
runs against in-memory fakes in tests.

States:
    UNINITIALIZED -> RESTORING | CREATING -> ACTIVE -> EXPIRED | LOGGED_OUT
"""

import inspect
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Protocol, Union

from careena.auth import normalize_phone
from careena.errors import AuthError, AuthExpiredError, CareenaError, SessionError
from careena.history import ChatHistory
from careena.interpret.patterns import is_patient_info_submission
from careena.models.message import Message, Transcript
from careena.models.session import HUMAN_MESSAGE, SessionDetails, SessionRecord
from careena.selection import SelectionTracker, purge_scope
from careena.storage import RedundantKeyValueStore

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
ACCOUNT_TYPE_KEY = "accountType"
PHONE_KEY = "phoneNumber"
DOCTOR_ID_KEY = "doctorId"
DOCTOR_NAME_KEY = "doctorName"
USER_ID_KEY = "userId"
FRESH_LOGIN_KEY = "freshLogin"
CURRENT_SESSION_KEY = "current_session_id"
SESSION_COUNT_KEY = "sessionCount"

DEFAULT_TTL_DAYS = 30


class SessionState(str, Enum):
    UNINITIALIZED = "uninitialized"
    RESTORING = "restoring"
    CREATING = "creating"
    ACTIVE = "active"
    EXPIRED = "expired"
    LOGGED_OUT = "logged_out"


class Identity(NamedTuple):
    kind: str  # "doctor" | "patient"
    value: str
    name: Optional[str] = None

    @property
    def key(self) -> str:
        return f"{self.kind}_{self.value}"


class SessionBackend(Protocol):
    async def create(self) -> dict[str, Any]: ...

    async def get(self, session_id: str) -> SessionDetails: ...


Confirm = Callable[[], Union[bool, Awaitable[bool]]]
StateListener = Callable[[SessionState], None]


def session_key(identity: Identity) -> str:
    return f"session_id_{identity.key}"


def _parse_time(value: Optional[str]) -> datetime:
    if value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
        except ValueError:
            pass
    return datetime.now(timezone.utc)


def messages_from_history(details: SessionDetails) -> list[Message]:
    when = _parse_time(details.created_at)
    return [
        Message(
            id=f"history-{i}",
            text=item.content,
            sender="user" if item.type == HUMAN_MESSAGE else "agent",
            timestamp=when,
        )
        for i, item in enumerate(details.history)
    ]


class SessionMachine:
    def __init__(
        self,
        store: RedundantKeyValueStore,
        backend: SessionBackend,
        *,
        tracker: Optional[SelectionTracker] = None,
        clock: Optional[Callable[[], datetime]] = None,
        ttl_days: int = DEFAULT_TTL_DAYS,
        history_limit: int = 30,
        session_limit: Optional[int] = None,
    ):
        self._store = store
        self._local = store.primary
        self._backend = backend
        self.tracker = tracker or SelectionTracker(store)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ttl_days = ttl_days
        self._history_limit = history_limit
        self._session_limit = session_limit
        self._listeners: list[StateListener] = []

        self.state = SessionState.UNINITIALIZED
        self.transitions: list[SessionState] = []
        self.session_id: Optional[str] = None
        self.details: Optional[SessionDetails] = None
        self.transcript = Transcript()

    # -- observation --------------------------------------------------

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass
        return remove

    def _set(self, state: SessionState) -> SessionState:
        self.state = state
        self.transitions.append(state)
        for listener in list(self._listeners):
            listener(state)
        return state

    # -- identity -----------------------------------------------------

    @property
    def token(self) -> Optional[str]:
        return self._local.get(TOKEN_KEY)

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    def identity(self) -> Optional[Identity]:
        """Current account identity. Present if any storage slot still holds it."""
        kind = self._store.get(ACCOUNT_TYPE_KEY)
        doctor_id = self._store.get(DOCTOR_ID_KEY)
        phone = self._store.get(PHONE_KEY)
        if doctor_id and kind != "patient":
            return Identity("doctor", doctor_id, self._store.get(DOCTOR_NAME_KEY))
        if phone:
            return Identity("patient", phone)
        if doctor_id:
            return Identity("doctor", doctor_id, self._store.get(DOCTOR_NAME_KEY))
        return None

    def _require_identity(self) -> Identity:
        identity = self.identity()
        if identity is None:
            raise AuthError("No doctor id or phone number stored. Log in first.", code="no_identity")
        return identity

    def login(
        self,
        token: str,
        phone_number: Optional[str] = None,
        doctor_id: Optional[str] = None,
        doctor_name: Optional[str] = None,
    ) -> Identity:
        """Store credentials and identity after a successful login.

        The next `load()` always starts a brand-new session.
        """
        if doctor_id:
            self._store.set(ACCOUNT_TYPE_KEY, "doctor")
            self._store.set(DOCTOR_ID_KEY, str(doctor_id))
            if doctor_name:
                self._store.set(DOCTOR_NAME_KEY, doctor_name)
            self._store.remove(PHONE_KEY)
        elif phone_number:
            phone = normalize_phone(phone_number)
            previous = self._store.get(PHONE_KEY)
            if previous and previous != phone:
                logger.info("A different patient logged in; dropping stored doctor identity")
                self._store.remove(DOCTOR_ID_KEY)
                self._store.remove(DOCTOR_NAME_KEY)
            self._store.set(ACCOUNT_TYPE_KEY, "patient")
            self._store.set(PHONE_KEY, phone)
        else:
            raise AuthError("Login needs a doctor id or a phone number")
        self._local.set(TOKEN_KEY, token)
        self._local.set(SESSION_COUNT_KEY, "0")
        self._local.set(FRESH_LOGIN_KEY, "1")
        self._set(SessionState.UNINITIALIZED)
        return self._require_identity()

    def set_token(self, token: str) -> None:
        """Swap in a refreshed token without touching the session."""
        self._local.set(TOKEN_KEY, token)

    # -- counters and history ----------------------------------------

    @property
    def session_count(self) -> int:
        try:
            return int(self._local.get(SESSION_COUNT_KEY) or 0)
        except ValueError:
            return 0

    def history(self) -> ChatHistory:
        return ChatHistory(self._local, self._require_identity().key, limit=self._history_limit)

    @property
    def show_intake_form(self) -> bool:
        """The intake form stays up until the user has submitted patient info."""
        return not any(m.sender == "user" and is_patient_info_submission(m.text) for m in self.transcript)

    # -- lifecycle ----------------------------------------------------

    async def load(self) -> SessionState:
        """App start: create on a fresh login, otherwise try to restore."""
        self._require_identity()
        if self._local.get(FRESH_LOGIN_KEY):
            self._local.remove(FRESH_LOGIN_KEY)
            logger.info("Fresh login, starting a new session")
            return await self.create()
        return await self.restore()

    def _restore_candidate(self, identity: Identity) -> Optional[tuple[str, Optional[SessionRecord]]]:
        raw = self._local.get(session_key(identity))
        if raw:
            record = SessionRecord.from_storage(raw)
            if record is not None:
                return record.session_id, record
        current = self._local.get(CURRENT_SESSION_KEY)
        if current:
            return current, None
        latest = self.history().latest()
        if latest is not None:
            return latest.id, None
        return None

    async def restore(self) -> SessionState:
        identity = self._require_identity()
        self._set(SessionState.RESTORING)
        candidate = self._restore_candidate(identity)
        if candidate is None:
            return await self.create()
        session_id, record = candidate
        if record is not None and record.is_expired(self._clock()):
            logger.info(f"Stored session {session_id} expired at {record.expires_at}")
            return await self.create()
        try:
            details = await self._backend.get(session_id)
        except AuthExpiredError:
            return self.force_logout()
        except (CareenaError, ValueError) as e:
            logger.warning(f"Could not restore session {session_id}: {e}")
            return await self.create()
        if not details.exists:
            logger.info(f"Session {session_id} no longer exists on the backend")
            return await self.create()

        if record is None:
            self._local.set(
                session_key(identity),
                SessionRecord.issue(session_id, self._clock(), self._ttl_days).to_storage(),
            )
        self._local.set(CURRENT_SESSION_KEY, session_id)
        self._adopt(session_id, details)
        self.tracker.bind(identity.key, session_id)
        return self._set(SessionState.ACTIVE)

    def _adopt(self, session_id: str, details: SessionDetails) -> None:
        self.session_id = session_id
        self.details = details
        if details.user_id:
            self._local.set(USER_ID_KEY, details.user_id)
        messages = messages_from_history(details)
        self.transcript.reset(messages)
        first_user = next((m for m in messages if m.sender == "user"), None)
        if first_user is not None:
            self.history().adopt(session_id, first_user.text, first_user.timestamp)

    def _purge_session_scope(self, identity: Identity) -> None:
        self._local.remove(session_key(identity))
        self._local.remove(CURRENT_SESSION_KEY)
        purge_scope(self._store, identity.key)
        self.tracker.unbind()

    async def create(self) -> SessionState:
        identity = self._require_identity()
        self._set(SessionState.CREATING)
        self._purge_session_scope(identity)
        self.session_id = None
        self.details = None
        self.transcript.reset()
        try:
            response = await self._backend.create()
            if str(response.get("status", "")).lower() != "success" or not response.get("session_id"):
                raise SessionError("Failed to create session", details=response)
        except AuthExpiredError:
            return self.force_logout()
        except CareenaError as e:
            logger.warning(f"Could not create a session: {e}")
            self._set(SessionState.EXPIRED)
            raise

        session_id = str(response["session_id"])
        record = SessionRecord.issue(session_id, self._clock(), self._ttl_days)
        self._local.set(session_key(identity), record.to_storage())
        self._local.set(CURRENT_SESSION_KEY, session_id)
        self.session_id = session_id
        self.tracker.bind(identity.key, session_id)
        count = self.session_count + 1
        self._local.set(SESSION_COUNT_KEY, str(count))
        self._set(SessionState.ACTIVE)
        if self._session_limit is not None and count >= self._session_limit:
            logger.info(f"Session limit of {self._session_limit} reached, logging out")
            return self.logout()
        return self.state

    async def refresh(self) -> Optional[SessionDetails]:
        """Re-fetch session details and replace the transcript with the backend's history."""
        if not self.session_id:
            return None
        try:
            details = await self._backend.get(self.session_id)
        except AuthExpiredError:
            self.force_logout()
            return None
        if details.history:
            self._adopt(self.session_id, details)
        else:
            self.details = details
            if details.user_id:
                self._local.set(USER_ID_KEY, details.user_id)
        return details

    async def new_inquiry(self, confirm: Optional[Confirm] = None) -> bool:
        """Start over. Needs `confirm()` to agree when the user has already said something."""
        if self.transcript.has_user_messages():
            if confirm is None:
                return False
            answer = confirm()
            if inspect.isawaitable(answer):
                answer = await answer
            if not answer:
                return False
        await self.create()
        return True

    def expire(self) -> SessionState:
        """The backend lost the active session; keep identity, drop the session."""
        identity = self.identity()
        if identity is not None:
            self._purge_session_scope(identity)
        self.session_id = None
        return self._set(SessionState.EXPIRED)

    def logout(self) -> SessionState:
        """Drop the session and token. Patient identity goes too; doctor identity stays."""
        identity = self.identity()
        if identity is not None:
            self._purge_session_scope(identity)
        else:
            self._local.remove(CURRENT_SESSION_KEY)
            self.tracker.unbind()
        for key in (TOKEN_KEY, SESSION_COUNT_KEY, FRESH_LOGIN_KEY, USER_ID_KEY):
            self._local.remove(key)
        self._store.remove(PHONE_KEY)
        if self._store.get(ACCOUNT_TYPE_KEY) == "patient":
            self._store.remove(ACCOUNT_TYPE_KEY)
        self.session_id = None
        self.details = None
        self.transcript.reset()
        return self._set(SessionState.LOGGED_OUT)

    def force_logout(self) -> SessionState:
        logger.info("Auth token expired, forcing logout")
        return self.logout()
