"""
AsyncCareena / Careena: main client objects.

Wires the HTTP layer, the session machine, the selection tracker, the
short-link cache and the background timers together behind one API.
"""

import asyncio
import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from careena.auth import Auth
from careena.config import Settings, config_dir
from careena.errors import AuthError, AuthExpiredError, CareenaError, is_auth_expired
from careena.interpret.classifier import classify
from careena.keepalive import MACHINE_CREDENTIALS_KEY, MachineReauth, TokenWatchdog
from careena.models.classification import ClassificationResult, QuestionWithOptions
from careena.models.message import Message
from careena.post_approval import PostApprovalAPI
from careena.search import TreatmentSearch
from careena.selection import SelectionTracker
from careena.session_machine import SessionMachine, SessionState
from careena.sessions import SessionsAPI
from careena.shortlinks import ShortLinkCache
from careena.storage import JsonFileStore, MemoryStore, RedundantKeyValueStore, set_json
from careena.transport.http import HttpClient

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I could not process your request."
SESSION_LOST_BANNER = "Your session has expired. Starting a new session..."


def default_store(state_dir: Optional[Path] = None) -> RedundantKeyValueStore:
    base = Path(state_dir) if state_dir else config_dir()
    return RedundantKeyValueStore(
        primary=JsonFileStore(base / "state.json"),
        backup=JsonFileStore(base / "state.backup.json"),
        ephemeral=MemoryStore(),
    )


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class AsyncCareena:
    """Async client (primary)."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[RedundantKeyValueStore] = None,
        state_dir: Optional[Path] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or Settings.load()
        self.store = store or default_store(state_dir)

        self.http = HttpClient(
            base_url=self.settings.base_url,
            timeout=self.settings.timeout_s,
            on_auth_expired=self._on_auth_expired,
            transport=transport,
        )
        self._post_approval_http = HttpClient(
            base_url=self.settings.post_approval_base_url,
            timeout=self.settings.post_approval_timeout_s,
            transport=transport,
        )
        self.auth = Auth(self.http)
        self.sessions = SessionsAPI(self.http)
        self.post_approval = PostApprovalAPI(self._post_approval_http)

        self.tracker = SelectionTracker(self.store)
        self.machine = SessionMachine(
            self.store,
            self.sessions,
            tracker=self.tracker,
            ttl_days=self.settings.session_ttl_days,
            history_limit=self.settings.history_limit,
            session_limit=self.settings.session_limit,
        )
        self.links = ShortLinkCache(self.sessions.resolve_short_link)
        self.treatments = TreatmentSearch(self.sessions.search_treatments, self.settings.search_debounce_s)
        self.watchdog = TokenWatchdog(
            is_authenticated=lambda: self._authenticated,
            read_token=lambda: self.machine.token,
            on_logout=self.logout,
            interval=self.settings.token_check_interval_s,
            grace=self.settings.token_grace_s,
        )
        self.reauth = MachineReauth(
            self.store.primary,
            self.auth.doctor_staff_login,
            self._on_machine_token,
            interval=self.settings.reauth_interval_s,
        )

        self.banner: Optional[str] = None
        self._authenticated = self.machine.is_authenticated
        self._send_lock = asyncio.Lock()
        self._restart_task: Optional[asyncio.Task[None]] = None
        self.http.set_token(self.machine.token)

    # -- state --------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.machine.state

    @property
    def session_id(self) -> Optional[str]:
        return self.machine.session_id

    @property
    def messages(self) -> list[Message]:
        return self.machine.transcript.messages

    @property
    def sending(self) -> bool:
        return self._send_lock.locked()

    @staticmethod
    def classify(message: Message) -> ClassificationResult:
        return classify(message)

    # -- auth ---------------------------------------------------------

    def _on_auth_expired(self) -> None:
        self._authenticated = False
        self.http.set_token(None)
        self.machine.force_logout()

    def _on_machine_token(self, result: dict[str, Any]) -> None:
        identity = self.machine.identity()
        doctor_id = str(result.get("doctor_id") or "")
        if self.machine.is_authenticated and identity is not None and identity.value == doctor_id:
            self.machine.set_token(result["token"])
        else:
            self.machine.login(result["token"], doctor_id=doctor_id, doctor_name=result.get("doctor_name"))
        self.http.set_token(result["token"])
        self._authenticated = True

    async def login_with_otp(
        self, phone_number: str, otp: str, doctor_id: Optional[str] = None, doctor_name: Optional[str] = None,
    ) -> None:
        result = await self.auth.verify_otp(phone_number, otp, doctor_id=doctor_id, doctor_name=doctor_name)
        self.machine.login(
            result["token"],
            phone_number=result.get("phone_number") or phone_number,
            doctor_id=result.get("doctor_id") or doctor_id,
            doctor_name=result.get("doctor_name") or doctor_name,
        )
        self._authenticated = True

    async def login_doctor(self, doctor_code: str, password: str, remember: bool = False) -> None:
        """Doctor/staff login. `remember` keeps the credentials for unattended re-auth."""
        result = await self.auth.doctor_staff_login(doctor_code, password)
        self.machine.login(result["token"], doctor_id=result.get("doctor_id"), doctor_name=result.get("doctor_name"))
        self._authenticated = True
        if remember:
            set_json(self.store.primary, MACHINE_CREDENTIALS_KEY, {"doctor_code": doctor_code, "password": password})

    def logout(self) -> SessionState:
        self._authenticated = False
        self.http.set_token(None)
        return self.machine.logout()

    # -- lifecycle ----------------------------------------------------

    async def start(self) -> SessionState:
        """Restore or create the session, then start the background timers."""
        if self.reauth.credentials() is not None:
            await self.reauth.begin()
        self.http.set_token(self.machine.token)
        try:
            state = await self.machine.load()
        except AuthError:
            raise
        except CareenaError as e:
            self.banner = str(e)
            state = self.machine.state
        if state == SessionState.ACTIVE and not len(self.machine.transcript):
            await self._refresh_quietly()
        self.watchdog.start()
        return self.machine.state

    async def close(self) -> None:
        await self.watchdog.stop()
        await self.reauth.stop()
        if self._restart_task is not None:
            self._restart_task.cancel()
        await self.http.close()
        await self._post_approval_http.close()

    async def _refresh_quietly(self) -> None:
        try:
            await self.machine.refresh()
        except CareenaError as e:
            logger.warning(f"Could not refresh session details: {e}")

    async def new_inquiry(self, confirm: Optional[Callable[[], Any]] = None) -> bool:
        try:
            started = await self.machine.new_inquiry(confirm)
        except AuthError:
            raise
        except CareenaError as e:
            self.banner = str(e)
            return False
        if started:
            self.banner = None
            await self._refresh_quietly()
        return started

    async def _restart_later(self) -> None:
        await asyncio.sleep(self.settings.restart_delay_s)
        try:
            await self.machine.create()
            await self._refresh_quietly()
            self.banner = None
        except CareenaError as e:
            self.banner = str(e)

    # -- messaging ----------------------------------------------------

    async def send(self, text: str) -> Optional[Message]:
        """Send a user message; returns the agent's reply or None (see `banner`)."""
        if not text.strip() or not self.machine.session_id:
            return None
        async with self._send_lock:
            return await self._send(text)

    async def _send(self, text: str) -> Optional[Message]:
        session_id = self.machine.session_id
        transcript = self.machine.transcript
        first_message = not transcript.has_user_messages()
        transcript.append(Message(id=_new_id("user"), text=text, sender="user"))
        self.banner = None
        self.machine.history().record_message(session_id, text, first_message)  # type: ignore[arg-type]

        try:
            response = await self.sessions.send_message(session_id, text)  # type: ignore[arg-type]
        except AuthExpiredError:
            return None
        except CareenaError as e:
            if is_auth_expired(e):
                self._on_auth_expired()
                return None
            self.banner = str(e)
            return None

        status = str(response.get("status", "")).lower()
        if status == "success":
            reply = transcript.append(Message(
                id=_new_id("agent"), text=response.get("response") or FALLBACK_REPLY, sender="agent",
            ))
            self.links.prefetch(reply.text)
            await self._refresh_quietly()
            last = self.machine.transcript.last()
            return last if last is not None and last.is_agent else reply
        if response.get("message") == "Session not found" or status == "error":
            self.banner = SESSION_LOST_BANNER
            self.machine.expire()
            self._restart_task = asyncio.get_running_loop().create_task(self._restart_later())
            return None
        logger.error(f"Unexpected send response: {response!r}")
        self.banner = "Failed to get response from agent"
        return None

    async def choose_option(self, message_id: str, index: int) -> Optional[Message]:
        """Pick option `index` of a menu message. Locked menus ignore further picks."""
        message = self.machine.transcript.get(message_id)
        if message is None:
            return None
        result = classify(message)
        if not isinstance(result, QuestionWithOptions) or not 0 <= index < len(result.options):
            return None
        reply = result.reply_for(index)
        if not self.tracker.choose(message_id, reply):
            return None
        return await self.send(reply)

    async def choose_treatment(self, message_id: str, name: str) -> Optional[Message]:
        if not self.tracker.choose_treatment(message_id, name):
            return None
        return await self.send(name)

    async def resolve_links(self, message: Message) -> dict[str, str]:
        return await self.links.resolve_all(self.links.prefetch(message.text))

    async def upload(self, kind: str, file_path: str, side: str = "front") -> Any:
        """Upload a document with a progress message that turns into success or failure."""
        session_id = self.machine.session_id
        if not session_id:
            return None
        name = Path(file_path).name
        progress = self.machine.transcript.append(Message(
            id=_new_id("upload"), text=f"Uploading {name}...", sender="user", file_name=name,
        ))
        try:
            if kind == "aadhaar":
                result: Any = await self.sessions.upload_aadhaar(session_id, file_path, side=side)
            elif kind == "pan":
                result = await self.sessions.upload_pan(session_id, file_path)
            else:
                result = await self.sessions.upload_document(session_id, file_path)
        except (CareenaError, OSError) as e:
            self.machine.transcript.replace_text(progress.id, f"Upload failed: {name}")
            self.banner = str(e)
            return None
        self.machine.transcript.replace_text(progress.id, f"Uploaded {name}")
        return result


class Careena:
    """Sync wrapper around AsyncCareena. Runs the event loop internally."""

    def __init__(self, **kwargs: Any):
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)
        self._async = AsyncCareena(**kwargs)

    def _run(self, coro: Any) -> Any:
        return self._loop.run_until_complete(coro)

    @property
    def client(self) -> AsyncCareena:
        return self._async

    @property
    def state(self) -> SessionState:
        return self._async.state

    @property
    def messages(self) -> list[Message]:
        return self._async.messages

    @property
    def banner(self) -> Optional[str]:
        return self._async.banner

    def login_with_otp(self, phone_number: str, otp: str, **kwargs: Any) -> None:
        self._run(self._async.login_with_otp(phone_number, otp, **kwargs))

    def login_doctor(self, doctor_code: str, password: str, remember: bool = False) -> None:
        self._run(self._async.login_doctor(doctor_code, password, remember))

    def start(self) -> SessionState:
        return self._run(self._async.start())

    def send(self, text: str) -> Optional[Message]:
        return self._run(self._async.send(text))

    def choose_option(self, message_id: str, index: int) -> Optional[Message]:
        return self._run(self._async.choose_option(message_id, index))

    def new_inquiry(self, confirm: Optional[Callable[[], Any]] = None) -> bool:
        return self._run(self._async.new_inquiry(confirm))

    def logout(self) -> SessionState:
        return self._async.logout()

    def close(self) -> None:
        self._run(self._async.close())
        self._loop.close()

    classify = staticmethod(AsyncCareena.classify)
