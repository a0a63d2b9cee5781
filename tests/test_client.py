"""AsyncCareena end to end against a scripted in-process backend."""

import json

import httpx
import pytest

from careena.client import SESSION_LOST_BANNER, AsyncCareena, Careena
from careena.config import Settings
from careena.keepalive import MACHINE_CREDENTIALS_KEY
from careena.session_machine import Identity, SessionState
from careena.storage import MemoryStore, RedundantKeyValueStore, get_json

BASE = "https://loanbot.test/api/v1/agent"
WELCOME = "Who is the loan for?\n\n1. Self\n2. Family member"


class FakeServer:
    def __init__(self):
        self.sessions: dict[str, list[dict[str, str]]] = {}
        self.created = 0
        self.messages: list[dict] = []
        self.reject_token = False
        self.fail_create = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path[len("/api/v1/agent"):]
        body = json.loads(request.content) if request.headers.get("content-type") == "application/json" else {}

        if path == "/login/doctor-staff/":
            if body.get("password") != "secret":
                return httpx.Response(400, json={"message": "Invalid credentials"})
            return httpx.Response(200, json={"token": "tok-doc", "doctor_id": "D1", "doctor_name": "Dr_Mehta"})
        if self.reject_token:
            return httpx.Response(401, json={"detail": "Token has expired"})
        if path == "/session/" and self.fail_create:
            return httpx.Response(500, json={"message": "upstream down"})
        if path == "/session/":
            self.created += 1
            session_id = f"s{self.created}"
            self.sessions[session_id] = [{"type": "AIMessage", "content": WELCOME}]
            return httpx.Response(200, json={"status": "success", "session_id": session_id})
        if path == "/message/":
            self.messages.append(body)
            history = self.sessions.get(body["session_id"])
            if history is None:
                return httpx.Response(200, json={"status": "error", "message": "Session not found"})
            reply = f"Noted: {body['message']}. Your EMI is ₹2,500."
            history.append({"type": "HumanMessage", "content": body["message"]})
            history.append({"type": "AIMessage", "content": reply})
            return httpx.Response(200, json={"status": "success", "session_id": body["session_id"], "response": reply})
        if path.startswith("/session-details/"):
            session_id = path.split("/")[2]
            history = self.sessions.get(session_id)
            if history is None:
                return httpx.Response(200, json={"status": "error", "message": "Session not found"})
            return httpx.Response(200, json={"status": "success", "userId": "u-1", "history": list(history)})
        if path == "/upload/pan/":
            return httpx.Response(200, json={"status": "success", "data": {"panNumber": "abcde1234f"}})
        return httpx.Response(404, json={})


def make_client(server: FakeServer, store=None) -> AsyncCareena:
    settings = Settings(base_url=BASE, restart_delay_s=0, session_limit=None)
    store = store or RedundantKeyValueStore(MemoryStore(), MemoryStore(), MemoryStore())
    return AsyncCareena(settings=settings, store=store, transport=httpx.MockTransport(server))


@pytest.mark.asyncio
async def test_doctor_login_then_start_creates_session_with_first_agent_message():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")

    assert await client.start() == SessionState.ACTIVE
    assert client.session_id == "s1"
    assert [(m.id, m.text) for m in client.messages] == [("history-0", WELCOME)]
    assert client.http.token == "tok-doc"
    await client.close()


@pytest.mark.asyncio
async def test_send_appends_reply_and_records_history():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    await client.start()

    reply = await client.send("Root canal treatment for my mother")

    assert reply is not None and reply.is_agent
    assert reply.text == "Noted: Root canal treatment for my mother. Your EMI is ₹2,500."
    assert client.classify(reply).amounts == ["₹2,500"]
    assert [m.sender for m in client.messages] == ["agent", "user", "agent"]
    entry = client.machine.history().latest()
    assert entry.id == "s1"
    assert entry.title == "Root canal treatment for my mo..."
    assert client.banner is None
    await client.close()


@pytest.mark.asyncio
async def test_blank_messages_are_not_sent():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    await client.start()
    assert await client.send("   ") is None
    assert server.messages == []
    await client.close()


@pytest.mark.asyncio
async def test_choose_option_sends_number_once():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    await client.start()

    assert await client.choose_option("history-0", 1) is not None
    assert await client.choose_option("history-0", 0) is None
    assert [m["message"] for m in server.messages] == ["2"]
    assert client.tracker.selection_for("history-0") == "2"
    await client.close()


@pytest.mark.asyncio
async def test_lost_session_shows_banner_and_restarts():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    await client.start()
    del server.sessions["s1"]

    assert await client.send("hello?") is None
    assert client.banner == SESSION_LOST_BANNER
    assert client.state == SessionState.EXPIRED

    await client._restart_task
    assert client.state == SessionState.ACTIVE
    assert client.session_id == "s2"
    assert client.banner is None
    await client.close()


@pytest.mark.asyncio
async def test_failed_session_creation_shows_banner_and_can_retry():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    server.fail_create = True

    assert await client.start() == SessionState.EXPIRED
    assert client.banner
    assert client.session_id is None

    server.fail_create = False
    assert await client.new_inquiry()
    assert client.state == SessionState.ACTIVE
    assert client.session_id == "s1"
    assert client.banner is None
    await client.close()


@pytest.mark.asyncio
async def test_failed_new_inquiry_keeps_banner_instead_of_raising():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    await client.start()
    server.fail_create = True

    assert not await client.new_inquiry(lambda: True)
    assert client.state == SessionState.EXPIRED
    assert client.banner
    await client.close()


@pytest.mark.asyncio
async def test_rejected_token_forces_logout_centrally():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    await client.start()
    server.reject_token = True

    assert await client.send("hello") is None
    assert client.state == SessionState.LOGGED_OUT
    assert client.machine.token is None
    assert client.http.token is None
    assert client.machine.identity() == Identity("doctor", "D1", "Dr_Mehta")
    await client.close()


@pytest.mark.asyncio
async def test_remembered_machine_credentials_reauthenticate_on_start():
    server = FakeServer()
    store = RedundantKeyValueStore(MemoryStore(), MemoryStore(), MemoryStore())
    first = make_client(server, store)
    await first.login_doctor("CLINIC1", "secret", remember=True)
    await first.start()
    await first.close()
    assert get_json(store.primary, MACHINE_CREDENTIALS_KEY) == {"doctor_code": "CLINIC1", "password": "secret"}

    second = make_client(server, store)
    assert await second.start() == SessionState.ACTIVE
    assert second.reauth.attempts == 1
    assert second.session_id == "s1"
    await second.close()


@pytest.mark.asyncio
async def test_upload_progress_message_is_replaced(tmp_path):
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    await client.start()
    image = tmp_path / "pan.jpg"
    image.write_bytes(b"jpeg")

    ocr = await client.upload("pan", str(image))
    assert ocr.pan_number == "ABCDE1234F"
    assert client.messages[-1].text == "Uploaded pan.jpg"
    assert client.messages[-1].file_name == "pan.jpg"

    assert await client.upload("pan", str(tmp_path / "missing.jpg")) is None
    assert client.messages[-1].text == "Upload failed: missing.jpg"
    await client.close()


@pytest.mark.asyncio
async def test_new_inquiry_asks_before_discarding():
    server = FakeServer()
    client = make_client(server)
    await client.login_doctor("CLINIC1", "secret")
    await client.start()
    await client.send("hi")

    assert not await client.new_inquiry(lambda: False)
    assert client.session_id == "s1"
    assert await client.new_inquiry(lambda: True)
    assert client.session_id == "s2"
    assert [m.text for m in client.messages] == [WELCOME]
    await client.close()


def test_sync_wrapper():
    server = FakeServer()
    settings = Settings(base_url=BASE, restart_delay_s=0, session_limit=None)
    client = Careena(
        settings=settings,
        store=RedundantKeyValueStore(MemoryStore(), MemoryStore(), MemoryStore()),
        transport=httpx.MockTransport(server),
    )
    client.login_doctor("CLINIC1", "secret")
    assert client.start() == SessionState.ACTIVE
    reply = client.send("Braces")
    assert reply.text.startswith("Noted: Braces")
    assert client.logout() == SessionState.LOGGED_OUT
    client.close()
