"""Session lifecycle state machine against in-memory storage and backend."""

from datetime import timedelta

import pytest

from careena.errors import AuthExpiredError, ConnectionError, SessionError
from careena.models.message import Message
from careena.models.session import SessionRecord
from careena.selection import SelectionTracker
from careena.session_machine import (
    CURRENT_SESSION_KEY,
    FRESH_LOGIN_KEY,
    TOKEN_KEY,
    Identity,
    SessionMachine,
    SessionState,
    session_key,
)

DOCTOR = Identity("doctor", "D1")


def make_machine(store, backend, clock, **kwargs) -> SessionMachine:
    return SessionMachine(store, backend, tracker=SelectionTracker(store), clock=clock, **kwargs)


def seed_doctor(store, token="tok"):
    store.set("accountType", "doctor")
    store.set("doctorId", "D1")
    store.primary.set(TOKEN_KEY, token)


@pytest.mark.asyncio
async def test_fresh_login_always_creates(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1", doctor_name="Dr_Mehta")
    store.primary.set(CURRENT_SESSION_KEY, "old-session")
    backend.sessions["old-session"] = {"status": "success", "history": []}

    state = await machine.load()

    assert state == SessionState.ACTIVE
    assert machine.session_id == "new-1"
    assert SessionState.RESTORING not in machine.transitions
    assert backend.get_calls == []
    assert store.primary.get(FRESH_LOGIN_KEY) is None
    assert machine.session_count == 1
    assert len(machine.transcript) == 0


@pytest.mark.asyncio
async def test_restore_rehydrates_transcript(store, backend, clock):
    first = make_machine(store, backend, clock)
    first.login("tok", doctor_id="D1")
    await first.load()
    backend.sessions["new-1"]["history"] = [
        {"type": "HumanMessage", "content": "I need a loan for braces"},
        {"type": "AIMessage", "content": "Sure! What is the treatment cost?"},
    ]

    second = make_machine(store, backend, clock)
    state = await second.load()

    assert state == SessionState.ACTIVE
    assert second.transitions == [SessionState.RESTORING, SessionState.ACTIVE]
    assert second.session_id == "new-1"
    assert [(m.id, m.sender) for m in second.transcript] == [("history-0", "user"), ("history-1", "agent")]
    assert backend.created == 1
    assert second.history().get("new-1").title == "I need a loan for braces"


@pytest.mark.asyncio
async def test_expired_record_is_never_restored(store, backend, clock):
    seed_doctor(store)
    expired = SessionRecord(session_id="old", expires_at=clock() - timedelta(days=1))
    store.primary.set(session_key(DOCTOR), expired.to_storage())
    backend.sessions["old"] = {"status": "success", "history": [{"type": "AIMessage", "content": "hi"}]}

    machine = make_machine(store, backend, clock)
    await machine.restore()

    assert machine.transitions[:2] == [SessionState.RESTORING, SessionState.CREATING]
    assert "old" not in backend.get_calls
    assert machine.session_id == "new-1"


@pytest.mark.asyncio
async def test_restore_missing_backend_session_creates(store, backend, clock):
    seed_doctor(store)
    store.primary.set(session_key(DOCTOR), SessionRecord.issue("gone", clock(), 30).to_storage())

    machine = make_machine(store, backend, clock)
    await machine.restore()

    assert backend.get_calls == ["gone"]
    assert SessionState.CREATING in machine.transitions
    assert machine.session_id == "new-1"


@pytest.mark.asyncio
async def test_restore_network_failure_creates(store, backend, clock):
    seed_doctor(store)
    store.primary.set(CURRENT_SESSION_KEY, "s1")
    backend.get_error = ConnectionError("No response from server. Please try again later.")

    machine = make_machine(store, backend, clock)
    await machine.restore()
    assert backend.get_calls == ["s1"]
    assert machine.state == SessionState.ACTIVE
    assert machine.session_id == "new-1"


@pytest.mark.asyncio
async def test_restore_falls_back_to_current_then_history(store, backend, clock):
    seed_doctor(store)
    backend.sessions["from-history"] = {"status": "success", "history": []}
    machine = make_machine(store, backend, clock)
    machine.history().record_message("from-history", "hello", True)

    await machine.restore()

    assert machine.session_id == "from-history"
    assert store.primary.get(CURRENT_SESSION_KEY) == "from-history"
    assert SessionRecord.from_storage(store.primary.get(session_key(DOCTOR))).session_id == "from-history"


@pytest.mark.asyncio
async def test_auth_expired_during_restore_logs_out(store, backend, clock):
    seed_doctor(store)
    store.primary.set(CURRENT_SESSION_KEY, "s1")
    backend.get_error = AuthExpiredError()

    machine = make_machine(store, backend, clock)
    state = await machine.restore()

    assert state == SessionState.LOGGED_OUT
    assert machine.token is None
    assert machine.identity() == Identity("doctor", "D1", None)


@pytest.mark.asyncio
async def test_create_failure_raises(store, backend, clock):
    seed_doctor(store)
    backend.create_response = {"status": "error", "message": "quota"}
    machine = make_machine(store, backend, clock)
    with pytest.raises(SessionError):
        await machine.create()
    assert machine.state == SessionState.EXPIRED
    assert machine.session_id is None

    backend.create_response = None
    assert await machine.create() == SessionState.ACTIVE
    assert machine.session_id == "new-1"


@pytest.mark.asyncio
async def test_new_inquiry_needs_confirmation_after_user_message(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1")
    await machine.load()
    machine.transcript.append(Message(id="u1", text="hi", sender="user"))

    assert not await machine.new_inquiry()
    assert not await machine.new_inquiry(lambda: False)
    assert machine.session_id == "new-1"

    async def agree():
        return True

    assert await machine.new_inquiry(agree)
    assert machine.session_id == "new-2"
    assert len(machine.transcript) == 0


@pytest.mark.asyncio
async def test_new_inquiry_without_user_messages_skips_confirmation(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1")
    await machine.load()

    def refuse():
        raise AssertionError("should not ask")

    assert await machine.new_inquiry(refuse)
    assert machine.session_id == "new-2"


@pytest.mark.asyncio
async def test_new_inquiry_purges_selection_state(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1")
    await machine.load()
    machine.tracker.choose("history-1", "1")
    machine.tracker.choose_treatment("history-2", "Braces")

    await machine.new_inquiry(lambda: True)

    assert not machine.tracker.is_locked("history-1")
    assert machine.tracker.treatment_for("history-2") is None
    assert not [k for k in store.keys() if k.startswith(("selected_", "disabled_"))]


@pytest.mark.asyncio
async def test_restore_keeps_selections_of_same_session(store, backend, clock):
    first = make_machine(store, backend, clock)
    first.login("tok", doctor_id="D1")
    await first.load()
    first.tracker.choose("history-1", "2")

    second = make_machine(store, backend, clock)
    await second.load()
    assert second.tracker.selection_for("history-1") == "2"


@pytest.mark.asyncio
async def test_logout_keeps_doctor_identity(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1", doctor_name="Dr_Mehta")
    await machine.load()

    assert machine.logout() == SessionState.LOGGED_OUT
    assert machine.token is None
    assert machine.session_id is None
    assert machine.identity() == Identity("doctor", "D1", "Dr_Mehta")
    assert store.get(session_key(DOCTOR)) is None
    assert store.get(CURRENT_SESSION_KEY) is None


@pytest.mark.asyncio
async def test_logout_purges_patient_identity(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", phone_number="+91 98765 43210")
    assert machine.identity() == Identity("patient", "919876543210")
    await machine.load()

    machine.logout()
    assert machine.identity() is None
    assert not store.has("phoneNumber")


def test_different_patient_drops_doctor_identity(store, backend, clock):
    machine = make_machine(store, backend, clock)
    store.set("doctorId", "D1")
    store.set("phoneNumber", "9000000001")
    machine.login("tok", phone_number="9000000002")
    assert not store.has("doctorId")
    assert machine.identity() == Identity("patient", "9000000002")


def test_same_patient_keeps_doctor_identity(store, backend, clock):
    machine = make_machine(store, backend, clock)
    store.set("doctorId", "D1")
    store.set("phoneNumber", "9000000001")
    machine.login("tok", phone_number="9000000001")
    assert store.get("doctorId") == "D1"
    assert machine.identity().kind == "patient"


def test_identity_survives_primary_slot_loss(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1")
    store.primary.remove("doctorId")
    store.primary.remove("accountType")
    assert machine.identity() == Identity("doctor", "D1", None)
    assert store.primary.get("doctorId") == "D1"


@pytest.mark.asyncio
async def test_session_limit_forces_logout(store, backend, clock):
    machine = make_machine(store, backend, clock, session_limit=2)
    machine.login("tok", doctor_id="D1")
    assert await machine.load() == SessionState.ACTIVE
    await machine.new_inquiry(lambda: True)
    assert machine.state == SessionState.LOGGED_OUT
    assert machine.token is None


@pytest.mark.asyncio
async def test_expire_keeps_identity(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1")
    await machine.load()
    assert machine.expire() == SessionState.EXPIRED
    assert machine.session_id is None
    assert machine.token == "tok"
    assert store.get(session_key(DOCTOR)) is None


@pytest.mark.asyncio
async def test_refresh_replaces_transcript(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1")
    await machine.load()
    backend.sessions["new-1"] = {
        "status": "success",
        "userId": "u-9",
        "history": [{"type": "AIMessage", "content": "Welcome to CarePay"}],
    }
    details = await machine.refresh()
    assert details.user_id == "u-9"
    assert [m.text for m in machine.transcript] == ["Welcome to CarePay"]
    assert store.primary.get("userId") == "u-9"


@pytest.mark.asyncio
async def test_intake_form_hidden_after_patient_info(store, backend, clock):
    machine = make_machine(store, backend, clock)
    machine.login("tok", doctor_id="D1")
    await machine.load()
    assert machine.show_intake_form
    machine.transcript.append(Message(
        id="u1",
        text="name: Asha phone number: 9876543210 treatment cost: 50000 monthly income: 30000",
        sender="user",
    ))
    assert not machine.show_intake_form


@pytest.mark.asyncio
async def test_listeners_see_transitions(store, backend, clock):
    machine = make_machine(store, backend, clock)
    seen = []
    remove = machine.add_listener(seen.append)
    machine.login("tok", doctor_id="D1")
    await machine.load()
    remove()
    machine.logout()
    assert seen == [SessionState.UNINITIALIZED, SessionState.CREATING, SessionState.ACTIVE]
