"""Boundary schemas: session details, OCR payloads, treatments, transcript."""

from datetime import datetime, timedelta, timezone

from careena.models.message import Message, Transcript
from careena.models.session import SessionDetails, SessionRecord
from careena.models.uploads import AadhaarOcr, PanOcr, parse_treatments


def test_session_details_from_backend_payload():
    details = SessionDetails.model_validate({
        "status": "success",
        "phoneNumber": 9876543210,
        "userId": 17,
        "created_at": "2026-01-01T10:00:00Z",
        "history": [
            {"type": "HumanMessage", "content": "hi"},
            {"type": "AIMessage", "content": "Hello!"},
        ],
    })
    assert details.exists
    assert details.phone_number == "9876543210"
    assert details.user_id == "17"
    assert [h.content for h in details.history] == ["hi", "Hello!"]


def test_session_details_not_found():
    assert not SessionDetails(status="error").exists
    assert not SessionDetails(message="Session not found").exists
    assert SessionDetails.model_validate({"status": "success", "history": None}).history == []


def test_session_record_expiry():
    now = datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert SessionRecord(session_id="a", expires_at=now - timedelta(seconds=1)).is_expired(now)
    assert not SessionRecord.issue("a", now, 30).is_expired(now)
    assert not SessionRecord(session_id="a").is_expired(now)
    naive = SessionRecord(session_id="a", expires_at=datetime(2026, 2, 1))
    assert naive.is_expired(now)


def test_aadhaar_ocr():
    ocr = AadhaarOcr.model_validate({
        "status": 200,
        "name": "Asha Rao",
        "aadhaarNumber": "1234 5678 9012",
        "pincode": "560001",
        "fatherName": "kept as extra",
    })
    assert ocr.ok
    assert ocr.aadhaar_number == "123456789012"
    assert ocr.model_extra == {"fatherName": "kept as extra"}


def test_pan_ocr():
    ocr = PanOcr.model_validate({"status": "error", "panNumber": " abcde1234f "})
    assert not ocr.ok
    assert ocr.pan_number == "ABCDE1234F"


def test_parse_treatments_shapes():
    assert [t.name for t in parse_treatments(["Braces", "Implant"])] == ["Braces", "Implant"]
    data = parse_treatments({"data": [{"treatment_name": " Root canal ", "id": 5}, {"id": 6}]})
    assert len(data) == 1
    assert data[0].name == "Root canal"
    assert data[0].id == "5"
    assert parse_treatments({"results": [{"treatmentName": "LASIK"}]})[0].name == "LASIK"
    assert parse_treatments("nonsense") == []


def test_transcript_replace_text_keeps_position():
    transcript = Transcript()
    transcript.append(Message(id="a", text="hello", sender="agent"))
    transcript.append(Message(id="u", text="Uploading pan.jpg...", sender="user", file_name="pan.jpg"))
    updated = transcript.replace_text("u", "Uploaded pan.jpg")
    assert updated.file_name == "pan.jpg"
    assert [m.text for m in transcript] == ["hello", "Uploaded pan.jpg"]
    assert transcript.replace_text("missing", "x") is None
    assert transcript.has_user_messages()
    assert transcript.last().id == "u"
