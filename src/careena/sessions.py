"""
Sessions REST API: session CRUD, messaging, short links and uploads.
"""

from __future__ import annotations

from typing import Any

from careena.models.session import SessionDetails
from careena.models.uploads import AadhaarOcr, PanOcr, Treatment, parse_treatments
from careena.transport.http import HttpClient


def _ocr_body(result: Any) -> dict[str, Any]:
    if not isinstance(result, dict):
        return {}
    data = result.get("data")
    if isinstance(data, dict):
        return {"status": result.get("status"), **data}
    return result


class SessionsAPI:
    def __init__(self, http: HttpClient):
        self._http = http

    async def create(self) -> dict[str, Any]:
        """Create session -> {status, session_id}"""
        return await self._http.post("/session/")

    async def send_message(self, session_id: str, text: str) -> dict[str, Any]:
        """Send a user message -> {status, session_id, response}"""
        return await self._http.post("/message/", {"session_id": session_id, "message": text.strip()})

    async def get_raw(self, session_id: str) -> dict[str, Any]:
        return await self._http.get(f"/session-details/{session_id}/")

    async def get(self, session_id: str) -> SessionDetails:
        """Session details including the backend transcript."""
        return SessionDetails.model_validate(await self.get_raw(session_id))

    async def resolve_short_link(self, code: str) -> dict[str, Any]:
        """Resolve a short-link code -> {status, long_url}"""
        return await self._http.get(f"/short-link/{code}/")

    async def search_treatments(self, query: str) -> list[Treatment]:
        return parse_treatments(await self._http.get("/treatments/search/", params={"q": query}))

    async def upload_aadhaar(self, session_id: str, file_path: str, side: str = "front") -> AadhaarOcr:
        """Upload one side of an Aadhaar card; returns the OCR fields."""
        result = await self._http.upload(
            "/upload/aadhaar/", file_path, fields={"session_id": session_id, "side": side},
        )
        return AadhaarOcr.model_validate(_ocr_body(result))

    async def upload_pan(self, session_id: str, file_path: str) -> PanOcr:
        result = await self._http.upload("/upload/pan/", file_path, fields={"session_id": session_id})
        return PanOcr.model_validate(_ocr_body(result))

    async def upload_document(self, session_id: str, file_path: str) -> dict[str, Any]:
        """Generic document upload (bank statements, prescriptions)."""
        return await self._http.upload("/upload/document/", file_path, fields={"session_id": session_id})
