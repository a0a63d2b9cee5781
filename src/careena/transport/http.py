"""
REST HTTP client for the loan bot backend.

Maps HTTP failures onto Careena errors. A 401, or any error body saying
the session/token has expired, raises AuthExpiredError after calling the
`on_auth_expired` hook so logout is handled in one place.
"""

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import httpx

from careena.config import DEFAULT_BASE_URL
from careena.errors import AuthExpiredError, CareenaError, ConnectionError, is_auth_expired

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 120.0

_STATUS_MESSAGES = {
    404: "Service not found. Please check the API endpoint.",
    429: "Too many requests. Please wait before trying again.",
}


class HttpClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_S,
        on_auth_expired: Optional[Callable[[], None]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self.on_auth_expired = on_auth_expired
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"User-Agent": "careena-client/0.1.0", "Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @property
    def token(self) -> Optional[str]:
        return self._token

    def set_token(self, token: Optional[str]) -> None:
        self._token = token

    def _auth_headers(self, authenticated: bool) -> dict[str, str]:
        headers: dict[str, str] = {}
        if authenticated and self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    @staticmethod
    def _body(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _auth_expired(self, message: Optional[str] = None) -> AuthExpiredError:
        logger.info("Auth token rejected by backend")
        if self.on_auth_expired:
            self.on_auth_expired()
        return AuthExpiredError(message) if message else AuthExpiredError()

    def _raise_for_status(self, resp: httpx.Response) -> None:
        if resp.status_code < 400:
            return
        body = self._body(resp)
        message = body.get("error") or body.get("message") or body.get("detail")
        if resp.status_code == 401:
            raise self._auth_expired()
        if message and is_auth_expired(Exception(str(message))):
            raise self._auth_expired(str(message))
        if resp.status_code == 400:
            raise CareenaError("bad_request", str(message or "Invalid request parameters"), body or None)
        if resp.status_code in _STATUS_MESSAGES:
            raise ConnectionError(_STATUS_MESSAGES[resp.status_code], code=f"http_{resp.status_code}")
        if resp.status_code >= 500:
            raise ConnectionError(str(message or "Internal server error"), code=f"http_{resp.status_code}")
        raise CareenaError("http_error", str(message or f"HTTP {resp.status_code}: {resp.text[:200]}"), body or None)

    async def _request(self, method: str, path: str, authenticated: bool = True, **kwargs: Any) -> Any:
        headers = {**self._auth_headers(authenticated), **kwargs.pop("headers", {})}
        try:
            resp = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Request timed out: {e}", code="timeout")
        except httpx.TransportError as e:
            raise ConnectionError(f"No response from server. Please try again later. ({e})")
        self._raise_for_status(resp)
        try:
            return resp.json()
        except ValueError:
            return {}

    async def get(self, path: str, params: Optional[dict[str, str]] = None, authenticated: bool = True) -> Any:
        return await self._request("GET", path, authenticated, params=params)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None, authenticated: bool = True) -> Any:
        return await self._request("POST", path, authenticated, json=body)

    async def upload(self, path: str, file_path: str, fields: Optional[dict[str, str]] = None, field_name: str = "file") -> Any:
        """Multipart upload of a single file."""
        p = Path(file_path)
        with p.open("rb") as fh:
            files = {field_name: (p.name, fh.read())}
        return await self._request("POST", path, True, files=files, data=fields or {})

    async def close(self) -> None:
        await self._client.aclose()
