"""
Auth module.

Patient login is a two-step phone OTP flow; doctor/staff accounts log in
with a doctor code and password. Successful logins set the bearer token
on the shared HTTP client.
"""

import re
from typing import Any, Optional

from careena.transport.http import HttpClient
from careena.errors import AuthError, CareenaError


def normalize_phone(phone_number: str) -> str:
    return re.sub(r"\D", "", phone_number or "")


class Auth:
    def __init__(self, http: HttpClient):
        self._http = http

    async def send_otp(self, phone_number: str) -> dict[str, Any]:
        """Step 1: send an OTP to the patient's phone."""
        try:
            return await self._http.post(
                "/login/send-otp/", {"phone_number": normalize_phone(phone_number)}, authenticated=False,
            )
        except CareenaError as e:
            raise AuthError(f"Failed to send OTP: {e}")

    async def verify_otp(
        self,
        phone_number: str,
        otp: str,
        doctor_id: Optional[str] = None,
        doctor_name: Optional[str] = None,
    ) -> dict[str, Any]:
        """Step 2: verify the OTP and receive an access token."""
        body: dict[str, Any] = {"phone_number": normalize_phone(phone_number), "otp": otp.strip()}
        if doctor_id:
            body["doctorId"] = doctor_id
        if doctor_name:
            body["doctorName"] = doctor_name
        try:
            result = await self._http.post("/login/verify-otp/", body, authenticated=False)
        except CareenaError as e:
            raise AuthError(f"Failed to verify OTP: {e}")
        if not result.get("token"):
            raise AuthError(result.get("message") or "OTP verification returned no token")
        self._http.set_token(result["token"])
        return result

    async def doctor_staff_login(self, doctor_code: str, password: str) -> dict[str, Any]:
        """Doctor/staff login. Also used for unattended machine-account re-auth."""
        try:
            result = await self._http.post(
                "/login/doctor-staff/",
                {"doctor_code": doctor_code.strip(), "password": password},
                authenticated=False,
            )
        except CareenaError as e:
            raise AuthError(f"Doctor login failed: {e}")
        if not result.get("token"):
            raise AuthError(result.get("message") or "Doctor login returned no token")
        self._http.set_token(result["token"])
        return result
