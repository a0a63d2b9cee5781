"""
Boundary schemas for loosely shaped backend payloads: OCR results from
document uploads and treatment search results.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


class OcrPayload(BaseModel):
    """Named fields extracted from an uploaded document. Unknown fields are kept."""

    status: Optional[str] = None
    message: Optional[str] = None
    name: Optional[str] = None
    dob: Optional[str] = None
    gender: Optional[str] = None

    model_config = {"extra": "allow", "populate_by_name": True}

    @field_validator("status", mode="before")
    @classmethod
    def _status_text(cls, v: Any) -> Any:
        return str(v) if v is not None else v

    @property
    def ok(self) -> bool:
        return (self.status or "success").lower() in ("success", "ok", "200")


class AadhaarOcr(OcrPayload):
    aadhaar_number: Optional[str] = Field(default=None, alias="aadhaarNumber")
    address: Optional[str] = None
    pincode: Optional[str] = None

    @field_validator("aadhaar_number")
    @classmethod
    def _digits_only(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        digits = "".join(ch for ch in v if ch.isdigit())
        return digits or None


class PanOcr(OcrPayload):
    pan_number: Optional[str] = Field(default=None, alias="panNumber")
    father_name: Optional[str] = Field(default=None, alias="fatherName")

    @field_validator("pan_number")
    @classmethod
    def _upper(cls, v: Optional[str]) -> Optional[str]:
        return v.strip().upper() if v else v


class Treatment(BaseModel):
    name: str
    id: Optional[str] = None
    category: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Any:
        return str(v) if v is not None else v


def parse_treatments(payload: Any) -> list[Treatment]:
    """Accept a bare list, {"data": [...]} or {"results": [...]}; drop entries without a name."""
    if isinstance(payload, dict):
        payload = payload.get("data", payload.get("results", []))
    if not isinstance(payload, list):
        return []
    results: list[Treatment] = []
    for item in payload:
        if isinstance(item, str):
            item = {"name": item}
        if not isinstance(item, dict):
            continue
        name = item.get("name") or item.get("treatment_name") or item.get("treatmentName")
        if not name:
            continue
        results.append(Treatment.model_validate({**item, "name": str(name).strip()}))
    return results
