"""
Pattern library: keyword recognizers over raw bot text.

Every recognizer takes `(text, sender)` and only fires for agent-authored
text. Matching is case-insensitive substring logic; overlaps between
recognizers are settled by the classifier's ordering.
"""

import re
from typing import Optional

URL_RE = re.compile(r"https?://[^\s<>\"'()\[\]]+", re.IGNORECASE)
AMOUNT_RE = re.compile(r"₹\s*\d+(?:,\d+)*(?:\.\d+)?")

_URL_TRAILING = ".,;:!?*_"

PATIENT_INFO_LABELS = (
    "patient's full name",
    "patient's name",
    "full name",
    "patient's phone number",
    "phone number:",
    "treatment cost",
    "monthly income",
)

PATIENT_INFO_FIELDS = ("name:", "phone number:", "treatment cost:", "monthly income:")


def _agent(sender: Optional[str]) -> bool:
    return sender == "agent"


def _has_any(text: str, needles: tuple[str, ...]) -> bool:
    return any(n in text for n in needles)


def extract_urls(text: str) -> list[str]:
    """All http(s) URLs in order of appearance, trailing punctuation removed."""
    urls = []
    for match in URL_RE.finditer(text or ""):
        url = match.group(0).rstrip(_URL_TRAILING)
        if url:
            urls.append(url)
    return urls


def find_amounts(text: str) -> list[str]:
    return AMOUNT_RE.findall(text or "")


def split_amounts(text: str) -> list[tuple[str, bool]]:
    """Split text into (segment, is_amount) pieces for highlighted rendering."""
    segments: list[tuple[str, bool]] = []
    pos = 0
    for match in AMOUNT_RE.finditer(text or ""):
        if match.start() > pos:
            segments.append((text[pos:match.start()], False))
        segments.append((match.group(0), True))
        pos = match.end()
    if pos < len(text or ""):
        segments.append((text[pos:], False))
    return segments


def mentions_patient_info_labels(text: str) -> bool:
    """Intake-form field prompts; these must never become an option menu."""
    lower = (text or "").lower().replace("\u2019", "'")
    return _has_any(lower, PATIENT_INFO_LABELS)


def is_patient_info_submission(text: str) -> bool:
    """The user's structured intake message carries all four fields."""
    lower = (text or "").lower()
    return all(field in lower for field in PATIENT_INFO_FIELDS)


def format_patient_info(name: str, phone_number: str, treatment_cost: str, monthly_income: str) -> str:
    return (
        f"name: {name.strip()} phone number: {phone_number} "
        f"treatment cost: {treatment_cost} monthly income: {monthly_income}"
    )


def is_payment_steps(text: str, sender: Optional[str] = "agent") -> bool:
    if not _agent(sender):
        return False
    lower = (text or "").lower()
    if not extract_urls(text):
        return False
    if "payment is now just" in lower and "steps away" in lower:
        return True
    return "face verification" in lower and _has_any(lower, ("e-sign", "esign", "agreement"))


def is_four_step_payment(text: str) -> bool:
    lower = (text or "").lower()
    return "payment is now just 4 steps away" in lower or "adhaar verification" in lower


def is_post_approval_link(text: str, sender: Optional[str] = "agent") -> bool:
    if not _agent(sender):
        return False
    lower = (text or "").lower()
    if not extract_urls(text):
        return False
    return _has_any(lower, ("post approval", "post-approval", "postapproval", "complete the remaining steps"))


def is_no_cost_emi(text: str, sender: Optional[str] = "agent") -> bool:
    if not _agent(sender):
        return False
    lower = (text or "").lower()
    return _has_any(lower, ("no cost emi", "no-cost emi", "no cost e.m.i"))


def is_address_details_request(text: str, sender: Optional[str] = "agent") -> bool:
    if not _agent(sender):
        return False
    lower = (text or "").lower()
    if "address details complete" in lower:
        return False
    return _has_any(lower, ("address details", "current address", "permanent address")) and _has_any(
        lower, ("provide", "share", "enter", "fill", "update", "submit")
    )


def is_bank_statement_request(text: str, sender: Optional[str] = "agent") -> bool:
    if not _agent(sender):
        return False
    lower = (text or "").lower()
    return "bank statement" in lower and _has_any(lower, ("upload", "share", "provide", "submit", "send"))


def is_aadhaar_upload_request(text: str, sender: Optional[str] = "agent") -> bool:
    if not _agent(sender):
        return False
    lower = (text or "").lower()
    return _has_any(lower, ("aadhaar", "adhaar", "aadhar")) and "upload" in lower


def is_pan_upload_request(text: str, sender: Optional[str] = "agent") -> bool:
    if not _agent(sender):
        return False
    lower = (text or "").lower()
    return re.search(r"\bpan\b", lower) is not None and "upload" in lower


def is_treatment_question(text: str, sender: Optional[str] = "agent") -> bool:
    if not _agent(sender):
        return False
    lower = (text or "").lower()
    return _has_any(lower, (
        "which treatment",
        "what treatment",
        "name of the treatment",
        "treatment name",
        "select the treatment",
        "type of treatment",
    ))
