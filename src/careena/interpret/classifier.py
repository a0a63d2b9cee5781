"""
Intent classification for chat messages.

An ordered table of (predicate, builder) pairs; the first predicate that
matches decides the result. Anything unmatched, and every user message,
is plain text.
"""

import logging
from typing import Any, Callable, Optional

from careena.interpret import patterns
from careena.interpret.payment_steps import parse_payment_steps_detailed
from careena.interpret.questions import parse_question
from careena.models.classification import (
    AadhaarUploadRequest,
    AddressDetailsRequest,
    BankStatementRequest,
    ClassificationResult,
    NoCostEmi,
    PanUploadRequest,
    PaymentSteps,
    PlainText,
    PostApprovalLink,
    TreatmentQuestion,
)
from careena.models.message import Message

logger = logging.getLogger(__name__)

Builder = Callable[[str], Optional[ClassificationResult]]


def _payment_steps(text: str) -> Optional[ClassificationResult]:
    parsed = parse_payment_steps_detailed(text)
    if not parsed.steps:
        return None
    return PaymentSteps(steps=parsed.steps, aadhaar_url=parsed.aadhaar_url)


def _post_approval(text: str) -> ClassificationResult:
    urls = patterns.extract_urls(text)
    return PostApprovalLink(url=urls[0] if urls else None)


RULES: tuple[tuple[Callable[[str, str], bool], Builder], ...] = (
    (patterns.is_payment_steps, _payment_steps),
    (patterns.is_post_approval_link, _post_approval),
    (patterns.is_no_cost_emi, lambda _t: NoCostEmi()),
    (patterns.is_address_details_request, lambda _t: AddressDetailsRequest()),
    (patterns.is_bank_statement_request, lambda _t: BankStatementRequest()),
    (patterns.is_aadhaar_upload_request, lambda _t: AadhaarUploadRequest()),
    (patterns.is_pan_upload_request, lambda _t: PanUploadRequest()),
    (patterns.is_treatment_question, lambda _t: TreatmentQuestion()),
    (lambda _t, sender: sender == "agent", parse_question),
)


def plain_text(text: str) -> PlainText:
    return PlainText(amounts=patterns.find_amounts(text), urls=patterns.extract_urls(text))


def classify_text(text: Any, sender: str = "agent") -> ClassificationResult:
    """Classify raw text. Total and deterministic: unexpected input yields PlainText."""
    if not isinstance(text, str):
        return PlainText()
    try:
        for predicate, build in RULES:
            if not predicate(text, sender):
                continue
            result = build(text)
            if result is not None:
                return result
        return plain_text(text)
    except Exception as e:
        logger.warning(f"Classification failed, rendering as plain text: {e}")
        return PlainText()


def classify(message: Message) -> ClassificationResult:
    return classify_text(message.text, message.sender)
