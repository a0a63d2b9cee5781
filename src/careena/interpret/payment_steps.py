"""
Payment-step extraction.

Two templates exist: the 4-step one (Aadhaar, Face, Auto-pay, Agreement)
and the 3-step one without Aadhaar, whose cards come in the order Face,
Agreement, Auto-pay. Each step takes the first URL carrying one of its
keywords, else the URL at its ordinal position. A step with neither is
dropped.
"""

import logging
from typing import NamedTuple, Optional

from careena.interpret.patterns import extract_urls, is_four_step_payment
from careena.models.classification import PaymentStep

logger = logging.getLogger(__name__)

SHARE_LABEL = "Share Link"


class StepTemplate(NamedTuple):
    key: str
    title: str
    description: str
    primary_button_text: str
    keywords: tuple[str, ...]


AADHAAR = StepTemplate(
    "aadhaar",
    "Adhaar Verification",
    "Now, let's complete the first step. Verify your Adhaar to continue.",
    "Verify Adhaar",
    ("adhaar", "aadhaar"),
)
FACE = StepTemplate(
    "face",
    "Face Verification",
    "Complete a quick selfie check to confirm your identity.",
    "Start Face Verification",
    ("faceverified", "faceverification", "face-verification"),
)
AUTOPAY = StepTemplate(
    "autopay",
    "EMI Auto Payment Approval",
    "Approve auto-debit so your EMIs are paid on time.",
    "Approve EMI Auto Pay",
    ("emiautopayintro", "emiautopay", "autopay"),
)
AGREEMENT = StepTemplate(
    "agreement",
    "Agreement E-signing",
    "Review and e-sign your loan agreement.",
    "Sign Agreement",
    ("agreementesigning", "agreement", "esign"),
)

FOUR_STEP = (AADHAAR, FACE, AUTOPAY, AGREEMENT)
THREE_STEP = (FACE, AGREEMENT, AUTOPAY)


class PaymentStepsParse(NamedTuple):
    steps: list[PaymentStep]
    aadhaar_url: Optional[str]
    four_step: bool


def _keyword_url(urls: list[str], keywords: tuple[str, ...]) -> Optional[str]:
    for url in urls:
        lower = url.lower()
        if any(k in lower for k in keywords):
            return url
    return None


def parse_payment_steps_detailed(text: str) -> PaymentStepsParse:
    if not isinstance(text, str) or not text:
        return PaymentStepsParse([], None, False)
    four_step = is_four_step_payment(text)
    templates = FOUR_STEP if four_step else THREE_STEP
    urls = extract_urls(text)

    keyword_hits = {t.key: _keyword_url(urls, t.keywords) for t in templates}
    claimed = {url for url in keyword_hits.values() if url}

    steps: list[PaymentStep] = []
    for position, template in enumerate(templates):
        url = keyword_hits[template.key]
        if url is None and position < len(urls) and urls[position] not in claimed:
            url = urls[position]
        if url is None:
            logger.debug(f"Dropping payment step {template.key!r}: no URL")
            continue
        steps.append(PaymentStep(
            title=template.title,
            description=template.description,
            url=url,
            primary_button_text=template.primary_button_text,
            secondary_button_text=SHARE_LABEL,
        ))

    aadhaar_url = _keyword_url(urls, AADHAAR.keywords)
    if aadhaar_url is None and four_step and steps and steps[0].title == AADHAAR.title:
        aadhaar_url = steps[0].url
    return PaymentStepsParse(steps, aadhaar_url, four_step)


def parse_payment_steps(text: str) -> list[PaymentStep]:
    """Ordered payment steps found in `text`; never a step without a URL."""
    try:
        return parse_payment_steps_detailed(text).steps
    except Exception as e:
        logger.debug(f"Payment step parsing failed: {e}")
        return []
