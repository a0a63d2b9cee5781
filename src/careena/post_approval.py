"""
Post-approval status and loan progress.

Progress bar steps: 1 Eligibility, 2 Select Plan, 3 KYC, 4 Autopay Setup,
5 Authorize.
"""

import logging
from typing import Any, Optional

from pydantic import BaseModel

from careena.errors import CareenaError
from careena.transport.http import HttpClient

logger = logging.getLogger(__name__)

STEP_ELIGIBILITY = 1
STEP_SELECT_PLAN = 2
STEP_KYC = 3
STEP_AUTOPAY = 4
STEP_AUTHORIZE = 5

REQUIREMENT_NAMES = {
    "selfie": "Selfie Verification",
    "agreement_setup": "Agreement Setup",
    "auto_pay": "Auto Pay Setup",
    "aadhaar_verified": "Aadhaar Verification",
}


class PostApprovalStatus(BaseModel):
    selfie: bool = False
    agreement_setup: bool = False
    auto_pay: bool = False
    aadhaar_verified: bool = False

    @property
    def complete(self) -> bool:
        return all(getattr(self, f) for f in REQUIREMENT_NAMES)

    @property
    def completion_percentage(self) -> int:
        done = sum(1 for f in REQUIREMENT_NAMES if getattr(self, f))
        return round(done * 100 / len(REQUIREMENT_NAMES))

    def pending(self) -> list[str]:
        return [label for f, label in REQUIREMENT_NAMES.items() if not getattr(self, f)]

    def completed(self) -> list[str]:
        return [label for f, label in REQUIREMENT_NAMES.items() if getattr(self, f)]


class StepCompletion(BaseModel):
    eligibility: bool = True
    select_plan: bool = False
    kyc: bool = False
    autopay_setup: bool = False
    authorize: bool = False


class PostApprovalAPI:
    def __init__(self, http: HttpClient):
        self._http = http

    async def status(self, loan_id: str) -> Optional[PostApprovalStatus]:
        """Post-approval flags for a loan, or None when unavailable."""
        try:
            result = await self._http.get("/getPostApprovalStatus", params={"loanId": loan_id}, authenticated=False)
        except CareenaError as e:
            logger.warning(f"Post-approval status unavailable for loan {loan_id}: {e}")
            return None
        if not isinstance(result, dict) or str(result.get("status")) != "200" or not result.get("data"):
            return None
        return PostApprovalStatus.model_validate(result["data"])


def step_from_user_statuses(statuses: list[str]) -> int:
    normalized = [s.lower().strip() for s in statuses or []]

    def seen(*needles: str) -> bool:
        return any(any(n in s for n in needles) for s in normalized)

    if not normalized:
        return STEP_ELIGIBILITY
    if seen("kyc complete"):
        return STEP_KYC
    if seen("plan selected"):
        return STEP_SELECT_PLAN
    if seen("agreement"):
        return STEP_AUTHORIZE
    if seen("emi auto-pay setup complete", "autopay setup complete", "auto pay setup complete"):
        return STEP_AUTOPAY
    if any("kyc" in s and ("progress" in s or "required" in s) for s in normalized):
        return STEP_SELECT_PLAN
    return STEP_ELIGIBILITY


def step_from_post_approval(status: Optional[PostApprovalStatus]) -> int:
    if status is None:
        return STEP_ELIGIBILITY
    if status.complete or status.agreement_setup:
        return STEP_AUTHORIZE
    if status.auto_pay:
        return STEP_AUTOPAY
    if status.selfie:
        return STEP_KYC
    return STEP_SELECT_PLAN


def step_completion(status: Optional[PostApprovalStatus], user_statuses: Optional[list[str]] = None) -> StepCompletion:
    if status is None:
        return StepCompletion()
    plan_selected = any("plan selected" in s.lower() for s in user_statuses or [])
    return StepCompletion(
        select_plan=plan_selected,
        kyc=status.selfie,
        autopay_setup=status.auto_pay,
        authorize=status.agreement_setup,
    )


def current_step(status: Optional[PostApprovalStatus], user_statuses: Optional[list[str]] = None) -> int:
    """Prefer post-approval flags; fall back to free-text loan statuses."""
    if status is not None:
        return step_from_post_approval(status)
    return step_from_user_statuses(user_statuses or [])


def progress(status: Optional[PostApprovalStatus], user_statuses: Optional[list[str]] = None) -> dict[str, Any]:
    return {
        "current_step": current_step(status, user_statuses),
        "completion": step_completion(status, user_statuses).model_dump(),
        "percentage": status.completion_percentage if status else 0,
    }
