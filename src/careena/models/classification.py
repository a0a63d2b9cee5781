"""
Classification results for agent messages.

`ClassificationResult` is a discriminated union on `kind`; exactly one
variant describes any message.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class _Result(BaseModel):
    model_config = {"frozen": True}


class PaymentStep(_Result):
    title: str
    description: str
    url: str
    primary_button_text: str
    secondary_button_text: str


class PlainText(_Result):
    kind: Literal["plain_text"] = "plain_text"
    amounts: list[str] = Field(default_factory=list)
    urls: list[str] = Field(default_factory=list)


class QuestionWithOptions(_Result):
    kind: Literal["question_with_options"] = "question_with_options"
    question: str
    options: list[str]
    option_numbers: Optional[list[str]] = None

    def reply_for(self, index: int) -> str:
        """Text to send back when option `index` is picked."""
        if self.option_numbers and index < len(self.option_numbers):
            return self.option_numbers[index]
        return self.options[index]


class TreatmentQuestion(_Result):
    kind: Literal["treatment_question"] = "treatment_question"


class AadhaarUploadRequest(_Result):
    kind: Literal["aadhaar_upload_request"] = "aadhaar_upload_request"


class PanUploadRequest(_Result):
    kind: Literal["pan_upload_request"] = "pan_upload_request"


class BankStatementRequest(_Result):
    kind: Literal["bank_statement_request"] = "bank_statement_request"


class PostApprovalLink(_Result):
    kind: Literal["post_approval_link"] = "post_approval_link"
    url: Optional[str] = None


class NoCostEmi(_Result):
    kind: Literal["no_cost_emi"] = "no_cost_emi"


class AddressDetailsRequest(_Result):
    kind: Literal["address_details_request"] = "address_details_request"


class PaymentSteps(_Result):
    kind: Literal["payment_steps"] = "payment_steps"
    steps: list[PaymentStep]
    aadhaar_url: Optional[str] = None


ClassificationResult = Annotated[
    Union[
        PlainText,
        QuestionWithOptions,
        TreatmentQuestion,
        AadhaarUploadRequest,
        PanUploadRequest,
        BankStatementRequest,
        PostApprovalLink,
        NoCostEmi,
        AddressDetailsRequest,
        PaymentSteps,
    ],
    Field(discriminator="kind"),
]

classification_adapter: TypeAdapter[ClassificationResult] = TypeAdapter(ClassificationResult)
