# loan_engine/schemas/application.py

import math
from datetime import datetime, date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from loan_engine.core.errors import CreditScoreAlreadySetError, InputValidationError
from loan_engine.schemas.underwriting import UnderwritingDecision

MIN_BUREAU_SCORE = 300
MAX_BUREAU_SCORE = 850


class LoanType(str, Enum):
    PERSONAL = "PERSONAL"
    HOME = "HOME"
    AUTO = "AUTO"
    BUSINESS = "BUSINESS"
    EDUCATION = "EDUCATION"


class DocumentType(str, Enum):
    PASSPORT = "PASSPORT"
    DRIVERS_LICENSE = "DRIVERS_LICENSE"
    NATIONAL_ID = "NATIONAL_ID"
    AADHAAR = "AADHAAR"
    PAN = "PAN"
    BANK_STATEMENT = "BANK_STATEMENT"
    INCOME_PROOF = "INCOME_PROOF"


class ApplicationStatus(str, Enum):
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    DECIDED = "decided"
    ASSIGNED = "assigned"


class SubmittedDocument(BaseModel):
    """A document already validated and type-tagged upstream."""
    document_type: DocumentType
    extraction_ref: str = Field(..., description="Reference to the extraction record")
    extracted_fields: Dict[str, Any] = Field(default_factory=dict)


class PersonalInfo(BaseModel):
    first_name: str
    last_name: str
    date_of_birth: Optional[date] = None
    national_id: Optional[str] = None
    address: Optional[str] = None


class CustomerInfo(BaseModel):
    """Identity data sent to the credit bureaus."""
    personal_info: Optional[PersonalInfo] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class IncomeVerification(BaseModel):
    monthly_income: Optional[float] = None
    annual_income: Optional[float] = None
    monthly_debts: Optional[float] = None

    @classmethod
    def from_documents(cls, documents: List[SubmittedDocument]) -> "IncomeVerification":
        """
        Derive income figures from the extracted fields of validated documents.

        INCOME_PROOF supplies monthly or annual income (the other is derived),
        BANK_STATEMENT supplies existing monthly debts. A value that does not
        parse as a positive number is treated as absent, so the rules that
        need it are skipped.
        """
        verification = cls()

        for doc in documents:
            fields = doc.extracted_fields
            if doc.document_type == DocumentType.INCOME_PROOF:
                monthly = parse_amount(fields.get("monthlyIncome"))
                annual = parse_amount(fields.get("annualIncome"))
                if monthly:
                    verification.monthly_income = monthly
                    verification.annual_income = monthly * 12
                elif annual:
                    verification.annual_income = annual
                    verification.monthly_income = annual / 12

            if doc.document_type == DocumentType.BANK_STATEMENT:
                debts = parse_amount(fields.get("monthlyDebts"))
                if debts:
                    verification.monthly_debts = debts

        return verification


def parse_amount(value: Any) -> Optional[float]:
    """Extracted figures arrive as numbers or free text; anything non-numeric is None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount) or amount <= 0:
        return None
    return amount


class LoanApplication(BaseModel):
    application_id: str
    customer_id: str
    loan_type: LoanType
    requested_amount: float = Field(..., gt=0)
    currency: str = "USD"
    purpose: Optional[str] = None
    documents: List[SubmittedDocument] = Field(default_factory=list)
    credit_score: Optional[int] = None
    status: ApplicationStatus = ApplicationStatus.SUBMITTED
    assigned_officer: Optional[str] = None
    decision: Optional[UnderwritingDecision] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    def add_document(self, document: SubmittedDocument) -> SubmittedDocument:
        self.documents.append(document)
        self.updated_at = datetime.now()
        return document

    def set_credit_score(self, score: int) -> None:
        """Record the composite score. Allowed exactly once."""
        if self.credit_score is not None:
            raise CreditScoreAlreadySetError(
                f"Credit score already recorded for application {self.application_id}"
            )
        if score < MIN_BUREAU_SCORE or score > MAX_BUREAU_SCORE:
            raise InputValidationError(
                f"Credit score must be between {MIN_BUREAU_SCORE} and {MAX_BUREAU_SCORE}",
                details={"score": score},
                stage="credit_assessment",
            )
        self.credit_score = score
        self.updated_at = datetime.now()

    def mark_under_review(self) -> None:
        self.status = ApplicationStatus.UNDER_REVIEW
        self.updated_at = datetime.now()

    def record_decision(self, decision: UnderwritingDecision) -> None:
        self.decision = decision
        self.status = ApplicationStatus.DECIDED
        self.updated_at = datetime.now()

    def mark_assigned(self, officer_id: str) -> None:
        """
        Officer review has started. ASSIGNED is the post-decision form of
        "under review": the officer now holding the file is recorded.
        """
        self.assigned_officer = officer_id
        self.status = ApplicationStatus.ASSIGNED
        self.updated_at = datetime.now()
