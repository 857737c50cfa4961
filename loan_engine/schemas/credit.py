# loan_engine/schemas/credit.py

from datetime import datetime, date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from loan_engine.schemas.application import MAX_BUREAU_SCORE, MIN_BUREAU_SCORE


class AccountRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    account_type: str
    balance: float = Field(..., ge=0)
    status: str = "Active"
    opened_on: Optional[date] = None


class InquiryRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    inquirer: str
    inquired_on: date


class BureauResponse(BaseModel):
    """Report returned by a single credit bureau."""
    model_config = ConfigDict(frozen=True)

    bureau: str = Field(..., description="Bureau identifier, e.g. CIBIL")
    score: int = Field(..., ge=MIN_BUREAU_SCORE, le=MAX_BUREAU_SCORE)
    report_date: datetime
    accounts: List[AccountRecord] = Field(default_factory=list)
    inquiries: List[InquiryRecord] = Field(default_factory=list)


class CreditHistory(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_accounts: int
    recent_inquiries: int
    accounts: List[AccountRecord] = Field(default_factory=list)
    oldest_account: Optional[AccountRecord] = None


class CreditAssessment(BaseModel):
    """
    Composite result of querying every configured bureau for one customer.
    A re-assessment always produces a new instance.
    """
    model_config = ConfigDict(frozen=True)

    customer_id: Optional[str] = None
    success: bool
    credit_score: Optional[int] = None
    credit_history: Optional[CreditHistory] = None
    bureau_responses: Optional[List[BureauResponse]] = None
    unavailable_bureaus: List[str] = Field(default_factory=list)
    assessment_date: datetime = Field(default_factory=datetime.now)
    error: Optional[str] = None
