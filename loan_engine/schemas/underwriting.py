# loan_engine/schemas/underwriting.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class RuleResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    rule_name: str
    passed: bool
    reason: str
    value: Optional[float] = None
    threshold: Optional[float] = None


class LoanTerms(BaseModel):
    model_config = ConfigDict(frozen=True)

    term_months: int
    monthly_payment: float
    total_payment: float
    total_interest: float


class UnderwritingThresholds(BaseModel):
    min_credit_score: int = 650
    max_loan_amount: float = 1_000_000
    max_debt_to_income_ratio: float = 0.43
    max_income_multiplier: float = Field(
        default=3.0,
        description="Ceiling on requested amount / annual income",
    )
    term_months: int = 60

    @classmethod
    def from_settings(cls, settings) -> "UnderwritingThresholds":
        return cls(
            min_credit_score=settings.MIN_CREDIT_SCORE,
            max_loan_amount=settings.MAX_LOAN_AMOUNT,
            max_debt_to_income_ratio=settings.MAX_DEBT_TO_INCOME_RATIO,
            max_income_multiplier=settings.MAX_INCOME_MULTIPLIER,
            term_months=settings.LOAN_TERM_MONTHS,
        )


class UnderwritingDecision(BaseModel):
    """Schema for the final approve/reject outcome of one application"""
    model_config = ConfigDict(frozen=True)

    approved: bool
    approved_amount: Optional[float] = None
    interest_rate: Optional[float] = Field(default=None, description="Annual rate in percent")
    terms: Optional[LoanTerms] = None
    reason: str
    decision_date: datetime = Field(default_factory=datetime.now)
    rule_results: List[RuleResult] = Field(default_factory=list)
    credit_score: Optional[int] = None
    error: Optional[str] = None
