# loan_engine/services/underwriting_rules.py

from abc import ABC, abstractmethod
from typing import List

from pydantic import BaseModel, ConfigDict

from loan_engine.schemas.application import DocumentType, IncomeVerification, LoanApplication
from loan_engine.schemas.underwriting import RuleResult, UnderwritingThresholds


class RuleInput(BaseModel):
    """Everything a rule may look at."""
    model_config = ConfigDict(frozen=True)

    application: LoanApplication
    credit_score: int
    income: IncomeVerification


class UnderwritingRule(ABC):
    """
    One business rule. A rule that is not applicable is skipped: it adds
    nothing to the result list and cannot block approval.
    """
    name: str = "Unnamed Rule"

    def is_applicable(self, data: RuleInput) -> bool:
        return True

    @abstractmethod
    def evaluate(self, data: RuleInput) -> RuleResult:
        ...


class MinimumCreditScoreRule(UnderwritingRule):
    name = "Minimum Credit Score"

    def __init__(self, min_score: int):
        self.min_score = min_score

    def evaluate(self, data: RuleInput) -> RuleResult:
        score = data.credit_score
        passed = score >= self.min_score
        return RuleResult(
            rule_name=self.name,
            passed=passed,
            reason=(
                f"Credit score {score} meets minimum requirement of {self.min_score}"
                if passed else
                f"Credit score {score} below minimum requirement of {self.min_score}"
            ),
            value=score,
            threshold=self.min_score,
        )


class MaximumLoanAmountRule(UnderwritingRule):
    name = "Maximum Loan Amount"

    def __init__(self, max_amount: float):
        self.max_amount = max_amount

    def evaluate(self, data: RuleInput) -> RuleResult:
        amount = data.application.requested_amount
        passed = amount <= self.max_amount
        return RuleResult(
            rule_name=self.name,
            passed=passed,
            reason=(
                f"Requested amount {amount:,.2f} within maximum limit of {self.max_amount:,.2f}"
                if passed else
                f"Requested amount {amount:,.2f} exceeds maximum limit of {self.max_amount:,.2f}"
            ),
            value=amount,
            threshold=self.max_amount,
        )


class DebtToIncomeRule(UnderwritingRule):
    name = "Debt-to-Income Ratio"
    # Flat 5-year estimate, independent of the term finally offered
    ESTIMATE_TERM_MONTHS = 60

    def __init__(self, max_ratio: float):
        self.max_ratio = max_ratio

    def is_applicable(self, data: RuleInput) -> bool:
        return bool(data.income.monthly_income)

    def evaluate(self, data: RuleInput) -> RuleResult:
        estimated_payment = data.application.requested_amount / self.ESTIMATE_TERM_MONTHS
        total_debts = (data.income.monthly_debts or 0) + estimated_payment
        ratio = total_debts / data.income.monthly_income
        passed = ratio <= self.max_ratio
        return RuleResult(
            rule_name=self.name,
            passed=passed,
            reason=(
                f"DTI ratio {ratio:.2f} within acceptable limit of {self.max_ratio}"
                if passed else
                f"DTI ratio {ratio:.2f} exceeds limit of {self.max_ratio}"
            ),
            value=ratio,
            threshold=self.max_ratio,
        )


class IncomeMultiplierRule(UnderwritingRule):
    name = "Income Multiplier"

    def __init__(self, max_multiplier: float):
        self.max_multiplier = max_multiplier

    def is_applicable(self, data: RuleInput) -> bool:
        return bool(data.income.annual_income)

    def evaluate(self, data: RuleInput) -> RuleResult:
        multiplier = data.application.requested_amount / data.income.annual_income
        passed = multiplier <= self.max_multiplier
        return RuleResult(
            rule_name=self.name,
            passed=passed,
            reason=(
                f"Loan amount is {multiplier:.1f}x annual income, within {self.max_multiplier:g}x limit"
                if passed else
                f"Loan amount is {multiplier:.1f}x annual income, exceeds {self.max_multiplier:g}x limit"
            ),
            value=multiplier,
            threshold=self.max_multiplier,
        )


class RequiredDocumentsRule(UnderwritingRule):
    name = "Required Documents"
    REQUIRED = (DocumentType.INCOME_PROOF, DocumentType.BANK_STATEMENT)

    def evaluate(self, data: RuleInput) -> RuleResult:
        submitted = {doc.document_type for doc in data.application.documents}
        missing = [doc_type.value for doc_type in self.REQUIRED if doc_type not in submitted]
        return RuleResult(
            rule_name=self.name,
            passed=not missing,
            reason=(
                "All required documents submitted"
                if not missing else
                f"Missing required documents: {', '.join(missing)}"
            ),
            value=len(submitted),
            threshold=len(self.REQUIRED),
        )


def default_rules(thresholds: UnderwritingThresholds) -> List[UnderwritingRule]:
    """The fixed, ordered rule list."""
    return [
        MinimumCreditScoreRule(thresholds.min_credit_score),
        MaximumLoanAmountRule(thresholds.max_loan_amount),
        DebtToIncomeRule(thresholds.max_debt_to_income_ratio),
        IncomeMultiplierRule(thresholds.max_income_multiplier),
        RequiredDocumentsRule(),
    ]
