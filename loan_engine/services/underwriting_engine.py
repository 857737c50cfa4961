# loan_engine/services/underwriting_engine.py

import logging
from datetime import datetime
from typing import Any, List, Optional

from loan_engine.core.errors import InputValidationError
from loan_engine.schemas.application import IncomeVerification, LoanApplication
from loan_engine.schemas.credit import CreditAssessment
from loan_engine.schemas.underwriting import (
    LoanTerms,
    RuleResult,
    UnderwritingDecision,
    UnderwritingThresholds,
)
from loan_engine.services.underwriting_rules import RuleInput, UnderwritingRule, default_rules

logger = logging.getLogger(__name__)

NO_CREDIT_SCORE_REASON = "Unable to retrieve credit score"


def amortized_payment(principal: float, annual_rate: float, term_months: int) -> float:
    """
    Standard amortization: P·r·(1+r)^n / ((1+r)^n − 1), r being the
    monthly rate. annual_rate is in percent.
    """
    monthly_rate = annual_rate / 100 / 12
    if monthly_rate == 0:
        return principal / term_months
    growth = (1 + monthly_rate) ** term_months
    return principal * monthly_rate * growth / (growth - 1)


class UnderwritingEngine:
    """
    Applies the ordered rule list to an application and prices approvals.
    Stateless after construction, so concurrent use needs no locking.
    """
    def __init__(
        self,
        thresholds: Optional[UnderwritingThresholds] = None,
        rules: Optional[List[UnderwritingRule]] = None,
    ):
        self.thresholds = thresholds or UnderwritingThresholds()
        self.rules = rules if rules is not None else default_rules(self.thresholds)

    @classmethod
    def from_settings(cls, settings) -> "UnderwritingEngine":
        return cls(thresholds=UnderwritingThresholds.from_settings(settings))

    def decide(
        self,
        application: LoanApplication,
        credit_assessment: CreditAssessment,
        income_verification: Any = None,
    ) -> UnderwritingDecision:
        """
        Never raises. Evaluation errors become a rejection carrying the
        error message and an empty rule list.
        """
        try:
            if application is None or credit_assessment is None:
                raise InputValidationError("Application and credit assessment are required")

            if not credit_assessment.success or not credit_assessment.credit_score:
                return self._rejection(NO_CREDIT_SCORE_REASON, [])

            income = self._coerce_income(income_verification)
            rule_input = RuleInput(
                application=application,
                credit_score=credit_assessment.credit_score,
                income=income,
            )
            rule_results = self.apply_rules(rule_input)

            failed = [r for r in rule_results if not r.passed]
            if not failed:
                return self._approval(application, credit_assessment.credit_score, rule_results)

            return self._rejection(
                "; ".join(r.reason for r in failed),
                rule_results,
                credit_score=credit_assessment.credit_score,
            )

        except Exception as e:
            logger.warning("Underwriting evaluation failed: %s", e)
            message = getattr(e, "reason", None) or str(e)
            return UnderwritingDecision(
                approved=False,
                reason=f"Underwriting error: {message}",
                decision_date=datetime.now(),
                rule_results=[],
                error=message,
            )

    def apply_rules(self, rule_input: RuleInput) -> List[RuleResult]:
        """Every applicable rule runs; no short-circuit on failure."""
        return [rule.evaluate(rule_input) for rule in self.rules if rule.is_applicable(rule_input)]

    def _coerce_income(self, income_verification: Any) -> IncomeVerification:
        if income_verification is None:
            return IncomeVerification()
        if isinstance(income_verification, IncomeVerification):
            return income_verification
        return IncomeVerification.model_validate(income_verification)

    def _approval(
        self,
        application: LoanApplication,
        credit_score: int,
        rule_results: List[RuleResult],
    ) -> UnderwritingDecision:
        approved_amount = application.requested_amount
        interest_rate = self.calculate_interest_rate(credit_score)
        return UnderwritingDecision(
            approved=True,
            approved_amount=approved_amount,
            interest_rate=interest_rate,
            terms=self.calculate_loan_terms(approved_amount, interest_rate),
            reason="Application meets all underwriting criteria",
            decision_date=datetime.now(),
            rule_results=rule_results,
            credit_score=credit_score,
        )

    def _rejection(
        self,
        reason: str,
        rule_results: List[RuleResult],
        credit_score: Optional[int] = None,
    ) -> UnderwritingDecision:
        return UnderwritingDecision(
            approved=False,
            reason=reason,
            decision_date=datetime.now(),
            rule_results=rule_results,
            credit_score=credit_score,
        )

    @staticmethod
    def calculate_interest_rate(credit_score: int) -> float:
        if credit_score >= 750:
            return 6.5
        if credit_score >= 700:
            return 8.0
        if credit_score >= 650:
            return 10.0
        return 12.0

    def calculate_loan_terms(self, amount: float, interest_rate: float) -> LoanTerms:
        term_months = self.thresholds.term_months
        monthly_payment = amortized_payment(amount, interest_rate, term_months)
        return LoanTerms(
            term_months=term_months,
            monthly_payment=round(monthly_payment, 2),
            total_payment=round(monthly_payment * term_months, 2),
            total_interest=round(monthly_payment * term_months - amount, 2),
        )
