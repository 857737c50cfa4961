# loan_engine/services/credit_assessor.py

import asyncio
import logging
import math
from datetime import datetime
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from loan_engine.core.errors import (
    AggregationError,
    BureauUnavailableError,
    InputValidationError,
    LoanEngineError,
)
from loan_engine.schemas.application import CustomerInfo
from loan_engine.schemas.credit import (
    AccountRecord,
    BureauResponse,
    CreditAssessment,
    CreditHistory,
)
from loan_engine.services.bureau_client import BureauGateway, build_gateways

logger = logging.getLogger(__name__)

FAILURE_POLICIES = ("degrade", "strict")


class CreditAssessor:
    """
    Queries every configured bureau concurrently and consolidates the
    reports into one composite score and credit history.

    failure_policy decides what happens when only some bureaus answer:
    "degrade" aggregates whatever arrived (at least min_responses),
    "strict" fails the assessment outright.
    """
    def __init__(
        self,
        gateways: List[BureauGateway],
        failure_policy: str = "degrade",
        min_responses: int = 1,
    ):
        if not gateways:
            raise ValueError("At least one BureauGateway must be injected into CreditAssessor.")
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"Unknown bureau failure policy: {failure_policy}")
        self.gateways = gateways
        self.failure_policy = failure_policy
        self.min_responses = max(1, min_responses)

    @classmethod
    def from_settings(cls, settings, clients=None) -> "CreditAssessor":
        return cls(
            gateways=build_gateways(settings, clients),
            failure_policy=settings.BUREAU_FAILURE_POLICY,
            min_responses=settings.MIN_BUREAU_RESPONSES,
        )

    @property
    def bureau_names(self) -> List[str]:
        return [g.name for g in self.gateways]

    async def assess(self, customer_id: str, customer_info: Any) -> CreditAssessment:
        """
        Main entry point. Never raises: every failure comes back as a
        CreditAssessment with success=False and an error message.
        """
        try:
            info = self._validate_customer_info(customer_info)

            tasks = [self._fetch_single(g, customer_id, info) for g in self.gateways]
            results = await asyncio.gather(*tasks)

            responses = [r for _, r in results if r is not None]
            unavailable = [name for name, r in results if r is None]
            self._check_coverage(responses, unavailable)

            return CreditAssessment(
                customer_id=customer_id,
                success=True,
                credit_score=self.calculate_composite_score(responses),
                credit_history=self.extract_credit_history(responses),
                bureau_responses=responses,
                unavailable_bureaus=unavailable,
                assessment_date=datetime.now(),
            )

        except LoanEngineError as e:
            logger.warning("Credit assessment failed for customer %s: %s", customer_id, e)
            return self._failed(customer_id, e.reason)
        except Exception as e:
            logger.exception("Unexpected credit assessment error for customer %s", customer_id)
            return self._failed(customer_id, f"Credit assessment error: {e}")

    def _validate_customer_info(self, customer_info: Any) -> CustomerInfo:
        if customer_info is None:
            raise InputValidationError("Customer information is required for credit assessment")

        if not isinstance(customer_info, CustomerInfo):
            try:
                customer_info = CustomerInfo.model_validate(customer_info)
            except ValidationError as e:
                raise InputValidationError(
                    "Customer information is malformed",
                    details={"errors": e.errors(include_url=False)},
                ) from e

        if customer_info.personal_info is None:
            raise InputValidationError("Customer information is required for credit assessment")
        return customer_info

    async def _fetch_single(
        self,
        gateway: BureauGateway,
        customer_id: str,
        customer_info: CustomerInfo,
    ) -> Tuple[str, Optional[BureauResponse]]:
        try:
            return gateway.name, await gateway.fetch(customer_id, customer_info)
        except BureauUnavailableError as e:
            # Reported as unavailable so the sibling requests still complete
            logger.warning("Bureau %s unavailable: %s", gateway.name, e.reason)
            return gateway.name, None

    def _check_coverage(self, responses: List[BureauResponse], unavailable: List[str]) -> None:
        if not responses:
            raise AggregationError(
                "No credit scores available from bureaus",
                details={"unavailable_bureaus": unavailable},
            )
        if unavailable and self.failure_policy == "strict":
            raise AggregationError(
                f"Bureau(s) unavailable: {', '.join(unavailable)}",
                details={"unavailable_bureaus": unavailable, "policy": "strict"},
            )
        if len(responses) < self.min_responses:
            raise AggregationError(
                f"Only {len(responses)}/{len(self.gateways)} bureaus responded, "
                f"{self.min_responses} required",
                details={"unavailable_bureaus": unavailable},
            )

    def _failed(self, customer_id: str, error: str) -> CreditAssessment:
        return CreditAssessment(
            customer_id=customer_id,
            success=False,
            credit_score=None,
            credit_history=None,
            bureau_responses=None,
            assessment_date=datetime.now(),
            error=error,
        )

    @staticmethod
    def calculate_composite_score(responses: List[BureauResponse]) -> int:
        """Mean of the bureau scores, rounded half up."""
        if not responses:
            raise AggregationError("No credit scores available from bureaus")
        average = sum(r.score for r in responses) / len(responses)
        return int(math.floor(average + 0.5))

    @staticmethod
    def extract_credit_history(responses: List[BureauResponse]) -> CreditHistory:
        # Accounts are not deduplicated across bureaus
        accounts: List[AccountRecord] = []
        for response in responses:
            accounts.extend(response.accounts)

        return CreditHistory(
            total_accounts=len(accounts),
            recent_inquiries=sum(len(r.inquiries) for r in responses),
            accounts=accounts,
            oldest_account=CreditAssessor._find_oldest_account(accounts),
        )

    @staticmethod
    def _find_oldest_account(accounts: List[AccountRecord]) -> Optional[AccountRecord]:
        if not accounts:
            return None
        dated = [a for a in accounts if a.opened_on is not None]
        if not dated:
            return accounts[0]
        return min(dated, key=lambda a: a.opened_on)
