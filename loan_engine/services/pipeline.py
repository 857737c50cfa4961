# loan_engine/services/pipeline.py

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from loan_engine.core.errors import LoanEngineError
from loan_engine.schemas.application import IncomeVerification, LoanApplication
from loan_engine.schemas.pipeline import PipelineResult, StageFailure
from loan_engine.services.credit_assessor import CreditAssessor
from loan_engine.services.underwriting_engine import UnderwritingEngine
from loan_engine.services.workflow_manager import WorkflowManager

logger = logging.getLogger(__name__)


class LoanPipeline:
    """
    Credit assessment -> underwriting -> task scheduling for one application.

    A failed assessment does not stop the run: underwriting turns it into
    an automatic rejection and the rejection is still scheduled so the
    applicant can be notified within SLA.
    """
    def __init__(
        self,
        credit_assessor: CreditAssessor,
        underwriting_engine: UnderwritingEngine,
        workflow_manager: WorkflowManager,
    ):
        self.credit_assessor = credit_assessor
        self.underwriting_engine = underwriting_engine
        self.workflow_manager = workflow_manager

    @classmethod
    def from_settings(cls, settings, clients=None) -> "LoanPipeline":
        return cls(
            credit_assessor=CreditAssessor.from_settings(settings, clients),
            underwriting_engine=UnderwritingEngine.from_settings(settings),
            workflow_manager=WorkflowManager.from_settings(settings),
        )

    async def process_application(
        self,
        application: LoanApplication,
        customer_info: Any,
        income_verification: Optional[IncomeVerification] = None,
    ) -> PipelineResult:
        failures = []
        application.mark_under_review()
        logger.info("Processing application %s (%s)", application.application_id, application.loan_type.value)

        # STEP 1: Credit assessment
        assessment = await self.credit_assessor.assess(application.customer_id, customer_info)
        if assessment.success:
            try:
                application.set_credit_score(assessment.credit_score)
            except LoanEngineError as e:
                failures.append(self._failure(e))
        else:
            failures.append(StageFailure(
                stage="credit_assessment",
                reason=assessment.error or "Credit assessment failed",
                timestamp=assessment.assessment_date,
            ))

        # STEP 2: Underwriting
        if income_verification is None:
            income_verification = IncomeVerification.from_documents(application.documents)
        decision = self.underwriting_engine.decide(application, assessment, income_verification)
        application.record_decision(decision)
        if decision.error:
            failures.append(StageFailure(
                stage="underwriting",
                reason=decision.reason,
                timestamp=decision.decision_date,
            ))

        # STEP 3: Scheduling
        try:
            assignment = await self.workflow_manager.assign_task(application, decision)
        except LoanEngineError as e:
            logger.error("Scheduling failed for application %s: %s", application.application_id, e)
            failures.append(self._failure(e))
            return PipelineResult(
                success=False,
                stage="scheduling",
                application=application,
                credit_assessment=assessment,
                decision=decision,
                failures=failures,
                processed_at=datetime.now(),
            )

        logger.info(
            "Application %s %s, task %s %s",
            application.application_id,
            "approved" if decision.approved else "rejected",
            assignment.task.task_id,
            "assigned" if assignment.assigned else "queued",
        )
        return PipelineResult(
            success=True,
            stage="completed",
            application=application,
            credit_assessment=assessment,
            decision=decision,
            assignment=assignment,
            failures=failures,
            processed_at=datetime.now(),
        )

    async def get_stats(self) -> Dict[str, Any]:
        return {
            "bureaus": [g.health_check() for g in self.credit_assessor.gateways],
            "bureau_failure_policy": self.credit_assessor.failure_policy,
            "underwriting_rules": self.underwriting_engine.thresholds.model_dump(),
            "workload": (await self.workflow_manager.get_workload_stats()).model_dump(),
        }

    def _failure(self, error: LoanEngineError) -> StageFailure:
        return StageFailure(
            stage=error.stage,
            reason=error.reason,
            errcode=error.errcode,
            timestamp=error.timestamp,
        )
