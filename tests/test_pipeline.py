# tests/test_pipeline.py

from datetime import timedelta

import pytest

from loan_engine.core.config import OfficerSeed, Settings
from loan_engine.core.errors import SchedulingError
from loan_engine.schemas.application import ApplicationStatus, DocumentType, IncomeVerification
from loan_engine.schemas.scheduling import TaskStatus
from loan_engine.services.pipeline import LoanPipeline


@pytest.mark.asyncio
async def test_approved_application_is_assigned(make_pipeline, make_application, customer_info):
    pipeline = make_pipeline(780, officers=[("OFF-1", 10)])
    application = make_application(requested_amount=50000)

    result = await pipeline.process_application(application, customer_info)

    assert result.success is True
    assert result.stage == "completed"
    assert result.failures == []
    assert result.credit_assessment.credit_score == 780
    assert result.decision.approved is True
    assert result.decision.approved_amount == 50000
    assert result.decision.interest_rate == 6.5
    assert result.assignment.assigned is True
    assert result.assignment.task.priority == 75
    assert result.assignment.task.due_date - result.assignment.task.assigned_at == timedelta(days=4)
    assert application.credit_score == 780
    assert application.decision == result.decision
    assert application.status == ApplicationStatus.ASSIGNED
    assert application.assigned_officer == "OFF-1"


@pytest.mark.asyncio
async def test_missing_customer_info_becomes_scheduled_rejection(make_pipeline, make_application):
    pipeline = make_pipeline(780, 760, officers=[("OFF-1", 10)])
    application = make_application(requested_amount=50000)

    result = await pipeline.process_application(application, {"email": "x@example.com"})

    assert result.success is True
    assert result.decision.approved is False
    assert result.decision.reason == "Unable to retrieve credit score"
    assert result.decision.rule_results == []
    assert [f.stage for f in result.failures] == ["credit_assessment"]
    assert result.assignment.task.priority == 40
    assert result.assignment.task.due_date - result.assignment.task.assigned_at == timedelta(days=7)
    assert application.credit_score is None
    assert all(client.calls == 0 for client in _clients(pipeline))


@pytest.mark.asyncio
async def test_total_bureau_outage_still_schedules_rejection(make_pipeline, make_application, customer_info):
    pipeline = make_pipeline(700, 720, 740, officers=[("OFF-1", 10)], fail=True)

    result = await pipeline.process_application(make_application(), customer_info)

    assert result.credit_assessment.success is False
    assert result.credit_assessment.error == "No credit scores available from bureaus"
    assert result.decision.approved is False
    assert result.assignment.assigned is True


@pytest.mark.asyncio
async def test_rule_rejection_gets_no_credit_bonus(make_pipeline, make_application, customer_info):
    pipeline = make_pipeline(780, 780, 780, officers=[("OFF-1", 10)])
    application = make_application(requested_amount=200000, documents=[DocumentType.INCOME_PROOF])

    result = await pipeline.process_application(application, customer_info)

    assert result.decision.approved is False
    assert "Missing required documents" in result.decision.reason
    assert result.decision.credit_score == 780
    # 50 +10 (amount) -10 (rejected), high score only counts for approvals
    assert result.assignment.task.priority == 50
    assert result.assignment.task.due_date - result.assignment.task.assigned_at == timedelta(days=7)


@pytest.mark.asyncio
async def test_income_comes_from_documents(make_pipeline, make_application, customer_info):
    pipeline = make_pipeline(780, officers=[("OFF-1", 10)])
    application = make_application(
        requested_amount=100000,
        extracted={
            DocumentType.INCOME_PROOF: {"monthlyIncome": 2000},
            DocumentType.BANK_STATEMENT: {"monthlyDebts": 500},
        },
    )

    result = await pipeline.process_application(application, customer_info)

    assert result.decision.approved is False
    failed = {r.rule_name for r in result.decision.rule_results if not r.passed}
    assert failed == {"Debt-to-Income Ratio", "Income Multiplier"}


@pytest.mark.asyncio
async def test_explicit_income_overrides_documents(make_pipeline, make_application, customer_info):
    pipeline = make_pipeline(780, officers=[("OFF-1", 10)])
    application = make_application(extracted={DocumentType.INCOME_PROOF: {"monthlyIncome": 100}})

    result = await pipeline.process_application(
        application, customer_info, IncomeVerification(monthly_income=20000, annual_income=240000),
    )

    assert result.decision.approved is True


@pytest.mark.asyncio
async def test_no_officers_queues_the_task(make_pipeline, make_application, customer_info):
    pipeline = make_pipeline(780)
    application = make_application()

    result = await pipeline.process_application(application, customer_info)

    assert result.success is True
    assert result.assignment.queued is True
    assert result.assignment.task.status == TaskStatus.QUEUED
    assert application.status == ApplicationStatus.DECIDED


@pytest.mark.asyncio
async def test_scheduling_error_is_reported(make_pipeline, make_application, customer_info, monkeypatch):
    pipeline = make_pipeline(780, officers=[("OFF-1", 10)])

    async def broken(application, decision):
        raise SchedulingError("Scheduler unavailable")

    monkeypatch.setattr(pipeline.workflow_manager, "assign_task", broken)

    result = await pipeline.process_application(make_application(), customer_info)

    assert result.success is False
    assert result.stage == "scheduling"
    assert result.assignment is None
    assert result.decision.approved is True
    assert result.failures[-1].errcode == "LE04.400"
    assert result.failures[-1].reason == "Scheduler unavailable"


@pytest.mark.asyncio
async def test_reprocessing_does_not_overwrite_score(make_pipeline, make_application, customer_info):
    pipeline = make_pipeline(780, officers=[("OFF-1", 10)])
    application = make_application()
    first = await pipeline.process_application(application, customer_info)

    second = await pipeline.process_application(application, customer_info)

    assert application.credit_score == 780
    assert [f.errcode for f in second.failures] == ["LE02.409"]
    assert second.assignment.duplicate is True
    assert second.assignment.task.task_id == first.assignment.task.task_id


@pytest.mark.asyncio
async def test_from_settings_with_simulated_bureaus(make_application, customer_info):
    settings = Settings(
        OFFICERS=[OfficerSeed(officer_id="OFF-1", capacity=2)],
        SELECTION_SEED=7,
        SIMULATED_BUREAU_FAILURE_RATE=0,
    )
    pipeline = LoanPipeline.from_settings(settings)

    result = await pipeline.process_application(make_application(), customer_info)
    stats = await pipeline.get_stats()

    assert result.credit_assessment.success is True
    assert 300 <= result.credit_assessment.credit_score <= 850
    assert [b["bureau"] for b in stats["bureaus"]] == ["CIBIL", "EXPERIAN", "EQUIFAX"]
    assert stats["workload"]["current_load"] == 1


def _clients(pipeline):
    return [g.client for g in pipeline.credit_assessor.gateways]


@pytest.mark.asyncio
@pytest.mark.parametrize("raw", ["5,000", "n/a", "", None, "nan", [5000], True])
async def test_unparseable_income_skips_income_rules(make_pipeline, make_application, customer_info, raw):
    pipeline = make_pipeline(780, officers=[("OFF-1", 10)])
    application = make_application(extracted={
        DocumentType.INCOME_PROOF: {"monthlyIncome": raw},
        DocumentType.BANK_STATEMENT: {"monthlyDebts": "lots"},
    })

    result = await pipeline.process_application(application, customer_info)

    assert result.success is True
    assert result.stage == "completed"
    assert result.decision.approved is True
    assert [r.rule_name for r in result.decision.rule_results] == [
        "Minimum Credit Score", "Maximum Loan Amount", "Required Documents",
    ]
    assert application.status == ApplicationStatus.ASSIGNED
