# tests/test_credit_assessor.py

import pytest

from conftest import StartBarrier, StubBureauClient, make_assessor, stub_bureaus
from loan_engine.core.config import Settings
from loan_engine.core.errors import CircuitOpenError
from loan_engine.schemas.application import CustomerInfo
from loan_engine.services.circuit_breaker import CircuitState
from loan_engine.services.credit_assessor import CreditAssessor


@pytest.mark.asyncio
async def test_composite_score_is_rounded_mean_within_bureau_range(customer_info):
    assessor = make_assessor(*stub_bureaus(640, 710, 815))

    result = await assessor.assess("CUST-1", customer_info)

    assert result.success is True
    assert result.credit_score == 722
    assert 640 <= result.credit_score <= 815
    assert [r.bureau for r in result.bureau_responses] == ["CIBIL", "EXPERIAN", "EQUIFAX"]
    assert result.unavailable_bureaus == []
    assert result.error is None


@pytest.mark.asyncio
async def test_composite_score_rounds_half_up(customer_info):
    assessor = make_assessor(*stub_bureaus(700, 701))

    result = await assessor.assess("CUST-1", customer_info)

    assert result.credit_score == 701


@pytest.mark.asyncio
async def test_history_sums_accounts_and_inquiries_without_dedup(customer_info):
    clients = [
        StubBureauClient("CIBIL", score=700, accounts=3, inquiries=1),
        StubBureauClient("EXPERIAN", score=710, accounts=0, inquiries=2),
        StubBureauClient("EQUIFAX", score=720, accounts=4, inquiries=0),
    ]
    assessor = make_assessor(*clients)

    result = await assessor.assess("CUST-1", customer_info)

    history = result.credit_history
    assert history.total_accounts == 7
    assert history.total_accounts == sum(len(r.accounts) for r in result.bureau_responses)
    assert history.recent_inquiries == 3
    assert len(history.accounts) == 7
    assert history.oldest_account.opened_on.year == 2015


@pytest.mark.asyncio
async def test_empty_account_list_is_not_a_failure(customer_info):
    assessor = make_assessor(*stub_bureaus(700, 720, 740, accounts=0))

    result = await assessor.assess("CUST-1", customer_info)

    assert result.success is True
    assert result.credit_history.total_accounts == 0
    assert result.credit_history.oldest_account is None


@pytest.mark.parametrize("bad_info", [
    None,
    CustomerInfo(),
    {},
    {"email": "someone@example.com"},
    {"personal_info": "not-a-block"},
])
@pytest.mark.asyncio
async def test_invalid_customer_info_fails_without_calling_bureaus(bad_info):
    clients = stub_bureaus(700, 710, 720)
    assessor = make_assessor(*clients)

    result = await assessor.assess("CUST-1", bad_info)

    assert result.success is False
    assert result.credit_score is None
    assert result.credit_history is None
    assert result.bureau_responses is None
    assert result.error
    assert result.assessment_date is not None
    assert all(c.calls == 0 for c in clients)


@pytest.mark.asyncio
async def test_dict_customer_info_is_accepted():
    assessor = make_assessor(*stub_bureaus(700, 710, 720))

    result = await assessor.assess("CUST-1", {"personal_info": {"first_name": "Ana", "last_name": "Lee"}})

    assert result.success is True


@pytest.mark.asyncio
async def test_bureaus_are_queried_concurrently(customer_info):
    # Each stub blocks until all three are in flight; sequential calls would time out
    barrier = StartBarrier(parties=3)
    assessor = make_assessor(*stub_bureaus(700, 720, 740, barrier=barrier), timeout=2.0)

    result = await assessor.assess("CUST-1", customer_info)

    assert result.success is True
    assert barrier.arrived == 3


@pytest.mark.asyncio
async def test_degrade_policy_aggregates_remaining_bureaus(customer_info):
    clients = [
        StubBureauClient("CIBIL", score=700),
        StubBureauClient("EXPERIAN", score=800, fail=True),
        StubBureauClient("EQUIFAX", score=760),
    ]
    assessor = make_assessor(*clients, policy="degrade")

    result = await assessor.assess("CUST-1", customer_info)

    assert result.success is True
    assert result.credit_score == 730
    assert result.unavailable_bureaus == ["EXPERIAN"]
    assert len(result.bureau_responses) == 2


@pytest.mark.asyncio
async def test_degrade_policy_respects_minimum_responses(customer_info):
    clients = [
        StubBureauClient("CIBIL", score=700),
        StubBureauClient("EXPERIAN", fail=True),
        StubBureauClient("EQUIFAX", fail=True),
    ]
    assessor = make_assessor(*clients, min_responses=2)

    result = await assessor.assess("CUST-1", customer_info)

    assert result.success is False
    assert "1/3" in result.error


@pytest.mark.asyncio
async def test_strict_policy_fails_when_any_bureau_is_unavailable(customer_info):
    clients = [
        StubBureauClient("CIBIL", score=700),
        StubBureauClient("EXPERIAN", fail=True),
        StubBureauClient("EQUIFAX", score=760),
    ]
    assessor = make_assessor(*clients, policy="strict")

    result = await assessor.assess("CUST-1", customer_info)

    assert result.success is False
    assert "EXPERIAN" in result.error
    assert result.credit_score is None


@pytest.mark.asyncio
async def test_total_bureau_outage_fails(customer_info):
    assessor = make_assessor(*stub_bureaus(700, 710, 720, fail=True))

    result = await assessor.assess("CUST-1", customer_info)

    assert result.success is False
    assert result.error == "No credit scores available from bureaus"


@pytest.mark.asyncio
async def test_slow_bureau_times_out_and_counts_as_unavailable(customer_info):
    clients = [
        StubBureauClient("CIBIL", score=700),
        StubBureauClient("EXPERIAN", score=800, delay=0.5),
    ]
    assessor = make_assessor(*clients, timeout=0.05)

    result = await assessor.assess("CUST-1", customer_info)

    assert result.success is True
    assert result.credit_score == 700
    assert result.unavailable_bureaus == ["EXPERIAN"]


@pytest.mark.asyncio
async def test_circuit_opens_after_repeated_failures(customer_info):
    failing = StubBureauClient("CIBIL", fail=True)
    assessor = make_assessor(failing, StubBureauClient("EXPERIAN", score=720), failure_threshold=2)
    gateway = assessor.gateways[0]

    await assessor.assess("CUST-1", customer_info)
    await assessor.assess("CUST-2", customer_info)
    assert gateway.cb.state == CircuitState.OPEN

    with pytest.raises(CircuitOpenError):
        await gateway.fetch("CUST-3", customer_info)
    assert failing.calls == 2

    result = await assessor.assess("CUST-4", customer_info)
    assert result.success is True
    assert result.unavailable_bureaus == ["CIBIL"]


@pytest.mark.asyncio
async def test_repeated_assessments_with_simulated_bureaus_stay_valid(customer_info):
    assessor = CreditAssessor.from_settings(Settings(SELECTION_SEED=11))

    first = await assessor.assess("CUST-1", customer_info)
    second = await assessor.assess("CUST-1", customer_info)

    for result in (first, second):
        assert result.success is True
        assert len(result.bureau_responses) == 3
        scores = [r.score for r in result.bureau_responses]
        assert min(scores) <= result.credit_score <= max(scores)
        assert 300 <= result.credit_score <= 850
        assert result.credit_history.total_accounts == sum(len(r.accounts) for r in result.bureau_responses)


def test_assessor_requires_gateways():
    with pytest.raises(ValueError):
        CreditAssessor([])
