# tests/conftest.py

import asyncio
from datetime import datetime, date
from typing import List, Optional

import pytest

from loan_engine.schemas.application import (
    CustomerInfo,
    DocumentType,
    LoanApplication,
    LoanType,
    PersonalInfo,
    SubmittedDocument,
)
from loan_engine.schemas.credit import AccountRecord, BureauResponse, InquiryRecord
from loan_engine.schemas.underwriting import UnderwritingDecision
from loan_engine.services.bureau_client import BureauClient, BureauGateway
from loan_engine.services.circuit_breaker import CircuitBreaker
from loan_engine.services.credit_assessor import CreditAssessor
from loan_engine.services.pipeline import LoanPipeline
from loan_engine.services.underwriting_engine import UnderwritingEngine
from loan_engine.services.workflow_manager import WorkflowManager, no_jitter


class StubBureauClient(BureauClient):
    """Deterministic bureau: fixed score and record counts, optional failure or delay."""

    def __init__(
        self,
        name: str,
        score: int = 700,
        accounts: int = 2,
        inquiries: int = 0,
        fail: bool = False,
        delay: float = 0.0,
        barrier: Optional["StartBarrier"] = None,
    ):
        super().__init__(name, f"stub://{name.lower()}")
        self.score = score
        self.accounts = accounts
        self.inquiries = inquiries
        self.fail = fail
        self.delay = delay
        self.barrier = barrier
        self.calls = 0

    async def fetch_report(self, customer_id, customer_info) -> BureauResponse:
        self.calls += 1
        if self.barrier is not None:
            await self.barrier.arrive()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError(f"{self.name} unreachable")

        return BureauResponse(
            bureau=self.name,
            score=self.score,
            report_date=datetime.now(),
            accounts=[
                AccountRecord(account_type="Credit Card", balance=1000 * i, opened_on=date(2015 + i, 1, 1))
                for i in range(self.accounts)
            ],
            inquiries=[
                InquiryRecord(inquirer="Bank", inquired_on=date(2024, 1, 1 + i))
                for i in range(self.inquiries)
            ],
        )


class StartBarrier:
    """Releases only once `parties` callers are waiting at the same time."""

    def __init__(self, parties: int):
        self.parties = parties
        self.arrived = 0
        self.event = asyncio.Event()

    async def arrive(self):
        self.arrived += 1
        if self.arrived >= self.parties:
            self.event.set()
        await asyncio.wait_for(self.event.wait(), timeout=1.0)


def make_assessor(
    *clients: BureauClient,
    policy: str = "degrade",
    min_responses: int = 1,
    timeout: float = 1.0,
    failure_threshold: int = 5,
) -> CreditAssessor:
    gateways = [
        BureauGateway(
            client=client,
            circuit_breaker=CircuitBreaker(name=client.name, failure_threshold=failure_threshold),
            timeout_seconds=timeout,
        )
        for client in clients
    ]
    return CreditAssessor(gateways, failure_policy=policy, min_responses=min_responses)


def stub_bureaus(*scores: int, **kwargs) -> List[StubBureauClient]:
    names = ["CIBIL", "EXPERIAN", "EQUIFAX", "EXTRA"]
    return [StubBureauClient(names[i], score=score, **kwargs) for i, score in enumerate(scores)]


@pytest.fixture
def customer_info():
    return CustomerInfo(
        personal_info=PersonalInfo(first_name="John", last_name="Doe", date_of_birth=date(1985, 4, 12)),
        email="john.doe@example.com",
    )


@pytest.fixture
def make_application():
    counter = {"n": 0}

    def factory(
        requested_amount: float = 50000,
        loan_type: LoanType = LoanType.PERSONAL,
        documents: Optional[List[DocumentType]] = None,
        application_id: Optional[str] = None,
        extracted: Optional[dict] = None,
    ) -> LoanApplication:
        counter["n"] += 1
        doc_types = documents if documents is not None else [DocumentType.INCOME_PROOF, DocumentType.BANK_STATEMENT]
        extracted = extracted or {}
        return LoanApplication(
            application_id=application_id or f"APP-{counter['n']:04d}",
            customer_id=f"CUST-{counter['n']:04d}",
            loan_type=loan_type,
            requested_amount=requested_amount,
            documents=[
                SubmittedDocument(
                    document_type=doc_type,
                    extraction_ref=f"ext-{doc_type.value.lower()}",
                    extracted_fields=extracted.get(doc_type, {}),
                )
                for doc_type in doc_types
            ],
        )

    return factory


@pytest.fixture
def approved_decision():
    return UnderwritingDecision(approved=True, approved_amount=50000, interest_rate=6.5,
                                reason="Application meets all underwriting criteria", credit_score=780)


@pytest.fixture
def rejected_decision():
    return UnderwritingDecision(approved=False, reason="Unable to retrieve credit score")


@pytest.fixture
def manager():
    return WorkflowManager(jitter=no_jitter)


@pytest.fixture
def make_pipeline():
    def factory(*scores: int, officers=None, fail: bool = False) -> LoanPipeline:
        manager = WorkflowManager(jitter=no_jitter)
        for officer_id, capacity in (officers or []):
            manager._add_officer(officer_id, capacity=capacity)
        return LoanPipeline(
            credit_assessor=make_assessor(*stub_bureaus(*scores, fail=fail)),
            underwriting_engine=UnderwritingEngine(),
            workflow_manager=manager,
        )

    return factory
