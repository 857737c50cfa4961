# loan_engine/services/bureau_client.py

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from loan_engine.core.errors import BureauUnavailableError
from loan_engine.schemas.application import CustomerInfo
from loan_engine.schemas.credit import AccountRecord, BureauResponse, InquiryRecord
from loan_engine.services.circuit_breaker import CircuitBreaker
from loan_engine.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

ACCOUNT_TYPES = ["Credit Card", "Auto Loan", "Mortgage", "Personal Loan"]


class BureauClient(ABC):
    """A single credit bureau source, addressed by an opaque endpoint key."""

    def __init__(self, name: str, endpoint: str):
        self.name = name
        self.endpoint = endpoint

    @abstractmethod
    async def fetch_report(self, customer_id: str, customer_info: CustomerInfo) -> BureauResponse:
        ...


class SimulatedBureauClient(BureauClient):
    """
    Stand-in bureau producing realistic reports.

    Scores fall in 300-850 with 1-5 accounts per report. A non-zero
    failure_rate injects controlled failures for resilience testing.
    """
    def __init__(
        self,
        name: str,
        endpoint: str,
        failure_rate: float = 0.0,
        latency: Tuple[float, float] = (0.0, 0.0),
        seed: Optional[int] = None,
    ):
        super().__init__(name, endpoint)
        self.failure_rate = failure_rate
        self.latency = latency
        self.rng = random.Random(seed)
        self.total_calls = 0
        self.injected_failures = 0

    async def fetch_report(self, customer_id: str, customer_info: CustomerInfo) -> BureauResponse:
        self.total_calls += 1

        delay = self.rng.uniform(*self.latency)
        if delay > 0:
            await asyncio.sleep(delay)

        if self.rng.random() < self.failure_rate:
            self.injected_failures += 1
            raise BureauUnavailableError(
                f"Injected failure from bureau {self.name}",
                details={"bureau": self.name, "failure_rate": self.failure_rate},
            )

        now = datetime.now()
        return BureauResponse(
            bureau=self.name,
            score=self.rng.randint(300, 850),
            report_date=now,
            accounts=self._generate_accounts(now),
            inquiries=self._generate_inquiries(now),
        )

    def _generate_accounts(self, now: datetime) -> List[AccountRecord]:
        return [
            AccountRecord(
                account_type=self.rng.choice(ACCOUNT_TYPES),
                balance=self.rng.randint(0, 50000),
                status="Active",
                opened_on=(now - timedelta(days=self.rng.randint(90, 3650))).date(),
            )
            for _ in range(self.rng.randint(1, 5))
        ]

    def _generate_inquiries(self, now: datetime) -> List[InquiryRecord]:
        return [
            InquiryRecord(
                inquirer=self.rng.choice(["Bank", "Card Issuer", "Auto Lender"]),
                inquired_on=(now - timedelta(days=self.rng.randint(1, 180))).date(),
            )
            for _ in range(self.rng.randint(0, 2))
        ]

    def get_stats(self) -> dict:
        return {
            "total_calls": self.total_calls,
            "injected_failures": self.injected_failures,
            "failure_rate": f"{self.failure_rate*100:.1f}%",
            "actual_failure_rate": f"{(self.injected_failures/self.total_calls*100):.1f}%" if self.total_calls > 0 else "0%"
        }


class BureauGateway:
    """
    Protected access to one bureau: rate limiting, a bounded timeout
    and a circuit breaker around every request.
    """
    def __init__(
        self,
        client: BureauClient,
        circuit_breaker: Optional[CircuitBreaker] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout_seconds: float = 30.0,
    ):
        self.client = client
        self.cb = circuit_breaker or CircuitBreaker(name=client.name)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.timeout_seconds = timeout_seconds

    @property
    def name(self) -> str:
        return self.client.name

    async def fetch(self, customer_id: str, customer_info: CustomerInfo) -> BureauResponse:
        """
        Returns the bureau's report or raises BureauUnavailableError
        (timeouts, transport errors and an open circuit all end up here).
        """
        async def bureau_request():
            try:
                return await asyncio.wait_for(
                    self.client.fetch_report(customer_id, customer_info),
                    timeout=self.timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise BureauUnavailableError(
                    f"Bureau {self.name} timed out after {self.timeout_seconds}s",
                    details={"bureau": self.name},
                ) from e
            except BureauUnavailableError:
                raise
            except Exception as e:
                raise BureauUnavailableError(
                    f"Bureau {self.name} request failed: {e}",
                    details={"bureau": self.name, "error_type": type(e).__name__},
                ) from e

        await self.rate_limiter.wait_if_needed()
        return await self.cb.call(bureau_request)

    def health_check(self) -> dict:
        return {
            "bureau": self.name,
            "endpoint": self.client.endpoint,
            "circuit_state": self.cb.state.value,
            "rate_limit": self.rate_limiter.get_current_usage(),
        }


def build_gateways(settings, clients: Optional[Dict[str, BureauClient]] = None) -> List[BureauGateway]:
    """One gateway per configured bureau, simulated unless a client is supplied."""
    clients = clients or {}
    gateways = []
    for index, (bureau, endpoint) in enumerate(settings.BUREAU_ENDPOINTS.items()):
        client = clients.get(bureau)
        if client is None:
            seed = None if settings.SELECTION_SEED is None else settings.SELECTION_SEED + index
            client = SimulatedBureauClient(
                name=bureau,
                endpoint=endpoint,
                failure_rate=settings.SIMULATED_BUREAU_FAILURE_RATE,
                seed=seed,
            )
        gateways.append(BureauGateway(
            client=client,
            circuit_breaker=CircuitBreaker(
                name=bureau,
                failure_threshold=settings.BUREAU_FAILURE_THRESHOLD,
                recovery_timeout=settings.BUREAU_RECOVERY_TIMEOUT,
            ),
            rate_limiter=RateLimiter(
                max_requests=settings.BUREAU_MAX_REQUESTS,
                window_seconds=settings.BUREAU_WINDOW_SECONDS,
            ),
            timeout_seconds=settings.BUREAU_TIMEOUT_SECONDS,
        ))
    return gateways
