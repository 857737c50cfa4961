# loan_engine/services/workflow_manager.py

import asyncio
import logging
import random
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from loan_engine.core.errors import (
    DuplicateOfficerError,
    OfficerBusyError,
    OfficerNotFoundError,
    SchedulingError,
    TaskNotFoundError,
)
from loan_engine.schemas.application import LoanApplication
from loan_engine.schemas.scheduling import (
    AssignmentResult,
    CompletionResult,
    Officer,
    OfficerSnapshot,
    OfficerWorkload,
    Task,
    TaskStatus,
    WorkloadStats,
    task_id_for,
)
from loan_engine.schemas.underwriting import UnderwritingDecision

logger = logging.getLogger(__name__)

# Maps an officer to a value in [0, 1) added (x10) to its selection score.
SelectionJitter = Callable[[Officer], float]


def random_jitter(seed: Optional[int] = None) -> SelectionJitter:
    rng = random.Random(seed)
    return lambda officer: rng.random()


def no_jitter(officer: Officer) -> float:
    """Deterministic selection: equal scores fall back to registration order."""
    return 0.0


class WorkflowManager:
    """
    Assigns decided applications to loan officers.

    The officer registry, the task queue and the task-to-officer mapping
    share one asyncio.Lock, so a queue drain triggered by a completion can
    never race an incoming assignment for the same free slot. Callers only
    ever receive copies of the internal records.
    """
    def __init__(
        self,
        jitter: Optional[SelectionJitter] = None,
        default_capacity: int = 10,
        default_performance_score: float = 100.0,
    ):
        self.jitter = jitter or random_jitter()
        self.default_capacity = default_capacity
        self.default_performance_score = default_performance_score

        self._officers: Dict[str, Officer] = {}
        self._queue: List[Task] = []
        self._tasks: Dict[str, Task] = {}
        self._task_officer: Dict[str, str] = {}
        self._queued_applications: Dict[str, LoanApplication] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings) -> "WorkflowManager":
        jitter = random_jitter(settings.SELECTION_SEED) if settings.SELECTION_JITTER else no_jitter
        manager = cls(
            jitter=jitter,
            default_capacity=settings.DEFAULT_OFFICER_CAPACITY,
            default_performance_score=settings.DEFAULT_PERFORMANCE_SCORE,
        )
        for seed in settings.OFFICERS:
            manager._add_officer(
                seed.officer_id,
                name=seed.name,
                capacity=seed.capacity,
                specializations=seed.specializations,
                performance_score=seed.performance_score,
            )
        return manager

    # ------------------------------------------------------------------
    # Officer registry
    # ------------------------------------------------------------------

    async def register_officer(
        self,
        officer_id: str,
        name: Optional[str] = None,
        capacity: Optional[int] = None,
        specializations: Optional[Iterable[str]] = None,
        performance_score: Optional[float] = None,
    ) -> OfficerSnapshot:
        async with self._lock:
            officer = self._add_officer(officer_id, name, capacity, specializations, performance_score)
            if self._queue:
                self._drain_queue()
            return self._snapshot(officer)

    async def unregister_officer(self, officer_id: str) -> None:
        async with self._lock:
            officer = self._officers.get(officer_id)
            if officer is None:
                raise OfficerNotFoundError(f"Officer {officer_id} is not registered")
            if officer.current_load > 0:
                raise OfficerBusyError(
                    f"Cannot unregister officer {officer_id} with active tasks",
                    details={"current_load": officer.current_load},
                )
            del self._officers[officer_id]
            logger.info("Officer %s unregistered", officer_id)

    def _add_officer(self, officer_id, name=None, capacity=None, specializations=None, performance_score=None) -> Officer:
        if officer_id in self._officers:
            raise DuplicateOfficerError(f"Officer {officer_id} is already registered")

        try:
            officer = Officer(
                officer_id=officer_id,
                name=name or f"Officer {officer_id}",
                capacity=self.default_capacity if capacity is None else capacity,
                specializations=set(specializations or []),
                performance_score=(
                    self.default_performance_score if performance_score is None else performance_score
                ),
            )
        except ValidationError as e:
            raise SchedulingError(
                f"Invalid officer {officer_id}",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        self._officers[officer_id] = officer
        logger.info("Officer %s registered (capacity %d)", officer_id, officer.capacity)
        return officer

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    async def assign_task(self, application: LoanApplication, decision: UnderwritingDecision) -> AssignmentResult:
        """
        Assign the decided application to the best available officer, or
        queue it when nobody has capacity. Re-submitting an application
        returns its existing task untouched.
        """
        application, decision = self._validate_inputs(application, decision)
        task_id = task_id_for(application.application_id)

        async with self._lock:
            existing = self._tasks.get(task_id)
            if existing is not None:
                return self._duplicate_result(existing)

            priority = self.calculate_task_priority(application, decision)
            task = Task(
                task_id=task_id,
                application_id=application.application_id,
                customer_id=application.customer_id,
                loan_type=application.loan_type,
                requested_amount=application.requested_amount,
                decision=decision,
                priority=priority,
                status=TaskStatus.QUEUED,
            )

            officer = self._select_officer(application)
            if officer is None:
                self._tasks[task_id] = task
                self._queue.append(task)
                self._queued_applications[task_id] = application
                self._sort_queue()
                position = self._queue_position(task_id)
                logger.info("No officer capacity, task %s queued at position %d", task_id, position)
                return AssignmentResult(
                    assigned=False,
                    queued=True,
                    task=task.model_copy(deep=True),
                    queue_position=position,
                )

            self._tasks[task_id] = task
            self._assign(task, officer, application)
            return AssignmentResult(
                assigned=True,
                queued=False,
                task=task.model_copy(deep=True),
                officer=self._snapshot(officer),
            )

    @staticmethod
    def _validate_inputs(application: Any, decision: Any) -> Tuple[LoanApplication, UnderwritingDecision]:
        if application is None or decision is None:
            raise SchedulingError("Application and underwriting decision are required")
        try:
            if not isinstance(application, LoanApplication):
                application = LoanApplication.model_validate(application)
            if not isinstance(decision, UnderwritingDecision):
                decision = UnderwritingDecision.model_validate(decision)
        except ValidationError as e:
            raise SchedulingError(
                "Malformed application or underwriting decision",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        return application, decision

    @staticmethod
    def calculate_task_priority(application: LoanApplication, decision: UnderwritingDecision) -> int:
        """Higher = more urgent, clamped to 0-100."""
        priority = 50

        if application.requested_amount > 500000:
            priority += 20
        elif application.requested_amount > 100000:
            priority += 10

        if decision.approved:
            priority += 15
        else:
            priority -= 10

        # Fast-track bonus for strong approved credit only
        if decision.approved and decision.credit_score and decision.credit_score > 750:
            priority += 10

        return max(0, min(100, priority))

    @staticmethod
    def calculate_due_date(priority: int, assigned_at: Optional[datetime] = None) -> datetime:
        if priority >= 80:
            days = 2
        elif priority >= 60:
            days = 4
        elif priority >= 40:
            days = 7
        else:
            days = 10
        return (assigned_at or datetime.now()) + timedelta(days=days)

    def score_officer(self, officer: Officer, application: LoanApplication) -> float:
        score = (1 - officer.current_load / officer.capacity) * 40
        if application.loan_type in officer.specializations:
            score += 30
        score += (officer.performance_score / 100) * 20
        score += self.jitter(officer) * 10
        return score

    def _select_officer(self, application: LoanApplication) -> Optional[Officer]:
        available = [o for o in self._officers.values() if o.has_capacity]
        if not available:
            return None
        # max() keeps the first of equal scores, i.e. registration order
        return max(available, key=lambda o: self.score_officer(o, application))

    def _assign(self, task: Task, officer: Officer, application: Optional[LoanApplication] = None) -> None:
        now = datetime.now()
        task.status = TaskStatus.ASSIGNED
        task.assigned_to = officer.officer_id
        task.assigned_at = now
        task.due_date = self.calculate_due_date(task.priority, now)

        officer.current_load += 1
        officer.assigned_task_ids.append(task.task_id)
        self._task_officer[task.task_id] = officer.officer_id

        if application is not None:
            application.mark_assigned(officer.officer_id)

        logger.info(
            "Task %s (priority %d) assigned to officer %s, load %d/%d",
            task.task_id, task.priority, officer.officer_id, officer.current_load, officer.capacity,
        )

    # ------------------------------------------------------------------
    # Completion and queue processing
    # ------------------------------------------------------------------

    async def complete_task(self, task_id: str) -> CompletionResult:
        async with self._lock:
            officer_id = self._task_officer.get(task_id)
            if officer_id is None:
                raise TaskNotFoundError(f"Task {task_id} not found or not assigned")

            officer = self._officers.get(officer_id)
            if officer is None:
                raise OfficerNotFoundError(f"Assigned officer {officer_id} not found")

            task = self._tasks[task_id]
            officer.current_load -= 1
            officer.assigned_task_ids.remove(task_id)
            del self._task_officer[task_id]
            task.status = TaskStatus.COMPLETED
            task.completed_at = datetime.now()
            logger.info("Task %s completed by officer %s", task_id, officer_id)

            drained: List[Task] = []
            if officer.has_capacity and self._queue:
                drained = self._drain_queue()

            return CompletionResult(
                task_id=task_id,
                officer_id=officer_id,
                remaining_load=officer.current_load,
                drained=[t.model_copy(deep=True) for t in drained],
            )

    def _sort_queue(self) -> None:
        # Stable sort: equal priorities stay first-come first-served
        self._queue.sort(key=lambda t: t.priority, reverse=True)

    def _drain_queue(self) -> List[Task]:
        """
        First-fit pass over the queue in priority order. Tasks that find no
        free officer stay queued.
        """
        self._sort_queue()
        assigned: List[Task] = []

        for task in self._queue:
            officer = next((o for o in self._officers.values() if o.has_capacity), None)
            if officer is None:
                break
            self._assign(task, officer, self._queued_applications.pop(task.task_id, None))
            assigned.append(task)

        if assigned:
            self._queue = [t for t in self._queue if t.status == TaskStatus.QUEUED]
            logger.info("Queue drain assigned %d task(s), %d still queued", len(assigned), len(self._queue))
        return assigned

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    async def get_task(self, task_id: str) -> Optional[Task]:
        async with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    async def get_officer(self, officer_id: str) -> Optional[OfficerWorkload]:
        async with self._lock:
            officer = self._officers.get(officer_id)
            return self._workload(officer) if officer else None

    async def get_workload_stats(self) -> WorkloadStats:
        async with self._lock:
            officers = list(self._officers.values())
            return WorkloadStats(
                total_officers=len(officers),
                available_officers=sum(1 for o in officers if o.has_capacity),
                total_capacity=sum(o.capacity for o in officers),
                current_load=sum(o.current_load for o in officers),
                queued_tasks=len(self._queue),
                officers=[self._workload(o) for o in officers],
            )

    async def verify_integrity(self) -> List[str]:
        """Returns every violated scheduling invariant (empty when consistent)."""
        async with self._lock:
            problems = []
            seen: Dict[str, str] = {}
            for officer in self._officers.values():
                if officer.current_load != len(officer.assigned_task_ids):
                    problems.append(f"{officer.officer_id}: load {officer.current_load} != {len(officer.assigned_task_ids)} tasks")
                if officer.current_load > officer.capacity:
                    problems.append(f"{officer.officer_id}: load exceeds capacity {officer.capacity}")
                for task_id in officer.assigned_task_ids:
                    if task_id in seen:
                        problems.append(f"{task_id}: assigned to {seen[task_id]} and {officer.officer_id}")
                    seen[task_id] = officer.officer_id

            queued_ids = {t.task_id for t in self._queue}
            for task_id in queued_ids & set(seen):
                problems.append(f"{task_id}: both queued and assigned")
            return problems

    def _snapshot(self, officer: Officer) -> OfficerSnapshot:
        return OfficerSnapshot(
            officer_id=officer.officer_id,
            name=officer.name,
            current_load=officer.current_load,
            capacity=officer.capacity,
        )

    def _workload(self, officer: Officer) -> OfficerWorkload:
        return OfficerWorkload(
            officer_id=officer.officer_id,
            name=officer.name,
            current_load=officer.current_load,
            capacity=officer.capacity,
            utilization_rate=f"{officer.current_load / officer.capacity * 100:.1f}%",
            assigned_task_ids=list(officer.assigned_task_ids),
        )

    def _duplicate_result(self, task: Task) -> AssignmentResult:
        officer = self._officers.get(task.assigned_to) if task.status == TaskStatus.ASSIGNED else None
        position = self._queue_position(task.task_id) if task.status == TaskStatus.QUEUED else None
        logger.info("Task %s already exists (%s), returning existing record", task.task_id, task.status.value)
        return AssignmentResult(
            assigned=task.status == TaskStatus.ASSIGNED,
            queued=task.status == TaskStatus.QUEUED,
            duplicate=True,
            task=task.model_copy(deep=True),
            officer=self._snapshot(officer) if officer else None,
            queue_position=position,
        )

    def _queue_position(self, task_id: str) -> Optional[int]:
        for index, task in enumerate(self._queue, start=1):
            if task.task_id == task_id:
                return index
        return None
