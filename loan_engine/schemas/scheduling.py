# loan_engine/schemas/scheduling.py

from datetime import datetime
from enum import Enum
from typing import List, Optional, Set

from pydantic import BaseModel, Field

from loan_engine.schemas.application import LoanType
from loan_engine.schemas.underwriting import UnderwritingDecision


def task_id_for(application_id: str) -> str:
    """Task ids derive from the application id so a re-submission maps to the same task."""
    return f"TASK-{application_id}"


class TaskStatus(str, Enum):
    QUEUED = "queued"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


class Officer(BaseModel):
    """Mutable registry record. Only the WorkflowManager touches it."""
    officer_id: str
    name: str
    capacity: int = Field(..., gt=0)
    current_load: int = 0
    specializations: Set[LoanType] = Field(default_factory=set)
    performance_score: float = Field(default=100.0, ge=0.0, le=100.0)
    assigned_task_ids: List[str] = Field(default_factory=list)
    registered_at: datetime = Field(default_factory=datetime.now)

    @property
    def has_capacity(self) -> bool:
        return self.current_load < self.capacity


class OfficerSnapshot(BaseModel):
    officer_id: str
    name: str
    current_load: int
    capacity: int


class Task(BaseModel):
    task_id: str
    application_id: str
    customer_id: str
    loan_type: LoanType
    requested_amount: float
    decision: UnderwritingDecision
    priority: int = Field(..., ge=0, le=100)
    status: TaskStatus = TaskStatus.QUEUED
    assigned_to: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    assigned_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    due_date: Optional[datetime] = None


class AssignmentResult(BaseModel):
    success: bool = True
    assigned: bool
    queued: bool
    duplicate: bool = False
    task: Task
    officer: Optional[OfficerSnapshot] = None
    queue_position: Optional[int] = None


class CompletionResult(BaseModel):
    success: bool = True
    task_id: str
    officer_id: str
    remaining_load: int
    drained: List[Task] = Field(default_factory=list)


class OfficerWorkload(BaseModel):
    officer_id: str
    name: str
    current_load: int
    capacity: int
    utilization_rate: str
    assigned_task_ids: List[str]


class WorkloadStats(BaseModel):
    total_officers: int
    available_officers: int
    total_capacity: int
    current_load: int
    queued_tasks: int
    officers: List[OfficerWorkload] = Field(default_factory=list)
