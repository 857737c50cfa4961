# loan_engine/schemas/pipeline.py

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from loan_engine.schemas.application import LoanApplication
from loan_engine.schemas.credit import CreditAssessment
from loan_engine.schemas.scheduling import AssignmentResult
from loan_engine.schemas.underwriting import UnderwritingDecision


class StageFailure(BaseModel):
    stage: str
    reason: str
    errcode: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


class PipelineResult(BaseModel):
    success: bool
    stage: str = Field(..., description="Last stage reached: credit_assessment, underwriting, scheduling or completed")
    application: LoanApplication
    credit_assessment: Optional[CreditAssessment] = None
    decision: Optional[UnderwritingDecision] = None
    assignment: Optional[AssignmentResult] = None
    failures: List[StageFailure] = Field(default_factory=list)
    processed_at: datetime = Field(default_factory=datetime.now)
