# loan_engine/core/errors.py

from datetime import datetime
from typing import Any, Dict, Optional


class LoanEngineError(Exception):
    """
    Base error for every pipeline stage.

    Carries enough context (stage, reason, timestamp) for an audit
    collaborator to record the failure without parsing messages.
    """
    errcode = "LE00.000"
    stage = "pipeline"

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None, stage: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.details = details
        if stage is not None:
            self.stage = stage
        self.timestamp = datetime.now()

    def __str__(self):
        if self.details is None:
            return f"{self.errcode} [{self.stage}] >> {self.reason}"

        return f"{self.errcode} [{self.stage}] >> {self.reason} >> {self.details}"

    @property
    def content(self) -> Dict[str, Any]:
        data = {
            "errcode": self.errcode,
            "stage": self.stage,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.details:
            data["details"] = self.details
        return data


class InputValidationError(LoanEngineError):
    errcode = "LE01.422"
    stage = "input_validation"


class BureauUnavailableError(LoanEngineError):
    errcode = "LE02.503"
    stage = "credit_assessment"


class CircuitOpenError(BureauUnavailableError):
    errcode = "LE02.504"


class AggregationError(LoanEngineError):
    errcode = "LE02.500"
    stage = "credit_assessment"


class CreditScoreAlreadySetError(LoanEngineError):
    errcode = "LE02.409"
    stage = "credit_assessment"


class SchedulingError(LoanEngineError):
    errcode = "LE04.400"
    stage = "scheduling"


class TaskNotFoundError(SchedulingError):
    errcode = "LE04.404"


class OfficerNotFoundError(SchedulingError):
    errcode = "LE04.414"


class OfficerBusyError(SchedulingError):
    errcode = "LE04.409"


class DuplicateOfficerError(SchedulingError):
    errcode = "LE04.419"
