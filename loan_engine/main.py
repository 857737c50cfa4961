import logging
import logging.config
from collections import deque
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from loan_engine.core.config import settings
from loan_engine.core.errors import (
    DuplicateOfficerError,
    InputValidationError,
    LoanEngineError,
    OfficerBusyError,
    OfficerNotFoundError,
    SchedulingError,
    TaskNotFoundError,
)
from loan_engine.schemas.application import IncomeVerification, LoanApplication, LoanType
from loan_engine.schemas.pipeline import PipelineResult
from loan_engine.schemas.scheduling import CompletionResult, OfficerSnapshot, Task, WorkloadStats
from loan_engine.services.pipeline import LoanPipeline

logging.config.dictConfig({
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "default"},
    },
    "loggers": {
        "loan_engine": {"handlers": ["console"], "level": settings.LOG_LEVEL, "propagate": False},
    },
})
logger = logging.getLogger("loan_engine.main")


# --- METRICS COLLECTOR ---
class MetricsCollector:
    """In-memory metrics storage"""
    def __init__(self, max_size=1000):
        self.results = deque(maxlen=max_size)
    
    def record(self, result: PipelineResult):
        """Store a condensed pipeline outcome with timestamp"""
        assignment = result.assignment
        self.results.append({
            "application_id": result.application.application_id,
            "stage": result.stage,
            "success": result.success,
            "approved": bool(result.decision and result.decision.approved),
            "assigned": bool(assignment and assignment.assigned),
            "queued": bool(assignment and assignment.queued),
            "failures": [f.stage for f in result.failures],
            "timestamp": datetime.now().isoformat()
        })
    
    def get_stats(self) -> dict:
        """Calculate aggregated statistics"""
        if not self.results:
            return {
                "message": "No data yet.",
                "total_applications": 0
            }
        
        total = len(self.results)
        approved = sum(1 for r in self.results if r["approved"])
        assigned = sum(1 for r in self.results if r["assigned"])
        queued = sum(1 for r in self.results if r["queued"])
        assessment_failures = sum(1 for r in self.results if "credit_assessment" in r["failures"])
        
        return {
            "total_applications": total,
            "approved": approved,
            "approval_rate": f"{(approved/total)*100:.1f}%",
            "assigned_on_arrival": assigned,
            "queued_on_arrival": queued,
            "credit_assessment_failures": assessment_failures,
            "recent_results": list(self.results)[-10:]
        }


pipeline = LoanPipeline.from_settings(settings)
metrics = MetricsCollector()


# --- LIFESPAN ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup health check and graceful shutdown"""
    bureaus = [g.health_check() for g in pipeline.credit_assessor.gateways]
    logger.info("Bureaus configured: %s", ", ".join(b["bureau"] for b in bureaus))
    logger.info("Bureau failure policy: %s", pipeline.credit_assessor.failure_policy)
    workload = await pipeline.workflow_manager.get_workload_stats()
    logger.info("Officers registered: %d (capacity %d)", workload.total_officers, workload.total_capacity)
    yield
    logger.info("Shutting down, final metrics: %s", metrics.get_stats().get("total_applications"))


# --- FASTAPI APP ---
app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Credit assessment, underwriting and loan officer assignment",
    version="1.0.0",
    lifespan=lifespan
)

ERROR_STATUS = [
    (TaskNotFoundError, 404),
    (OfficerNotFoundError, 404),
    (OfficerBusyError, 409),
    (DuplicateOfficerError, 409),
    (InputValidationError, 422),
    (SchedulingError, 400),
]


@app.exception_handler(LoanEngineError)
async def loan_engine_error_handler(request: Request, exc: LoanEngineError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status_code, content=exc.content)


# --- REQUEST MODELS ---
class ProcessApplicationRequest(BaseModel):
    application: LoanApplication
    customer_info: Optional[Dict[str, Any]] = Field(default=None, description="Identity block sent to the bureaus")
    income_verification: Optional[IncomeVerification] = None


class OfficerRequest(BaseModel):
    officer_id: str
    name: Optional[str] = None
    capacity: Optional[int] = Field(default=None, gt=0)
    specializations: List[LoanType] = Field(default_factory=list)
    performance_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)


# --- API ENDPOINTS ---

@app.get("/health")
async def health_check():
    """Bureau circuit states plus scheduler integrity"""
    problems = await pipeline.workflow_manager.verify_integrity()
    bureaus = [g.health_check() for g in pipeline.credit_assessor.gateways]
    status = "healthy" if not problems else "unhealthy"
    result = {"status": status, "bureaus": bureaus, "scheduler_problems": problems}
    if problems:
        raise HTTPException(status_code=503, detail=result)
    return result


@app.post("/v1/applications/process", response_model=PipelineResult)
async def process_application(body: ProcessApplicationRequest):
    """Runs assessment, underwriting and assignment for one application"""
    result = await pipeline.process_application(
        body.application,
        body.customer_info,
        body.income_verification,
    )
    metrics.record(result)
    return result


@app.post("/v1/officers", response_model=OfficerSnapshot, status_code=201)
async def register_officer(body: OfficerRequest):
    return await pipeline.workflow_manager.register_officer(
        body.officer_id,
        name=body.name,
        capacity=body.capacity,
        specializations=body.specializations,
        performance_score=body.performance_score,
    )


@app.delete("/v1/officers/{officer_id}", status_code=204)
async def unregister_officer(officer_id: str):
    await pipeline.workflow_manager.unregister_officer(officer_id)


@app.get("/v1/tasks/{task_id}", response_model=Task)
async def get_task(task_id: str):
    task = await pipeline.workflow_manager.get_task(task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@app.post("/v1/tasks/{task_id}/complete", response_model=CompletionResult)
async def complete_task(task_id: str):
    return await pipeline.workflow_manager.complete_task(task_id)


@app.get("/v1/workload", response_model=WorkloadStats)
async def get_workload():
    return await pipeline.workflow_manager.get_workload_stats()


@app.get("/v1/metrics")
async def get_metrics():
    """View aggregated pipeline metrics"""
    stats = metrics.get_stats()
    stats["pipeline"] = await pipeline.get_stats()
    return stats
