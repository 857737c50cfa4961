from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# loan_engine/core/config.py


class OfficerSeed(BaseModel):
    """An officer registered at startup."""
    officer_id: str
    name: Optional[str] = None
    capacity: Optional[int] = None
    specializations: List[str] = Field(default_factory=list)
    performance_score: Optional[float] = None


class Settings(BaseSettings):
    PROJECT_NAME: str = "Loan Adjudication Engine"
    LOG_LEVEL: str = "INFO"

    # Bureau ids -> opaque routing keys. No wire protocol is implied.
    BUREAU_ENDPOINTS: Dict[str, str] = {
        "CIBIL": "https://api.cibil.com",
        "EXPERIAN": "https://api.experian.com",
        "EQUIFAX": "https://api.equifax.com",
    }
    BUREAU_TIMEOUT_SECONDS: float = 30.0
    BUREAU_FAILURE_POLICY: Literal["degrade", "strict"] = "degrade"
    MIN_BUREAU_RESPONSES: int = 1
    BUREAU_FAILURE_THRESHOLD: int = 5
    BUREAU_RECOVERY_TIMEOUT: float = 60.0
    BUREAU_MAX_REQUESTS: int = 100
    BUREAU_WINDOW_SECONDS: float = 60.0
    SIMULATED_BUREAU_FAILURE_RATE: float = 0.0

    # Underwriting thresholds
    MIN_CREDIT_SCORE: int = 650
    MAX_LOAN_AMOUNT: float = 1_000_000
    MAX_DEBT_TO_INCOME_RATIO: float = 0.43
    MAX_INCOME_MULTIPLIER: float = 3.0
    LOAN_TERM_MONTHS: int = 60

    # Scheduling
    DEFAULT_OFFICER_CAPACITY: int = 10
    DEFAULT_PERFORMANCE_SCORE: float = 100.0
    OFFICERS: List[OfficerSeed] = []
    SELECTION_JITTER: bool = True
    SELECTION_SEED: Optional[int] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
