import logging
import time
from enum import Enum
from typing import Any, Awaitable, Callable

from loan_engine.core.errors import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    CLOSED = "CLOSED"     # Normal operation (Current flows)
    OPEN = "OPEN"         # Circuit broken (Fails fast)
    HALF_OPEN = "HALF_OPEN" # Testing recovery

class CircuitBreaker:
    def __init__(self, name: str, failure_threshold: int = 5, recovery_timeout: float = 60):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.last_failure_time = 0.0
    
    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """
        Awaits the coroutine function if circuit is CLOSED or HALF_OPEN.
        Raises CircuitOpenError if OPEN.
        """
        if self.state == CircuitState.OPEN:
            time_since_failure = time.monotonic() - self.last_failure_time
            if time_since_failure > self.recovery_timeout:
                logger.warning("Circuit %s entering HALF_OPEN state (testing recovery)", self.name)
                self.state = CircuitState.HALF_OPEN
            else:
                remaining = int(self.recovery_timeout - time_since_failure)
                raise CircuitOpenError(
                    f"Circuit for bureau {self.name} is OPEN. Retry in {remaining}s",
                    details={"bureau": self.name, "retry_in": remaining},
                )

        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def _on_success(self):
        """Reset failure count on success"""
        if self.state != CircuitState.CLOSED:
            logger.info("Circuit %s closed, bureau healthy again", self.name)
            self.state = CircuitState.CLOSED
        self.failure_count = 0

    def _on_failure(self):
        """Track failures and open circuit if threshold reached"""
        self.failure_count += 1
        self.last_failure_time = time.monotonic()
        
        if self.state == CircuitState.HALF_OPEN or (
            self.state != CircuitState.OPEN and self.failure_count >= self.failure_threshold
        ):
            self.state = CircuitState.OPEN
            logger.error("Circuit %s opened after %d failures", self.name, self.failure_count)
