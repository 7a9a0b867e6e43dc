"""Error taxonomy and circuit breaking for the detective core.

Nothing raised here is fatal to the host process:
- ProviderError: one evidence source failed; counted as zero evidence
- ExplainerError: synthesis call failed or timed out; triggers fallback
- JobNotFound: unknown or expired job id; caller should start a new scan
- BudgetExceeded: reason recorded when the quick scan runs out of time
"""

import traceback
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Callable, Any, Dict

from loguru import logger


class DetectiveError(Exception):
    """Base class for all detective errors."""


class ProviderError(DetectiveError):
    """An evidence provider failed during a scan."""

    def __init__(self, provider: str, cause: BaseException):
        self.provider = provider
        self.cause = cause
        super().__init__(f"Provider {provider} failed: {cause}")


class ExplainerError(DetectiveError):
    """The external explanation capability failed or timed out."""


class CircuitOpenError(ExplainerError):
    """The explainer circuit is open; calls are short-circuited."""


class JobNotFound(DetectiveError):
    """Progress or control requested for an unknown or expired job."""

    retryable = True

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Scan {job_id} not found or expired; start a new scan")


class BudgetExceeded(DetectiveError):
    """The quick scan budget did not allow a provider to run."""

    def __init__(self, provider: str, elapsed: float, budget: float):
        self.provider = provider
        self.elapsed = elapsed
        self.budget = budget
        super().__init__(
            f"Skipped {provider}: {elapsed:.2f}s elapsed of {budget:.2f}s budget"
        )


class InvalidControlAction(DetectiveError):
    """Unknown job control action."""


class ServiceState(Enum):
    """Service health states."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    CIRCUIT_OPEN = "circuit_open"


@dataclass
class ErrorEvent:
    """Represents an error event."""
    timestamp: datetime
    service: str
    error_type: str
    message: str
    traceback: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            'timestamp': self.timestamp.isoformat(),
            'service': self.service,
            'error_type': self.error_type,
            'message': self.message
        }


@dataclass
class ServiceHealth:
    """Tracks health of a service."""
    name: str
    state: ServiceState = ServiceState.HEALTHY
    error_count: int = 0
    success_count: int = 0
    last_error: Optional[ErrorEvent] = None
    consecutive_failures: int = 0
    circuit_opened_at: Optional[datetime] = None

    @property
    def error_rate(self) -> float:
        """Calculate error rate."""
        total = self.error_count + self.success_count
        if total == 0:
            return 0.0
        return self.error_count / total


class CircuitBreaker:
    """Circuit breaker protecting calls to an external service."""

    def __init__(self,
                 name: str,
                 failure_threshold: int = 3,
                 recovery_timeout: int = 60,
                 clock: Callable[[], datetime] = datetime.now):
        """
        Initialize circuit breaker.

        Args:
            name: Service name
            failure_threshold: Consecutive failures before opening circuit
            recovery_timeout: Seconds before a trial call is let through
            clock: Time source, injectable for tests
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock
        self.health = ServiceHealth(name=name)

    @property
    def is_open(self) -> bool:
        return (self.health.state == ServiceState.CIRCUIT_OPEN
                and not self._should_attempt_recovery())

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Call an async function with circuit breaker protection.

        Raises:
            CircuitOpenError: If the circuit is open
            Exception: Whatever the wrapped call raised
        """
        if self.health.state == ServiceState.CIRCUIT_OPEN:
            if not self._should_attempt_recovery():
                raise CircuitOpenError(f"Circuit breaker {self.name} is open")
            logger.info(f"Circuit breaker {self.name}: Attempting recovery")

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._record_failure(e)
            if self.health.consecutive_failures >= self.failure_threshold:
                self._open_circuit()
            raise

        self._record_success()
        return result

    def _record_success(self):
        self.health.success_count += 1
        self.health.consecutive_failures = 0

        if self.health.state != ServiceState.HEALTHY:
            logger.info(f"Circuit breaker {self.name}: Circuit closed after recovery")
            self.health.state = ServiceState.HEALTHY
            self.health.circuit_opened_at = None

    def _record_failure(self, error: BaseException):
        self.health.error_count += 1
        self.health.consecutive_failures += 1
        self.health.last_error = ErrorEvent(
            timestamp=self.clock(),
            service=self.name,
            error_type=type(error).__name__,
            message=str(error),
            traceback=traceback.format_exc()
        )

        if self.health.state == ServiceState.HEALTHY and self.health.error_rate > 0.2:
            self.health.state = ServiceState.DEGRADED

    def _open_circuit(self):
        logger.warning(
            f"Circuit breaker {self.name}: Opening circuit after "
            f"{self.health.consecutive_failures} failures"
        )
        self.health.state = ServiceState.CIRCUIT_OPEN
        self.health.circuit_opened_at = self.clock()

    def _should_attempt_recovery(self) -> bool:
        if not self.health.circuit_opened_at:
            return True
        elapsed = (self.clock() - self.health.circuit_opened_at).total_seconds()
        return elapsed >= self.recovery_timeout

    def reset(self):
        """Reset circuit breaker."""
        self.health = ServiceHealth(name=self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.health.state.value,
            'error_rate': self.health.error_rate,
            'consecutive_failures': self.health.consecutive_failures,
            'last_error': self.health.last_error.to_dict() if self.health.last_error else None
        }
