"""
Circuit breaker for calls to external enrichment services (OCR, language model).
"""
import logging
import time
from enum import Enum
from typing import Callable, Any, Dict, Optional
from functools import wraps
from app.config import settings

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation, requests pass through
    OPEN = "open"  # Circuit is open, requests fail immediately
    HALF_OPEN = "half_open"  # Testing if service has recovered


class CircuitBreakerOpenException(Exception):
    """Exception raised when circuit breaker is open."""

    def __init__(self, message: str = "Circuit breaker is open"):
        self.message = message
        super().__init__(self.message)


# Client errors caused by the submitted document: bad request, too large, unprocessable
REJECTED_REQUEST_STATUSES = frozenset({400, 413, 422})


def is_rejected_request(exception: Exception) -> bool:
    """
    True when the service answered but refused this particular document.

    Gateway errors flag this with ``retryable=False``; SDK status errors carry
    an HTTP ``status_code``.
    """
    if getattr(exception, "retryable", None) is False:
        return True
    return getattr(exception, "status_code", None) in REJECTED_REQUEST_STATUSES


class CircuitBreaker:
    """
    Circuit breaker around an async callable.

    CLOSED until failure_threshold consecutive failures, then OPEN (calls fail
    fast) for recovery_timeout seconds, then HALF_OPEN where up to
    half_open_max_calls trial calls decide whether to close or reopen.

    Usage:
        breaker = CircuitBreaker(name="vision_api")
        result = await breaker.call(client_call, *args, **kwargs)
    """

    def __init__(
        self,
        name: str = "default",
        failure_threshold: Optional[int] = None,
        recovery_timeout: Optional[int] = None,
        half_open_max_calls: Optional[int] = None,
        excluded_exceptions: tuple = (),
        exclude: Optional[Callable[[Exception], bool]] = None
    ):
        self.name = name
        self.failure_threshold = failure_threshold or settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD
        self.recovery_timeout = recovery_timeout or settings.CIRCUIT_BREAKER_RECOVERY_TIMEOUT
        self.half_open_max_calls = half_open_max_calls or settings.CIRCUIT_BREAKER_HALF_OPEN_MAX_CALLS
        self.excluded_exceptions = excluded_exceptions
        self.exclude = exclude

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None
        self._half_open_calls = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    def _should_attempt_reset(self) -> bool:
        if self._last_failure_time is None:
            return True
        return (time.monotonic() - self._last_failure_time) >= self.recovery_timeout

    def _on_success(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.half_open_max_calls:
                self._transition(CircuitState.CLOSED)
                logger.info(f"Circuit breaker '{self.name}' closed after successful recovery")
        else:
            self._failure_count = 0

    def _is_excluded(self, exception: Exception) -> bool:
        if isinstance(exception, self.excluded_exceptions):
            return True
        return self.exclude is not None and self.exclude(exception)

    def _on_failure(self, exception: Exception) -> None:
        if self._is_excluded(exception):
            # Excluded errors count as a response from the service
            self._on_success()
            return

        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
            logger.warning(f"Circuit breaker '{self.name}' reopened after failure in half-open state")
        elif self._state == CircuitState.CLOSED and self._failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)
            logger.warning(f"Circuit breaker '{self.name}' opened after {self._failure_count} failures")

    def _transition(self, state: CircuitState) -> None:
        self._state = state
        self._success_count = 0
        self._half_open_calls = 0
        if state == CircuitState.CLOSED:
            self._failure_count = 0

    async def call(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute an async function through the circuit breaker.

        Raises:
            CircuitBreakerOpenException: If circuit is open
            Exception: Whatever the wrapped function raises
        """
        if self._state == CircuitState.OPEN:
            if self._should_attempt_reset():
                self._transition(CircuitState.HALF_OPEN)
                logger.info(f"Circuit breaker '{self.name}' entering half-open state")
            else:
                raise CircuitBreakerOpenException(
                    f"Circuit breaker '{self.name}' is open. "
                    f"Retry after {self.recovery_timeout}s"
                )

        if self._state == CircuitState.HALF_OPEN:
            if self._half_open_calls >= self.half_open_max_calls:
                raise CircuitBreakerOpenException(
                    f"Circuit breaker '{self.name}' half-open call limit reached"
                )
            self._half_open_calls += 1

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            self._on_failure(e)
            raise
        self._on_success()
        return result

    def __call__(self, func: Callable) -> Callable:
        """Decorator form of call()."""
        @wraps(func)
        async def wrapper(*args, **kwargs):
            return await self.call(func, *args, **kwargs)
        return wrapper

    def reset(self) -> None:
        """Manually reset the circuit breaker to closed state."""
        self._transition(CircuitState.CLOSED)
        self._last_failure_time = None
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    def get_status(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
        }


# Pre-configured circuit breakers for enrichment services
vision_api_circuit_breaker = CircuitBreaker(name="vision_api", exclude=is_rejected_request)
anthropic_api_circuit_breaker = CircuitBreaker(name="anthropic_api", exclude=is_rejected_request)
