"""Circuit breakers for upstream provider calls.

Embedding providers are configured per tenant, so one tenant's dead endpoint
must not slow down the others. ``CircuitBreakerRegistry`` hands out one
breaker per name (``embedding:<tenant_id>``) and is owned by the client that
calls the provider.

State machine:
- CLOSED: calls pass; ``failure_threshold`` consecutive failures open it.
- OPEN: calls are rejected with ``CircuitBreakerError`` until
  ``recovery_timeout`` seconds have passed since the last failure.
- HALF_OPEN: exactly one trial call is let through. Success closes the
  breaker, failure reopens it; other callers are rejected meanwhile.
"""

import asyncio
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type, Union

import structlog

logger = structlog.get_logger("circuit_breaker")

ExceptionTypes = Union[Type[BaseException], Tuple[Type[BaseException], ...]]


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """The breaker rejected the call without invoking the provider."""
    pass


@dataclass
class BreakerStats:
    name: str
    state: str
    failure_count: int
    failure_threshold: int
    recovery_timeout: float
    last_failure_time: Optional[float]


class CircuitBreaker:
    """Guards one upstream endpoint."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exception: ExceptionTypes = Exception,
        name: str = "circuit_breaker",
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name
        self._clock = clock

        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Await ``func(*args, **kwargs)`` if the breaker admits the call.

        Only ``expected_exception`` counts as a failure; anything else
        propagates without touching the state.
        """
        trial = await self._admit()
        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            await self._record(success=False)
            raise
        except BaseException:
            if trial:
                await self._release_trial()
            raise

        await self._record(success=True)
        return result

    async def _admit(self) -> bool:
        async with self._lock:
            if self.state == CircuitBreakerState.CLOSED:
                return False

            if self.state == CircuitBreakerState.OPEN and self._recovery_elapsed():
                self.state = CircuitBreakerState.HALF_OPEN
                logger.info("Circuit breaker half-open, admitting one trial call", name=self.name)

            if self.state == CircuitBreakerState.HALF_OPEN and not self._trial_in_flight:
                self._trial_in_flight = True
                return True

            logger.warning("Circuit breaker rejected call", name=self.name, state=self.state.value)
            raise CircuitBreakerError(f"Circuit breaker {self.name} is {self.state.value}")

    def _recovery_elapsed(self) -> bool:
        if self.last_failure_time is None:
            return True
        return self._clock() - self.last_failure_time >= self.recovery_timeout

    async def _release_trial(self) -> None:
        async with self._lock:
            self._trial_in_flight = False

    async def _record(self, success: bool) -> None:
        async with self._lock:
            was_trial = self.state == CircuitBreakerState.HALF_OPEN
            self._trial_in_flight = False

            if success:
                self.failure_count = 0
                if was_trial:
                    self.state = CircuitBreakerState.CLOSED
                    logger.info("Circuit breaker closed", name=self.name)
                return

            self.failure_count += 1
            self.last_failure_time = self._clock()
            if was_trial or self.failure_count >= self.failure_threshold:
                self.state = CircuitBreakerState.OPEN
                logger.warning(
                    "Circuit breaker opened",
                    name=self.name,
                    failure_count=self.failure_count,
                    threshold=self.failure_threshold,
                )

    def get_stats(self) -> Dict[str, Any]:
        return asdict(BreakerStats(
            name=self.name,
            state=self.state.value,
            failure_count=self.failure_count,
            failure_threshold=self.failure_threshold,
            recovery_timeout=self.recovery_timeout,
            last_failure_time=self.last_failure_time,
        ))


class CircuitBreakerRegistry:
    """Breakers created on first use, all sharing one configuration."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exception: ExceptionTypes = Exception,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self._clock = clock
        self.breakers: Dict[str, CircuitBreaker] = {}

    def get_breaker(self, name: str) -> CircuitBreaker:
        breaker = self.breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(
                failure_threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout,
                expected_exception=self.expected_exception,
                name=name,
                clock=self._clock,
            )
            self.breakers[name] = breaker
        return breaker

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        return {name: breaker.get_stats() for name, breaker in self.breakers.items()}
