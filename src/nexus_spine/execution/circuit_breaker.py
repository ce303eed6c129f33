"""
Circuit breaker for rate-limited, occasionally-unavailable upstreams.

One breaker per enrichment source models the health of that upstream. After
``failure_threshold`` consecutive failures it opens and sheds load: the
wrapped operation is not invoked and the caller's ``fallback`` is returned
instead. Once ``reset_timeout`` seconds have passed, exactly one probe call
is let through to decide whether to close again.

States:
    CLOSED:    Normal operation. Failures are counted and re-raised.
    OPEN:      Short-circuit. ``execute`` returns ``fallback``, raises nothing.
    HALF_OPEN: One probe in flight. Success closes, failure reopens.
               Calls admitted earlier that finish now only update counters.

Architecture:
    ::

        execute(operation, fallback)
            │
            ├─ allow_request() ── False ──► return fallback
            │        │ True
            │        ▼
            │   await operation()
            │        │
            │   ┌────┴─────────┐
            │ success        raises
            │ record_success  record_failure ──► re-raise
            ▼
         result

        CLOSED ──(N failures)──► OPEN ──(reset_timeout elapsed,
          ▲                       ▲      next call)──► HALF_OPEN
          │                       └────── probe fails ─────┤
          └──────────────────────────── probe succeeds ────┘

Guardrails:
    ❌ DON'T: Treat ``fallback`` (usually ``None``) as "entity does not exist"
    ✅ DO: Treat it as "upstream degraded, try again later"

    ❌ DON'T: Create a breaker per batch run
    ✅ DO: Get breakers from one injected :class:`CircuitBreakerRegistry`
      so concurrent runs of a source share its health

Example:
    >>> registry = CircuitBreakerRegistry()
    >>> breaker = registry.get_or_create("sec-edgar", failure_threshold=3, reset_timeout=300)
    >>> result = await breaker.execute(lambda: adapter.fetch_one(entity), fallback=None)

Tags:
    circuit-breaker, resilience, fault-tolerance, async, backpressure

Doc-Types:
    - API Reference
    - Technical Design
"""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from nexus_spine.core.logging import get_logger
from nexus_spine.core.timestamps import to_iso8601, utc_now

logger = get_logger(__name__)

T = TypeVar("T")
F = TypeVar("F")

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RESET_TIMEOUT = 300.0


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    rejected_requests: int = 0
    state_changes: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass(frozen=True)
class CircuitBreakerStatus:
    """Point-in-time health snapshot of one breaker."""

    name: str
    state: CircuitState
    failures: int
    last_failure: str | None
    retry_at_seconds: float | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self.failures,
            "last_failure": self.last_failure,
            "retry_at_seconds": self.retry_at_seconds,
        }


@dataclass(frozen=True)
class Permit:
    """Admission handed out by :meth:`CircuitBreaker.allow_request`.

    ``probe`` is the half-open probe generation, or ``None`` for an ordinary
    call admitted while CLOSED.
    """

    probe: int | None = None


@dataclass
class CircuitBreaker:
    """Async circuit breaker guarding one upstream source.

    Attributes:
        name: Identifier for this circuit (the source name)
        failure_threshold: Consecutive failures before opening
        reset_timeout: Seconds to stay OPEN before a probe is allowed
        clock: Monotonic time source in seconds
    """

    name: str = "default"
    failure_threshold: int = DEFAULT_FAILURE_THRESHOLD
    reset_timeout: float = DEFAULT_RESET_TIMEOUT
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _consecutive_failures: int = field(default=0, init=False)
    _opened_at: float | None = field(default=None, init=False)
    _active_probe: int | None = field(default=None, init=False)
    _probe_generation: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False)

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be at least 1")
        if self.reset_timeout <= 0:
            raise ValueError("reset_timeout must be positive")

    @property
    def state(self) -> CircuitState:
        """Current state.

        Reading the state never transitions it: an OPEN breaker whose
        cooldown has elapsed still reports OPEN until the next call probes.
        """
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def opened_at(self) -> float | None:
        return self._opened_at

    @property
    def stats(self) -> CircuitStats:
        return self._stats

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        self._stats.state_changes += 1
        self._stats.last_state_change = utc_now()
        logger.debug(
            "circuit_breaker.transition",
            breaker=self.name,
            from_state=old_state.value,
            to_state=new_state.value,
        )

    def _cooldown_remaining(self, now: float) -> float:
        if self._opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (now - self._opened_at))

    # ── Low-level API ────────────────────────────────────────────

    def allow_request(self) -> Permit | None:
        """Decide whether the next call may reach the upstream.

        Returns a :class:`Permit` to hand back to :meth:`record_success`,
        :meth:`record_failure` or :meth:`release`, or ``None`` when the call
        is refused. An OPEN breaker past its cooldown moves to HALF_OPEN here
        and admits the caller as the single probe; only that caller's permit
        can close or reopen the circuit.
        """
        with self._lock:
            self._stats.total_requests += 1

            if self._state == CircuitState.CLOSED:
                return Permit()

            if self._state == CircuitState.OPEN:
                if self._cooldown_remaining(self.clock()) > 0:
                    self._stats.rejected_requests += 1
                    return None
                self._transition_to(CircuitState.HALF_OPEN)
                logger.info("circuit_breaker.half_open", breaker=self.name)
                return self._start_probe()

            # HALF_OPEN: only one probe at a time
            if self._active_probe is not None:
                self._stats.rejected_requests += 1
                return None
            return self._start_probe()

    def _start_probe(self) -> Permit:
        self._probe_generation += 1
        self._active_probe = self._probe_generation
        return Permit(probe=self._probe_generation)

    def _holds_probe(self, permit: Permit | None) -> bool:
        return (
            permit is not None
            and permit.probe is not None
            and permit.probe == self._active_probe
            and self._state == CircuitState.HALF_OPEN
        )

    def record_success(self, permit: Permit | None = None) -> None:
        """Record a successful call; the probe's success closes the breaker."""
        with self._lock:
            self._stats.successful_requests += 1
            self._stats.last_success_time = utc_now()

            if self._holds_probe(permit):
                self._active_probe = None
                self._opened_at = None
                self._consecutive_failures = 0
                self._transition_to(CircuitState.CLOSED)
                logger.info("circuit_breaker.closed", breaker=self.name)
            elif self._state == CircuitState.CLOSED:
                self._consecutive_failures = 0

    def record_failure(self, error: BaseException | None = None, permit: Permit | None = None) -> None:
        """Record a failed call; may open the breaker, or reopen it after a failed probe.

        A call admitted before the circuit opened that fails afterwards only
        counts; it does not decide the probe's outcome.
        """
        with self._lock:
            now = self.clock()
            self._consecutive_failures += 1
            self._stats.failed_requests += 1
            self._stats.last_failure_time = utc_now()
            error_text = str(error) if error is not None else None

            if self._holds_probe(permit):
                self._active_probe = None
                self._opened_at = now
                self._transition_to(CircuitState.OPEN)
                logger.warning(
                    "circuit_breaker.reopened",
                    breaker=self.name,
                    reset_timeout=self.reset_timeout,
                    error=error_text,
                )
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.failure_threshold
            ):
                self._opened_at = now
                self._transition_to(CircuitState.OPEN)
                logger.warning(
                    "circuit_breaker.opened",
                    breaker=self.name,
                    failures=self._consecutive_failures,
                    reset_timeout=self.reset_timeout,
                    error=error_text,
                )

    def release(self, permit: Permit | None) -> None:
        """Give back a permit whose call ended without an outcome (cancelled).

        A cancelled probe proves nothing: the breaker returns to OPEN with the
        old ``opened_at`` so the next call probes again. Releasing any other
        permit changes nothing.
        """
        with self._lock:
            if self._holds_probe(permit):
                self._active_probe = None
                self._transition_to(CircuitState.OPEN)

    # ── Execution ────────────────────────────────────────────────

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: F = None,
    ) -> T | F:
        """Run ``operation`` through the breaker.

        Args:
            operation: Zero-argument callable returning an awaitable
            fallback: Value returned, unchanged, when the call is short-circuited

        Returns:
            The operation's result, or ``fallback`` if the breaker refused the call.

        Raises:
            Exception: Whatever ``operation`` raised (CLOSED and HALF_OPEN only).
        """
        permit = self.allow_request()
        if permit is None:
            logger.debug(
                "circuit_breaker.short_circuit",
                breaker=self.name,
                state=self._state.value,
            )
            return fallback

        try:
            result = await operation()
        except asyncio.CancelledError:
            self.release(permit)
            raise
        except Exception as e:
            self.record_failure(e, permit)
            raise

        self.record_success(permit)
        return result

    # ── Maintenance ──────────────────────────────────────────────

    def reset(self) -> None:
        """Force the circuit CLOSED with a zeroed failure counter."""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)
            self._consecutive_failures = 0
            self._opened_at = None
            self._active_probe = None

    def status(self) -> CircuitBreakerStatus:
        """Snapshot for health views and the CLI."""
        with self._lock:
            retry_at = None
            if self._state == CircuitState.OPEN:
                retry_at = self._cooldown_remaining(self.clock())
            last_failure = self._stats.last_failure_time
            return CircuitBreakerStatus(
                name=self.name,
                state=self._state,
                failures=self._consecutive_failures,
                last_failure=to_iso8601(last_failure) if last_failure else None,
                retry_at_seconds=retry_at,
            )


class CircuitBreakerRegistry:
    """Named circuit breakers, one per source.

    Constructed once at startup and passed to every orchestrator; there is
    no module-level default registry. All breakers share the registry's
    clock.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()
        self._clock = clock

    def get(self, name: str) -> CircuitBreaker | None:
        """Get a circuit breaker by name, returns None if not found."""
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(
        self,
        name: str,
        *,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout: float = DEFAULT_RESET_TIMEOUT,
    ) -> CircuitBreaker:
        """Get or create a circuit breaker by name.

        The first call for a name fixes its configuration; later calls return
        the existing instance regardless of the arguments passed.
        """
        with self._lock:
            if name not in self._breakers:
                self._breakers[name] = CircuitBreaker(
                    name=name,
                    failure_threshold=failure_threshold,
                    reset_timeout=reset_timeout,
                    clock=self._clock,
                )
            return self._breakers[name]

    def names(self) -> list[str]:
        """List all registered circuit breaker names."""
        with self._lock:
            return list(self._breakers.keys())

    def status(self) -> list[CircuitBreakerStatus]:
        with self._lock:
            return [breaker.status() for breaker in self._breakers.values()]

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        with self._lock:
            for breaker in self._breakers.values():
                breaker.reset()

    def __len__(self) -> int:
        return len(self._breakers)


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitBreakerStatus",
    "CircuitState",
    "CircuitStats",
    "Permit",
]
