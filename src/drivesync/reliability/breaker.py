"""Per-service circuit breaker.

States:
    CLOSED     Normal operation, every attempt allowed.
    OPEN       Attempts refused until the reset timeout of the last error
               kind has elapsed since the last failure.
    HALF_OPEN  One trial attempt allowed; its outcome closes or reopens
               the circuit.

Transitions:
    CLOSED    --failure, count >= threshold(kind)--> OPEN
    CLOSED    --success--> CLOSED (count reset)
    OPEN      --allow() after reset_timeout--> HALF_OPEN
    HALF_OPEN --success--> CLOSED
    HALF_OPEN --failure--> OPEN
    any       --reset()--> CLOSED

All state lives in a CircuitBreakerStore, so a breaker instance holds
no per-service memory and several processes may share one state file.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime

from drivesync.core.config import BreakerConfig
from drivesync.core.types import CircuitState, ErrorKind, ServiceCircuit
from drivesync.reliability.store import CircuitBreakerStore

logger = logging.getLogger(__name__)

# (updated record, previous state) - return value is ignored
StateChangeCallback = Callable[[ServiceCircuit, CircuitState], object]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CircuitBreaker:
    """Decides admission and applies outcomes for every service.

    Usage:
        breaker = CircuitBreaker(store, BreakerConfig())
        if breaker.allow("icloud"):
            ok = run_sync()
            breaker.record_result("icloud", ok, ErrorKind.NETWORK if not ok else None)
    """

    def __init__(
        self,
        store: CircuitBreakerStore,
        config: BreakerConfig | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_state_change: StateChangeCallback | None = None,
        log: logging.Logger | None = None,
    ) -> None:
        """Initialize the breaker.

        Args:
            store: Persistent state store.
            config: Per-kind thresholds and timeouts.
            clock: Returns the current time (timezone-aware).
            on_state_change: Called after each persisted state change.
            log: Logger to use (defaults to this module's logger).
        """
        self._store = store
        self._config = config or BreakerConfig()
        self._clock = clock
        self._on_state_change = on_state_change
        self._log = log or logger

    @property
    def config(self) -> BreakerConfig:
        return self._config

    @property
    def store(self) -> CircuitBreakerStore:
        return self._store

    def get(self, service_id: str) -> ServiceCircuit:
        """Get the current record of a service without changing it."""
        return self._store.get(service_id)

    def _notify(self, circuit: ServiceCircuit, old: CircuitState) -> None:
        if old == circuit.state or self._on_state_change is None:
            return
        try:
            self._on_state_change(circuit, old)
        except Exception as e:
            self._log.error(f"Circuit breaker state change callback failed: {e}")

    def _reset_elapsed(self, circuit: ServiceCircuit, now: datetime) -> bool:
        if circuit.last_failure_time is None:
            return True
        elapsed = (now - circuit.last_failure_time).total_seconds()
        return elapsed >= self._config.reset_timeout(circuit.last_error_type)

    def _lease_expired(self, circuit: ServiceCircuit, now: datetime) -> bool:
        if circuit.last_updated is None:
            return True
        elapsed = (now - circuit.last_updated).total_seconds()
        return elapsed >= self._config.half_open_timeout

    def allow(self, service_id: str) -> bool:
        """Check whether a sync attempt may run for a service.

        The only mutation is OPEN -> HALF_OPEN once the reset timeout has
        elapsed; it is persisted before this method returns, and the call
        that performs it is the one granted the trial.

        Args:
            service_id: Service to check.

        Returns:
            True if the attempt may proceed.
        """
        now = self._clock()
        decision: dict[str, bool] = {}

        def admit(circuit: ServiceCircuit) -> ServiceCircuit | None:
            decision["was_open"] = circuit.state == CircuitState.OPEN
            if circuit.state == CircuitState.CLOSED:
                decision["allowed"] = True
                return None

            if circuit.state == CircuitState.OPEN:
                if self._reset_elapsed(circuit, now):
                    decision["allowed"] = True
                    return circuit.evolve(state=CircuitState.HALF_OPEN, last_updated=now)
                decision["allowed"] = False
                return None

            # HALF_OPEN: one trial per lease
            if self._lease_expired(circuit, now):
                decision["allowed"] = True
                return circuit.evolve(last_updated=now)
            decision["allowed"] = False
            return None

        after = self._store.update(service_id, admit)
        allowed = decision["allowed"]

        if decision["was_open"] and after.state == CircuitState.HALF_OPEN:
            self._log.info(
                f"Circuit breaker for {service_id} transitioned to half-open after "
                f"{self._config.reset_timeout(after.last_error_type):.0f}s timeout"
            )
            self._notify(after, CircuitState.OPEN)
        elif after.state == CircuitState.OPEN:
            self._log.warning(f"Circuit breaker for {service_id} is open - operation blocked")
        elif after.state == CircuitState.HALF_OPEN:
            if allowed:
                self._log.warning(f"Half-open trial for {service_id} was abandoned - granting a new trial")
            else:
                self._log.info(f"Circuit breaker for {service_id} is half-open - trial already in progress")

        return allowed

    def record_result(
        self,
        service_id: str,
        success: bool,
        error_kind: ErrorKind | None = None,
    ) -> ServiceCircuit:
        """Apply the outcome of an attempt and persist it.

        Args:
            service_id: Service the attempt ran for.
            success: Whether the attempt succeeded.
            error_kind: Classified failure kind (UNKNOWN when missing).

        Returns:
            The updated record.
        """
        now = self._clock()
        kind = error_kind or ErrorKind.UNKNOWN
        transition: dict[str, CircuitState] = {}

        def apply(circuit: ServiceCircuit) -> ServiceCircuit:
            transition["old"] = circuit.state
            if success:
                return circuit.evolve(state=CircuitState.CLOSED, failure_count=0, last_updated=now)

            count = circuit.failure_count + 1
            if circuit.state == CircuitState.CLOSED:
                threshold = self._config.failure_threshold(kind)
                state = CircuitState.OPEN if count >= threshold else CircuitState.CLOSED
            else:
                state = CircuitState.OPEN
            return circuit.evolve(
                state=state,
                failure_count=count,
                last_failure_time=now,
                last_error_type=kind,
                last_updated=now,
            )

        updated = self._store.update(service_id, apply)
        old = transition["old"]

        if success:
            if old != CircuitState.CLOSED:
                self._log.info(f"Circuit breaker for {service_id} closed after successful {old.value} operation")
            else:
                self._log.debug(f"Circuit breaker for {service_id} recorded success")
        elif old == CircuitState.HALF_OPEN:
            self._log.warning(f"Circuit breaker for {service_id} reopened after failed test operation ({kind.value})")
        elif old == CircuitState.OPEN:
            self._log.warning(f"Circuit breaker for {service_id} recorded additional failure while open")
        elif updated.state == CircuitState.OPEN:
            self._log.warning(
                f"Circuit breaker for {service_id} opened after {updated.failure_count} "
                f"consecutive failures ({kind.value})"
            )
        else:
            self._log.info(
                f"Circuit breaker for {service_id} failure count {updated.failure_count}/"
                f"{self._config.failure_threshold(kind)} ({kind.value})"
            )

        self._notify(updated, old)
        return updated

    def reset(self, service_id: str) -> ServiceCircuit:
        """Force a service back to CLOSED with no recorded failures."""
        now = self._clock()
        transition: dict[str, CircuitState] = {}

        def clear(circuit: ServiceCircuit) -> ServiceCircuit:
            transition["old"] = circuit.state
            return ServiceCircuit(service_id=service_id, last_updated=now)

        updated = self._store.update(service_id, clear)
        self._log.info(f"Circuit breaker for {service_id} manually reset")
        self._notify(updated, transition["old"])
        return updated

    def reset_all(self, service_ids: list[str] | None = None) -> list[str]:
        """Reset every known service.

        Args:
            service_ids: Extra ids to reset besides those already stored
                (e.g. configured services not yet recorded).

        Returns:
            The ids that were reset, sorted.
        """
        known = set(self._store.service_ids()) | set(service_ids or [])
        if not known:
            self._log.info("No circuit breakers to reset")
            return []
        for service_id in sorted(known):
            self.reset(service_id)
        return sorted(known)
