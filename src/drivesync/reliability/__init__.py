"""Reliability engine - error classification and per-service circuit breakers.

Architecture:
    classify() → CircuitBreaker → CircuitBreakerStore → HealthReporter

Components:
- **classify**: Maps an exit code and tool output to an ErrorKind
- **CircuitBreakerStore**: Atomic JSON persistence of breaker records
- **CircuitBreaker**: Admission decisions and state transitions
- **HealthReporter**: Read-only status report
"""

from drivesync.reliability.breaker import CircuitBreaker, StateChangeCallback
from drivesync.reliability.classifier import classify, is_timeout_exit
from drivesync.reliability.health import CircuitRow, HealthReporter
from drivesync.reliability.store import CircuitBreakerStore, StateFile, StoredCircuit

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerStore",
    "CircuitRow",
    "HealthReporter",
    "StateChangeCallback",
    "StateFile",
    "StoredCircuit",
    "classify",
    "is_timeout_exit",
]
