"""Read-only circuit breaker diagnostics.

This module provides:
- CircuitRow: One rendered service row
- HealthReporter: Tabular and dict views of every known breaker record
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from drivesync.core.types import ServiceCircuit
from drivesync.reliability.store import CircuitBreakerStore

COLUMNS = ("Service", "State", "Failures", "Last Failure", "Error Type")


@dataclass(frozen=True)
class CircuitRow:
    """Display values for one service."""

    service_id: str
    state: str
    failure_count: int
    last_failure_time: str
    error_type: str

    @classmethod
    def from_circuit(cls, circuit: ServiceCircuit) -> CircuitRow:
        last_failure = ""
        if circuit.last_failure_time is not None:
            last_failure = circuit.last_failure_time.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")
        return cls(
            service_id=circuit.service_id,
            state=circuit.state.value,
            failure_count=circuit.failure_count,
            last_failure_time=last_failure,
            error_type=circuit.last_error_type.value if circuit.last_error_type else "",
        )

    def cells(self) -> tuple[str, ...]:
        return (
            self.service_id,
            self.state,
            str(self.failure_count),
            self.last_failure_time or "-",
            self.error_type or "-",
        )


class HealthReporter:
    """Renders breaker state for the status command.

    Never mutates breaker state; services that are configured but have no
    stored record are shown with their initial values.
    """

    def __init__(
        self,
        store: CircuitBreakerStore,
        service_ids: Iterable[str] = (),
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the reporter.

        Args:
            store: Breaker state store to read.
            service_ids: Configured services to always include.
            clock: Returns the generation time shown in the report.
        """
        self._store = store
        self._service_ids = list(service_ids)
        self._clock = clock or (lambda: datetime.now(UTC))

    def rows(self) -> list[CircuitRow]:
        """Get one row per known service, sorted by service id."""
        circuits = self._store.load()
        for service_id in self._service_ids:
            circuits.setdefault(service_id, ServiceCircuit.initial(service_id))
        return [CircuitRow.from_circuit(circuits[sid]) for sid in sorted(circuits)]

    def report(self) -> str:
        """Render the status report as a fixed-width table."""
        rows = self.rows()
        generated = self._clock().astimezone(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        lines = [
            "Circuit Breaker Status Report",
            "=============================",
            f"Generated at: {generated}",
            "",
        ]

        if not rows:
            lines.append("No circuit breaker states recorded.")
            return "\n".join(lines)

        table = [COLUMNS, *(row.cells() for row in rows)]
        widths = [max(len(line[i]) for line in table) for i in range(len(COLUMNS))]

        def fmt(cells: tuple[str, ...]) -> str:
            return " | ".join(cell.ljust(width) for cell, width in zip(cells, widths)).rstrip()

        lines.append(fmt(COLUMNS))
        lines.append("-|-".join("-" * width for width in widths))
        lines.extend(fmt(row.cells()) for row in rows)
        return "\n".join(lines)

    def as_dict(self) -> dict[str, Any]:
        """Get the report as a JSON-serializable dict."""
        return {
            "services": {
                row.service_id: {
                    "state": row.state,
                    "failure_count": row.failure_count,
                    "last_failure_time": row.last_failure_time,
                    "error_type": row.error_type,
                }
                for row in self.rows()
            }
        }
