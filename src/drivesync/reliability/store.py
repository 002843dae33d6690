"""Persistent circuit breaker state.

This module provides:
- CircuitBreakerStore: JSON-file store of ServiceCircuit records
- StateFile / StoredCircuit: Pydantic schema of the persisted document

File format:
    { "services": { "<service_id>": {
        "state": "closed|open|half-open",
        "failure_count": 0,
        "last_failure_time": "<ISO-8601 or empty>",
        "last_updated": "<ISO-8601>",
        "error_type": "<error kind or empty>" } } }

Every mutation is a read-modify-write under an in-process lock and an
exclusive lock on a sidecar ``.lock`` file; the new document is written to
a temp file and moved into place with os.replace. Locks are held only for
the duration of the read-modify-write.
"""

from __future__ import annotations

import contextlib
import logging
import os
import sys
import tempfile
import threading
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from drivesync.core.errors import StateStoreError
from drivesync.core.types import CircuitState, ErrorKind, ServiceCircuit

logger = logging.getLogger(__name__)


class StoredCircuit(BaseModel):
    """One service record as written to disk."""

    state: Literal["closed", "open", "half-open"] = "closed"
    failure_count: int = Field(default=0, ge=0)
    last_failure_time: str = ""
    last_updated: str = ""
    error_type: str = ""

    @classmethod
    def from_circuit(cls, circuit: ServiceCircuit) -> StoredCircuit:
        return cls(
            state=circuit.state.value,
            failure_count=circuit.failure_count,
            last_failure_time=_format_time(circuit.last_failure_time),
            last_updated=_format_time(circuit.last_updated),
            error_type=circuit.last_error_type.value if circuit.last_error_type else "",
        )

    def to_circuit(self, service_id: str) -> ServiceCircuit:
        return ServiceCircuit(
            service_id=service_id,
            state=CircuitState(self.state),
            failure_count=self.failure_count,
            last_failure_time=_parse_time(self.last_failure_time),
            last_error_type=ErrorKind.parse(self.error_type),
            last_updated=_parse_time(self.last_updated),
        )


class StateFile(BaseModel):
    """The whole persisted document."""

    services: dict[str, StoredCircuit] = Field(default_factory=dict)


def _format_time(value: datetime | None) -> str:
    if value is None:
        return ""
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_time(value: str) -> datetime | None:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning(f"Ignoring unparseable timestamp in breaker state: {value!r}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@contextlib.contextmanager
def _exclusive_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive advisory lock on lock_path across processes."""
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a+b") as handle:
        if sys.platform == "win32":
            import msvcrt

            handle.seek(0)
            msvcrt.locking(handle.fileno(), msvcrt.LK_LOCK, 1)
            try:
                yield
            finally:
                handle.seek(0)
                msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
        else:
            import fcntl

            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class CircuitBreakerStore:
    """JSON-file backed store of per-service breaker records.

    Pure data layer: it knows nothing about transitions. CircuitBreaker
    supplies the mutation functions passed to update().

    All services share one file and one lock, so updates to different
    services wait on each other for the length of a single read-modify-write.
    The lock is never held while a mount is checked or a tool runs.

    Usage:
        store = CircuitBreakerStore(Path("~/.drivesync/circuit_breaker_state.json"))
        circuit = store.get("icloud")
        store.update("icloud", lambda c: c.evolve(failure_count=0))
    """

    def __init__(self, path: Path, log: logging.Logger | None = None) -> None:
        """Initialize the store.

        Args:
            path: Path of the JSON state file.
            log: Logger to use (defaults to this module's logger).
        """
        self._path = Path(path)
        self._lock_path = self._path.with_name(self._path.name + ".lock")
        self._lock = threading.Lock()
        self._log = log or logger

    @property
    def path(self) -> Path:
        return self._path

    @contextlib.contextmanager
    def _locked(self) -> Iterator[None]:
        with self._lock, _exclusive_lock(self._lock_path):
            yield

    def initialize(self) -> None:
        """Create an empty state file if none exists."""
        with self._locked():
            if not self._path.exists():
                self._log.info(f"Creating circuit breaker state file: {self._path}")
                self._write(StateFile())

    def _read(self) -> StateFile:
        """Read the state document, recreating it if missing or corrupt.

        Must be called while holding the store lock.
        """
        if not self._path.exists():
            self._log.info(f"Creating circuit breaker state file: {self._path}")
            document = StateFile()
            self._write(document)
            return document

        try:
            return StateFile.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, ValidationError) as e:
            self._log.warning(
                f"Circuit breaker state at {self._path} is unreadable ({e.__class__.__name__}); "
                "starting with a fresh store"
            )
            document = StateFile()
            self._write(document)
            return document

    def _write(self, document: StateFile) -> None:
        """Atomically replace the state file.

        Must be called while holding the store lock.
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(document.model_dump_json(indent=2))
                    f.write("\n")
                os.replace(tmp_path, self._path)
            except Exception:
                with contextlib.suppress(OSError):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise StateStoreError(f"Failed to write breaker state {self._path}: {e}") from e

    def load(self) -> dict[str, ServiceCircuit]:
        """Load every stored record.

        Returns:
            Map of service id to its record.
        """
        with self._locked():
            document = self._read()
        return {sid: record.to_circuit(sid) for sid, record in document.services.items()}

    def service_ids(self) -> list[str]:
        """List the ids of every stored service, sorted."""
        return sorted(self.load())

    def get(self, service_id: str) -> ServiceCircuit:
        """Get a service record, or its initial record if none is stored."""
        with self._locked():
            document = self._read()
        record = document.services.get(service_id)
        if record is None:
            return ServiceCircuit.initial(service_id)
        return record.to_circuit(service_id)

    def update(
        self,
        service_id: str,
        mutate: Callable[[ServiceCircuit], ServiceCircuit | None],
    ) -> ServiceCircuit:
        """Atomically read, mutate, and persist one service record.

        Args:
            service_id: Service to update.
            mutate: Receives the current record and returns the new one,
                or None to leave the file untouched.

        Returns:
            The record after the update.
        """
        with self._locked():
            document = self._read()
            stored = document.services.get(service_id)
            current = stored.to_circuit(service_id) if stored else ServiceCircuit.initial(service_id)
            updated = mutate(current)
            if updated is None:
                return current
            updated = updated.evolve(last_updated=datetime.now(UTC)) if updated.last_updated is None else updated
            document.services[service_id] = StoredCircuit.from_circuit(updated)
            self._write(document)
        return updated
