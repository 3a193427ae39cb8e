"""
In-Memory Storage for workflow runs.

Runs started through the HTTP service are recorded here while they progress
and kept afterwards for inspection. Swap RunStorage for a database-backed
class with the same coroutine interface to persist runs.
"""

from typing import Any, Callable, Dict, List, Optional
from datetime import datetime
import asyncio
from dataclasses import dataclass, field

from stepgraph.engine.executor import ExecutionStatus


@dataclass
class StoredRun:
    """One run of a registered workflow."""
    run_id: str
    workflow: str
    initial_state: Dict[str, Any]
    status: ExecutionStatus = ExecutionStatus.RUNNING
    current_state: Dict[str, Any] = field(default_factory=dict)
    final_state: Optional[Dict[str, Any]] = None
    execution_log: List[Dict[str, Any]] = field(default_factory=list)
    supersteps: int = 0
    started_at: datetime = field(default_factory=datetime.now)
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.completed_at is not None


class RunStorage:
    """
    Async-safe in-memory storage for execution runs.

    Every mutation goes through the lock; readers get the StoredRun object
    itself, which the service only reads.
    """

    def __init__(self):
        self._runs: Dict[str, StoredRun] = {}
        self._lock = asyncio.Lock()

    async def create(self, run_id: str, workflow: str, initial_state: Dict[str, Any]) -> StoredRun:
        """
        Record a run that is about to start.

        Args:
            run_id: Unique run identifier
            workflow: Name of the registered workflow
            initial_state: The partial state the caller supplied

        Returns:
            The stored run, in status RUNNING
        """
        async with self._lock:
            stored = StoredRun(
                run_id=run_id,
                workflow=workflow,
                initial_state=dict(initial_state),
                current_state=dict(initial_state),
            )
            self._runs[run_id] = stored
            return stored

    async def get(self, run_id: str) -> Optional[StoredRun]:
        async with self._lock:
            return self._runs.get(run_id)

    async def _modify(self, run_id: str, change: Callable[[StoredRun], None]) -> Optional[StoredRun]:
        async with self._lock:
            stored = self._runs.get(run_id)
            if stored is not None:
                change(stored)
            return stored

    async def record_step(
        self,
        run_id: str,
        entry: Dict[str, Any],
        state: Dict[str, Any]
    ) -> Optional[StoredRun]:
        """Append a finished node to the log and remember the merged state."""
        def change(stored: StoredRun) -> None:
            stored.execution_log.append(entry)
            stored.current_state = state
            stored.supersteps = max(stored.supersteps, entry.get("superstep", 0))

        return await self._modify(run_id, change)

    async def complete(
        self,
        run_id: str,
        final_state: Dict[str, Any],
        execution_log: List[Dict[str, Any]],
        supersteps: int
    ) -> Optional[StoredRun]:
        """Mark a run as completed with its final state and full log."""
        def change(stored: StoredRun) -> None:
            stored.status = ExecutionStatus.COMPLETED
            stored.final_state = final_state
            stored.current_state = final_state
            stored.execution_log = execution_log
            stored.supersteps = supersteps
            stored.completed_at = datetime.now()

        return await self._modify(run_id, change)

    async def fail(
        self,
        run_id: str,
        error: str,
        status: ExecutionStatus = ExecutionStatus.FAILED
    ) -> Optional[StoredRun]:
        """Mark a run as failed (or cancelled). Failed runs keep no final state."""
        def change(stored: StoredRun) -> None:
            stored.status = status
            stored.error = error
            stored.completed_at = datetime.now()

        return await self._modify(run_id, change)

    async def list_all(self, workflow: Optional[str] = None) -> List[StoredRun]:
        """List runs in start order, optionally only those of one workflow."""
        async with self._lock:
            return [r for r in self._runs.values() if workflow is None or r.workflow == workflow]

    def __len__(self) -> int:
        return len(self._runs)


# Global storage instance
run_storage = RunStorage()
