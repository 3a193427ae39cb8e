"""
Async Workflow Executor.

The executor runs a compiled graph in supersteps: every node that is ready
runs against the same snapshot of the state, their partial updates are
merged once all of them have finished, and only then are the outgoing
edges resolved. Fan-out branches therefore never observe each other's
writes, and a join node waits until every live branch feeding it has
delivered.
"""

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, Union
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import asyncio
import inspect
import uuid
import time
import logging

from stepgraph.config import settings
from stepgraph.engine.errors import (
    ExecutionCancelledError,
    ExecutionTimeoutError,
    RecursionLimitError,
    StateValidationError,
    StepExecutionError,
    StepTimeoutError,
)
from stepgraph.engine.graph import CompiledGraph
from stepgraph.engine.node import END, START, Node
from stepgraph.engine.state import StateManager, WorkflowState


logger = logging.getLogger(__name__)


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class ExecutionStep:
    """A single node run in the execution log."""
    step: int
    node: str
    started_at: datetime
    superstep: int = 0
    completed_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    result: str = "success"
    error: Optional[str] = None
    route_taken: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "node": self.node,
            "superstep": self.superstep,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "result": self.result,
            "error": self.error,
            "route_taken": self.route_taken,
        }


@dataclass
class ExecutionResult:
    """Result of a successful workflow execution."""
    run_id: str
    graph_name: str
    status: ExecutionStatus
    final_state: Dict[str, Any]
    execution_log: List[ExecutionStep] = field(default_factory=list)
    history: List[Dict[str, Any]] = field(default_factory=list)
    visits: Dict[str, int] = field(default_factory=dict)
    supersteps: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_duration_ms: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "graph_name": self.graph_name,
            "status": self.status.value,
            "final_state": self.final_state,
            "execution_log": [step.to_dict() for step in self.execution_log],
            "visits": self.visits,
            "supersteps": self.supersteps,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_ms": self.total_duration_ms,
        }


StepCallback = Callable[[ExecutionStep, Dict[str, Any]], Union[None, Awaitable[None]]]


class Executor:
    """
    Async workflow executor.

    Executes a compiled graph with a given initial state, handling:
    - Sequential node execution
    - Parallel fan-out with full-barrier joins
    - Conditional routing
    - Cycles (bounded only by the workflow's own routing, or recursion_limit)
    - Detailed execution logging

    Errors are never turned into a result: a failing step, an unknown
    route or an invalid update aborts the run and propagates to the caller.

    Usage:
        executor = Executor(graph)
        result = await executor.run({"topic": "AI"})
    """

    def __init__(
        self,
        graph: CompiledGraph,
        run_id: Optional[str] = None,
        on_step: Optional[StepCallback] = None,
        recursion_limit: Optional[int] = None,
        step_timeout: Optional[float] = None,
        timeout: Optional[float] = None,
        parallel: Optional[bool] = None,
    ):
        """
        Initialize the executor.

        Args:
            graph: The compiled graph to execute
            run_id: Optional run ID (generated if not provided)
            on_step: Optional callback invoked after each node's update is merged
            recursion_limit: Max supersteps (defaults to settings.RECURSION_LIMIT, None = unbounded)
            step_timeout: Per-step deadline in seconds (defaults to settings.STEP_TIMEOUT)
            timeout: Deadline for the whole run in seconds
            parallel: Run fan-out branches concurrently (defaults to settings.PARALLEL_BRANCHES)
        """
        self.graph = graph
        self.run_id = run_id or str(uuid.uuid4())
        self.on_step = on_step
        self.recursion_limit = recursion_limit if recursion_limit is not None else settings.RECURSION_LIMIT
        self.step_timeout = step_timeout if step_timeout is not None else settings.STEP_TIMEOUT
        self.timeout = timeout
        self.parallel = parallel if parallel is not None else settings.PARALLEL_BRANCHES

        # Execution state
        self._state_manager: Optional[StateManager] = None
        self._execution_log: List[ExecutionStep] = []
        self._visits: Dict[str, int] = {}
        self._step_counter = 0
        self._superstep = 0
        self._current_nodes: List[str] = []
        self._status = ExecutionStatus.PENDING
        self._cancelled = False

    @property
    def status(self) -> ExecutionStatus:
        """Get the current execution status."""
        return self._status

    @property
    def current_state(self) -> Optional[Dict[str, Any]]:
        """Get a snapshot of the current state data."""
        if self._state_manager and self._state_manager.current_state:
            return self._state_manager.current_state.snapshot()
        return None

    @property
    def current_nodes(self) -> List[str]:
        """Nodes of the superstep currently running."""
        return list(self._current_nodes)

    def cancel(self) -> None:
        """Request cancellation; the run stops at the next superstep boundary."""
        self._cancelled = True

    async def run(self, initial_state: Mapping[str, Any]) -> ExecutionResult:
        """
        Execute the workflow with the given initial state.

        Args:
            initial_state: Partial state record (subset of the schema fields)

        Returns:
            ExecutionResult with the final state and logs

        Raises:
            GraphError: any engine error; no partial state is returned
        """
        if self.timeout is None:
            return await self._run(initial_state)

        try:
            return await asyncio.wait_for(self._run(initial_state), self.timeout)
        except asyncio.TimeoutError:
            self._status = ExecutionStatus.FAILED
            logger.error(f"Run {self.run_id} timed out after {self.timeout}s")
            raise ExecutionTimeoutError(self.timeout) from None

    async def _run(self, initial_state: Mapping[str, Any]) -> ExecutionResult:
        start_time = time.time()
        self._status = ExecutionStatus.RUNNING
        self._state_manager = StateManager(self.graph.schema, self.run_id)

        try:
            state = self._state_manager.initialize(initial_state)
            pending, _ = self._resolve(START, state)

            while pending:
                if self._cancelled:
                    logger.info(f"Execution cancelled before superstep {self._superstep + 1}")
                    raise ExecutionCancelledError(
                        f"Run {self.run_id} cancelled at superstep {self._superstep}"
                    )

                if self.recursion_limit is not None and self._superstep >= self.recursion_limit:
                    raise RecursionLimitError(self.recursion_limit)

                ready, deferred = self._select_ready(pending)
                self._superstep += 1
                self._current_nodes = ready
                logger.debug(f"Superstep {self._superstep}: running {ready}, waiting {deferred}")

                completed = await self._run_superstep(ready, state)

                # Merge in completion order, then route on the merged state
                for step, update in completed:
                    try:
                        self._state_manager.apply(step.node, update, self._superstep)
                    except StateValidationError as e:
                        raise StepExecutionError(step.node, e) from e

                next_pending = list(deferred)
                for step, _ in completed:
                    targets, label = self._resolve(step.node, state)
                    if label is not None:
                        step.route_taken = str(label)
                    next_pending.extend(t for t in targets if t != END)
                    await self._notify(step)

                pending = list(dict.fromkeys(next_pending))

            self._status = ExecutionStatus.COMPLETED
            self._current_nodes = []
            final_state = self._state_manager.finalize()

            logger.info(
                f"Run {self.run_id} of '{self.graph.name}' completed in "
                f"{self._superstep} supersteps ({self._step_counter} node runs)"
            )

            return ExecutionResult(
                run_id=self.run_id,
                graph_name=self.graph.name,
                status=self._status,
                final_state=final_state,
                execution_log=self._execution_log,
                history=self._state_manager.get_history(),
                visits=dict(self._visits),
                supersteps=self._superstep,
                started_at=self._state_manager.started_at,
                completed_at=self._state_manager.completed_at,
                total_duration_ms=(time.time() - start_time) * 1000,
            )

        except ExecutionCancelledError:
            self._status = ExecutionStatus.CANCELLED
            raise
        except Exception as e:
            self._status = ExecutionStatus.FAILED
            logger.error(f"Execution failed: {e}")
            raise

    def _resolve(self, source: str, state: WorkflowState) -> Tuple[List[str], Optional[Any]]:
        """Destinations of source's outgoing edges, evaluated on the merged state."""
        return self.graph.next_nodes(source, state.view())

    def _select_ready(self, pending: List[str]) -> Tuple[List[str], List[str]]:
        """
        Split candidates into nodes that may run now and nodes that must wait.

        A candidate waits while another candidate lies upstream of it in the
        current pass (CompiledGraph.precedes). Loop-closing edges are not
        followed, so a join inside a loop still waits for every branch of its
        fan-out, and since the remaining edges form no cycle at least one
        candidate is always ready.
        """
        ready: List[str] = []
        deferred: List[str] = []
        for candidate in pending:
            upstream_live = any(
                other != candidate and self.graph.precedes(other, candidate)
                for other in pending
            )
            (deferred if upstream_live else ready).append(candidate)

        ready.sort(key=self.graph.declaration_order)
        return ready, deferred

    async def _run_superstep(
        self,
        ready: List[str],
        state: WorkflowState
    ) -> List[Tuple[ExecutionStep, Dict[str, Any]]]:
        """Run the ready nodes against the pre-superstep state, in completion order."""
        # Each branch gets its own detached view taken before any merge
        views = {name: state.view() for name in ready}

        if not self.parallel or len(ready) == 1:
            completed = []
            for name in ready:
                completed.append(await self._execute_node(self.graph.nodes[name], views[name]))
            return completed

        tasks = [
            asyncio.create_task(self._execute_node(self.graph.nodes[name], views[name]))
            for name in ready
        ]
        completed = []
        try:
            for next_done in asyncio.as_completed(tasks):
                completed.append(await next_done)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
        return completed

    async def _execute_node(
        self,
        node: Node,
        view: Mapping[str, Any]
    ) -> Tuple[ExecutionStep, Dict[str, Any]]:
        """Execute a single node and return its partial update."""
        self._step_counter += 1
        node_start_time = time.time()

        step = ExecutionStep(
            step=self._step_counter,
            node=node.name,
            started_at=datetime.now(),
            superstep=self._superstep,
        )

        logger.info(f"Executing node: {node.name} (step {self._step_counter}, superstep {self._superstep})")

        try:
            if self.step_timeout is None:
                update = await node.execute(view)
            else:
                update = await asyncio.wait_for(node.execute(view), self.step_timeout)
        except asyncio.TimeoutError as e:
            step.result = "error"
            step.error = f"timed out after {self.step_timeout}s"
            logger.error(f"Node {node.name} timed out after {self.step_timeout}s")
            raise StepTimeoutError(node.name, self.step_timeout, e) from e
        except StepExecutionError as e:
            step.result = "error"
            step.error = str(e.cause)
            logger.error(f"Node {node.name} failed: {e.cause}")
            raise
        except asyncio.CancelledError:
            step.result = "cancelled"
            raise
        finally:
            step.completed_at = datetime.now()
            step.duration_ms = (time.time() - node_start_time) * 1000
            self._execution_log.append(step)

        self._visits[node.name] = self._visits.get(node.name, 0) + 1
        return step, update

    async def _notify(self, step: ExecutionStep) -> None:
        """Send a step to the on_step callback; callback failures never stop the run."""
        if not self.on_step:
            return
        try:
            outcome = self.on_step(step, self._state_manager.current_state.snapshot())
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Step callback failed: {e}")


async def execute_graph(
    graph: CompiledGraph,
    initial_state: Mapping[str, Any],
    run_id: Optional[str] = None,
    on_step: Optional[StepCallback] = None,
    **options
) -> ExecutionResult:
    """
    Convenience function to execute a graph.

    Args:
        graph: The compiled graph
        initial_state: Initial state data
        run_id: Optional run ID
        on_step: Optional step callback
        **options: Further Executor options

    Returns:
        ExecutionResult
    """
    executor = Executor(graph, run_id, on_step, **options)
    return await executor.run(initial_state)
