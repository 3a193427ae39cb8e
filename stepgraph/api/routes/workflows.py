"""
Workflow API Routes.

Endpoints for inspecting and invoking registered workflows.
"""

from fastapi import APIRouter, HTTPException
from uuid import uuid4
import logging

from stepgraph.api.schemas import (
    ErrorResponse,
    InvokeRequest,
    RunResponse,
    WorkflowInfo,
    WorkflowListResponse,
)
from stepgraph.api.routes.runs import stored_run_to_response
from stepgraph.engine.errors import GraphError, StateValidationError
from stepgraph.engine.executor import Executor
from stepgraph.storage.memory import run_storage
from stepgraph.workflows.registry import RegisteredWorkflow, workflow_registry


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


def _get_workflow(name: str) -> RegisteredWorkflow:
    workflow = workflow_registry.get(name)
    if not workflow:
        raise HTTPException(status_code=404, detail=f"Workflow '{name}' not found")
    return workflow


@router.get(
    "/",
    response_model=WorkflowListResponse,
)
async def list_workflows() -> WorkflowListResponse:
    """List all registered workflows."""
    infos = [WorkflowInfo(**w.to_dict()) for w in workflow_registry.list_workflows()]
    return WorkflowListResponse(workflows=infos, total=len(infos))


@router.get(
    "/{name}",
    response_model=WorkflowInfo,
    responses={404: {"model": ErrorResponse}},
)
async def get_workflow(name: str) -> WorkflowInfo:
    """Get the structure of a specific workflow."""
    return WorkflowInfo(**_get_workflow(name).to_dict())


@router.post(
    "/{name}/invoke",
    response_model=RunResponse,
    responses={
        404: {"model": ErrorResponse},
        422: {"model": ErrorResponse, "description": "Initial state does not fit the workflow"},
        500: {"model": ErrorResponse, "description": "Execution failed"},
    }
)
async def invoke_workflow(name: str, request: InvokeRequest) -> RunResponse:
    """
    Run a workflow to completion with the given initial state.

    A failed run returns an error and keeps no final state; the nodes that
    did finish stay visible in its log under /runs/{run_id}.
    """
    workflow = _get_workflow(name)

    run_id = str(uuid4())
    await run_storage.create(run_id, name, request.initial_state)

    async def record_step(step, state):
        await run_storage.record_step(run_id, step.to_dict(), state)

    executor = Executor(
        workflow.graph,
        run_id=run_id,
        on_step=record_step,
        recursion_limit=request.recursion_limit,
        timeout=request.timeout,
    )
    try:
        result = await executor.run(request.initial_state)
    except StateValidationError as e:
        await run_storage.fail(run_id, str(e))
        raise HTTPException(status_code=422, detail=str(e))
    except GraphError as e:
        logger.error(f"Run {run_id} of '{name}' failed: {e}")
        await run_storage.fail(run_id, str(e), executor.status)
        raise HTTPException(status_code=500, detail=str(e))

    stored = await run_storage.complete(
        run_id,
        result.final_state,
        [s.to_dict() for s in result.execution_log],
        result.supersteps,
    )
    logger.info(f"Run {run_id} of '{name}' completed in {result.total_duration_ms:.1f}ms")
    return stored_run_to_response(stored)
