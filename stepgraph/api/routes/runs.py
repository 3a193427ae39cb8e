"""
Run API Routes.

Read-only endpoints over the runs recorded in run storage.
"""

from typing import Optional
from fastapi import APIRouter, HTTPException

from stepgraph.api.schemas import (
    ErrorResponse,
    ExecutionLogEntry,
    RunListResponse,
    RunResponse,
)
from stepgraph.storage.memory import StoredRun, run_storage


router = APIRouter(prefix="/runs", tags=["Runs"])


def stored_run_to_response(stored: StoredRun) -> RunResponse:
    return RunResponse(
        run_id=stored.run_id,
        workflow=stored.workflow,
        status=stored.status,
        initial_state=stored.initial_state,
        current_state=stored.current_state,
        final_state=stored.final_state,
        execution_log=[ExecutionLogEntry(**entry) for entry in stored.execution_log],
        supersteps=stored.supersteps,
        started_at=stored.started_at.isoformat(),
        completed_at=stored.completed_at.isoformat() if stored.finished else None,
        error=stored.error,
    )


@router.get("/", response_model=RunListResponse)
async def list_runs(workflow: Optional[str] = None) -> RunListResponse:
    """List recorded runs, oldest first. Filter with ?workflow=<name>."""
    responses = [stored_run_to_response(r) for r in await run_storage.list_all(workflow)]
    return RunListResponse(runs=responses, total=len(responses))


@router.get(
    "/{run_id}",
    response_model=RunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(run_id: str) -> RunResponse:
    """Get one run, including its execution log."""
    stored = await run_storage.get(run_id)
    if stored is None:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found")
    return stored_run_to_response(stored)
