"""
Pydantic Schemas for API Request/Response Models.
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from stepgraph.engine.executor import ExecutionStatus


# ============================================================
# Workflow Schemas
# ============================================================

class WorkflowInfo(BaseModel):
    """Structure of a registered workflow."""
    name: str
    description: str = ""
    registered_at: str
    state_fields: Dict[str, str] = Field(..., description="Field name -> merge strategy")
    nodes: List[str]
    edges: Dict[str, List[str]]
    conditional_edges: Dict[str, Dict[str, Any]] = Field(
        default_factory=dict,
        description="Source node -> router, resolution mode and routes"
    )
    warnings: List[str] = Field(default_factory=list)


class WorkflowListResponse(BaseModel):
    workflows: List[WorkflowInfo]
    total: int


# ============================================================
# Run Schemas
# ============================================================

class InvokeRequest(BaseModel):
    """Request to run a registered workflow."""
    model_config = ConfigDict(json_schema_extra={
        "example": {
            "initial_state": {"topic": "How AI is quietly reshaping our daily lives", "max_iteration": 3},
            "recursion_limit": 50,
        }
    })

    initial_state: Dict[str, Any] = Field(
        default_factory=dict,
        description="Initial state data (a subset of the workflow's state fields)"
    )
    recursion_limit: Optional[int] = Field(None, ge=1, description="Max supersteps for this run")
    timeout: Optional[float] = Field(None, gt=0, description="Deadline for the whole run in seconds")


class ExecutionLogEntry(BaseModel):
    """One node run in the execution log."""
    step: int
    node: str
    superstep: int
    started_at: str
    completed_at: Optional[str]
    duration_ms: Optional[float]
    result: str
    error: Optional[str]
    route_taken: Optional[str] = Field(None, description="Router label, for conditional edges")


class RunResponse(BaseModel):
    """A workflow run, finished or in progress."""
    run_id: str
    workflow: str
    status: ExecutionStatus
    initial_state: Dict[str, Any]
    current_state: Dict[str, Any] = Field(default_factory=dict)
    final_state: Optional[Dict[str, Any]] = Field(None, description="Only set for completed runs")
    execution_log: List[ExecutionLogEntry] = Field(default_factory=list)
    supersteps: int = 0
    started_at: str
    completed_at: Optional[str] = None
    error: Optional[str] = None


class RunListResponse(BaseModel):
    runs: List[RunResponse]
    total: int


# ============================================================
# Error Schemas
# ============================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    status_code: int
