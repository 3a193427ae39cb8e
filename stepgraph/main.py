"""
StepGraph - FastAPI Application Entry Point.

Serves the workflows registered in the global workflow registry. Workflows
are contributed by the modules named in settings.WORKFLOW_MODULES, imported
once at startup.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import importlib
import logging

from stepgraph.config import settings
from stepgraph.api.routes import runs, workflows
from stepgraph.engine.errors import GraphError
from stepgraph.storage.memory import run_storage
from stepgraph.workflows.registry import workflow_registry


# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def load_workflow_modules() -> None:
    """Import the configured workflow modules; a missing module stops startup."""
    for module in settings.WORKFLOW_MODULES:
        importlib.import_module(module)
        logger.info(f"Loaded workflow module: {module}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
    load_workflow_modules()
    logger.info(f"Registered workflows: {[w.name for w in workflow_registry]}")

    yield

    logger.info(f"Shutting down after {len(run_storage)} runs")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
## StepGraph API

Run graph workflows that chain step functions over a shared state.

### Concepts
- **Nodes**: step functions returning partial state updates
- **Edges**: sequential flow, parallel fan-out and joins
- **Routing**: conditional edges choosing the next node from the state
- **Loops**: refine cycles ended by the workflow's own routing

### Quick Start
1. List workflows: `GET /workflows`
2. Inspect one: `GET /workflows/{name}`
3. Run it: `POST /workflows/{name}/invoke`
4. Review the run: `GET /runs/{run_id}`
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(workflows.router)
app.include_router(runs.router)


# ============================================================
# Root Endpoints
# ============================================================

@app.get("/", tags=["Root"])
async def root():
    """API root - returns basic info and links."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "description": "A small graph engine for chaining LLM calls",
        "docs": "/docs",
        "endpoints": {
            "workflows": "/workflows",
            "invoke": "/workflows/{name}/invoke",
            "runs": "/runs",
        },
    }


@app.get("/health", tags=["Root"])
async def health():
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "workflows_count": len(workflow_registry),
        "runs_count": len(run_storage),
    }


# ============================================================
# Error Handlers
# ============================================================

@app.exception_handler(GraphError)
async def graph_error_handler(request, exc: GraphError):
    """Engine errors that escaped a route handler."""
    logger.error(f"{type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"error": type(exc).__name__, "detail": str(exc), "status_code": 500},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    """Global exception handler for unhandled errors."""
    logger.exception(f"Unhandled error: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal Server Error",
            "detail": str(exc) if settings.DEBUG else "An unexpected error occurred",
            "status_code": 500,
        },
    )
