#!/usr/bin/env python3
"""
Run script for the StepGraph service.

Usage:
    python run.py

Settings come from the environment or a .env file, e.g.:
    PORT=8080 WORKFLOW_MODULES='["myapp.workflows"]' python run.py
"""

import uvicorn

from stepgraph.config import settings


def main():
    """Serve stepgraph.main:app with uvicorn."""
    print(f"{settings.APP_NAME} v{settings.APP_VERSION} on http://{settings.HOST}:{settings.PORT} (docs at /docs)")
    if settings.WORKFLOW_MODULES:
        print(f"Workflow modules: {', '.join(settings.WORKFLOW_MODULES)}")

    uvicorn.run(
        "stepgraph.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
