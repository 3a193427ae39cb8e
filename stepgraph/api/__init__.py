"""
API package - FastAPI routes and schemas.
"""

from stepgraph.api.routes import runs, workflows

__all__ = ["runs", "workflows"]
