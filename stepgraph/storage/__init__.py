"""
Storage package - In-memory storage for workflow runs.
"""

from stepgraph.storage.memory import RunStorage, StoredRun, run_storage

__all__ = [
    "RunStorage",
    "StoredRun",
    "run_storage",
]
