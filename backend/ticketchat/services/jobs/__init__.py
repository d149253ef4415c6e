"""Background ticket-search jobs: sizing, persistence, dispatch and the worker."""
from .manager import JobHandle, JobManager
from .sizing import SizingDecision, decide_execution_mode
from .store import JobStore
from .worker import JobWorker

__all__ = [
    "JobHandle",
    "JobManager",
    "SizingDecision",
    "decide_execution_mode",
    "JobStore",
    "JobWorker",
]
