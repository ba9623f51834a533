from .checkpoint import RunCheckpoint
from .scheduler import BatchScheduler
from .summary import RunSummary

__all__ = [
    "BatchScheduler",
    "RunCheckpoint",
    "RunSummary",
]
