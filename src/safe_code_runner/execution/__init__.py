from .engine import ExecutionEngine
from .types import ExecutionJob, ExecutionOutcome

__all__ = [
    "ExecutionEngine",
    "ExecutionJob",
    "ExecutionOutcome",
]
