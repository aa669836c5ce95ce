from gocars_batch.executors.base import CommandOutcome, ExecutionContext, Executor
from gocars_batch.executors.dispatch import CliExecutor
from gocars_batch.executors.process import SubprocessExecutor

__all__ = [
    "CliExecutor",
    "CommandOutcome",
    "ExecutionContext",
    "Executor",
    "SubprocessExecutor",
]
