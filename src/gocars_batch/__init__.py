"""Batch job runner for test automation."""

from gocars_batch.execution import BatchEngine, run_job
from gocars_batch.jobs import load_job_file, validate_job
from gocars_batch.models import BatchCommand, BatchJob, BatchResult

__version__ = "1.0.0"

__all__ = [
    "BatchCommand",
    "BatchEngine",
    "BatchJob",
    "BatchResult",
    "__version__",
    "load_job_file",
    "run_job",
    "validate_job",
]
