"""
Jobboard - application decision workflow for a job board.

Employers post jobs, applicants apply, and each job accepts exactly one
applicant: accepting closes the job and rejects the competing applications.
"""

from .decisions import Decision
from .errors import (
    AlreadyDecidedError,
    ErrorKind,
    JobBoardError,
    NotFoundError,
    PreconditionFailedError,
    StoreUnavailableError,
    ValidationFailedError,
)
from .models import ApplicationStatus, Job, JobApplication, JobDraft
from .orchestrator import AcceptanceOrchestrator, DecisionOutcome
from .service import JobBoardService, OperationResult

try:
    from importlib.metadata import version

    __version__ = version("jobboard")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "AcceptanceOrchestrator",
    "AlreadyDecidedError",
    "ApplicationStatus",
    "Decision",
    "DecisionOutcome",
    "ErrorKind",
    "Job",
    "JobApplication",
    "JobBoardError",
    "JobBoardService",
    "JobDraft",
    "NotFoundError",
    "OperationResult",
    "PreconditionFailedError",
    "StoreUnavailableError",
    "ValidationFailedError",
]
