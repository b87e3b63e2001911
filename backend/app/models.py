"""Pydantic models for API requests and responses."""

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from jobboard.models import Job, JobApplication
from jobboard.orchestrator import DecisionOutcome, ReconcileReport
from jobboard.service import SubmissionReceipt

DurationType = Literal["hourly", "daily", "monthly"]
ApplicationStatus = Literal["pending", "accepted", "rejected"]

# =============================================================================
# Job Models
# =============================================================================


class JobCreate(BaseModel):
    """Request to post a job, or to replace its editable fields."""

    title: str = Field(..., max_length=200)
    organization_name: str
    city: str
    address: str
    contact_number: str
    amount: Decimal
    duration_type: DurationType = "hourly"
    job_type: str = "general"
    description: str | None = None
    requires_resume: bool = False


class JobResponse(BaseModel):
    """Job details response."""

    id: str
    user_id: str
    title: str
    organization_name: str | None = None
    city: str | None = None
    address: str | None = None
    location: str
    contact_number: str
    amount: Decimal
    duration_type: str
    job_type: str
    description: str | None = None
    requires_resume: bool
    is_active: bool
    accepted_application_id: str | None = None
    created_at: datetime | None = None


class JobListResponse(BaseModel):
    """List of jobs, newest first."""

    jobs: list[JobResponse]
    total: int


class JobDeletedResponse(BaseModel):
    id: str
    deleted: bool = True


# =============================================================================
# Application Models
# =============================================================================


class ApplicationResponse(BaseModel):
    """Job application response."""

    id: str
    job_id: str
    applicant_id: str
    applicant_name: str
    applicant_email: str
    applicant_phone: str
    applicant_location: str
    message: str
    resume_url: str | None = None  # Object key; resolve with /applications/{id}/resume
    status: ApplicationStatus
    created_at: datetime | None = None


class ApplicationListResponse(BaseModel):
    applications: list[ApplicationResponse]
    total: int


class ReceivedApplicationsResponse(BaseModel):
    """Applications on the caller's jobs, grouped by job id."""

    by_job: dict[str, list[ApplicationResponse]]
    total: int


class SubmissionResponse(BaseModel):
    """Result of applying to a job. A repeated application is not an error."""

    job_id: str
    application_id: str | None = None
    already_applied: bool = False
    resume_key: str | None = None
    message: str = ""


class ResumeUrlResponse(BaseModel):
    application_id: str
    url: str


class DecisionResponse(BaseModel):
    """Outcome of accepting or rejecting an application.

    ``degraded`` means the decision stands but rival rejection or job closing
    did not complete; ``POST /maintenance/reconcile`` finishes it.
    """

    application_id: str
    job_id: str
    decision: Literal["accept", "reject"]
    status: ApplicationStatus
    rejected_count: int = 0
    job_closed: bool = False
    degraded: bool = False
    failed_steps: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# =============================================================================
# Maintenance Models
# =============================================================================


class ReconcileRequest(BaseModel):
    """Reconcile one job, or every job of the caller when job_id is omitted."""

    job_id: str | None = None


class ReconcileReportResponse(BaseModel):
    job_id: str
    accepted_id: str | None = None
    rejected_count: int = 0
    job_closed: bool = False
    claim_recorded: bool = False
    claim_released: bool = False
    violations: list[str] = Field(default_factory=list)
    failed_steps: list[str] = Field(default_factory=list)


class ReconcileResponse(BaseModel):
    reports: list[ReconcileReportResponse]
    jobs_checked: int
    jobs_changed: int
    checked_at: datetime


# =============================================================================
# Conversions
# =============================================================================


def to_job_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        user_id=job.user_id,
        title=job.title,
        organization_name=job.organization_name,
        city=job.city,
        address=job.address,
        location=job.display_location,
        contact_number=job.contact_number,
        amount=job.amount,
        duration_type=job.duration_type,
        job_type=job.job_type,
        description=job.description,
        requires_resume=job.requires_resume,
        is_active=job.is_active,
        accepted_application_id=job.accepted_application_id,
        created_at=job.created_at,
    )


def to_application_response(app: JobApplication) -> ApplicationResponse:
    return ApplicationResponse(
        id=app.id,
        job_id=app.job_id,
        applicant_id=app.applicant_id,
        applicant_name=app.applicant_name,
        applicant_email=app.applicant_email,
        applicant_phone=app.applicant_phone,
        applicant_location=app.applicant_location,
        message=app.message,
        resume_url=app.resume_url,
        status=app.status,
        created_at=app.created_at,
    )


def to_submission_response(receipt: SubmissionReceipt, message: str = "") -> SubmissionResponse:
    return SubmissionResponse(
        job_id=receipt.job_id,
        application_id=receipt.application_id,
        already_applied=receipt.already_applied,
        resume_key=receipt.resume_key,
        message=message,
    )


def to_decision_response(outcome: DecisionOutcome, degraded: bool = False) -> DecisionResponse:
    return DecisionResponse(
        application_id=outcome.application_id,
        job_id=outcome.job_id,
        decision=outcome.decision.value,
        status=outcome.status.value,
        rejected_count=outcome.rejected_count,
        job_closed=outcome.job_closed,
        degraded=degraded,
        failed_steps=outcome.failed_steps,
        warnings=outcome.warnings,
    )


def to_reconcile_report(report: ReconcileReport) -> ReconcileReportResponse:
    return ReconcileReportResponse(
        job_id=report.job_id,
        accepted_id=report.accepted_id,
        rejected_count=report.rejected_count,
        job_closed=report.job_closed,
        claim_recorded=report.claim_recorded,
        claim_released=report.claim_released,
        violations=report.violations,
        failed_steps=report.failed_steps,
    )
