"""Jobs routes.

Post, browse, edit, open/close and delete job listings, and apply to them.
Every handler delegates to ``JobBoardService`` and maps its typed failures
onto HTTP status codes.
"""

from decimal import Decimal

from fastapi import APIRouter, File, Form, Query, Request, UploadFile, status

from jobboard.logging_config import get_logger

from ..database import BoardService, PublicBoardService
from ..errors import unwrap
from ..models import (
    JobCreate,
    JobDeletedResponse,
    JobListResponse,
    JobResponse,
    SubmissionResponse,
    to_job_response,
    to_submission_response,
)
from ..rate_limit import limiter

logger = get_logger("backend.jobs")
router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def post_job(request: Request, job: JobCreate, service: BoardService):
    """Post a new job listing; it starts open."""
    result = await service.post_job(job.model_dump())
    created = unwrap(result)
    logger.info(f"POST /jobs | job={created.id}")
    return to_job_response(created)


@router.get("", response_model=JobListResponse)
@limiter.limit("60/minute")
async def browse_jobs(
    request: Request,
    service: PublicBoardService,
    location: str | None = Query(None, max_length=200),
    job_type: str | None = Query(None),
    min_amount: Decimal | None = Query(None),
    max_amount: Decimal | None = Query(None),
):
    """Open jobs, newest first. Signed-in callers do not see their own jobs."""
    jobs = unwrap(
        await service.browse_jobs(
            location=location, job_type=job_type, min_amount=min_amount, max_amount=max_amount
        )
    )
    return JobListResponse(jobs=[to_job_response(j) for j in jobs], total=len(jobs))


@router.get("/mine", response_model=JobListResponse)
@limiter.limit("60/minute")
async def list_my_jobs(request: Request, service: BoardService):
    jobs = unwrap(await service.list_my_jobs())
    return JobListResponse(jobs=[to_job_response(j) for j in jobs], total=len(jobs))


@router.patch("/{job_id}", response_model=JobResponse)
@limiter.limit("20/minute")
async def edit_job(request: Request, job_id: str, job: JobCreate, service: BoardService):
    """Replace a job's editable fields. Status and applications are untouched."""
    return to_job_response(unwrap(await service.edit_job(job_id, job.model_dump())))


@router.post("/{job_id}/toggle", response_model=JobResponse)
@limiter.limit("20/minute")
async def toggle_job(request: Request, job_id: str, service: BoardService):
    """Close an open job or reopen a closed one."""
    job = unwrap(await service.toggle_job_active(job_id))
    logger.info(f"POST /jobs/{job_id}/toggle | active={job.is_active}")
    return to_job_response(job)


@router.delete("/{job_id}", response_model=JobDeletedResponse)
@limiter.limit("10/minute")
async def delete_job(request: Request, job_id: str, service: BoardService):
    return JobDeletedResponse(id=unwrap(await service.delete_job(job_id)))


@router.post(
    "/{job_id}/apply", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED
)
@limiter.limit("30/minute")
async def apply_to_job(
    request: Request,
    job_id: str,
    service: BoardService,
    message: str = Form(...),
    resume: UploadFile | None = File(None),
):
    """Apply to a job, optionally with a resume file.

    Applying twice returns the existing application with ``already_applied``.
    """
    data = await resume.read() if resume is not None else None
    result = await service.submit_application(
        job_id,
        message,
        resume=data,
        resume_filename=resume.filename if resume is not None else None,
        content_type=resume.content_type if resume is not None else None,
    )
    receipt = unwrap(result)
    logger.info(
        f"POST /jobs/{job_id}/apply | application={receipt.application_id} | "
        f"already_applied={receipt.already_applied}"
    )
    return to_submission_response(receipt, result.message)
