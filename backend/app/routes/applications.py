"""Application routes: the owner's inbox, the applicant's history and decisions."""

from fastapi import APIRouter, Request

from jobboard.decisions import Decision
from jobboard.logging_config import get_logger

from ..database import BoardService
from ..errors import unwrap
from ..models import (
    ApplicationListResponse,
    DecisionResponse,
    ReceivedApplicationsResponse,
    ResumeUrlResponse,
    to_application_response,
    to_decision_response,
)
from ..rate_limit import limiter

logger = get_logger("backend.applications")
router = APIRouter(prefix="/applications", tags=["applications"])


@router.get("/received", response_model=ReceivedApplicationsResponse)
@limiter.limit("60/minute")
async def list_received(request: Request, service: BoardService):
    """Applications on the caller's jobs, grouped by job, newest first."""
    grouped = unwrap(await service.list_applications_for_my_jobs())
    return ReceivedApplicationsResponse(
        by_job={
            job_id: [to_application_response(a) for a in apps] for job_id, apps in grouped.items()
        },
        total=sum(len(apps) for apps in grouped.values()),
    )


@router.get("/mine", response_model=ApplicationListResponse)
@limiter.limit("60/minute")
async def list_mine(request: Request, service: BoardService):
    apps = unwrap(await service.list_my_applications())
    return ApplicationListResponse(
        applications=[to_application_response(a) for a in apps], total=len(apps)
    )


@router.get("/{application_id}/resume", response_model=ResumeUrlResponse)
@limiter.limit("60/minute")
async def resume_url(request: Request, application_id: str, service: BoardService):
    url = unwrap(await service.resume_url(application_id))
    return ResumeUrlResponse(application_id=application_id, url=url)


async def _decide(service, application_id: str, decision: Decision) -> DecisionResponse:
    result = await service.decide_application(application_id, decision)
    outcome = unwrap(result)
    if result.degraded:
        logger.warning(
            f"Decision degraded | app={application_id} | steps={outcome.failed_steps}"
        )
    return to_decision_response(outcome, degraded=result.degraded)


@router.post("/{application_id}/accept", response_model=DecisionResponse)
@limiter.limit("10/minute")
async def accept_application(request: Request, application_id: str, service: BoardService):
    """Accept an application: rivals are rejected and the job closes.

    Only the job owner can accept. Losing a race to another accept, or
    deciding an application twice, is a 409.
    """
    return await _decide(service, application_id, Decision.ACCEPT)


@router.post("/{application_id}/reject", response_model=DecisionResponse)
@limiter.limit("30/minute")
async def reject_application(request: Request, application_id: str, service: BoardService):
    return await _decide(service, application_id, Decision.REJECT)
