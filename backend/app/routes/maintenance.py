"""Maintenance routes.

Finish acceptance bookkeeping that a partial failure left incomplete. Safe to
call at any time (from a client after a degraded accept, or periodically):
every repair is a conditional write that matches nothing on a settled job.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Request
from pydantic import BaseModel

from jobboard.decisions import check_single_acceptance
from jobboard.logging_config import get_logger

from ..database import BoardService
from ..errors import unwrap
from ..models import ReconcileRequest, ReconcileResponse, to_reconcile_report
from ..rate_limit import limiter

logger = get_logger("backend.maintenance")
router = APIRouter(prefix="/maintenance", tags=["maintenance"])


class AuditResponse(BaseModel):
    """Single-acceptance audit of the caller's jobs."""

    status: str
    jobs_checked: int
    violations: list[str]  # job ids with more than one accepted application
    checked_at: datetime


@router.post("/reconcile", response_model=ReconcileResponse)
@limiter.limit("10/minute")
async def reconcile(request: Request, body: ReconcileRequest, service: BoardService):
    """Reconcile one job, or sweep every job of the caller."""
    if body.job_id:
        reports = [unwrap(await service.reconcile_job(body.job_id))]
    else:
        reports = unwrap(await service.reconcile_my_jobs())

    changed = [r for r in reports if r.changed]
    logger.info(f"POST /maintenance/reconcile | checked={len(reports)} | changed={len(changed)}")
    return ReconcileResponse(
        reports=[to_reconcile_report(r) for r in reports],
        jobs_checked=len(reports),
        jobs_changed=len(changed),
        checked_at=datetime.now(timezone.utc),
    )


@router.get("/audit", response_model=AuditResponse)
@limiter.limit("10/minute")
async def audit(request: Request, service: BoardService):
    grouped = unwrap(await service.list_applications_for_my_jobs())
    violations = check_single_acceptance(app for apps in grouped.values() for app in apps)
    if violations:
        logger.error(f"Single-acceptance violations | jobs={violations}")
    return AuditResponse(
        status="violations" if violations else "ok",
        jobs_checked=len(grouped),
        violations=violations,
        checked_at=datetime.now(timezone.utc),
    )
