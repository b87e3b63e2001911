"""
Job board service: the upward operations.

Every operation returns an ``OperationResult`` and never raises a
``JobBoardError``. Mutations follow the same pattern:

1. validate caller input (drafts raise before any store call);
2. apply an optimistic update to the reconciliation cache;
3. run the store call(s);
4. on success schedule the delayed re-fetch, on failure discard the
   optimistic overlay and re-fetch immediately.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from jobboard.cache import BoardSnapshot, BoardView, ReconciliationCache
from jobboard.config import BoardSettings, get_board_settings
from jobboard.decisions import Decision
from jobboard.errors import (
    DuplicateRecordError,
    ErrorKind,
    JobBoardError,
    NotFoundError,
    PreconditionFailedError,
    ValidationFailedError,
)
from jobboard.gateway.base import StoreGateway, eq, in_
from jobboard.identity import CurrentUser, IdentityProvider
from jobboard.models import (
    ANONYMOUS_APPLICANT,
    ApplicationDraft,
    Job,
    JobApplication,
    JobDraft,
    Profile,
    parse_amount,
)
from jobboard.orchestrator import AcceptanceOrchestrator, DecisionOutcome, ReconcileReport

logger = logging.getLogger(__name__)


@dataclass
class OperationResult:
    """Outcome of an upward operation: a value or a typed failure."""

    ok: bool
    value: Any = None
    error: Optional[ErrorKind] = None
    message: str = ""
    degraded: bool = False
    warnings: List[str] = field(default_factory=list)
    view: Optional[BoardView] = None

    @classmethod
    def success(cls, value: Any = None, message: str = "") -> "OperationResult":
        return cls(ok=True, value=value, message=message)

    @classmethod
    def failure(cls, error: JobBoardError) -> "OperationResult":
        return cls(ok=False, error=error.kind, message=error.message)


@dataclass
class SubmissionReceipt:
    """Result value of ``submit_application``."""

    job_id: str
    application_id: Optional[str] = None
    already_applied: bool = False
    resume_key: Optional[str] = None


class JobBoardService:
    """Upward job board operations for the signed-in user.

    Args:
        gateway: Store gateway.
        identity: Identity provider for the current session.
        settings: Board settings; defaults to ``get_board_settings()``.
        use_cache: Keep a ``ReconciliationCache`` of the caller's board.
        clock: Seconds-since-epoch source used for resume object keys.
    """

    def __init__(
        self,
        gateway: StoreGateway,
        identity: IdentityProvider,
        settings: Optional[BoardSettings] = None,
        use_cache: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self._gateway = gateway
        self._identity = identity
        self._settings = settings or get_board_settings()
        self._clock = clock
        self.orchestrator = AcceptanceOrchestrator.from_settings(gateway, self._settings)
        self.cache: Optional[ReconciliationCache] = None
        if use_cache:
            self.cache = ReconciliationCache(
                self.fetch_snapshot, refresh_delay=self._settings.reconcile_delay_seconds
            )

    @classmethod
    def from_settings(cls, settings: Optional[BoardSettings] = None, **kwargs):
        """Build a service backed by Supabase for the client's own auth session."""
        from jobboard.gateway.supabase import SupabaseStoreGateway
        from jobboard.identity import SupabaseIdentity

        settings = settings or get_board_settings()
        gateway = SupabaseStoreGateway.from_settings(settings)
        return cls(gateway, SupabaseIdentity(gateway.client), settings=settings, **kwargs)

    @property
    def _jobs(self) -> str:
        return self._settings.jobs_table

    @property
    def _apps(self) -> str:
        return self._settings.applications_table

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _execute(
        self, operation: str, action: Callable[[], Awaitable[Any]], mutates: bool = True
    ) -> OperationResult:
        try:
            value = await action()
        except JobBoardError as e:
            logger.warning(f"{operation} failed | kind={e.kind.value} | {e.message}")
            # Validation fails before any store call; nothing to converge
            if mutates and e.kind is not ErrorKind.VALIDATION_FAILED:
                await self._recover()
            result = OperationResult.failure(e)
        else:
            if mutates and self.cache is not None:
                self.cache.schedule_refresh()
            result = value if isinstance(value, OperationResult) else OperationResult.success(value)
        if self.cache is not None:
            result.view = self.cache.snapshot()
        return result

    async def _recover(self) -> None:
        """Drop optimistic state and converge on the store right away."""
        if self.cache is None:
            return
        self.cache.discard_optimistic()
        try:
            await self.cache.refresh_now()
        except JobBoardError as e:
            logger.warning(f"Immediate refresh after failure did not complete: {e.message}")

    async def _require_user(self) -> CurrentUser:
        user = await self._identity.current_user()
        if user is None:
            raise PreconditionFailedError("Sign in required")
        return user

    async def _load_job(self, job_id: str) -> Job:
        row = await self._gateway.get_by_id(self._jobs, job_id)
        if row is None:
            raise NotFoundError("job", job_id)
        return Job.from_row(row)

    async def _owned_job(self, job_id: str, user: CurrentUser) -> Job:
        job = await self._load_job(job_id)
        if job.user_id != user.id:
            raise PreconditionFailedError(f"You do not own job {job_id}")
        return job

    async def _load_profile(self, user: CurrentUser) -> Optional[Profile]:
        rows = await self._gateway.select_where(
            self._settings.profiles_table, [eq("user_id", user.id)]
        )
        return Profile.from_row(rows[0]) if rows else None

    @staticmethod
    def _job_draft(draft: Union[JobDraft, Mapping[str, Any]]) -> JobDraft:
        return draft if isinstance(draft, JobDraft) else JobDraft.from_mapping(draft)

    def _log_unreferenced_resume(self, resume_key: Optional[str]) -> None:
        if resume_key is not None:
            logger.warning(
                f"Uploaded resume has no application | bucket={self._settings.resumes_bucket} | "
                f"key={resume_key}",
                extra={"resume_key": resume_key},
            )

    def _resume_key(self, user_id: str, filename: Optional[str]) -> str:
        key = f"{user_id}/{int(self._clock() * 1000)}"
        if filename and "." in filename:
            key = f"{key}.{filename.rsplit('.', 1)[1].lower()}"
        return key

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    async def post_job(self, draft: Union[JobDraft, Mapping[str, Any]]) -> OperationResult:
        async def _post():
            validated = self._job_draft(draft)
            user = await self._require_user()
            row = validated.to_row(user.id)
            job_id = await self._gateway.insert(self._jobs, row)
            job = Job.from_row({**row, "id": job_id})
            if self.cache is not None:
                self.cache.apply_job_insert(job)
            logger.info(f"Posted job {job_id} | owner={user.id}")
            return job

        return await self._execute("post_job", _post)

    async def edit_job(
        self, job_id: str, draft: Union[JobDraft, Mapping[str, Any]]
    ) -> OperationResult:
        async def _edit():
            validated = self._job_draft(draft)
            user = await self._require_user()
            job = await self._owned_job(job_id, user)
            fields = validated.to_fields()
            if self.cache is not None:
                self.cache.apply_job_edit(job_id, fields)
            updated = await self._gateway.update_where(
                self._jobs, job_id, fields, [eq("user_id", user.id)]
            )
            if not updated:
                raise NotFoundError("job", job_id)
            return Job.from_row({**job.to_row(), **fields})

        return await self._execute("edit_job", _edit)

    async def toggle_job_active(self, job_id: str) -> OperationResult:
        """Flip a job between open and closed; applications are untouched."""

        async def _toggle():
            user = await self._require_user()
            job = await self._owned_job(job_id, user)
            target = not job.is_active
            if self.cache is not None:
                self.cache.apply_job_toggle(job_id, target)
            updated = await self._gateway.update_where(
                self._jobs,
                job_id,
                {"is_active": target},
                [eq("user_id", user.id), eq("is_active", job.is_active)],
            )
            if not updated:
                raise PreconditionFailedError(
                    f"Job {job_id} changed while toggling; refresh and retry"
                )
            return replace(job, is_active=target)

        return await self._execute("toggle_job_active", _toggle)

    async def delete_job(self, job_id: str) -> OperationResult:
        async def _delete():
            user = await self._require_user()
            await self._owned_job(job_id, user)
            if self.cache is not None:
                self.cache.apply_job_delete(job_id)
            if not await self._gateway.delete_by_id(self._jobs, job_id):
                raise NotFoundError("job", job_id)
            logger.info(f"Deleted job {job_id} | owner={user.id}")
            return job_id

        return await self._execute("delete_job", _delete)

    async def list_my_jobs(self) -> OperationResult:
        async def _list():
            user = await self._require_user()
            rows = await self._gateway.select_where(
                self._jobs, [eq("user_id", user.id)], order_by="created_at", descending=True
            )
            return [Job.from_row(row) for row in rows]

        return await self._execute("list_my_jobs", _list, mutates=False)

    async def browse_jobs(
        self,
        location: Optional[str] = None,
        job_type: Optional[str] = None,
        min_amount: Any = None,
        max_amount: Any = None,
    ) -> OperationResult:
        """Open jobs posted by other users, newest first."""

        async def _browse():
            low = parse_amount(min_amount) if min_amount not in (None, "") else None
            high = parse_amount(max_amount) if max_amount not in (None, "") else None
            user = await self._identity.current_user()
            filters = [eq("is_active", True)]
            if job_type:
                filters.append(eq("job_type", job_type))
            rows = await self._gateway.select_where(
                self._jobs, filters, order_by="created_at", descending=True
            )
            jobs = [Job.from_row(row) for row in rows]
            if user is not None:
                jobs = [j for j in jobs if j.user_id != user.id]
            if location:
                jobs = [j for j in jobs if j.matches_location(location)]
            if low is not None:
                jobs = [j for j in jobs if j.amount >= low]
            if high is not None:
                jobs = [j for j in jobs if j.amount <= high]
            return jobs

        return await self._execute("browse_jobs", _browse, mutates=False)

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def submit_application(
        self,
        job_id: str,
        message: str,
        resume: Optional[bytes] = None,
        resume_filename: Optional[str] = None,
        content_type: Optional[str] = None,
    ) -> OperationResult:
        """Apply to a job. Applying twice is reported as ``already_applied``."""

        async def _submit():
            draft = ApplicationDraft(job_id=job_id, message=message, has_resume=resume is not None)
            user = await self._require_user()
            job = await self._load_job(draft.job_id)
            draft.validate_for(job)
            if job.user_id == user.id:
                raise PreconditionFailedError("You cannot apply to your own job")
            if not job.is_active:
                raise PreconditionFailedError(f"Job {job.id} is no longer accepting applications")
            if job.accepted_application_id:
                raise PreconditionFailedError(f"Job {job.id} already has an accepted applicant")

            existing = await self._gateway.select_where(
                self._apps, [eq("job_id", job.id), eq("applicant_id", user.id)]
            )
            if existing:
                return OperationResult.success(
                    SubmissionReceipt(job.id, existing[0]["id"], already_applied=True),
                    message="You have already applied to this job",
                )

            profile = await self._load_profile(user)
            resume_key = None
            if resume is not None:
                resume_key = await self._gateway.put_object(
                    self._settings.resumes_bucket,
                    self._resume_key(user.id, resume_filename),
                    resume,
                    content_type,
                )

            record = {
                "job_id": job.id,
                "applicant_id": user.id,
                "applicant_name": (profile.full_name if profile else None) or ANONYMOUS_APPLICANT,
                "applicant_email": (profile.email if profile else None) or user.email or "",
                "applicant_phone": (profile.phone if profile else None) or "",
                "applicant_location": (profile.current_city if profile else None) or "",
                "message": draft.message,
                "resume_url": resume_key,
                "status": "pending",
            }
            try:
                application_id = await self._gateway.insert(self._apps, record)
            except DuplicateRecordError:
                logger.info(f"Duplicate application | job={job.id} | applicant={user.id}")
                self._log_unreferenced_resume(resume_key)
                return OperationResult.success(
                    SubmissionReceipt(job.id, already_applied=True),
                    message="You have already applied to this job",
                )
            except JobBoardError:
                self._log_unreferenced_resume(resume_key)
                raise

            if self.cache is not None:
                self.cache.apply_submission(
                    JobApplication.from_row({**record, "id": application_id})
                )
            logger.info(f"Submitted application {application_id} | job={job.id}")
            return SubmissionReceipt(job.id, application_id, resume_key=resume_key)

        return await self._execute("submit_application", _submit)

    async def decide_application(
        self, application_id: str, decision: Union[Decision, str]
    ) -> OperationResult:
        """Accept or reject an application of one of the caller's jobs.

        The orchestrator runs shielded: cancelling the caller does not stop
        the sequence half way.
        """

        async def _decide():
            try:
                chosen = Decision(decision)
            except ValueError:
                raise ValidationFailedError(
                    "decision", f"Unknown decision {decision!r}; use accept or reject"
                ) from None
            user = await self._require_user()
            if self.cache is not None:
                self.cache.apply_decision(application_id, chosen)
            running = asyncio.ensure_future(
                self.orchestrator.decide_application(application_id, chosen, user.id)
            )
            try:
                outcome: DecisionOutcome = await asyncio.shield(running)
            except asyncio.CancelledError:
                # Nobody will see the result; converge the cache when it lands
                running.add_done_callback(self._settle_detached_decision)
                raise
            if outcome.cleanup_complete:
                return outcome
            return OperationResult(
                ok=True,
                value=outcome,
                message="Application accepted, but cleanup is incomplete",
                degraded=True,
                warnings=list(outcome.warnings),
            )

        return await self._execute("decide_application", _decide)

    def _settle_detached_decision(self, task: "asyncio.Future[DecisionOutcome]") -> None:
        if task.cancelled():
            logger.warning("Decision task was cancelled before it finished")
        elif task.exception() is not None:
            logger.warning(f"Decision failed after its caller went away: {task.exception()}")
            if self.cache is not None:
                self.cache.discard_optimistic()
        else:
            outcome = task.result()
            logger.info(
                f"Decision finished after its caller went away | app={outcome.application_id} | "
                f"status={outcome.status.value}"
            )
        if self.cache is not None:
            self.cache.schedule_refresh()

    async def list_applications_for_my_jobs(self) -> OperationResult:
        """Applications received on the caller's jobs, grouped by job, newest first."""

        async def _list():
            user = await self._require_user()
            return await self._received_by_job(user)

        return await self._execute("list_applications_for_my_jobs", _list, mutates=False)

    async def _received_by_job(self, user: CurrentUser) -> Dict[str, List[JobApplication]]:
        job_rows = await self._gateway.select_where(self._jobs, [eq("user_id", user.id)])
        if not job_rows:
            return {}
        rows = await self._gateway.select_where(
            self._apps,
            [in_("job_id", [row["id"] for row in job_rows])],
            order_by="created_at",
            descending=True,
        )
        grouped: Dict[str, List[JobApplication]] = {}
        for row in rows:
            app = JobApplication.from_row(row)
            grouped.setdefault(app.job_id, []).append(app)
        return grouped

    async def list_my_applications(self) -> OperationResult:
        async def _list():
            user = await self._require_user()
            rows = await self._gateway.select_where(
                self._apps,
                [eq("applicant_id", user.id)],
                order_by="created_at",
                descending=True,
            )
            return [JobApplication.from_row(row) for row in rows]

        return await self._execute("list_my_applications", _list, mutates=False)

    async def resume_url(self, application_id: str) -> OperationResult:
        """Public URL of an application's resume; visible to the applicant and the job owner."""

        async def _url():
            user = await self._require_user()
            row = await self._gateway.get_by_id(self._apps, application_id)
            if row is None:
                raise NotFoundError("application", application_id)
            app = JobApplication.from_row(row)
            if not app.resume_url:
                raise NotFoundError("resume", application_id)
            if app.applicant_id != user.id:
                await self._owned_job(app.job_id, user)
            return await self._gateway.get_public_url(
                self._settings.resumes_bucket, app.resume_url
            )

        return await self._execute("resume_url", _url, mutates=False)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def reconcile_job(self, job_id: str) -> OperationResult:
        async def _reconcile() -> ReconcileReport:
            user = await self._require_user()
            return await self.orchestrator.reconcile_job(job_id, user.id)

        return await self._execute("reconcile_job", _reconcile)

    async def reconcile_my_jobs(self) -> OperationResult:
        async def _reconcile() -> List[ReconcileReport]:
            user = await self._require_user()
            return await self.orchestrator.reconcile_owner_jobs(user.id)

        return await self._execute("reconcile_my_jobs", _reconcile)

    async def fetch_snapshot(self) -> BoardSnapshot:
        """Authoritative state of the caller's board; the cache's fetcher."""
        user = await self._require_user()
        job_rows = await self._gateway.select_where(
            self._jobs, [eq("user_id", user.id)], order_by="created_at", descending=True
        )
        received = await self._received_by_job(user)
        mine = await self._gateway.select_where(
            self._apps, [eq("applicant_id", user.id)], order_by="created_at", descending=True
        )
        return BoardSnapshot(
            jobs=[Job.from_row(row) for row in job_rows],
            received_applications=[app for apps in received.values() for app in apps],
            my_applications=[JobApplication.from_row(row) for row in mine],
        )

    async def refresh(self) -> OperationResult:
        """Re-fetch the cache now."""

        async def _refresh():
            if self.cache is None:
                raise PreconditionFailedError("This service has no cache")
            return await self.cache.refresh_now()

        return await self._execute("refresh", _refresh, mutates=False)

    async def aclose(self) -> None:
        if self.cache is not None:
            await self.cache.aclose()
