"""
Acceptance orchestrator.

Executes owner decisions against the store as an ordered sequence of
independent conditional writes. The store offers no multi-statement
transactions, so every step carries its own precondition and the order is
chosen so that an interruption always leaves a resumable state.

Accept sequence:

1. Read the application and its job. Fail with NotFound, AlreadyDecided
   (application not pending, or the job already has an accepted
   application) or PreconditionFailed (caller does not own the job).
2. a. Claim the job: set ``jobs.accepted_application_id`` to the target,
      only if it is unset (or already names the target). This single-row
      compare-and-set serializes competing accepts of the same job.
   b. Move the target ``pending -> accepted``. A definitive failure releases
      the claim and aborts.
3. Reject every other pending application of the job.
4. Close the job (``is_active = false``), scoped by owner.

Steps 1-2 abort the operation on failure. Steps 3-4 never roll back step 2:
their failures are logged and reported as a degraded success, and
``settle_acceptance``/``reconcile_job`` re-run them idempotently.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from jobboard.config import BoardSettings
from jobboard.decisions import Decision, decide, target_status
from jobboard.errors import (
    AlreadyDecidedError,
    JobBoardError,
    NotFoundError,
    PreconditionFailedError,
    StoreUnavailableError,
)
from jobboard.gateway.base import StoreGateway, eq, in_, is_null, neq
from jobboard.logging_config import log_decision_event
from jobboard.models import ApplicationStatus, Job, JobApplication

logger = logging.getLogger(__name__)

STEP_REJECT_SIBLINGS = "reject_siblings"
STEP_CLOSE_JOB = "close_job"

# Claim writes retried when the claim is cleared between write and re-read
CLAIM_ATTEMPTS = 3


@dataclass
class SettleResult:
    """Result of the acceptance cleanup (reject siblings, close job)."""

    rejected_count: int = 0
    job_closed: bool = False
    failed_steps: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed_steps


@dataclass
class DecisionOutcome:
    """Result of a decision that honored the caller's primary intent."""

    application_id: str
    job_id: str
    decision: Decision
    status: ApplicationStatus
    rejected_count: int = 0
    job_closed: bool = False
    failed_steps: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def cleanup_complete(self) -> bool:
        return not self.failed_steps


@dataclass
class ReconcileReport:
    """What a reconciliation pass found and repaired for one job."""

    job_id: str
    accepted_id: Optional[str] = None
    rejected_count: int = 0
    job_closed: bool = False
    claim_recorded: bool = False
    claim_released: bool = False
    violations: List[str] = field(default_factory=list)  # ids of multiple accepted apps
    failed_steps: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(
            self.rejected_count or self.job_closed or self.claim_recorded or self.claim_released
        )


class AcceptanceOrchestrator:
    """Runs accept/reject decisions against a store gateway.

    Args:
        gateway: Store gateway.
        jobs_table: Jobs table name.
        applications_table: Applications table name.
    """

    def __init__(
        self,
        gateway: StoreGateway,
        jobs_table: str = "jobs",
        applications_table: str = "job_applications",
    ):
        self._gateway = gateway
        self._jobs = jobs_table
        self._apps = applications_table

    @classmethod
    def from_settings(cls, gateway: StoreGateway, settings: BoardSettings):
        return cls(
            gateway,
            jobs_table=settings.jobs_table,
            applications_table=settings.applications_table,
        )

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def decide_application(
        self, application_id: str, decision: Decision, actor_id: str
    ) -> DecisionOutcome:
        """Apply an owner's decision to an application.

        Raises:
            NotFoundError, AlreadyDecidedError, PreconditionFailedError,
            StoreUnavailableError: the decision was not applied.
        """
        decision = Decision(decision)
        try:
            if decision is Decision.REJECT:
                outcome = await self.reject(application_id, actor_id)
            else:
                outcome = await self.accept(application_id, actor_id)
        except JobBoardError as e:
            log_decision_event(
                logger, application_id, decision.value, e.kind.value, error=e.message
            )
            raise

        log_decision_event(
            logger,
            application_id,
            decision.value,
            outcome.status.value if outcome.cleanup_complete else "degraded",
            job=outcome.job_id,
            rejected=outcome.rejected_count if decision is Decision.ACCEPT else None,
            failed_steps=",".join(outcome.failed_steps) or None,
        )
        return outcome

    async def reject(self, application_id: str, actor_id: str) -> DecisionOutcome:
        """Reject a pending application; siblings and job are untouched.

        Ownership is read first; the decision itself is one conditional write.
        """
        app = await self._load_application(application_id)
        job = await self._load_job(app.job_id)
        if job.user_id != actor_id:
            raise PreconditionFailedError(
                f"Only the job owner can reject applications for job {job.id}"
            )
        await self._transition(application_id, Decision.REJECT)
        return DecisionOutcome(
            application_id=application_id,
            job_id=app.job_id,
            decision=Decision.REJECT,
            status=ApplicationStatus.REJECTED,
        )

    async def accept(self, application_id: str, actor_id: str) -> DecisionOutcome:
        """Accept an application, reject its rivals and close its job."""
        # Step 1: read current state
        app = await self._load_application(application_id)
        decide(app.status, Decision.ACCEPT, app.id)
        job = await self._load_job(app.job_id)
        if job.user_id != actor_id:
            raise PreconditionFailedError(
                f"Only the job owner can accept applications for job {job.id}"
            )
        already = await self._gateway.select_where(
            self._apps,
            [eq("job_id", job.id), eq("status", ApplicationStatus.ACCEPTED.value)],
        )
        if already:
            raise AlreadyDecidedError(
                app.id,
                reason=f"Job {job.id} already has an accepted application ({already[0]['id']})",
            )

        # Step 2a: job-level guard
        await self._claim_job(job.id, app.id, actor_id)

        # Step 2b: target transition
        try:
            await self._transition(app.id, Decision.ACCEPT)
        except (AlreadyDecidedError, NotFoundError):
            await self._release_claim(job.id, app.id, actor_id)
            raise
        except StoreUnavailableError:
            logger.warning(
                f"Accept outcome unknown, claim kept | job={job.id} | app={app.id}",
                extra={"step": "accept_target", "job_id": job.id, "application_id": app.id},
            )
            raise

        # Steps 3-4: cleanup, never rolls back step 2
        settled = await self.settle_acceptance(job.id, app.id, actor_id)
        return DecisionOutcome(
            application_id=app.id,
            job_id=job.id,
            decision=Decision.ACCEPT,
            status=ApplicationStatus.ACCEPTED,
            rejected_count=settled.rejected_count,
            job_closed=settled.job_closed,
            failed_steps=list(settled.failed_steps),
            warnings=list(settled.errors),
        )

    async def settle_acceptance(self, job_id: str, accepted_id: str, owner_id: str) -> SettleResult:
        """Reject pending rivals of ``accepted_id`` and close the job.

        Idempotent: against a settled job it affects zero rows. Stops at the
        first failing step so a closed job always implies rejected rivals.
        """
        result = SettleResult()

        # Step 3
        try:
            result.rejected_count = await self._gateway.update_many_where(
                self._apps,
                [
                    eq("job_id", job_id),
                    eq("status", ApplicationStatus.PENDING.value),
                    neq("id", accepted_id),
                ],
                {"status": ApplicationStatus.REJECTED.value},
            )
        except JobBoardError as e:
            self._log_partial_failure(STEP_REJECT_SIBLINGS, job_id, accepted_id, e)
            result.failed_steps.append(STEP_REJECT_SIBLINGS)
            result.errors.append(f"Competing applications were not rejected: {e.message}")
            return result

        # Step 4
        try:
            closed = await self._gateway.update_where(
                self._jobs,
                job_id,
                {"is_active": False},
                [eq("user_id", owner_id), eq("is_active", True)],
            )
            result.job_closed = closed > 0
        except JobBoardError as e:
            self._log_partial_failure(STEP_CLOSE_JOB, job_id, accepted_id, e)
            result.failed_steps.append(STEP_CLOSE_JOB)
            result.errors.append(f"Job was not closed: {e.message}")

        return result

    async def reconcile_job(self, job_id: str, owner_id: str) -> ReconcileReport:
        """Bring one job in line with its applications.

        - a claim naming a rejected or missing application is released;
        - an accepted application gets its claim recorded and steps 3-4 re-run;
        - more than one accepted application is reported, never auto-resolved.
        """
        job = await self._load_job(job_id)
        if job.user_id != owner_id:
            raise PreconditionFailedError(f"Only the job owner can reconcile job {job_id}")
        rows = await self._gateway.select_where(self._apps, [eq("job_id", job_id)])
        apps = {row["id"]: JobApplication.from_row(row) for row in rows}
        accepted = sorted(a.id for a in apps.values() if a.is_accepted)
        report = ReconcileReport(job_id=job_id)

        if len(accepted) > 1:
            report.violations = accepted
            logger.error(
                f"Multiple accepted applications | job={job_id} | apps={accepted}",
                extra={"job_id": job_id, "violations": accepted},
            )
            return report

        if not accepted:
            claimed = apps.get(job.accepted_application_id) if job.accepted_application_id else None
            if job.accepted_application_id and (
                claimed is None or claimed.status == ApplicationStatus.REJECTED.value
            ):
                report.claim_released = await self._release_claim(
                    job_id, job.accepted_application_id, owner_id
                )
            return report

        report.accepted_id = accepted[0]
        if job.accepted_application_id != report.accepted_id:
            precondition = (
                is_null("accepted_application_id")
                if job.accepted_application_id is None
                else eq("accepted_application_id", job.accepted_application_id)
            )
            report.claim_recorded = (
                await self._gateway.update_where(
                    self._jobs,
                    job_id,
                    {"accepted_application_id": report.accepted_id},
                    [eq("user_id", owner_id), precondition],
                )
                > 0
            )

        settled = await self.settle_acceptance(job_id, report.accepted_id, owner_id)
        report.rejected_count = settled.rejected_count
        report.job_closed = settled.job_closed
        report.failed_steps = list(settled.failed_steps)
        if report.changed:
            logger.info(
                f"Reconciled job {job_id} | accepted={report.accepted_id} | "
                f"rejected={report.rejected_count} | closed={report.job_closed}"
            )
        return report

    async def reconcile_owner_jobs(self, owner_id: str) -> List[ReconcileReport]:
        """Reconcile every job of ``owner_id`` whose cleanup is visibly incomplete.

        A job qualifies when it has an accepted application alongside pending
        ones, an accepted application without a matching claim, or a claim on
        a rejected or missing application. A job that is merely active with an
        accepted application is left alone: its owner may have reopened it.
        """
        job_rows = await self._gateway.select_where(self._jobs, [eq("user_id", owner_id)])
        if not job_rows:
            return []
        jobs = [Job.from_row(row) for row in job_rows]
        app_rows = await self._gateway.select_where(
            self._apps, [in_("job_id", [j.id for j in jobs])]
        )
        by_job: Dict[str, List[JobApplication]] = {}
        for row in app_rows:
            app = JobApplication.from_row(row)
            by_job.setdefault(app.job_id, []).append(app)

        reports = []
        for job in jobs:
            if self._needs_repair(job, by_job.get(job.id, [])):
                reports.append(await self.reconcile_job(job.id, owner_id))
        return reports

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _needs_repair(job: Job, apps: List[JobApplication]) -> bool:
        accepted = [a for a in apps if a.is_accepted]
        if accepted:
            if any(a.is_pending for a in apps) or len(accepted) > 1:
                return True
            return job.accepted_application_id != accepted[0].id
        if job.accepted_application_id:
            claimed = next((a for a in apps if a.id == job.accepted_application_id), None)
            return claimed is None or claimed.status == ApplicationStatus.REJECTED.value
        return False

    async def _load_application(self, application_id: str) -> JobApplication:
        row = await self._gateway.get_by_id(self._apps, application_id)
        if row is None:
            raise NotFoundError("application", application_id)
        return JobApplication.from_row(row)

    async def _load_job(self, job_id: str) -> Job:
        row = await self._gateway.get_by_id(self._jobs, job_id)
        if row is None:
            raise NotFoundError("job", job_id)
        return Job.from_row(row)

    async def _transition(self, application_id: str, decision: Decision) -> None:
        """Conditionally move a pending application to the decision's target status.

        A write that matched is final; only a write that matched nothing is
        followed by a read, to tell a missing application from a decided one.
        """
        target = target_status(decision)
        affected = await self._gateway.update_where(
            self._apps,
            application_id,
            {"status": target.value},
            [eq("status", ApplicationStatus.PENDING.value)],
        )
        if affected:
            return
        current = await self._load_application(application_id)
        # Precondition failed: raises AlreadyDecided for the current status
        decide(current.status, decision, application_id)
        raise AlreadyDecidedError(application_id, status=current.status)

    async def _claim_job(self, job_id: str, application_id: str, owner_id: str) -> None:
        """Record ``application_id`` as the job's single acceptance candidate."""
        for _ in range(CLAIM_ATTEMPTS):
            claimed = await self._gateway.update_where(
                self._jobs,
                job_id,
                {"accepted_application_id": application_id},
                [eq("user_id", owner_id), is_null("accepted_application_id")],
            )
            if claimed:
                return

            job = await self._load_job(job_id)
            if job.user_id != owner_id:
                raise PreconditionFailedError(
                    f"Only the job owner can accept applications for job {job_id}"
                )
            holder_id = job.accepted_application_id
            if holder_id == application_id:
                # Our own claim from an interrupted attempt
                return
            if holder_id is not None:
                break
            # Cleared between the write and the read; try again
        else:
            raise StoreUnavailableError(
                f"claim of job {job_id}",
                RuntimeError(f"claim kept changing over {CLAIM_ATTEMPTS} attempts"),
            )

        holder_row = await self._gateway.get_by_id(self._apps, holder_id)
        holder_status = holder_row["status"] if holder_row else None
        if holder_status in (None, ApplicationStatus.REJECTED.value):
            # Stale claim: its application was rejected or deleted
            taken = await self._gateway.update_where(
                self._jobs,
                job_id,
                {"accepted_application_id": application_id},
                [eq("user_id", owner_id), eq("accepted_application_id", holder_id)],
            )
            if taken:
                logger.info(f"Replaced stale claim | job={job_id} | old={holder_id}")
                return
        raise AlreadyDecidedError(
            application_id,
            reason=f"Job {job_id} already has an accepted application ({holder_id})",
        )

    async def _release_claim(self, job_id: str, application_id: str, owner_id: str) -> bool:
        try:
            released = await self._gateway.update_where(
                self._jobs,
                job_id,
                {"accepted_application_id": None},
                [eq("user_id", owner_id), eq("accepted_application_id", application_id)],
            )
        except StoreUnavailableError as e:
            self._log_partial_failure("release_claim", job_id, application_id, e)
            return False
        return released > 0

    def _log_partial_failure(
        self, step: str, job_id: str, application_id: str, error: JobBoardError
    ) -> None:
        logger.warning(
            f"Acceptance step '{step}' failed, decision stands | job={job_id} | "
            f"app={application_id} | error={error.message}",
            extra={
                "step": step,
                "job_id": job_id,
                "application_id": application_id,
                "error_type": type(error).__name__,
            },
        )
