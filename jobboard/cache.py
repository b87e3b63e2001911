"""
Reconciliation cache.

Client-side view of jobs and applications. Two layers:

- the authoritative snapshot, replaced wholesale by every re-fetch;
- an overlay of provisional optimistic mutations, each tagged with a
  generation number.

Views are computed by replaying the overlay over the snapshot. A re-fetch
that started at generation ``g`` drops every overlay entry with generation
``<= g``: the store already reflects them (or refused them). Entries recorded
while the fetch was in flight survive until the next one. On failure the
overlay is discarded outright; no rollback value is ever computed locally.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional

from jobboard.decisions import Decision, plan_acceptance
from jobboard.errors import AlreadyDecidedError, JobBoardError
from jobboard.models import ApplicationStatus, Job, JobApplication

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_DELAY = 1.0


@dataclass
class BoardSnapshot:
    """Authoritative state as fetched from the store."""

    jobs: List[Job] = field(default_factory=list)
    received_applications: List[JobApplication] = field(default_factory=list)
    my_applications: List[JobApplication] = field(default_factory=list)


@dataclass
class BoardView:
    """Derived, display-ready view of the cache."""

    jobs: List[Job]
    applications_by_job: Dict[str, List[JobApplication]]
    my_applications: List[JobApplication]
    applied_job_ids: FrozenSet[str]
    pending_mutations: int = 0


@dataclass
class _State:
    jobs: Dict[str, Job]
    received: Dict[str, JobApplication]
    mine: Dict[str, JobApplication]


@dataclass
class _Mutation:
    generation: int
    kind: str
    apply: Callable[[_State], None]


def _newest_first(items):
    return sorted(
        items,
        key=lambda item: item.created_at.timestamp() if item.created_at else float("inf"),
        reverse=True,
    )


class ReconciliationCache:
    """Optimistic view of the board that always yields to the next re-fetch.

    Args:
        fetcher: Coroutine function returning a fresh ``BoardSnapshot``.
        refresh_delay: Default delay in seconds before a scheduled re-fetch.
    """

    def __init__(
        self,
        fetcher: Optional[Callable[[], Awaitable[BoardSnapshot]]] = None,
        refresh_delay: float = DEFAULT_REFRESH_DELAY,
    ):
        self._fetcher = fetcher
        self._refresh_delay = refresh_delay
        self._base = BoardSnapshot()
        self._overlay: List[_Mutation] = []
        self._generation = 0
        self._loaded = False
        self._pending: Optional[asyncio.Task] = None
        self.last_error: Optional[JobBoardError] = None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def loaded(self) -> bool:
        """True once an authoritative snapshot has been applied."""
        return self._loaded

    @property
    def pending_mutations(self) -> int:
        return len(self._overlay)

    # === Authoritative merge ===

    def apply_snapshot(self, snapshot: BoardSnapshot, fetch_started_at: Optional[int] = None):
        """Replace the authoritative layer.

        Args:
            snapshot: Freshly fetched state.
            fetch_started_at: Generation when the fetch began. Overlay entries
                at or below it are dropped. ``None`` drops the whole overlay.
        """
        self._base = snapshot
        self._loaded = True
        if fetch_started_at is None:
            dropped = len(self._overlay)
            self._overlay = []
        else:
            kept = [m for m in self._overlay if m.generation > fetch_started_at]
            dropped = len(self._overlay) - len(kept)
            self._overlay = kept
        logger.debug(
            f"Applied snapshot | jobs={len(snapshot.jobs)} | dropped={dropped} | "
            f"kept={len(self._overlay)}"
        )

    def discard_optimistic(self) -> int:
        """Drop every provisional mutation. Returns how many were dropped."""
        dropped = len(self._overlay)
        self._overlay = []
        if dropped:
            logger.debug(f"Discarded {dropped} optimistic mutation(s)")
        return dropped

    # === Optimistic mutations ===

    def _record(self, kind: str, apply: Callable[[_State], None]) -> int:
        self._generation += 1
        self._overlay.append(_Mutation(self._generation, kind, apply))
        return self._generation

    def apply_job_toggle(self, job_id: str, is_active: bool) -> int:
        def _apply(state: _State):
            job = state.jobs.get(job_id)
            if job is not None:
                state.jobs[job_id] = replace(job, is_active=is_active)

        return self._record("toggle", _apply)

    def apply_job_edit(self, job_id: str, fields: Dict[str, Any]) -> int:
        def _apply(state: _State):
            job = state.jobs.get(job_id)
            if job is not None:
                state.jobs[job_id] = replace(job, **fields)

        return self._record("edit", _apply)

    def apply_job_delete(self, job_id: str) -> int:
        def _apply(state: _State):
            state.jobs.pop(job_id, None)
            for app_id in [a.id for a in state.received.values() if a.job_id == job_id]:
                del state.received[app_id]

        return self._record("delete", _apply)

    def apply_job_insert(self, job: Job) -> int:
        def _apply(state: _State):
            state.jobs[job.id] = job

        return self._record("insert", _apply)

    def apply_submission(self, application: JobApplication) -> int:
        def _apply(state: _State):
            state.mine[application.id] = application

        return self._record("submit", _apply)

    def apply_decision(self, application_id: str, decision: Decision) -> Optional[int]:
        """Provisionally apply an owner's decision.

        Accept follows the full acceptance plan over the cached siblings:
        target accepted, pending rivals rejected, job closed. Returns None
        without recording anything when the cached view cannot take the
        decision (unknown or already decided application); the orchestrator's
        answer is authoritative either way.
        """
        decision = Decision(decision)
        current = self._current_state()
        target = current.received.get(application_id)
        if target is None or not target.is_pending:
            return None

        if decision is Decision.REJECT:

            def _reject(state: _State):
                app = state.received.get(application_id)
                if app is not None and app.is_pending:
                    state.received[application_id] = replace(
                        app, status=ApplicationStatus.REJECTED.value
                    )

            return self._record("reject", _reject)

        try:
            plan = plan_acceptance(target, current.received.values())
        except AlreadyDecidedError as e:
            logger.debug(f"Skipping optimistic accept of {application_id}: {e.message}")
            return None

        def _accept(state: _State):
            for app_id, app in list(state.received.items()):
                if app.job_id == plan.job_id:
                    status = plan.status_for(app_id, app.status)
                    if status != app.status:
                        state.received[app_id] = replace(app, status=status)
            job = state.jobs.get(plan.job_id)
            if job is not None:
                state.jobs[plan.job_id] = replace(
                    job, is_active=False, accepted_application_id=plan.accepted_id
                )

        return self._record("accept", _accept)

    # === Views ===

    def _current_state(self) -> _State:
        state = _State(
            jobs={j.id: j for j in self._base.jobs},
            received={a.id: a for a in self._base.received_applications},
            mine={a.id: a for a in self._base.my_applications},
        )
        for mutation in self._overlay:
            mutation.apply(state)
        return state

    def jobs(self) -> List[Job]:
        return _newest_first(self._current_state().jobs.values())

    def applications_by_job(self) -> Dict[str, List[JobApplication]]:
        """Received applications grouped by job id, newest first within each job."""
        grouped: Dict[str, List[JobApplication]] = {}
        for app in _newest_first(self._current_state().received.values()):
            grouped.setdefault(app.job_id, []).append(app)
        return grouped

    def my_applications(self) -> List[JobApplication]:
        return _newest_first(self._current_state().mine.values())

    def applied_job_ids(self) -> FrozenSet[str]:
        return frozenset(a.job_id for a in self._current_state().mine.values())

    def has_applied(self, job_id: str) -> bool:
        return job_id in self.applied_job_ids()

    def snapshot(self) -> BoardView:
        state = self._current_state()
        grouped: Dict[str, List[JobApplication]] = {}
        for app in _newest_first(state.received.values()):
            grouped.setdefault(app.job_id, []).append(app)
        return BoardView(
            jobs=_newest_first(state.jobs.values()),
            applications_by_job=grouped,
            my_applications=_newest_first(state.mine.values()),
            applied_job_ids=frozenset(a.job_id for a in state.mine.values()),
            pending_mutations=len(self._overlay),
        )

    # === Re-fetch scheduling ===

    async def refresh_now(self) -> BoardView:
        """Fetch and merge the authoritative state immediately.

        Raises:
            RuntimeError: if the cache has no fetcher.
            JobBoardError: if the fetch fails; the overlay is left as is.
        """
        if self._fetcher is None:
            raise RuntimeError("ReconciliationCache has no fetcher")
        started_at = self._generation
        snapshot = await self._fetcher()
        self.apply_snapshot(snapshot, fetch_started_at=started_at)
        self.last_error = None
        return self.snapshot()

    def schedule_refresh(self, delay: Optional[float] = None) -> asyncio.Task:
        """Schedule one delayed re-fetch, replacing any pending one."""
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        wait = self._refresh_delay if delay is None else delay
        self._pending = asyncio.get_running_loop().create_task(self._delayed_refresh(wait))
        return self._pending

    async def _delayed_refresh(self, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        try:
            await self.refresh_now()
        except JobBoardError as e:
            # Nobody awaits this task; keep the error for the next caller.
            self.last_error = e
            logger.warning(f"Scheduled refresh failed: {e.message}")

    async def wait_idle(self) -> None:
        """Wait until no scheduled re-fetch is pending, including rescheduled ones."""
        while self._pending is not None and not self._pending.done():
            task = self._pending
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise

    async def aclose(self) -> None:
        """Cancel the pending re-fetch."""
        task, self._pending = self._pending, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
