"""Application decision state machine.

Pure logic, no I/O. An application starts ``pending`` and is decided exactly
once: ``accepted`` and ``rejected`` are terminal. Accepting one application of
a job implies rejecting its pending siblings and closing the job; that
multi-record plan is computed here and executed by the orchestrator.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List

from jobboard.errors import AlreadyDecidedError
from jobboard.models import ApplicationStatus, JobApplication


class Decision(str, Enum):
    """An owner's decision on an application."""

    ACCEPT = "accept"
    REJECT = "reject"


VALID_APPLICATION_TRANSITIONS: Dict[ApplicationStatus, FrozenSet[ApplicationStatus]] = {
    ApplicationStatus.PENDING: frozenset({ApplicationStatus.ACCEPTED, ApplicationStatus.REJECTED}),
    ApplicationStatus.ACCEPTED: frozenset(),
    ApplicationStatus.REJECTED: frozenset(),
}

_DECISION_TARGETS = {
    Decision.ACCEPT: ApplicationStatus.ACCEPTED,
    Decision.REJECT: ApplicationStatus.REJECTED,
}


def target_status(decision: Decision) -> ApplicationStatus:
    return _DECISION_TARGETS[Decision(decision)]


def can_transition(from_status: str, to_status: str) -> bool:
    """Check if a status transition is valid."""
    try:
        allowed = VALID_APPLICATION_TRANSITIONS[ApplicationStatus(from_status)]
    except ValueError:
        return False
    return ApplicationStatus(to_status) in allowed


def decide(
    current_status: str, decision: Decision, application_id: str = "?"
) -> ApplicationStatus:
    """Return the status an application moves to under ``decision``.

    Raises:
        AlreadyDecidedError: if the application is not pending. A second
            decision is never a silent success; it means the caller's view is
            stale or it lost a race.
    """
    target = target_status(decision)
    if not can_transition(current_status, target.value):
        raise AlreadyDecidedError(application_id, status=str(current_status))
    return target


@dataclass(frozen=True)
class AcceptancePlan:
    """Target state of a job after accepting one of its applications."""

    job_id: str
    accepted_id: str
    rejected_ids: FrozenSet[str] = field(default_factory=frozenset)
    close_job: bool = True

    def status_for(self, application_id: str, current: str) -> str:
        if application_id == self.accepted_id:
            return ApplicationStatus.ACCEPTED.value
        if application_id in self.rejected_ids:
            return ApplicationStatus.REJECTED.value
        return current


def plan_acceptance(target: JobApplication, siblings: Iterable[JobApplication]) -> AcceptancePlan:
    """Compute the acceptance of ``target`` against the other applications of its job.

    ``siblings`` may include ``target`` itself and applications of other jobs;
    both are ignored. Only pending siblings are rejected; already rejected ones
    stay as they are.

    Raises:
        AlreadyDecidedError: if ``target`` is not pending or another
            application of the same job is already accepted.
    """
    decide(target.status, Decision.ACCEPT, target.id)

    rejected = set()
    for app in siblings:
        if app.id == target.id or app.job_id != target.job_id:
            continue
        if app.is_accepted:
            raise AlreadyDecidedError(
                target.id,
                reason=f"Job {target.job_id} already has an accepted application ({app.id})",
            )
        if app.is_pending:
            rejected.add(app.id)

    return AcceptancePlan(
        job_id=target.job_id,
        accepted_id=target.id,
        rejected_ids=frozenset(rejected),
    )


def accepted_applications(applications: Iterable[JobApplication]) -> Dict[str, List[str]]:
    """Group accepted application ids by job id."""
    accepted: Dict[str, List[str]] = {}
    for app in applications:
        if app.is_accepted:
            accepted.setdefault(app.job_id, []).append(app.id)
    return accepted


def check_single_acceptance(applications: Iterable[JobApplication]) -> List[str]:
    """Return the job ids that have more than one accepted application."""
    return sorted(
        job_id for job_id, ids in accepted_applications(applications).items() if len(ids) > 1
    )
