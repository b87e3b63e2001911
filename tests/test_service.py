"""Tests for JobBoardService, the upward operations."""

import asyncio
import logging
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from jobboard.errors import ErrorKind, StoreUnavailableError
from jobboard.identity import CurrentUser
from jobboard.models import Job
from jobboard.orchestrator import DecisionOutcome
from jobboard.service import OperationResult, SubmissionReceipt

from factories import APPS, JOBS, OTHER_OWNER_ID, OWNER_ID

SEEKER = CurrentUser(id="seeker-1", email="seeker@example.com")
STRANGER = CurrentUser(id="stranger-1", email="stranger@example.com")


def _job_fields(**overrides):
    fields = {
        "title": "Electrician",
        "organization_name": "Bright Homes",
        "city": "Chennai",
        "address": "T Nagar",
        "contact_number": "9876543210",
        "amount": "900",
        "duration_type": "daily",
        "job_type": "general",
    }
    fields.update(overrides)
    return fields


class TestJobs:
    @pytest.mark.asyncio
    async def test_post_job(self, gateway, make_service, owner):
        service = make_service(owner)

        result = await service.post_job(_job_fields())

        assert result.ok
        assert isinstance(result.value, Job)
        row = gateway.row(JOBS, result.value.id)
        assert row["user_id"] == OWNER_ID
        assert row["is_active"] is True
        assert row["location"] == "Chennai, T Nagar"
        assert [j.id for j in result.view.jobs] == [result.value.id]

    @pytest.mark.asyncio
    async def test_invalid_job_never_reaches_store(self, gateway, make_service, owner):
        service = make_service(owner)

        result = await service.post_job(_job_fields(amount="0"))

        assert not result.ok
        assert result.error is ErrorKind.VALIDATION_FAILED
        assert gateway.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "fields,field_name",
        [
            ({k: v for k, v in _job_fields().items() if k != "address"}, "address"),
            ({**_job_fields(), "salary": "lots"}, "salary"),
            (_job_fields(title=42), "title"),
        ],
    )
    async def test_malformed_job_fields_are_validation_failures(
        self, board, gateway, make_service, owner, fields, field_name
    ):
        job_id = board.job()
        service = make_service(owner)
        gateway.calls.clear()

        posted = await service.post_job(fields)
        edited = await service.edit_job(job_id, fields)

        for result in (posted, edited):
            assert not result.ok
            assert result.error is ErrorKind.VALIDATION_FAILED
            assert field_name in result.message
        assert gateway.calls == []
        assert board.job_row(job_id)["title"] == "Gardener"

    @pytest.mark.asyncio
    async def test_sign_in_required(self, gateway, make_service):
        service = make_service(None)

        result = await service.post_job(_job_fields())

        assert result.error is ErrorKind.PRECONDITION_FAILED
        assert result.message == "Sign in required"
        assert gateway.rows(JOBS) == []

    @pytest.mark.asyncio
    async def test_edit_job(self, board, make_service, owner):
        job_id = board.job()
        service = make_service(owner, use_cache=False)

        result = await service.edit_job(job_id, _job_fields(title="Senior Electrician"))

        assert result.ok
        assert result.value.title == "Senior Electrician"
        assert board.job_row(job_id)["title"] == "Senior Electrician"
        assert board.job_row(job_id)["amount"] == "900"

    @pytest.mark.asyncio
    async def test_edit_requires_owner(self, board, make_service):
        job_id = board.job()
        service = make_service(STRANGER, use_cache=False)

        result = await service.edit_job(job_id, _job_fields())

        assert result.error is ErrorKind.PRECONDITION_FAILED
        assert board.job_row(job_id)["title"] == "Gardener"

    @pytest.mark.asyncio
    async def test_edit_missing_job(self, make_service, owner):
        result = await make_service(owner, use_cache=False).edit_job("missing", _job_fields())
        assert result.error is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_toggle_leaves_applications(self, board, make_service, owner):
        job_id = board.job()
        app_id = board.application(job_id)
        service = make_service(owner, use_cache=False)

        closed = await service.toggle_job_active(job_id)
        reopened = await service.toggle_job_active(job_id)

        assert closed.value.is_active is False
        assert reopened.value.is_active is True
        assert board.job_row(job_id)["is_active"] is True
        assert board.status(app_id) == "pending"

    @pytest.mark.asyncio
    async def test_delete_job(self, board, gateway, make_service, owner):
        job_id = board.job()
        service = make_service(owner)
        await service.refresh()

        result = await service.delete_job(job_id)

        assert result.ok
        assert gateway.row(JOBS, job_id) is None
        assert result.view.jobs == []

    @pytest.mark.asyncio
    async def test_delete_requires_owner(self, board, make_service):
        job_id = board.job()

        result = await make_service(STRANGER, use_cache=False).delete_job(job_id)

        assert result.error is ErrorKind.PRECONDITION_FAILED
        assert board.job_row(job_id) is not None

    @pytest.mark.asyncio
    async def test_list_my_jobs(self, board, make_service, owner):
        older = board.job()
        newer = board.job()
        board.job(owner_id=OTHER_OWNER_ID)

        result = await make_service(owner, use_cache=False).list_my_jobs()

        assert [j.id for j in result.value] == [newer, older]


class TestBrowse:
    @pytest.fixture
    def jobs(self, board):
        return {
            "pune": board.job(),
            "mumbai": board.job(
                city="Mumbai",
                address="Bandra",
                location="Mumbai, Bandra",
                amount="1500",
                job_type="it",
            ),
            "closed": board.job(is_active=False),
            "own": board.job(owner_id=SEEKER.id),
        }

    @pytest.mark.asyncio
    async def test_excludes_own_and_inactive_jobs(self, jobs, make_service):
        result = await make_service(SEEKER, use_cache=False).browse_jobs()

        assert [j.id for j in result.value] == [jobs["mumbai"], jobs["pune"]]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "filters,expected",
        [
            ({"location": "bandra"}, "mumbai"),
            ({"job_type": "it"}, "mumbai"),
            ({"min_amount": "1000"}, "mumbai"),
            ({"max_amount": 1000}, "pune"),
            ({"location": "pune", "max_amount": "500"}, "pune"),
        ],
    )
    async def test_filters(self, jobs, make_service, filters, expected):
        result = await make_service(SEEKER, use_cache=False).browse_jobs(**filters)

        assert [j.id for j in result.value] == [jobs[expected]]

    @pytest.mark.asyncio
    async def test_invalid_amount_filter(self, jobs, make_service):
        result = await make_service(SEEKER, use_cache=False).browse_jobs(min_amount="cheap")
        assert result.error is ErrorKind.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_anonymous_browse(self, jobs, make_service):
        result = await make_service(None, use_cache=False).browse_jobs()

        assert result.ok
        assert len(result.value) == 3


class TestSubmitApplication:
    @pytest.mark.asyncio
    async def test_submit_snapshots_profile(self, board, gateway, make_service):
        job_id = board.job()
        board.profile(SEEKER.id, full_name="Ravi Kumar", phone="9000000000", current_city="Pune")

        result = await make_service(SEEKER).submit_application(job_id, "  I can start Monday  ")

        assert result.ok
        receipt = result.value
        assert isinstance(receipt, SubmissionReceipt)
        assert not receipt.already_applied
        row = gateway.row(APPS, receipt.application_id)
        assert row["status"] == "pending"
        assert row["message"] == "I can start Monday"
        assert row["applicant_name"] == "Ravi Kumar"
        assert row["applicant_email"] == SEEKER.email
        assert row["applicant_location"] == "Pune"
        assert job_id in result.view.applied_job_ids

    @pytest.mark.asyncio
    async def test_submit_without_profile(self, board, gateway, make_service):
        job_id = board.job()

        result = await make_service(SEEKER, use_cache=False).submit_application(job_id, "Hello")

        row = gateway.row(APPS, result.value.application_id)
        assert row["applicant_name"] == "Anonymous"
        assert row["applicant_email"] == SEEKER.email

    @pytest.mark.asyncio
    async def test_applying_twice(self, board, gateway, make_service):
        job_id = board.job()
        service = make_service(SEEKER, use_cache=False)

        first = await service.submit_application(job_id, "Hello")
        second = await service.submit_application(job_id, "Hello again")

        assert second.ok
        assert second.value.already_applied
        assert second.value.application_id == first.value.application_id
        assert second.message == "You have already applied to this job"
        assert len(gateway.rows(APPS)) == 1

    @pytest.mark.asyncio
    async def test_duplicate_insert_reports_already_applied(self, board, gateway, make_service):
        job_id = board.job()
        original_insert = gateway.insert

        async def _racing_insert(table, record):
            # Another tab submits between the duplicate check and the insert
            board.application(job_id, applicant_id=SEEKER.id)
            return await original_insert(table, record)

        with patch.object(gateway, "insert", AsyncMock(side_effect=_racing_insert)):
            result = await make_service(SEEKER, use_cache=False).submit_application(
                job_id, "Hello"
            )

        assert result.ok
        assert result.value.already_applied
        assert len(gateway.rows(APPS)) == 1

    @pytest.mark.asyncio
    async def test_duplicate_insert_with_resume_returns_no_key(
        self, board, gateway, make_service, caplog
    ):
        job_id = board.job(requires_resume=True)
        existing = board.application(job_id, applicant_id=SEEKER.id)
        service = make_service(SEEKER, use_cache=False, clock=lambda: 1700000000.0)
        no_duplicates_seen = AsyncMock(return_value=[])

        # The duplicate check misses the existing row; the insert conflicts
        with patch.object(gateway, "select_where", no_duplicates_seen):
            with caplog.at_level(logging.WARNING, logger="jobboard.service"):
                result = await service.submit_application(
                    job_id, "CV attached", resume=b"%PDF", resume_filename="cv.pdf"
                )

        assert result.ok
        assert result.value.already_applied
        assert result.value.resume_key is None
        assert [row["id"] for row in gateway.rows(APPS)] == [existing]
        orphan = [r for r in caplog.records if getattr(r, "resume_key", None)]
        assert orphan[0].resume_key == f"{SEEKER.id}/1700000000000.pdf"

    @pytest.mark.asyncio
    async def test_failed_insert_logs_uploaded_resume(self, board, gateway, make_service, caplog):
        job_id = board.job(requires_resume=True)
        service = make_service(SEEKER, use_cache=False)
        failure = AsyncMock(side_effect=StoreUnavailableError("insert on job_applications"))

        with patch.object(gateway, "insert", failure):
            with caplog.at_level(logging.WARNING, logger="jobboard.service"):
                result = await service.submit_application(
                    job_id, "CV attached", resume=b"%PDF", resume_filename="cv.pdf"
                )

        assert result.error is ErrorKind.STORE_UNAVAILABLE
        assert any(getattr(r, "resume_key", None) for r in caplog.records)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "job_overrides,user",
        [
            ({"is_active": False}, SEEKER),
            ({"accepted_application_id": "someone-else"}, SEEKER),
            ({}, CurrentUser(id=OWNER_ID)),
        ],
    )
    async def test_refused(self, board, gateway, make_service, job_overrides, user):
        job_id = board.job(**job_overrides)

        result = await make_service(user, use_cache=False).submit_application(job_id, "Hello")

        assert result.error is ErrorKind.PRECONDITION_FAILED
        assert gateway.rows(APPS) == []

    @pytest.mark.asyncio
    async def test_missing_job(self, make_service):
        result = await make_service(SEEKER, use_cache=False).submit_application("nope", "Hi")
        assert result.error is ErrorKind.NOT_FOUND

    @pytest.mark.asyncio
    async def test_empty_message(self, board, gateway, make_service):
        job_id = board.job()

        result = await make_service(SEEKER, use_cache=False).submit_application(job_id, "   ")

        assert result.error is ErrorKind.VALIDATION_FAILED
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_resume_required(self, board, make_service):
        job_id = board.job(requires_resume=True)

        result = await make_service(SEEKER, use_cache=False).submit_application(job_id, "Hi")

        assert result.error is ErrorKind.VALIDATION_FAILED
        assert "resume" in result.message

    @pytest.mark.asyncio
    async def test_resume_upload(self, board, gateway, make_service, settings):
        job_id = board.job(requires_resume=True)
        service = make_service(SEEKER, use_cache=False, clock=lambda: 1700000000.5)

        result = await service.submit_application(
            job_id, "CV attached", resume=b"%PDF-1.4", resume_filename="CV.PDF",
            content_type="application/pdf",
        )

        key = f"{SEEKER.id}/1700000000500.pdf"
        assert result.value.resume_key == key
        assert gateway.object(settings.resumes_bucket, key) == b"%PDF-1.4"
        assert gateway.row(APPS, result.value.application_id)["resume_url"] == key


class TestDecisions:
    @pytest.mark.asyncio
    async def test_accept_updates_view_optimistically(self, board, make_service, owner):
        job_id = board.job()
        a, b = board.application(job_id), board.application(job_id)
        service = make_service(owner)
        await service.refresh()

        result = await service.decide_application(a, "accept")

        assert result.ok
        assert not result.degraded
        assert isinstance(result.value, DecisionOutcome)
        assert {x.id: x.status for x in result.view.applications_by_job[job_id]} == {
            a: "accepted",
            b: "rejected",
        }
        assert result.view.pending_mutations == 1

        await service.cache.wait_idle()
        view = service.cache.snapshot()
        assert view.pending_mutations == 0
        assert view.jobs[0].is_active is False

    @pytest.mark.asyncio
    async def test_failure_discards_optimistic_view(self, board, gateway, make_service, owner):
        job_id = board.job()
        app_id = board.application(job_id)
        service = make_service(owner)
        await service.refresh()
        # Decided elsewhere; the cached view is stale
        gateway.seed(APPS, {**gateway.row(APPS, app_id), "status": "rejected"})

        result = await service.decide_application(app_id, "accept")

        assert result.error is ErrorKind.ALREADY_DECIDED
        assert result.view.pending_mutations == 0
        assert result.view.applications_by_job[job_id][0].status == "rejected"
        assert result.view.jobs[0].is_active is True

    @pytest.mark.asyncio
    async def test_degraded_acceptance(self, board, gateway, make_service, owner):
        job_id = board.job()
        a, b = board.application(job_id), board.application(job_id)
        failure = AsyncMock(side_effect=StoreUnavailableError("update_many_where"))

        with patch.object(gateway, "update_many_where", failure):
            result = await make_service(owner, use_cache=False).decide_application(a, "accept")

        assert result.ok
        assert result.degraded
        assert result.warnings
        assert result.message == "Application accepted, but cleanup is incomplete"
        assert board.statuses(a, b) == {a: "accepted", b: "pending"}

    @pytest.mark.asyncio
    async def test_unknown_decision(self, board, make_service, owner):
        app_id = board.application(board.job())

        result = await make_service(owner, use_cache=False).decide_application(app_id, "maybe")

        assert result.error is ErrorKind.VALIDATION_FAILED
        assert board.status(app_id) == "pending"

    @pytest.mark.asyncio
    async def test_non_owner(self, board, make_service):
        app_id = board.application(board.job())

        result = await make_service(STRANGER, use_cache=False).decide_application(
            app_id, "reject"
        )

        assert result.error is ErrorKind.PRECONDITION_FAILED
        assert board.status(app_id) == "pending"

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_interrupt_acceptance(
        self, board, make_service, owner
    ):
        job_id = board.job()
        a, b = board.application(job_id), board.application(job_id)
        service = make_service(owner, use_cache=False)

        task = asyncio.create_task(service.decide_application(a, "accept"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(50):
            await asyncio.sleep(0)

        assert board.statuses(a, b) == {a: "accepted", b: "rejected"}
        assert board.job_row(job_id)["is_active"] is False

    @pytest.mark.asyncio
    async def test_cancelled_caller_still_refreshes_cache(self, board, make_service, owner):
        job_id = board.job()
        a, b = board.application(job_id), board.application(job_id)
        service = make_service(owner)
        await service.refresh()

        task = asyncio.create_task(service.decide_application(a, "accept"))
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        for _ in range(50):
            await asyncio.sleep(0)
        await service.cache.wait_idle()

        view = service.cache.snapshot()
        assert view.pending_mutations == 0
        assert {x.id: x.status for x in view.applications_by_job[job_id]} == {
            a: "accepted",
            b: "rejected",
        }
        assert view.jobs[0].is_active is False

    @pytest.mark.asyncio
    async def test_cancelled_caller_failed_decision_is_logged(
        self, board, make_service, owner, caplog
    ):
        app_id = board.application(board.job(), status="rejected")
        service = make_service(owner)
        await service.refresh()

        with caplog.at_level(logging.WARNING, logger="jobboard.service"):
            task = asyncio.create_task(service.decide_application(app_id, "accept"))
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            for _ in range(50):
                await asyncio.sleep(0)
            await service.cache.wait_idle()

        assert any("after its caller went away" in r.getMessage() for r in caplog.records)
        assert board.status(app_id) == "rejected"


class TestListings:
    @pytest.mark.asyncio
    async def test_received_applications_grouped(self, board, make_service, owner):
        first_job, second_job = board.job(), board.job()
        old = board.application(first_job)
        new = board.application(first_job)
        other = board.application(second_job)
        board.application(board.job(owner_id=OTHER_OWNER_ID))

        result = await make_service(owner, use_cache=False).list_applications_for_my_jobs()

        assert {job: [a.id for a in apps] for job, apps in result.value.items()} == {
            first_job: [new, old],
            second_job: [other],
        }

    @pytest.mark.asyncio
    async def test_received_without_jobs(self, make_service, owner):
        result = await make_service(owner, use_cache=False).list_applications_for_my_jobs()
        assert result.value == {}

    @pytest.mark.asyncio
    async def test_my_applications(self, board, make_service):
        mine = board.application(board.job(), applicant_id=SEEKER.id)
        board.application(board.job())

        result = await make_service(SEEKER, use_cache=False).list_my_applications()

        assert [a.id for a in result.value] == [mine]


class TestResumeUrl:
    @pytest.fixture
    def application_id(self, board):
        return board.application(
            board.job(), applicant_id=SEEKER.id, resume_url=f"{SEEKER.id}/1.pdf"
        )

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user", [SEEKER, CurrentUser(id=OWNER_ID)])
    async def test_visible_to_applicant_and_owner(self, application_id, make_service, user):
        result = await make_service(user, use_cache=False).resume_url(application_id)
        assert result.value == f"memory://storage/resumes/{SEEKER.id}/1.pdf"

    @pytest.mark.asyncio
    async def test_hidden_from_others(self, application_id, make_service):
        result = await make_service(STRANGER, use_cache=False).resume_url(application_id)
        assert result.error is ErrorKind.PRECONDITION_FAILED

    @pytest.mark.asyncio
    async def test_no_resume(self, board, make_service):
        app_id = board.application(board.job(), applicant_id=SEEKER.id)

        result = await make_service(SEEKER, use_cache=False).resume_url(app_id)

        assert result.error is ErrorKind.NOT_FOUND


class TestReconcileAndRefresh:
    @pytest.mark.asyncio
    async def test_reconcile_my_jobs(self, board, make_service, owner):
        job_id = board.job()
        board.application(job_id, status="accepted")
        rival = board.application(job_id)

        result = await make_service(owner, use_cache=False).reconcile_my_jobs()

        assert [r.job_id for r in result.value] == [job_id]
        assert board.status(rival) == "rejected"

    @pytest.mark.asyncio
    async def test_reconcile_job(self, board, make_service, owner):
        job_id = board.job()
        board.application(job_id, status="accepted")

        result = await make_service(owner, use_cache=False).reconcile_job(job_id)

        assert result.value.claim_recorded
        assert result.value.job_closed

    @pytest.mark.asyncio
    async def test_refresh_without_cache(self, make_service, owner):
        result = await make_service(owner, use_cache=False).refresh()
        assert result.error is ErrorKind.PRECONDITION_FAILED

    @pytest.mark.asyncio
    async def test_refresh_loads_board(self, board, make_service, owner):
        job_id = board.job(amount="750")
        board.application(job_id)
        mine = board.application(board.job(owner_id=OTHER_OWNER_ID), applicant_id=OWNER_ID)

        result = await make_service(owner).refresh()

        view = result.value
        assert [j.amount for j in view.jobs] == [Decimal("750")]
        assert len(view.applications_by_job[job_id]) == 1
        assert [a.id for a in view.my_applications] == [mine]


def test_operation_result_failure():
    result = OperationResult.failure(StoreUnavailableError("select_where"))

    assert not result.ok
    assert result.error is ErrorKind.STORE_UNAVAILABLE
    assert "select_where" in result.message
