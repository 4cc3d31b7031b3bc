"""Cancellation, retry bookkeeping and ownership for email jobs."""
import datetime as dt

import pytest
from sqlalchemy import delete

from bulkmail.core.exceptions import CampaignNotFoundError, JobNotFoundError
from bulkmail.models.models import EmailJob, JobStatus, utcnow
from bulkmail.services import job_lifecycle
from bulkmail.services.job_lifecycle import (
    CancelOutcome,
    FailureOutcome,
    JobLifecycleController,
    spread_schedule,
)
from bulkmail.services.job_store import CampaignJobStore
from bulkmail.services.quota_service import UsageQuotaEngine


def _naive(value: dt.datetime) -> dt.datetime:
    # SQLite hands back naive datetimes
    return value.replace(tzinfo=None)


@pytest.fixture
def store(db_session, codec, hasher):
    return CampaignJobStore(db_session, codec, hasher)


@pytest.fixture
def controller(db_session, store, hasher):
    return JobLifecycleController(db_session, store, UsageQuotaEngine(db_session, hasher))


@pytest.fixture
def owner(make_user):
    return make_user()


@pytest.fixture
def job(db_session, store, controller, owner):
    campaign = store.create_campaign(owner.id, name="Launch")
    job = controller.create_job(campaign, "reader@example.com", "Launch day")
    db_session.commit()
    return job


def test_spread_schedule_linear():
    start = dt.datetime(2026, 1, 1, 12, 0, tzinfo=dt.timezone.utc)
    times = spread_schedule(3, start, duration_minutes=60)
    assert times == [start, start + dt.timedelta(minutes=30), start + dt.timedelta(minutes=60)]
    assert spread_schedule(2, start) == [start, start]


def test_submit_campaign_encrypts_fields(db_session, store, controller, owner, codec):
    result = controller.submit_campaign(owner.id, ["a@example.com", "b@example.com"], "News", name="Weekly")
    assert result.job_count == 2

    stored = store.get_job(result.job_ids[0])
    assert stored.recipient != "a@example.com"
    assert codec.decrypt(stored.recipient) in {"a@example.com", "b@example.com"}
    assert stored.status is JobStatus.PENDING
    assert stored.tracking_id
    assert store.get_monthly_usage(owner.id) == 2


def test_submit_campaign_requires_recipients(controller, owner):
    with pytest.raises(ValueError):
        controller.submit_campaign(owner.id, [], "Empty")


def test_cancel_pending_job(controller, job, owner, store):
    result = controller.cancel_job(job.id, owner.id)
    assert result.success
    assert result.outcome is CancelOutcome.CANCELLED
    assert store.get_job(job.id).status is JobStatus.CANCELLED


def test_cancel_sent_job_is_reported_not_raised(controller, job, owner, store):
    assert controller.mark_sent(job.id)
    result = controller.cancel_job(job.id, owner.id)
    assert not result.success
    assert result.outcome is CancelOutcome.ALREADY_FINISHED
    assert result.status is JobStatus.SENT
    assert store.get_job(job.id).status is JobStatus.SENT


def test_cancel_twice_is_idempotent(controller, job, owner):
    assert controller.cancel_job(job.id, owner.id).success
    second = controller.cancel_job(job.id, owner.id)
    assert not second.success
    assert second.status is JobStatus.CANCELLED


def test_cancel_campaign_counts_only_pending(db_session, store, controller, owner):
    campaign = store.create_campaign(owner.id)
    jobs = [controller.create_job(campaign, f"r{i}@example.com", "Hi") for i in range(5)]
    db_session.commit()
    controller.mark_sent(jobs[0].id)
    controller.mark_sent(jobs[1].id)

    assert controller.cancel_campaign(campaign.id, owner.id) == 3
    statuses = sorted(store.get_job(j.id).status.value for j in jobs)
    assert statuses == ["CANCELLED", "CANCELLED", "CANCELLED", "SENT", "SENT"]
    assert controller.cancel_campaign(campaign.id, owner.id) == 0


def test_other_user_cannot_cancel(controller, job, make_user, store):
    intruder = make_user()
    with pytest.raises(JobNotFoundError):
        controller.cancel_job(job.id, intruder.id)
    with pytest.raises(CampaignNotFoundError):
        controller.cancel_campaign(job.campaign_id, intruder.id)
    assert store.get_job(job.id).status is JobStatus.PENDING


def test_unknown_job_is_not_found(controller, owner):
    with pytest.raises(JobNotFoundError):
        controller.cancel_job("0" * 32, owner.id)


def test_cancel_job_deleted_mid_cancel_is_not_found(controller, job, owner, monkeypatch):
    load_owned = job_lifecycle.get_owned_job

    def load_then_delete(db, job_id, user_id):
        loaded = load_owned(db, job_id, user_id)
        db.execute(delete(EmailJob).where(EmailJob.id == job_id).execution_options(synchronize_session=False))
        db.commit()
        return loaded

    monkeypatch.setattr(job_lifecycle, "get_owned_job", load_then_delete)
    with pytest.raises(JobNotFoundError):
        controller.cancel_job(job.id, owner.id, strict=True)


def test_failures_exhaust_retries(controller, job, store):
    now = utcnow()
    assert controller.record_failure(job.id, "timeout", now=now) is FailureOutcome.RETRY_SCHEDULED

    retried = store.get_job(job.id)
    assert retried.status is JobStatus.PENDING
    assert retried.retry_count == 1
    assert _naive(retried.next_retry_at) == _naive(now + dt.timedelta(minutes=5))
    assert _naive(retried.scheduled_for) == _naive(retried.next_retry_at)
    assert retried.original_scheduled_for == job.original_scheduled_for

    assert controller.record_failure(job.id, "timeout", now=now) is FailureOutcome.RETRY_SCHEDULED
    assert _naive(store.get_job(job.id).next_retry_at) == _naive(now + dt.timedelta(minutes=10))

    assert controller.record_failure(job.id, "refused", now=now) is FailureOutcome.FAILED
    failed = store.get_job(job.id)
    assert failed.status is JobStatus.FAILED
    assert failed.retry_count == failed.max_retries == 3
    assert failed.next_retry_at is None
    assert failed.error == "refused"

    assert controller.record_failure(job.id, "again") is FailureOutcome.NOOP
    assert store.get_job(job.id).retry_count == 3


def test_success_after_failures(controller, job, store):
    controller.record_failure(job.id, "timeout")
    controller.record_failure(job.id, "timeout")
    assert controller.mark_sent(job.id, sent_via_cron=True)

    sent = store.get_job(job.id)
    assert sent.status is JobStatus.SENT
    assert sent.retry_count == 2
    assert sent.next_retry_at is None
    assert sent.error is None
    assert sent.sent_via_cron is True
    assert sent.sent_at is not None


def test_cancelled_job_cannot_be_sent(controller, job, owner, store):
    controller.cancel_job(job.id, owner.id)
    assert controller.mark_sent(job.id) is False
    assert store.get_job(job.id).status is JobStatus.CANCELLED


def test_record_failure_unknown_job(controller):
    with pytest.raises(JobNotFoundError):
        controller.record_failure("f" * 32, "boom")


def test_due_jobs_exclude_future_and_finished(db_session, store, controller, owner):
    campaign = store.create_campaign(owner.id)
    now = utcnow()
    due = controller.create_job(campaign, "due@example.com", "Hi", now - dt.timedelta(minutes=1))
    controller.create_job(campaign, "later@example.com", "Hi", now + dt.timedelta(hours=1))
    done = controller.create_job(campaign, "done@example.com", "Hi", now - dt.timedelta(minutes=2))
    db_session.commit()
    controller.mark_sent(done.id)

    assert [j.id for j in store.list_due_jobs(now)] == [due.id]


def test_list_campaign_jobs_decrypts_and_counts(db_session, store, controller, owner):
    result = controller.submit_campaign(owner.id, ["a@example.com", "b@example.com"], "Digest", name="Digest")
    controller.mark_sent(result.job_ids[0])

    views, stats = store.list_campaign_jobs(result.campaign_id)
    assert {v.recipient for v in views} == {"a@example.com", "b@example.com"}
    assert {v.subject for v in views} == {"Digest"}
    assert stats.total == 2
    assert stats.sent == 1
    assert stats.pending == 1


def test_strict_cancel_raises_for_finished_job(controller, job, owner):
    from bulkmail.core.exceptions import JobAlreadyFinishedError

    controller.mark_sent(job.id)
    with pytest.raises(JobAlreadyFinishedError) as excinfo:
        controller.cancel_job(job.id, owner.id, strict=True)
    assert excinfo.value.status_code == 409
    assert excinfo.value.details["status"] == "SENT"


def test_malformed_id_rejected_before_lookup(controller, owner):
    from bulkmail.core.exceptions import InvalidIdentifierError

    with pytest.raises(InvalidIdentifierError):
        controller.cancel_job("../../etc", owner.id)
    with pytest.raises(InvalidIdentifierError):
        controller.cancel_campaign("ABC", owner.id)
