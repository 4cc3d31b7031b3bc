"""Monthly quota with cross-account correlation."""
import datetime as dt
import math

import pytest

from bulkmail.core.exceptions import QuotaExceededError, UserNotFoundError
from bulkmail.models.models import EmailJob, JobStatus, UserPlan, utcnow
from bulkmail.services.job_lifecycle import JobLifecycleController
from bulkmail.services.job_store import CampaignJobStore
from bulkmail.services.quota_service import UsageQuotaEngine, plan_for_signup, start_of_month

SENDER_IP = "203.0.113.7"
SMTP_LOGIN = "shared@example.com"


@pytest.fixture
def store(db_session, codec, hasher):
    return CampaignJobStore(db_session, codec, hasher)


@pytest.fixture
def quota(db_session, hasher):
    return UsageQuotaEngine(db_session, hasher)


def _add_sent_jobs(db, campaign, count, sent_at=None):
    # Raw rows keep the test fast; recipient encryption is covered elsewhere
    sent_at = sent_at or utcnow()
    for _ in range(count):
        db.add(
            EmailJob(
                campaign_id=campaign.id,
                recipient="r",
                subject="s",
                status=JobStatus.SENT,
                scheduled_for=sent_at,
                original_scheduled_for=sent_at,
                sent_at=sent_at,
            )
        )
    db.commit()


def test_unlimited_plan_has_infinite_allowance(make_user, quota):
    user = make_user(plan=UserPlan.UNLIMITED)
    status = quota.check_usage(user.id)
    assert status.is_limited is False
    assert math.isinf(status.limit)
    assert math.isinf(status.remaining)
    assert status.plan is UserPlan.UNLIMITED


def test_free_user_remaining(make_user, store, quota, db_session):
    user = make_user()
    campaign = store.create_campaign(user.id, ip_address=SENDER_IP)
    _add_sent_jobs(db_session, campaign, 95)

    status = quota.check_usage(user.id)
    assert status.is_limited is True
    assert status.usage == 95
    assert status.limit == 100
    assert status.remaining == 5


def test_remaining_is_clamped_at_zero(make_user, store, quota, db_session):
    user = make_user()
    campaign = store.create_campaign(user.id)
    _add_sent_jobs(db_session, campaign, 150)

    status = quota.check_usage(user.id)
    assert status.usage == 150
    assert status.remaining == 0


def test_previous_month_is_not_counted(make_user, store, quota, db_session):
    user = make_user()
    campaign = store.create_campaign(user.id)
    last_month = start_of_month(utcnow()) - dt.timedelta(days=3)
    _add_sent_jobs(db_session, campaign, 40, sent_at=last_month)
    _add_sent_jobs(db_session, campaign, 2)

    assert quota.check_usage(user.id).usage == 2


def test_pending_jobs_are_not_usage(make_user, store, quota, db_session):
    user = make_user()
    campaign = store.create_campaign(user.id)
    store.add_job(campaign, "a@example.com", "Hi", utcnow())
    db_session.commit()

    assert quota.check_usage(user.id).usage == 0


def test_shared_ip_correlates_accounts(make_user, store, quota, db_session):
    first = make_user()
    second = make_user()
    _add_sent_jobs(db_session, store.create_campaign(first.id, ip_address=SENDER_IP), 60)
    _add_sent_jobs(db_session, store.create_campaign(second.id, ip_address=SENDER_IP), 60)

    for user in (first, second):
        status = quota.check_usage(user.id, ip_address=SENDER_IP)
        assert status.usage == 120
        assert status.remaining == 0


def test_without_ip_only_own_campaigns_count(make_user, store, quota, db_session):
    first = make_user()
    second = make_user()
    _add_sent_jobs(db_session, store.create_campaign(first.id, ip_address=SENDER_IP), 60)
    _add_sent_jobs(db_session, store.create_campaign(second.id, ip_address=SENDER_IP), 60)

    assert quota.check_usage(first.id).usage == 60


def test_shared_smtp_identity_correlates_accounts(make_user, store, quota, db_session):
    first = make_user()
    second = make_user()
    _add_sent_jobs(db_session, store.create_campaign(first.id, smtp_identity=SMTP_LOGIN), 30)
    _add_sent_jobs(db_session, store.create_campaign(second.id, ip_address="198.51.100.2"), 10)

    status = quota.check_usage(second.id, smtp_identity=SMTP_LOGIN.upper())
    assert status.usage == 40


def test_unknown_user_raises(quota):
    with pytest.raises(UserNotFoundError):
        quota.check_usage(999_999)


def test_plan_for_signup_uses_cutoff():
    from bulkmail.core.config import settings

    cutoff = settings.UNLIMITED_PLAN_CUTOFF
    assert plan_for_signup(cutoff - dt.timedelta(seconds=1)) is UserPlan.UNLIMITED
    assert plan_for_signup(cutoff) is UserPlan.FREE
    # Naive timestamps are read as UTC
    assert plan_for_signup(cutoff.replace(tzinfo=None) - dt.timedelta(days=1)) is UserPlan.UNLIMITED


def test_check_usage_is_racy_for_concurrent_callers(make_user, store, quota, db_session):
    """Two callers reading the allowance at the same time both see room left."""
    user = make_user()
    campaign = store.create_campaign(user.id)
    _add_sent_jobs(db_session, campaign, 99)

    first_look = quota.check_usage(user.id)
    second_look = quota.check_usage(user.id)
    assert first_look.remaining == second_look.remaining == 1

    # Both act on their stale read
    _add_sent_jobs(db_session, campaign, 1)
    _add_sent_jobs(db_session, campaign, 1)
    assert quota.check_usage(user.id).usage == 101


def test_admission_counts_pending_reservations(make_user, store, db_session, hasher):
    user = make_user()
    engine = UsageQuotaEngine(db_session, hasher, monthly_limit=3)
    controller = JobLifecycleController(db_session, store, engine)

    controller.submit_campaign(user.id, ["a@example.com", "b@example.com"], "Hello")
    assert engine.check_usage(user.id).remaining == 3
    assert engine.usage_for_admission(user.id).remaining == 1

    with pytest.raises(QuotaExceededError) as excinfo:
        controller.submit_campaign(user.id, ["c@example.com", "d@example.com"], "Hello")
    assert excinfo.value.details == {"requested": 2, "remaining": 1, "limit": 3}


def test_rejected_submission_writes_nothing(make_user, store, db_session, hasher):
    user = make_user()
    controller = JobLifecycleController(db_session, store, UsageQuotaEngine(db_session, hasher, monthly_limit=1))

    with pytest.raises(QuotaExceededError):
        controller.submit_campaign(user.id, ["a@example.com", "b@example.com"], "Hello")

    assert db_session.query(EmailJob).count() == 0
    assert store.get_monthly_usage(user.id) == 0


def test_cancelling_releases_reservation(make_user, store, db_session, hasher):
    user = make_user()
    engine = UsageQuotaEngine(db_session, hasher, monthly_limit=2)
    controller = JobLifecycleController(db_session, store, engine)

    submitted = controller.submit_campaign(user.id, ["a@example.com", "b@example.com"], "Hello")
    with pytest.raises(QuotaExceededError):
        controller.submit_campaign(user.id, ["c@example.com"], "Hello")

    controller.cancel_campaign(submitted.campaign_id, user.id)
    result = controller.submit_campaign(user.id, ["c@example.com"], "Hello")
    assert result.job_count == 1


def test_unlimited_user_is_never_rejected(make_user, store, db_session, hasher):
    user = make_user(plan=UserPlan.UNLIMITED)
    controller = JobLifecycleController(db_session, store, UsageQuotaEngine(db_session, hasher, monthly_limit=1))
    result = controller.submit_campaign(user.id, ["a@example.com", "b@example.com", "c@example.com"], "Hi")
    assert result.job_count == 3
