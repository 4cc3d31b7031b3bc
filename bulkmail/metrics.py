"""Metrics facade.

Service code should ONLY call the semantic helpers here so the backend can
change freely. Counters are exposed on ``/metrics``.
"""

from __future__ import annotations

from prometheus_client import Counter

_JOBS_CREATED = Counter("email_jobs_created_total", "Email jobs created")
_JOBS_CANCELLED = Counter("email_jobs_cancelled_total", "Email jobs cancelled", ["scope"])
_JOBS_SENT = Counter("email_jobs_sent_total", "Email jobs marked sent")
_JOB_FAILURES = Counter("email_job_failures_total", "Send failures recorded", ["outcome"])
_OPENS = Counter("tracking_opens_total", "Pixel loads counted as opens")
_PREFETCH_SKIPPED = Counter("tracking_prefetch_skipped_total", "Pixel loads ignored as proxy prefetch")
_CLICKS = Counter("tracking_clicks_total", "Link clicks recorded")
_SURVEY_RESPONSES = Counter("tracking_survey_responses_total", "Survey responses recorded", ["choice"])
_TRACKING_ERRORS = Counter("tracking_errors_total", "Tracking writes that failed", ["kind"])
_QUOTA_CHECKS = Counter("quota_checks_total", "Quota checks evaluated", ["plan"])
_QUOTA_REJECTIONS = Counter("quota_rejections_total", "Submissions rejected for exceeding quota")

_KNOWN_SURVEY_CHOICES = {"yes", "maybe", "no"}


def jobs_created(count: int = 1) -> None:
    _JOBS_CREATED.inc(count)


def jobs_cancelled(count: int, scope: str) -> None:
    if count:
        _JOBS_CANCELLED.labels(scope=scope).inc(count)


def job_sent() -> None:
    _JOBS_SENT.inc()


def job_failure(outcome: str) -> None:
    _JOB_FAILURES.labels(outcome=outcome).inc()


def open_recorded() -> None:
    _OPENS.inc()


def prefetch_skipped() -> None:
    _PREFETCH_SKIPPED.inc()


def click_recorded() -> None:
    _CLICKS.inc()


def survey_response(choice: str) -> None:
    # Free-form choices would explode label cardinality
    _SURVEY_RESPONSES.labels(choice=choice if choice in _KNOWN_SURVEY_CHOICES else "other").inc()


def tracking_error(kind: str) -> None:
    _TRACKING_ERRORS.labels(kind=kind).inc()


def quota_checked(plan: str) -> None:
    _QUOTA_CHECKS.labels(plan=plan).inc()


def quota_rejected() -> None:
    _QUOTA_REJECTIONS.inc()
