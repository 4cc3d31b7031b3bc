from prometheus_client import Counter
from slowapi import Limiter
from slowapi.util import get_remote_address

from bulkmail.core.config import settings

_PROM_RATE_LIMIT = Counter("bulkmail_rate_limit_exceeded_events", "Rate limit exceeded events (handler invocations)")

# Keyed by client address. Tracking routes are never limited.
limiter = Limiter(key_func=get_remote_address, storage_uri=settings.RATE_LIMIT_STORAGE_URI)

RATE_LIMITS = {
    "campaign_submit": "30/minute",
    "account_delete": "5/minute",
}


def increment_rate_limit_exceeded() -> None:
    _PROM_RATE_LIMIT.inc()
