"""Shared FastAPI dependencies: auth, database session and service wiring."""
from typing import Annotated, TypeAlias

from fastapi import Depends, Header, Request
from sqlalchemy.orm import Session

from bulkmail.core.audit import log_failure
from bulkmail.core.encryption import get_codec
from bulkmail.core.exceptions import UnauthorizedError
from bulkmail.core.hashing import get_hasher
from bulkmail.core.security import TokenExpiredError, TokenValidationError, decode_token
from bulkmail.db.session import get_db
from bulkmail.services.account_deletion_service import AccountDeletionService
from bulkmail.services.job_lifecycle import JobLifecycleController
from bulkmail.services.job_store import CampaignJobStore
from bulkmail.services.quota_service import UsageQuotaEngine
from bulkmail.services.tracking_service import TrackingCorrelator

# Campaign and job ids are uuid4 hex
RESOURCE_ID_PATTERN = r"^[0-9a-f]{32}$"


def get_current_user_id(authorization: str = Header(None)) -> int:
    if not authorization or not authorization.lower().startswith("bearer "):
        log_failure("auth.token.parse", user_id=None, error="missing_token")
        raise UnauthorizedError("missing token")
    token = authorization.split(" ", 1)[1]
    try:
        payload = decode_token(token)
        return int(payload["sub"])
    except TokenExpiredError as exc:
        log_failure("auth.token.expired", user_id=None, error="expired")
        raise UnauthorizedError("token expired") from exc
    except (TokenValidationError, KeyError, TypeError, ValueError) as exc:
        log_failure("auth.token.invalid", user_id=None, error="invalid")
        raise UnauthorizedError("invalid token") from exc


CurrentUserDep: TypeAlias = Annotated[int, Depends(get_current_user_id)]
DbDep: TypeAlias = Annotated[Session, Depends(get_db)]


def client_ip(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "Unknown"


def build_job_store(db: DbDep) -> CampaignJobStore:
    return CampaignJobStore(db, get_codec(), get_hasher())


JobStoreDep: TypeAlias = Annotated[CampaignJobStore, Depends(build_job_store)]


def build_quota_engine(db: DbDep) -> UsageQuotaEngine:
    return UsageQuotaEngine(db, get_hasher())


QuotaDep: TypeAlias = Annotated[UsageQuotaEngine, Depends(build_quota_engine)]


def build_lifecycle(db: DbDep, store: JobStoreDep, quota: QuotaDep) -> JobLifecycleController:
    return JobLifecycleController(db, store, quota)


LifecycleDep: TypeAlias = Annotated[JobLifecycleController, Depends(build_lifecycle)]


def build_tracking(db: DbDep) -> TrackingCorrelator:
    return TrackingCorrelator(db)


TrackingDep: TypeAlias = Annotated[TrackingCorrelator, Depends(build_tracking)]


def build_deletion_service(db: DbDep) -> AccountDeletionService:
    return AccountDeletionService(db)


DeletionDep: TypeAlias = Annotated[AccountDeletionService, Depends(build_deletion_service)]
