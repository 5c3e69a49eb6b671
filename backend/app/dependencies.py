import uuid

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from app.database import get_db
from app.utils.errors import UnauthorizedError
from app.utils.security import decode_token
from app.models.user import User
from app.services.meta_client import MetaAPIService
from app.services.publish_orchestrator import CeleryReconciliationQueue, PublishOrchestrator
from app.services.rate_limit import RateLimiter, get_rate_limiter

security = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None:
        raise UnauthorizedError("Authentication required")

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise UnauthorizedError("Invalid or expired token")

    if payload.get("type") != "access":
        raise UnauthorizedError("Invalid token type")

    try:
        user_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise UnauthorizedError("Invalid token payload")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if not user or not user.is_active:
        raise UnauthorizedError("User not found or inactive")

    return user


def get_meta_service() -> MetaAPIService:
    return MetaAPIService()


def get_reconciliation_queue() -> CeleryReconciliationQueue:
    return CeleryReconciliationQueue()


async def get_publish_orchestrator(
    db: AsyncSession = Depends(get_db),
    meta: MetaAPIService = Depends(get_meta_service),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    reconciliation: CeleryReconciliationQueue = Depends(get_reconciliation_queue),
) -> PublishOrchestrator:
    return PublishOrchestrator(db, meta, rate_limiter, reconciliation)
