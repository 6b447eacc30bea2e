# ============================================================================
# FILE: app/api/dependencies.py
# JWT authentication and calendar service dependencies
# ============================================================================
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.config.database import get_db
from app.config.settings import settings
from app.services.calendar.factory import build_orphan_reconciler, build_sync_service, build_webhook_service
from app.services.calendar.orphan_reconciler import OrphanReconciler
from app.services.calendar.sync_service import CalendarSyncService
from app.services.calendar.webhook_channel_service import WebhookChannelService

# Tokens are issued by the main TaskFlow application; this service only verifies them
jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Access token issued by TaskFlow login"
)


def _credentials_error(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign an access token; ``data`` must carry the user id as ``sub``"""
    issued_at = datetime.now(timezone.utc)
    claims = {
        **data,
        "iat": issued_at,
        "exp": issued_at + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)),
        "type": "access",
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_access_token(token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise _credentials_error(f"Could not validate credentials: {str(e)}")

    if payload.get("type") != "access":
        raise _credentials_error("Invalid token type")
    return payload


async def get_current_user_id(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security),
) -> str:
    """
    Dependency returning the authenticated user's id (the ``sub`` claim).

    User management lives in the main application; the sync API only needs
    the id to scope every operation to the caller.
    """
    user_id = verify_access_token(credentials.credentials).get("sub")
    if not user_id:
        raise _credentials_error("Token has no subject")
    return user_id


# ============================================================================
# Calendar Services
# ============================================================================

def get_sync_service(db: Session = Depends(get_db)) -> CalendarSyncService:
    return build_sync_service(db)


def get_webhook_service(db: Session = Depends(get_db)) -> WebhookChannelService:
    return build_webhook_service(db)


def get_orphan_reconciler(db: Session = Depends(get_db)) -> OrphanReconciler:
    return build_orphan_reconciler(db)
