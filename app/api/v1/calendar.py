# app/api/v1/calendar.py
"""
Calendar sync endpoints for the signed-in user.

Handlers are plain ``def`` so FastAPI runs the blocking Google client in its threadpool.
CalendarSyncError subclasses are turned into HTTP errors by the handler in app.main.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse

from app.api.dependencies import (
    get_current_user_id, get_orphan_reconciler, get_sync_service, get_webhook_service,
)
from app.config.settings import get_settings
from app.schemas.calendar_sync import (
    CleanupResult, DisconnectResult, PullResult, PushResult, SyncRunResult,
    SyncSettingsResponse, SyncSettingsUpdate, UpdateCheck, WebhookChannel, WebhookStatus,
)
from app.services.calendar.exceptions import AuthRequired, CalendarSyncError
from app.services.calendar.google_oauth import GoogleOAuthClient
from app.services.calendar.orphan_reconciler import OrphanReconciler
from app.services.calendar.sync_service import CalendarSyncService
from app.services.calendar.webhook_channel_service import WebhookChannelService

logger = logging.getLogger(__name__)
settings = get_settings()

router = APIRouter(tags=["calendar"])


def _oauth_client() -> GoogleOAuthClient:
    try:
        return GoogleOAuthClient()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e))


# ========== CONNECTION ==========

@router.get("/connect")
def connect_google_calendar(user_id: str = Depends(get_current_user_id)):
    """Returns the Google consent URL the user should visit"""
    return {"authorization_url": _oauth_client().authorization_url(user_id)}


@router.get("/google/callback")
def google_callback(
        code: Optional[str] = None,
        state: Optional[str] = None,  # user_id
        error: Optional[str] = None,
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    """Google redirects here after consent; we store the grant and bounce to the frontend"""
    frontend = f"{settings.FRONTEND_URL.rstrip('/')}/calendar"
    if error or not code or not state:
        logger.warning(f"Google Calendar consent not completed: {error or 'missing code/state'}")
        return RedirectResponse(f"{frontend}?sync=error")

    try:
        tokens = _oauth_client().exchange_code(code)
    except AuthRequired:
        return RedirectResponse(f"{frontend}?sync=error")

    sync_service.complete_authorization(state, tokens)

    # Without a channel sync still works on demand
    try:
        WebhookChannelService(sync_service).register(state)
    except CalendarSyncError as e:
        logger.warning(f"Connected without push notifications for user {state}: {e.message}")

    return RedirectResponse(f"{frontend}?sync=connected")


# ========== SETTINGS ==========

def _settings_response(sync_settings, user_id: str) -> SyncSettingsResponse:
    if sync_settings is None:
        return SyncSettingsResponse(user_id=user_id)
    response = SyncSettingsResponse.model_validate(sync_settings)
    response.webhook_active = bool(sync_settings.channel_id)
    return response


@router.get("/settings", response_model=SyncSettingsResponse)
def get_sync_settings(
        user_id: str = Depends(get_current_user_id),
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    return _settings_response(sync_service.get_settings(user_id), user_id)


@router.put("/settings", response_model=SyncSettingsResponse)
def update_sync_settings(
        changes: SyncSettingsUpdate,
        user_id: str = Depends(get_current_user_id),
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    return _settings_response(sync_service.update_settings(user_id, changes), user_id)


@router.delete("/settings", response_model=DisconnectResult)
def disconnect_google_calendar(
        user_id: str = Depends(get_current_user_id),
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    return sync_service.disconnect(user_id)


# ========== SYNC ==========

@router.post("/sync", response_model=SyncRunResult)
def sync_now(
        user_id: str = Depends(get_current_user_id),
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    return sync_service.sync_user(user_id)


@router.post("/sync/push", response_model=PushResult)
def push_changes(
        user_id: str = Depends(get_current_user_id),
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    return sync_service.push_user_changes(user_id)


@router.post("/sync/pull", response_model=PullResult)
def pull_changes(
        user_id: str = Depends(get_current_user_id),
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    return sync_service.pull_provider_changes(user_id)


@router.post("/cleanup", response_model=CleanupResult)
def cleanup_orphaned_events(
        user_id: str = Depends(get_current_user_id),
        reconciler: OrphanReconciler = Depends(get_orphan_reconciler),
):
    """Delete task events whose task was removed while sync was off"""
    return reconciler.cleanup_orphans(user_id)


@router.get("/check-updates", response_model=UpdateCheck)
def check_for_updates(
        user_id: str = Depends(get_current_user_id),
        sync_service: CalendarSyncService = Depends(get_sync_service),
):
    return sync_service.check_for_updates(user_id)


# ========== PUSH NOTIFICATIONS ==========

@router.post("/webhook", response_model=WebhookChannel)
def setup_webhook(
        user_id: str = Depends(get_current_user_id),
        webhooks: WebhookChannelService = Depends(get_webhook_service),
):
    return webhooks.register(user_id)


@router.get("/webhook", response_model=WebhookStatus)
def webhook_status(
        user_id: str = Depends(get_current_user_id),
        webhooks: WebhookChannelService = Depends(get_webhook_service),
):
    return webhooks.status(user_id)


@router.delete("/webhook")
def stop_webhook(
        user_id: str = Depends(get_current_user_id),
        webhooks: WebhookChannelService = Depends(get_webhook_service),
):
    return {"success": True, "cancelled": webhooks.cancel(user_id)}
