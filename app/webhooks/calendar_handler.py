# app/webhooks/calendar_handler.py
"""Google Calendar push notifications - queuing only.

Google disables a channel that keeps answering with errors, so every delivery
from a known or unknown channel is acknowledged with 200. Only a request that
is not a channel notification at all (no channel header) is rejected.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, Response

from app.api.dependencies import get_webhook_service
from app.services.calendar.webhook_channel_service import WebhookChannelService
from app.tasks.calendar_tasks import process_calendar_change

router = APIRouter()
logger = logging.getLogger(__name__)

HANDSHAKE = "sync"
CHANGED = "exists"
REMOVED = "not_exists"


@router.post("/google")
def handle_google_notification(
        request: Request,
        x_goog_channel_id: Optional[str] = Header(None),
        x_goog_resource_id: Optional[str] = Header(None),
        x_goog_resource_state: Optional[str] = Header(None),
        x_goog_message_number: Optional[str] = Header(None),
        webhooks: WebhookChannelService = Depends(get_webhook_service),
):
    """Handle a calendar change notification - queue the resync immediately"""
    if not x_goog_channel_id:
        logger.warning("Calendar webhook without X-Goog-Channel-ID, rejecting")
        return Response(status_code=400)

    correlation_id = getattr(request.state, "correlation_id", "unknown")
    logger.info(
        f"Calendar webhook: channel={x_goog_channel_id} state={x_goog_resource_state} "
        f"message={x_goog_message_number} correlation_id={correlation_id}"
    )

    sync_settings = webhooks.resolve_channel(x_goog_channel_id)
    if sync_settings is None:
        logger.info(f"Ignoring notification for unknown channel {x_goog_channel_id}")
        return Response(status_code=200)

    if x_goog_resource_id and sync_settings.resource_id and x_goog_resource_id != sync_settings.resource_id:
        logger.warning(f"Resource id mismatch on channel {x_goog_channel_id}, ignoring")
        return Response(status_code=200)

    if x_goog_resource_state == HANDSHAKE:
        logger.info(f"Webhook channel {x_goog_channel_id} verified for user {sync_settings.user_id}")
        return Response(status_code=200)

    if x_goog_resource_state == CHANGED:
        try:
            task = process_calendar_change.delay(sync_settings.user_id)
            logger.info(f"Queued calendar resync {task.id} for user {sync_settings.user_id}")
        except Exception as e:
            logger.error(f"Could not queue calendar resync for user {sync_settings.user_id}: {e}")
        return Response(status_code=200)

    # not_exists and any future states
    logger.info(f"Acknowledged {x_goog_resource_state} for user {sync_settings.user_id}")
    return Response(status_code=200)


@router.get("/google")
def google_webhook_info():
    return {
        "status": "ready",
        "accepts": [HANDSHAKE, CHANGED, REMOVED],
        "note": "Google Calendar push notifications are delivered as POST requests",
    }
