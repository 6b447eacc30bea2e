# app/services/calendar/webhook_channel_service.py
"""
Google push-notification channel per user.

Lifecycle: unregistered -> active -> (renewing) -> active -> cancelled.
Google does not renew channels, so a fresh one is registered before the
current one expires and the old one is stopped.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from app.models.calendar_sync_settings import CalendarSyncSettings
from app.schemas.calendar_sync import PullResult, WebhookChannel, WebhookStatus
from app.services.calendar.exceptions import (
    CalendarSyncError, ProviderError, ProviderNotFound, SyncInProgress, WebhookRegistrationFailed,
)
from app.services.calendar.notifier import CALENDAR_UPDATED
from app.services.calendar.sync_service import CalendarSyncService
from app.utils.datetime_utils import as_utc, utc_now

logger = logging.getLogger(__name__)


class WebhookChannelService:
    def __init__(self, sync_service: CalendarSyncService, webhook_url: Optional[str] = None,
                 lead_minutes: Optional[int] = None):
        self.sync_service = sync_service
        self.db = sync_service.db
        self.provider = sync_service.provider
        settings = sync_service.settings
        self.webhook_url = webhook_url or settings.calendar_webhook_url
        self.lead_window = timedelta(minutes=lead_minutes or settings.WEBHOOK_RENEWAL_LEAD_MINUTES)

    # ========== REGISTRATION ==========

    def register(self, user_id: str) -> WebhookChannel:
        sync_settings = self.sync_service.load_settings(user_id)
        calendar_id = self.sync_service.prepare(sync_settings)

        if sync_settings.channel_id:
            try:
                self._stop(sync_settings)
            except CalendarSyncError as e:
                logger.warning(f"Could not stop previous channel for user {user_id}, registering anyway: {e}")

        try:
            channel = self.provider.subscribe_to_calendar(user_id, calendar_id, self.webhook_url)
        except ProviderError as e:
            logger.error(f"Webhook registration failed for user {user_id}: {e}")
            sync_settings.clear_channel()
            self.db.commit()
            raise WebhookRegistrationFailed(f"Could not subscribe to calendar changes: {e.message}") from e

        sync_settings.channel_id = channel.channel_id
        sync_settings.resource_id = channel.resource_id
        sync_settings.channel_expiry = channel.expiration
        self.db.commit()

        logger.info(f"Registered webhook channel {channel.channel_id} for user {user_id}, expires {channel.expiration}")
        return channel

    def is_expiring(self, sync_settings: CalendarSyncSettings, now: Optional[datetime] = None) -> bool:
        """No known expiration counts as expiring"""
        expiry = as_utc(sync_settings.channel_expiry)
        if expiry is None:
            return True
        return expiry - (now or utc_now()) < self.lead_window

    def check_and_renew(self, user_id: str, now: Optional[datetime] = None) -> Optional[WebhookChannel]:
        """Re-register when the channel expires within the lead window; returns the new channel"""
        sync_settings = self.sync_service.load_settings(user_id)
        if not sync_settings.channel_id:
            return None
        if not self.is_expiring(sync_settings, now):
            return None

        logger.info(f"Webhook channel for user {user_id} expires {sync_settings.channel_expiry}, renewing")
        return self.register(user_id)

    def cancel(self, user_id: str) -> bool:
        sync_settings = self.db.query(CalendarSyncSettings).filter_by(user_id=user_id).first()
        if sync_settings is None or not sync_settings.channel_id:
            return False

        self._stop(sync_settings)
        sync_settings.clear_channel()
        self.db.commit()
        logger.info(f"Cancelled webhook channel for user {user_id}")
        return True

    def _stop(self, sync_settings: CalendarSyncSettings):
        if not sync_settings.resource_id:
            return
        try:
            self.provider.unsubscribe(sync_settings.user_id, sync_settings.channel_id, sync_settings.resource_id)
        except ProviderNotFound:
            logger.info(f"Channel {sync_settings.channel_id} was already gone")

    def status(self, user_id: str, now: Optional[datetime] = None) -> WebhookStatus:
        sync_settings = self.db.query(CalendarSyncSettings).filter_by(user_id=user_id).first()
        if sync_settings is None or not sync_settings.channel_id:
            return WebhookStatus(webhook_active=False)
        return WebhookStatus(
            webhook_active=True,
            channel_id=sync_settings.channel_id,
            expiration=as_utc(sync_settings.channel_expiry),
            expiring_soon=self.is_expiring(sync_settings, now),
        )

    # ========== INBOUND DELIVERY ==========

    def resolve_channel(self, channel_id: str) -> Optional[CalendarSyncSettings]:
        return (
            self.db.query(CalendarSyncSettings)
            .filter_by(channel_id=channel_id, is_enabled=True)
            .first()
        )

    def process_change(self, user_id: str) -> Optional[PullResult]:
        """Resync after an ``exists`` delivery. Errors are logged, never raised."""
        try:
            result = self.sync_service.pull_provider_changes(user_id)
        except SyncInProgress:
            logger.info(f"Webhook resync for user {user_id} coalesced into the running sync")
            return None
        except CalendarSyncError as e:
            logger.error(f"Webhook resync failed for user {user_id}: {e.message}")
            return None

        self.sync_service.emit(user_id, CALENDAR_UPDATED, {"source": "webhook", **result.model_dump()})
        return result

    def renew_all_expiring(self, now: Optional[datetime] = None) -> int:
        rows = (
            self.db.query(CalendarSyncSettings)
            .filter(CalendarSyncSettings.is_enabled.is_(True), CalendarSyncSettings.channel_id.isnot(None))
            .all()
        )
        renewed = 0
        for sync_settings in rows:
            user_id = sync_settings.user_id
            try:
                if self.check_and_renew(user_id, now) is not None:
                    renewed += 1
            except CalendarSyncError as e:
                logger.error(f"Webhook renewal failed for user {user_id}: {e.message}")
        return renewed
