# app/services/calendar/token_manager.py
"""Keeps a valid provider access token available for each user.

Tokens live encrypted on ``CalendarSyncSettings``. Two concurrent refreshes for the
same user are harmless: both results are valid tokens and the last write wins.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.models.calendar_sync_settings import CalendarSyncSettings
from app.services.calendar.exceptions import AuthRequired, TokenRefreshFailed
from app.utils.datetime_utils import as_utc, utc_now
from app.utils.encryption import encrypt_token, decrypt_token

logger = logging.getLogger(__name__)


class TokenManager:
    """Ensures an unexpired access token before every provider call"""

    def __init__(self, db: Session, oauth_client=None, refresh_skew_seconds: Optional[int] = None):
        self.db = db
        self._oauth_client = oauth_client
        if refresh_skew_seconds is None:
            refresh_skew_seconds = get_settings().TOKEN_REFRESH_SKEW_SECONDS
        self.refresh_skew = timedelta(seconds=refresh_skew_seconds)

    @property
    def oauth_client(self):
        if self._oauth_client is None:
            from app.services.calendar.google_oauth import GoogleOAuthClient
            self._oauth_client = GoogleOAuthClient()
        return self._oauth_client

    def ensure_valid_token(self, user_id: str) -> str:
        """Return a usable access token, refreshing it first if it is (nearly) expired.

        Raises:
            AuthRequired: no settings row, sync disabled, or no tokens stored
            TokenRefreshFailed: the provider refused the refresh
        """
        sync_settings = self.db.query(CalendarSyncSettings).filter_by(user_id=user_id).first()
        if not sync_settings or not sync_settings.is_enabled:
            raise AuthRequired(f"Calendar sync is not enabled for user {user_id}")

        access_token = decrypt_token(sync_settings.access_token_encrypted)
        if access_token and not self.needs_refresh(sync_settings):
            return access_token

        return self.refresh(sync_settings)

    def needs_refresh(self, sync_settings: CalendarSyncSettings, now: Optional[datetime] = None) -> bool:
        """An unknown expiry is treated as expired"""
        expiry = as_utc(sync_settings.token_expiry)
        if expiry is None:
            return True
        now = now or utc_now()
        return expiry <= now + self.refresh_skew

    def refresh(self, sync_settings: CalendarSyncSettings) -> str:
        refresh_token = decrypt_token(sync_settings.refresh_token_encrypted)
        if not refresh_token:
            raise TokenRefreshFailed(
                f"Access token expired and no refresh token stored for user {sync_settings.user_id}"
            )

        logger.info(f"Refreshing calendar access token for user {sync_settings.user_id}")
        try:
            refreshed = self.oauth_client.refresh_access_token(refresh_token)
        except TokenRefreshFailed:
            logger.error(f"Token refresh rejected for user {sync_settings.user_id}")
            raise
        except Exception as e:
            logger.error(f"Token refresh failed for user {sync_settings.user_id}: {e}")
            raise TokenRefreshFailed(str(e)) from e

        sync_settings.access_token_encrypted = encrypt_token(refreshed["access_token"])
        sync_settings.token_expiry = refreshed.get("expiry")
        self.db.commit()
        return refreshed["access_token"]

    @staticmethod
    def store_tokens(sync_settings: CalendarSyncSettings, access_token: str,
                     refresh_token: Optional[str], expiry: Optional[datetime]):
        """Persist a fresh grant; an absent refresh token keeps the stored one"""
        sync_settings.access_token_encrypted = encrypt_token(access_token)
        if refresh_token:
            sync_settings.refresh_token_encrypted = encrypt_token(refresh_token)
        sync_settings.token_expiry = expiry

    @staticmethod
    def clear_tokens(sync_settings: CalendarSyncSettings):
        sync_settings.access_token_encrypted = None
        sync_settings.refresh_token_encrypted = None
        sync_settings.token_expiry = None
