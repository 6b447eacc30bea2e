# app/services/calendar/google_oauth.py
import logging
from datetime import datetime
from typing import Dict, Optional

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from app.config.settings import get_settings
from app.services.calendar.exceptions import AuthRequired, TokenRefreshFailed
from app.utils.datetime_utils import as_utc

logger = logging.getLogger(__name__)


class GoogleOAuthClient:
    """OAuth 2.0 side of the Google integration: consent URL, code exchange, refresh."""

    SCOPES = [
        'https://www.googleapis.com/auth/calendar',
        'https://www.googleapis.com/auth/calendar.events',
    ]
    AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
    TOKEN_URI = "https://oauth2.googleapis.com/token"

    def __init__(self, client_id: Optional[str] = None, client_secret: Optional[str] = None,
                 redirect_uri: Optional[str] = None):
        settings = get_settings()
        self.client_id = client_id or settings.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.GOOGLE_REDIRECT_URI

        if not self.redirect_uri:
            raise ValueError("GOOGLE_REDIRECT_URI is not set! Please add it to your .env file.")

        # OAuth credentials from Google Cloud Console
        self.client_config = {
            "web": {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uris": [self.redirect_uri],
                "auth_uri": self.AUTH_URI,
                "token_uri": self.TOKEN_URI,
            }
        }

    def _flow(self) -> Flow:
        return Flow.from_client_config(
            self.client_config,
            scopes=self.SCOPES,
            redirect_uri=self.redirect_uri
        )

    def authorization_url(self, user_id: str) -> str:
        """Step 1: consent URL; ``state`` carries the user id back to the callback"""
        authorization_url, _state = self._flow().authorization_url(
            access_type='offline',  # Gets refresh token
            include_granted_scopes='true',
            prompt='consent',  # Force consent screen to get refresh token
            state=user_id
        )
        logger.info(f"Generated Google authorization URL for user {user_id}")
        return authorization_url

    def exchange_code(self, code: str) -> Dict:
        """Step 2: exchange the authorization code for tokens"""
        flow = self._flow()
        try:
            flow.fetch_token(code=code)
        except Exception as e:
            logger.error(f"Failed to exchange code for tokens: {e}")
            raise AuthRequired(f"Authorization code exchange failed: {e}") from e

        credentials = flow.credentials
        logger.info("Successfully exchanged authorization code for tokens")
        return {
            "access_token": credentials.token,
            "refresh_token": credentials.refresh_token,
            "expiry": self._aware_expiry(credentials.expiry),
        }

    def refresh_access_token(self, refresh_token: str) -> Dict:
        """Use the refresh token to mint a new access token"""
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=self.TOKEN_URI,
            client_id=self.client_id,
            client_secret=self.client_secret,
        )
        try:
            credentials.refresh(Request())
        except (RefreshError, TransportError) as e:
            raise TokenRefreshFailed(f"Token refresh failed: {e}") from e

        return {
            "access_token": credentials.token,
            "expiry": self._aware_expiry(credentials.expiry),
        }

    @staticmethod
    def _aware_expiry(expiry: Optional[datetime]) -> Optional[datetime]:
        # google-auth reports expiry as naive UTC
        return as_utc(expiry)
