# app/services/calendar/google_calendar_service.py
import logging
import uuid
from datetime import datetime
from typing import Dict, List, Optional

import httplib2
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app.config.settings import get_settings
from app.schemas.calendar_sync import WebhookChannel
from app.services.calendar.exceptions import ProviderError, ProviderNotFound, ProviderUnavailable
from app.services.calendar.token_manager import TokenManager
from app.utils.datetime_utils import from_epoch_millis, to_rfc3339

logger = logging.getLogger(__name__)


class GoogleCalendarService:
    """Thin capability wrapper around the Google Calendar v3 API.

    Every call asks the token manager for a valid access token first, so an
    expired token is refreshed (once) before anything reaches Google.
    """

    PAGE_SIZE = 250

    def __init__(self, token_manager: TokenManager, timeout: Optional[int] = None,
                 calendar_name: Optional[str] = None):
        settings = get_settings()
        self.token_manager = token_manager
        self.timeout = timeout or settings.PROVIDER_TIMEOUT_SECONDS
        self.calendar_name = calendar_name or settings.SYNC_CALENDAR_NAME
        self.webhook_ttl_seconds = settings.WEBHOOK_TTL_SECONDS

    def _client(self, user_id: str):
        access_token = self.token_manager.ensure_valid_token(user_id)
        credentials = Credentials(token=access_token)
        http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=self.timeout))
        return build('calendar', 'v3', http=http, cache_discovery=False)

    @staticmethod
    def _execute(request, action: str):
        try:
            return request.execute()
        except HttpError as e:
            status = e.resp.status if e.resp is not None else 0
            message = f"{action} failed with HTTP {status}: {e}"
            if status in (404, 410):
                raise ProviderNotFound(message) from e
            if status == 429 or status >= 500:
                raise ProviderUnavailable(message) from e
            raise ProviderError(message) from e
        except (TimeoutError, httplib2.HttpLib2Error, OSError) as e:
            raise ProviderUnavailable(f"{action} failed: {e}") from e

    # ========== EVENTS ==========

    def list_events(
            self,
            user_id: str,
            calendar_id: str,
            time_min: datetime,
            time_max: Optional[datetime] = None,
            max_results: int = 2500,
            updated_min: Optional[datetime] = None,
    ) -> List[Dict]:
        """List events in a time range, following pages up to ``max_results``"""
        service = self._client(user_id)
        events: List[Dict] = []
        page_token = None

        while len(events) < max_results:
            params = {
                "calendarId": calendar_id,
                "timeMin": to_rfc3339(time_min),
                "maxResults": min(self.PAGE_SIZE, max_results - len(events)),
                # recurring items come back as their master event, the id we mapped
                "singleEvents": False,
            }
            if time_max is not None:
                params["timeMax"] = to_rfc3339(time_max)
            if updated_min is not None:
                params["updatedMin"] = to_rfc3339(updated_min)
            if page_token:
                params["pageToken"] = page_token

            response = self._execute(service.events().list(**params), "events.list")
            events.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return events[:max_results]

    def create_event(self, user_id: str, event: Dict, calendar_id: str) -> Dict:
        service = self._client(user_id)
        return self._execute(
            service.events().insert(calendarId=calendar_id, body=event),
            "events.insert"
        )

    def update_event(self, user_id: str, event_id: str, event: Dict, calendar_id: str) -> Dict:
        service = self._client(user_id)
        return self._execute(
            service.events().update(calendarId=calendar_id, eventId=event_id, body=event),
            "events.update"
        )

    def delete_event(self, user_id: str, event_id: str, calendar_id: str) -> None:
        """Delete an event; an event that is already gone counts as deleted"""
        service = self._client(user_id)
        try:
            self._execute(
                service.events().delete(calendarId=calendar_id, eventId=event_id),
                "events.delete"
            )
        except ProviderNotFound:
            logger.info(f"Event {event_id} already removed from calendar {calendar_id}")

    # ========== CALENDARS ==========

    def get_calendar_list(self, user_id: str) -> List[Dict]:
        service = self._client(user_id)
        calendars: List[Dict] = []
        page_token = None
        while True:
            response = self._execute(
                service.calendarList().list(pageToken=page_token),
                "calendarList.list"
            )
            calendars.extend(response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return calendars

    def find_or_create_dedicated_calendar(self, user_id: str) -> str:
        """Return the id of the calendar named ``SYNC_CALENDAR_NAME``, creating it if needed"""
        for calendar in self.get_calendar_list(user_id):
            if calendar.get("summary") == self.calendar_name:
                return calendar["id"]

        service = self._client(user_id)
        created = self._execute(
            service.calendars().insert(body={
                "summary": self.calendar_name,
                "description": "Tasks and events synchronized from TaskFlow",
                "timeZone": "UTC",
            }),
            "calendars.insert"
        )
        logger.info(f"Created dedicated calendar {created['id']} for user {user_id}")
        return created["id"]

    # ========== PUSH NOTIFICATIONS ==========

    def subscribe_to_calendar(self, user_id: str, calendar_id: str, webhook_url: str) -> WebhookChannel:
        service = self._client(user_id)
        response = self._execute(
            service.events().watch(calendarId=calendar_id, body={
                "id": str(uuid.uuid4()),
                "type": "web_hook",
                "address": webhook_url,
                "params": {"ttl": str(self.webhook_ttl_seconds)},
            }),
            "events.watch"
        )
        return WebhookChannel(
            channel_id=response["id"],
            resource_id=response["resourceId"],
            expiration=from_epoch_millis(response.get("expiration")),
        )

    def unsubscribe(self, user_id: str, channel_id: str, resource_id: str) -> None:
        service = self._client(user_id)
        self._execute(
            service.channels().stop(body={"id": channel_id, "resourceId": resource_id}),
            "channels.stop"
        )
