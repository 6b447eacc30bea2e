# app/services/calendar/exceptions.py
"""Error taxonomy for calendar synchronization.

Setup-level errors (``AuthRequired``, ``TokenRefreshFailed``, ``SyncInProgress``)
abort a whole operation. ``ProviderError`` and ``MappingError`` are per-item and
are collected into batch results instead of being raised out of a batch.
"""


class CalendarSyncError(Exception):
    """Base class for all calendar sync failures"""
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class AuthRequired(CalendarSyncError):
    """No enabled sync settings (or no stored tokens) for the user"""
    status_code = 400


class TokenRefreshFailed(CalendarSyncError):
    """The provider rejected the refresh token; the user must reconnect"""
    status_code = 401


class ProviderError(CalendarSyncError):
    """A provider call failed"""
    status_code = 502


class ProviderUnavailable(ProviderError):
    """Transient failure: network, timeout, rate limit, 5xx"""
    status_code = 503


class ProviderNotFound(ProviderError):
    """The provider resource is already gone (404/410)"""
    status_code = 404


class MappingError(CalendarSyncError):
    """The internal record cannot be translated to a provider event"""
    status_code = 422


class InvalidRange(MappingError):
    """A produced interval ends before it starts"""


class WebhookRegistrationFailed(CalendarSyncError):
    """The push-notification channel could not be created"""
    status_code = 502


class SyncInProgress(CalendarSyncError):
    """Another sync for the same user currently holds the lock"""
    status_code = 409
