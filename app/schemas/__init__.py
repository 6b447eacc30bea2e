# app/schemas/__init__.py
from .calendar_sync import (
    SyncCategory,
    RunStatus,
    BatchResult,
    PushResult,
    PullResult,
    CleanupResult,
    SyncRunResult,
    WebhookChannel,
    WebhookStatus,
    UpdateCheck,
    SyncSettingsResponse,
    SyncSettingsUpdate,
    DisconnectResult,
)

__all__ = [
    "SyncCategory",
    "RunStatus",
    "BatchResult",
    "PushResult",
    "PullResult",
    "CleanupResult",
    "SyncRunResult",
    "WebhookChannel",
    "WebhookStatus",
    "UpdateCheck",
    "SyncSettingsResponse",
    "SyncSettingsUpdate",
    "DisconnectResult",
]
