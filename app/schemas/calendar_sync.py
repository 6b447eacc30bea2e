# app/schemas/calendar_sync.py
from __future__ import annotations
from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List
from datetime import datetime
from enum import Enum

from app.models.calendar_sync_settings import SyncDirection


class SyncCategory(str, Enum):
    """Which per-user toggle governs an item"""
    TASK_DEADLINE = "task_deadline"
    TEAM_EVENT = "team_event"
    PERSONAL_EVENT = "personal_event"
    GENERAL = "general"  # always synced (meetings, milestones, reminders)


class RunStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"


class BatchResult(BaseModel):
    """Common shape of push / pull results"""
    status: RunStatus = Field(RunStatus.COMPLETED)
    reason: Optional[str] = Field(None, description="Why the run was skipped")
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = Field(default_factory=list)

    def record_failure(self, label: str, exc: Exception):
        self.failed += 1
        self.errors.append(f"{label}: {exc}")

    @property
    def writes(self) -> int:
        return self.created + self.updated

    def summary(self) -> str:
        return f"{self.created} created, {self.updated} updated, {self.skipped} skipped, {self.failed} failed"


class PushResult(BatchResult):
    """Outcome of pushing internal changes to the provider"""
    deleted: int = 0


class PullResult(BatchResult):
    """Outcome of importing provider events"""


class CleanupResult(BaseModel):
    """Outcome of an orphan cleanup run"""
    total_external_events: int = 0
    tasks_with_events: int = 0
    orphaned: int = 0
    deleted: int = 0
    errors: int = 0
    error_messages: List[str] = Field(default_factory=list)


class SyncRunResult(BaseModel):
    """Push followed by pull"""
    push: PushResult
    pull: PullResult


class WebhookChannel(BaseModel):
    """Active push-notification subscription"""
    channel_id: str
    resource_id: str
    expiration: Optional[datetime] = None


class WebhookStatus(BaseModel):
    webhook_active: bool
    channel_id: Optional[str] = None
    expiration: Optional[datetime] = None
    expiring_soon: bool = False


class UpdateCheck(BaseModel):
    has_updates: bool
    event_count: int = 0


class SyncSettingsResponse(BaseModel):
    """Public view of a user's sync settings (never exposes tokens)"""
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    is_enabled: bool = False
    external_calendar_id: Optional[str] = None
    sync_direction: SyncDirection = SyncDirection.BOTH
    sync_task_deadlines: bool = True
    sync_team_events: bool = True
    sync_personal_events: bool = True
    last_synced_at: Optional[datetime] = None
    webhook_active: bool = False


class SyncSettingsUpdate(BaseModel):
    """Partial update of sync settings"""
    is_enabled: Optional[bool] = None
    sync_direction: Optional[SyncDirection] = None
    sync_task_deadlines: Optional[bool] = None
    sync_team_events: Optional[bool] = None
    sync_personal_events: Optional[bool] = None


class DisconnectResult(BaseModel):
    success: bool = True
    deleted_events: int = 0
