# app/models/__init__.py
from .base import Base
from .user import User, Team
from .task import Task, TaskStatus, TaskPriority, task_collaborators
from .event import Event, EventType, EventSource
from .calendar_sync_settings import CalendarSyncSettings, SyncDirection

__all__ = [
    "Base",
    "User",
    "Team",
    "Task",
    "TaskStatus",
    "TaskPriority",
    "task_collaborators",
    "Event",
    "EventType",
    "EventSource",
    "CalendarSyncSettings",
    "SyncDirection",
]
