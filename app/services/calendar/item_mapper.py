# app/services/calendar/item_mapper.py
"""
Translation between internal tasks/events and Google Calendar event bodies.

Only the semantic fields (title, time window, all-day flag) survive a round trip
unchanged. Descriptions carry a rendered metadata footer that is stripped again on
the way back in, because the provider is free to reformat free text.
"""
import re
from collections import namedtuple
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from app.models.event import Event, EventType
from app.models.task import Task, TaskPriority
from app.schemas.calendar_sync import SyncCategory
from app.services.calendar.exceptions import InvalidRange, MappingError
from app.utils.datetime_utils import as_utc, parse_rfc3339, start_of_day, to_rfc3339

# Provenance markers. The title prefix keeps compatibility with events created
# before extended properties were written; both are recognized.
TASK_TITLE_PREFIX = "[Task] "
TASK_MARKER = "[Task]"
ITEM_TYPE_PROPERTY = "tmsItemType"
ITEM_ID_PROPERTY = "tmsItemId"

DESCRIPTION_METADATA_SEPARATOR = "\n\n--\n"

DEFAULT_EVENT_TYPE = EventType.PERSONAL
UNTITLED = "Untitled Event"

# Google Calendar colorId palette
EVENT_TYPE_COLORS: Dict[EventType, str] = {
    EventType.MEETING: "9",     # Blue
    EventType.DEADLINE: "11",   # Red
    EventType.REMINDER: "5",    # Yellow
    EventType.MILESTONE: "10",  # Green
    EventType.PERSONAL: "3",    # Purple
}
COLOR_EVENT_TYPES: Dict[str, EventType] = {color: kind for kind, color in EVENT_TYPE_COLORS.items()}

TASK_PRIORITY_COLORS: Dict[TaskPriority, str] = {
    TaskPriority.LOW: "2",      # Sage
    TaskPriority.MEDIUM: "5",   # Yellow
    TaskPriority.HIGH: "6",     # Tangerine
    TaskPriority.URGENT: "11",  # Tomato
}

RRULE_PATTERN = re.compile(r"^RRULE:FREQ=(DAILY|WEEKLY|MONTHLY|YEARLY)(;.*)?$")

ExternalEventRef = namedtuple("ExternalEventRef", ["calendar_id", "event_id"])


# ============================================================================
# Field helpers
# ============================================================================

def validate_recurrence(rule: Optional[str]) -> Optional[str]:
    if not rule:
        return None
    rule = rule.strip()
    if not RRULE_PATTERN.match(rule):
        raise MappingError(f"Invalid recurrence rule: {rule!r}")
    return rule


def build_time_block(start: datetime, end: datetime, all_day: bool) -> Tuple[Dict, Dict]:
    """Provider ``start``/``end`` objects; all-day end dates are exclusive."""
    start = as_utc(start)
    end = as_utc(end)
    if end < start:
        raise InvalidRange(f"End {end.isoformat()} is before start {start.isoformat()}")

    if not all_day:
        return (
            {"dateTime": to_rfc3339(start), "timeZone": "UTC"},
            {"dateTime": to_rfc3339(end), "timeZone": "UTC"},
        )

    start_day = start.date()
    if end.time() == datetime.min.time() and end.date() > start_day:
        end_day = end.date()
    else:
        end_day = end.date() + timedelta(days=1)
    return {"date": start_day.isoformat()}, {"date": end_day.isoformat()}


def parse_time_block(block: Dict) -> Tuple[datetime, bool]:
    """Return (instant, all_day) for a provider ``start``/``end`` object"""
    if not block:
        raise MappingError("Event has no start/end")
    try:
        if block.get("dateTime"):
            return parse_rfc3339(block["dateTime"]), False
        if block.get("date"):
            return start_of_day(datetime.strptime(block["date"], "%Y-%m-%d").date()), True
    except (AttributeError, TypeError, ValueError) as e:
        raise MappingError(f"Unparseable time {block}: {e}")
    raise MappingError(f"Unrecognized time block: {block}")


def render_description(body: Optional[str], metadata: Dict[str, Optional[str]]) -> str:
    lines = [f"{label}: {value}" for label, value in metadata.items() if value]
    body = (body or "").rstrip()
    if not lines:
        return body
    return f"{body}{DESCRIPTION_METADATA_SEPARATOR}" + "\n".join(lines)


def strip_description_metadata(description: Optional[str]) -> str:
    if not description:
        return ""
    return description.split(DESCRIPTION_METADATA_SEPARATOR, 1)[0].rstrip()


def strip_provenance(title: Optional[str]) -> str:
    title = title or ""
    if title.startswith(TASK_MARKER):
        title = title[len(TASK_MARKER):].lstrip()
    return title or UNTITLED


def is_task_event(external: Dict) -> bool:
    """True when the provider event was created for a task by this system"""
    if (external.get("summary") or "").startswith(TASK_MARKER):
        return True
    private = (external.get("extendedProperties") or {}).get("private") or {}
    return private.get(ITEM_TYPE_PROPERTY) == "task"


def series_id(external: Dict) -> Optional[str]:
    """Master event id when the provider event is one occurrence of a recurring series"""
    return external.get("recurringEventId") or None


def _first_rrule(external: Dict) -> Optional[str]:
    for rule in external.get("recurrence") or []:
        if rule.startswith("RRULE:"):
            return rule
    return None


def _provenance(kind: str, item_id: str) -> Dict:
    return {"private": {ITEM_TYPE_PROPERTY: kind, ITEM_ID_PROPERTY: item_id}}


# ============================================================================
# Internal -> external
# ============================================================================

def task_window(task: Task) -> Tuple[datetime, datetime]:
    if task.due_date is None:
        raise MappingError(f"Task {task.id} has no due date")
    due = as_utc(task.due_date)
    start = as_utc(task.start_date) if task.start_date else due
    if due < start:
        raise InvalidRange(f"Task {task.id} is due before it starts")
    return start, due


def task_to_external(task: Task) -> Dict:
    """Tasks become all-day events spanning start date (or due date) through due date"""
    start, due = task_window(task)
    start_block, end_block = build_time_block(
        start_of_day(start.date()), start_of_day(due.date() + timedelta(days=1)), True
    )

    people = {
        "Status": task.status.value if task.status else None,
        "Priority": task.priority.value if task.priority else None,
        "Assignee": task.assignee.display_name if task.assignee else None,
        "Created by": task.creator.display_name if task.creator else None,
        "Collaborators": ", ".join(c.display_name for c in task.collaborators) or None,
        "Team": task.team.name if task.team else None,
    }
    body = {
        "summary": f"{TASK_TITLE_PREFIX}{task.title}",
        "description": render_description(task.description, people),
        "start": start_block,
        "end": end_block,
        "extendedProperties": _provenance("task", task.id),
    }
    if task.priority in TASK_PRIORITY_COLORS:
        body["colorId"] = TASK_PRIORITY_COLORS[task.priority]
    recurrence = validate_recurrence(task.recurrence)
    if recurrence:
        body["recurrence"] = [recurrence]
    return body


def event_to_external(event: Event) -> Dict:
    start_block, end_block = build_time_block(event.start_time, event.end_time, bool(event.all_day))
    body = {
        "summary": event.title,
        "description": render_description(event.description, {
            "Type": event.type.value if event.type else None,
            "Team": event.team.name if event.team else None,
        }),
        "start": start_block,
        "end": end_block,
        "extendedProperties": _provenance("event", event.id),
    }
    if event.type in EVENT_TYPE_COLORS:
        body["colorId"] = EVENT_TYPE_COLORS[event.type]
    recurrence = validate_recurrence(event.recurrence)
    if recurrence:
        body["recurrence"] = [recurrence]
    return body


# ============================================================================
# External -> internal
# ============================================================================

def external_to_event_fields(external: Dict) -> Dict:
    start, all_day = parse_time_block(external.get("start"))
    end, _ = parse_time_block(external.get("end"))
    if end < start:
        raise InvalidRange(f"Provider event {external.get('id')} ends before it starts")
    return {
        "title": external.get("summary") or UNTITLED,
        "description": strip_description_metadata(external.get("description")),
        "start_time": start,
        "end_time": end,
        "all_day": all_day,
        "type": COLOR_EVENT_TYPES.get(external.get("colorId"), DEFAULT_EVENT_TYPE),
        "recurrence": _first_rrule(external),
    }


def external_to_task_fields(external: Dict) -> Dict:
    start, all_day = parse_time_block(external.get("start"))
    end, _ = parse_time_block(external.get("end"))
    if end < start:
        raise InvalidRange(f"Provider event {external.get('id')} ends before it starts")

    if all_day:
        # exclusive end date -> last covered day
        due = max(start, end - timedelta(days=1))
    else:
        due = end
    return {
        "title": strip_provenance(external.get("summary")),
        "start_date": start if start.date() != due.date() else None,
        "due_date": due,
    }


# ============================================================================
# SyncableItem: one interface over tasks and events
# ============================================================================

class SyncableItem:
    """Common view the orchestrator uses for both tasks and events"""

    kind = "item"

    def __init__(self, record):
        self.record = record

    @property
    def id(self) -> str:
        return self.record.id

    @property
    def label(self) -> str:
        return self.record.title

    @property
    def category(self) -> SyncCategory:
        raise NotImplementedError

    @property
    def external_ref(self) -> Optional[ExternalEventRef]:
        if self.record.external_calendar_id and self.record.external_event_id:
            return ExternalEventRef(self.record.external_calendar_id, self.record.external_event_id)
        return None

    @property
    def is_dirty(self) -> bool:
        synced_at = as_utc(self.record.synced_at)
        return synced_at is None or as_utc(self.record.updated_at) > synced_at

    def to_external(self) -> Dict:
        raise NotImplementedError

    def apply_external(self, external: Dict):
        raise NotImplementedError

    def mark_synced(self, calendar_id: str, event_id: str, when: datetime):
        # Bookkeeping is not a content change: updated_at == synced_at keeps it clean
        self.record.external_calendar_id = calendar_id
        self.record.external_event_id = event_id
        self.record.synced_at = when
        self.record.updated_at = when

    def mark_dirty(self):
        self.record.synced_at = None

    def clear_mapping(self):
        self.record.external_calendar_id = None
        self.record.external_event_id = None
        self.record.synced_at = None


class TaskItem(SyncableItem):
    kind = "task"

    @property
    def label(self) -> str:
        return f"{TASK_TITLE_PREFIX}{self.record.title}"

    @property
    def category(self) -> SyncCategory:
        return SyncCategory.TASK_DEADLINE

    def to_external(self) -> Dict:
        return task_to_external(self.record)

    def apply_external(self, external: Dict):
        fields = external_to_task_fields(external)
        task = self.record
        task.title = fields["title"]
        task.due_date = _move_to_day(task.due_date, fields["due_date"])
        if fields["start_date"] is not None:
            task.start_date = _move_to_day(task.start_date, fields["start_date"])
        elif task.start_date is not None and as_utc(task.start_date).date() != fields["due_date"].date():
            task.start_date = None


class EventItem(SyncableItem):
    kind = "event"

    @property
    def category(self) -> SyncCategory:
        event = self.record
        if event.type == EventType.PERSONAL:
            return SyncCategory.PERSONAL_EVENT
        if event.team_id:
            return SyncCategory.TEAM_EVENT
        if event.type == EventType.DEADLINE:
            return SyncCategory.TASK_DEADLINE
        return SyncCategory.GENERAL

    def to_external(self) -> Dict:
        return event_to_external(self.record)

    def apply_external(self, external: Dict):
        fields = external_to_event_fields(external)
        event = self.record
        event.title = fields["title"]
        event.description = fields["description"]
        event.start_time = fields["start_time"]
        event.end_time = fields["end_time"]
        event.all_day = fields["all_day"]
        if fields["recurrence"]:
            event.recurrence = fields["recurrence"]


def _move_to_day(current: Optional[datetime], target: datetime) -> datetime:
    """Keep the time of day already stored; only the calendar date comes from the provider"""
    if current is None:
        return target
    current = as_utc(current)
    if current.date() == target.date():
        return current
    return current.replace(year=target.year, month=target.month, day=target.day)


def wrap(record) -> SyncableItem:
    if isinstance(record, Task):
        return TaskItem(record)
    if isinstance(record, Event):
        return EventItem(record)
    raise TypeError(f"Not a syncable record: {record!r}")
