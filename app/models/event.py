# ===== app/models/event.py =====
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum
from app.models.base import Base
from app.utils.datetime_utils import utc_now


class EventType(str, enum.Enum):
    MEETING = "MEETING"
    DEADLINE = "DEADLINE"
    REMINDER = "REMINDER"
    MILESTONE = "MILESTONE"
    PERSONAL = "PERSONAL"


class EventSource(str, enum.Enum):
    INTERNAL = "internal"   # created in the app
    PROVIDER = "provider"   # imported from the external calendar


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        UniqueConstraint("external_calendar_id", "external_event_id", name="uq_events_external_event"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    type = Column(SQLEnum(EventType), default=EventType.MEETING, nullable=False)

    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    all_day = Column(Boolean, default=False, nullable=False)
    recurrence = Column(String(255), nullable=True)

    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="SET NULL"), nullable=True)
    source = Column(String(20), default=EventSource.INTERNAL.value, nullable=False)

    # Calendar sync
    external_calendar_id = Column(String(255), nullable=True)
    external_event_id = Column(String(255), nullable=True, index=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    creator = relationship("User", lazy="joined")
    team = relationship("Team", lazy="joined")

    def __repr__(self):
        return f"<Event {self.id} {self.title!r}>"
