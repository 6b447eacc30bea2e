# ============================================================================
# FILE: app/models/task.py
# Tasks and their link to a mirrored event on the user's sync calendar
# ============================================================================
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, Table, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum
from app.models.base import Base
from app.utils.datetime_utils import utc_now


class TaskStatus(str, enum.Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    IN_REVIEW = "IN_REVIEW"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TaskPriority(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


task_collaborators = Table(
    "task_collaborators",
    Base.metadata,
    Column("task_id", String(36), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = (
        UniqueConstraint("external_calendar_id", "external_event_id", name="uq_tasks_external_event"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    status = Column(SQLEnum(TaskStatus), default=TaskStatus.TODO, nullable=False)
    priority = Column(SQLEnum(TaskPriority), default=TaskPriority.MEDIUM, nullable=False)

    start_date = Column(DateTime(timezone=True), nullable=True)
    due_date = Column(DateTime(timezone=True), nullable=True)
    recurrence = Column(String(255), nullable=True)  # RRULE:FREQ=...

    # People
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    assignee_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    team_id = Column(String(36), ForeignKey("teams.id"), nullable=True)

    # Calendar sync: both set or both null
    external_calendar_id = Column(String(255), nullable=True)
    external_event_id = Column(String(255), nullable=True, index=True)
    synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    creator = relationship("User", foreign_keys=[creator_id], lazy="joined")
    assignee = relationship("User", foreign_keys=[assignee_id], lazy="joined")
    team = relationship("Team", lazy="joined")
    collaborators = relationship("User", secondary=task_collaborators, lazy="selectin")

    def __repr__(self):
        return f"<Task {self.id} {self.title!r}>"
