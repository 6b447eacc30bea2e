# ============================================================================
# FILE: app/models/user.py
# Users own tasks/events and, at most, one calendar sync configuration
# ============================================================================
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship
import uuid
from app.models.base import Base
from app.utils.datetime_utils import utc_now


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    calendar_sync_settings = relationship(
        "CalendarSyncSettings",
        back_populates="user",
        uselist=False,
    )

    @property
    def display_name(self) -> str:
        """Human readable name used in calendar descriptions."""
        full = " ".join(part for part in (self.first_name, self.last_name) if part)
        return full or self.name or self.email

    def __repr__(self):
        return f"<User {self.email}>"


class Team(Base):
    __tablename__ = "teams"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(200), nullable=False)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
