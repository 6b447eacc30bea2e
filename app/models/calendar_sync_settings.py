# ===== app/models/calendar_sync_settings.py =====
from sqlalchemy import Column, String, Boolean, DateTime, LargeBinary, ForeignKey, Enum as SQLEnum
from sqlalchemy.orm import relationship
import uuid
import enum
from app.models.base import Base
from app.utils.datetime_utils import utc_now


class SyncDirection(str, enum.Enum):
    PUSH_ONLY = "PUSH_ONLY"   # app -> provider
    PULL_ONLY = "PULL_ONLY"   # provider -> app
    BOTH = "BOTH"


class CalendarSyncSettings(Base):
    __tablename__ = "calendar_sync_settings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    is_enabled = Column(Boolean, default=False, nullable=False)
    external_calendar_id = Column(String(255), nullable=True)  # dedicated sync calendar
    sync_direction = Column(SQLEnum(SyncDirection), default=SyncDirection.BOTH, nullable=False)

    # Category toggles
    sync_task_deadlines = Column(Boolean, default=True, nullable=False)
    sync_team_events = Column(Boolean, default=True, nullable=False)
    sync_personal_events = Column(Boolean, default=True, nullable=False)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)

    # OAuth tokens (Fernet encrypted)
    access_token_encrypted = Column(LargeBinary, nullable=True)
    refresh_token_encrypted = Column(LargeBinary, nullable=True)
    token_expiry = Column(DateTime(timezone=True), nullable=True)

    # Push notification channel
    channel_id = Column(String(255), nullable=True, index=True)
    resource_id = Column(String(255), nullable=True)
    channel_expiry = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False)

    user = relationship("User", back_populates="calendar_sync_settings")

    def clear_channel(self):
        self.channel_id = None
        self.resource_id = None
        self.channel_expiry = None

    def __repr__(self):
        return f"<CalendarSyncSettings user={self.user_id} enabled={self.is_enabled}>"
