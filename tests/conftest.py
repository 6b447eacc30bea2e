import os
from datetime import timedelta

from cryptography.fernet import Fernet

# Must be set before app.config.settings is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("CALENDAR_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-secret")
os.environ.setdefault("PUBLIC_BASE_URL", "https://sync.example.test")

import fakeredis
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.models import Base, CalendarSyncSettings, Event, EventType, SyncDirection, Task, User
from app.schemas.calendar_sync import WebhookChannel
from app.services.calendar.exceptions import ProviderNotFound, TokenRefreshFailed
from app.services.calendar.notifier import ChangeNotifier
from app.services.calendar.orphan_reconciler import OrphanReconciler
from app.services.calendar.sync_lock import RedisSyncLock
from app.services.calendar.sync_service import CalendarSyncService
from app.services.calendar.token_manager import TokenManager
from app.services.calendar.webhook_channel_service import WebhookChannelService
from app.utils.datetime_utils import utc_now
from app.utils.encryption import encrypt_token

DEDICATED_CALENDAR = "tms-calendar@group.calendar.google.com"
WRITE_CALLS = {"create_event", "update_event", "delete_event", "find_or_create_dedicated_calendar",
               "subscribe_to_calendar", "unsubscribe"}


class FakeProvider:
    """In-memory stand-in for GoogleCalendarService that records every call"""

    def __init__(self):
        self.calendars = {}
        self.calls = []
        self.failures = {}
        self._next_id = 0
        self.stopped_channels = []

    def _call(self, name, *args):
        self.calls.append((name,) + args)
        failure = self.failures.get(name)
        if callable(failure):
            failure = failure(*args)
        if failure is not None:
            raise failure

    def _new_id(self, prefix):
        self._next_id += 1
        return f"{prefix}-{self._next_id}"

    def events(self, calendar_id=DEDICATED_CALENDAR):
        return self.calendars.setdefault(calendar_id, {})

    def seed(self, event, calendar_id=DEDICATED_CALENDAR):
        """Put an event straight into the fake calendar, as if created in Google"""
        if event.get("id"):
            self.events(calendar_id)[event["id"]] = dict(event)
        else:
            self.events(calendar_id)[self._new_id("anon")] = dict(event)
        return event

    def call_names(self):
        return [call[0] for call in self.calls]

    @property
    def writes(self):
        return [call for call in self.calls if call[0] in WRITE_CALLS]

    def list_events(self, user_id, calendar_id, time_min, time_max=None, max_results=2500, updated_min=None):
        self._call("list_events", user_id, calendar_id)
        items = [dict(event) for event in self.events(calendar_id).values()]
        return items[:max_results]

    def create_event(self, user_id, event, calendar_id):
        self._call("create_event", user_id, calendar_id, event)
        created = dict(event, id=self._new_id("evt"))
        self.events(calendar_id)[created["id"]] = created
        return created

    def update_event(self, user_id, event_id, event, calendar_id):
        self._call("update_event", user_id, calendar_id, event_id, event)
        if event_id not in self.events(calendar_id):
            raise ProviderNotFound(f"event {event_id} not found")
        updated = dict(event, id=event_id)
        self.events(calendar_id)[event_id] = updated
        return updated

    def delete_event(self, user_id, event_id, calendar_id):
        self._call("delete_event", user_id, calendar_id, event_id)
        self.events(calendar_id).pop(event_id, None)

    def find_or_create_dedicated_calendar(self, user_id):
        self._call("find_or_create_dedicated_calendar", user_id)
        return DEDICATED_CALENDAR

    def subscribe_to_calendar(self, user_id, calendar_id, webhook_url):
        self._call("subscribe_to_calendar", user_id, calendar_id, webhook_url)
        suffix = self._new_id("chan")
        return WebhookChannel(
            channel_id=suffix,
            resource_id=f"res-{suffix}",
            expiration=utc_now() + timedelta(days=7),
        )

    def unsubscribe(self, user_id, channel_id, resource_id):
        self._call("unsubscribe", user_id, channel_id, resource_id)
        self.stopped_channels.append(channel_id)


class FakeOAuthClient:
    def __init__(self):
        self.refresh_calls = 0
        self.fail_refresh = False

    def refresh_access_token(self, refresh_token):
        self.refresh_calls += 1
        if self.fail_refresh:
            raise TokenRefreshFailed("invalid_grant")
        return {"access_token": f"fresh-token-{self.refresh_calls}", "expiry": utc_now() + timedelta(hours=1)}


class RecordingNotifier(ChangeNotifier):
    def __init__(self):
        self.sent = []

    def emit_to_user(self, user_id, event_name, payload=None):
        self.sent.append((user_id, event_name, payload))

    def names(self):
        return [name for _, name, _ in self.sent]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=engine)()
    yield session
    session.close()


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def oauth_client():
    return FakeOAuthClient()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def token_manager(db, oauth_client):
    return TokenManager(db, oauth_client=oauth_client, refresh_skew_seconds=300)


@pytest.fixture
def sync_lock(redis_client):
    return RedisSyncLock(redis_client, ttl_seconds=60)


@pytest.fixture
def sync_service(db, provider, token_manager, notifier, sync_lock):
    return CalendarSyncService(
        db=db,
        provider=provider,
        token_manager=token_manager,
        notifier=notifier,
        lock=sync_lock,
    )


@pytest.fixture
def webhook_service(sync_service):
    return WebhookChannelService(sync_service, webhook_url="https://sync.example.test/webhooks/calendar/google")


@pytest.fixture
def reconciler(sync_service):
    return OrphanReconciler(sync_service)


@pytest.fixture
def user(db):
    user = User(email="jane@example.com", first_name="Jane", last_name="Doe")
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def sync_settings(db, user):
    sync_settings = CalendarSyncSettings(
        user_id=user.id,
        is_enabled=True,
        external_calendar_id=DEDICATED_CALENDAR,
        sync_direction=SyncDirection.BOTH,
        access_token_encrypted=encrypt_token("valid-access-token"),
        refresh_token_encrypted=encrypt_token("refresh-token"),
        token_expiry=utc_now() + timedelta(hours=1),
    )
    db.add(sync_settings)
    db.commit()
    return sync_settings


@pytest.fixture
def make_task(db, user):
    def _make_task(title="Write report", **fields):
        fields.setdefault("creator_id", user.id)
        task = Task(title=title, **fields)
        db.add(task)
        db.commit()
        return task
    return _make_task


@pytest.fixture
def make_event(db, user):
    def _make_event(title="Planning", **fields):
        start = fields.pop("start_time", utc_now().replace(microsecond=0) + timedelta(days=1))
        fields.setdefault("end_time", start + timedelta(hours=1))
        fields.setdefault("creator_id", user.id)
        fields.setdefault("type", EventType.MEETING)
        event = Event(title=title, start_time=start, **fields)
        db.add(event)
        db.commit()
        return event
    return _make_event
