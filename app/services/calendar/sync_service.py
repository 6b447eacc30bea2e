# app/services/calendar/sync_service.py
"""
Sync orchestrator between TaskFlow tasks/events and the user's dedicated Google calendar.

Push sends items whose content changed since they were last synced. Pull imports
every event of the dedicated calendar inside a bounded window. Both are per-user
single-flight (see ``RedisSyncLock``) and never abort a batch because of one bad item.
Conflicts resolve as last-writer-wins: whichever batch runs last overwrites the other side.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.models.calendar_sync_settings import CalendarSyncSettings, SyncDirection
from app.models.event import Event, EventSource
from app.models.task import Task
from app.models.user import User
from app.schemas.calendar_sync import (
    DisconnectResult, PullResult, PushResult, RunStatus, SyncCategory,
    SyncRunResult, SyncSettingsUpdate, UpdateCheck,
)
from app.services.calendar.exceptions import (
    AuthRequired, CalendarSyncError, MappingError, ProviderError, ProviderNotFound,
)
from app.services.calendar.item_mapper import (
    SyncableItem, TaskItem, external_to_event_fields, series_id, wrap,
)
from app.services.calendar.notifier import (
    CALENDAR_UPDATED, SYNC_COMPLETED, SYNC_ERROR, SYNC_STARTED, ChangeNotifier, NullNotifier,
)
from app.services.calendar.sync_lock import RedisSyncLock
from app.services.calendar.token_manager import TokenManager
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)

# Calendar ids that mean "the user's main calendar" and must be replaced by the dedicated one
GENERIC_CALENDAR_IDS = {"primary"}


class CalendarSyncService:
    def __init__(
            self,
            db: Session,
            provider,
            token_manager: TokenManager,
            notifier: Optional[ChangeNotifier] = None,
            lock: Optional[RedisSyncLock] = None,
    ):
        self.db = db
        self.provider = provider
        self.token_manager = token_manager
        self.notifier = notifier or NullNotifier()
        self.lock = lock or RedisSyncLock()
        self.settings = get_settings()

    # ========== SETUP ==========

    def load_settings(self, user_id: str) -> CalendarSyncSettings:
        sync_settings = self.db.query(CalendarSyncSettings).filter_by(user_id=user_id).first()
        if not sync_settings or not sync_settings.is_enabled:
            raise AuthRequired(f"Calendar sync is not enabled for user {user_id}")
        return sync_settings

    def prepare(self, sync_settings: CalendarSyncSettings) -> str:
        """Validate the token (refreshing at most once) and return the dedicated calendar id"""
        self.token_manager.ensure_valid_token(sync_settings.user_id)
        return self.resolve_calendar_id(sync_settings)

    def resolve_calendar_id(self, sync_settings: CalendarSyncSettings) -> str:
        calendar_id = sync_settings.external_calendar_id
        if calendar_id and calendar_id not in GENERIC_CALENDAR_IDS:
            return calendar_id

        calendar_id = self.provider.find_or_create_dedicated_calendar(sync_settings.user_id)
        sync_settings.external_calendar_id = calendar_id
        self.db.commit()
        logger.info(f"Using dedicated calendar {calendar_id} for user {sync_settings.user_id}")
        return calendar_id

    @staticmethod
    def category_enabled(sync_settings: CalendarSyncSettings, category: SyncCategory) -> bool:
        if category == SyncCategory.TASK_DEADLINE:
            return sync_settings.sync_task_deadlines
        if category == SyncCategory.TEAM_EVENT:
            return sync_settings.sync_team_events
        if category == SyncCategory.PERSONAL_EVENT:
            return sync_settings.sync_personal_events
        return True

    def emit(self, user_id: str, event_name: str, payload: Optional[Dict] = None):
        try:
            self.notifier.emit_to_user(user_id, event_name, payload)
        except Exception as e:
            logger.warning(f"Notifier failed for {event_name} (user {user_id}): {e}")

    @contextmanager
    def _sync_run(self, user_id: str, operation: str):
        with self.lock.hold(user_id, operation):
            self.emit(user_id, SYNC_STARTED, {"operation": operation})
            try:
                yield
            except CalendarSyncError as e:
                logger.error(f"Calendar {operation} failed for user {user_id}: {e.message}")
                self.emit(user_id, SYNC_ERROR, {"operation": operation, "message": e.message})
                raise

    # ========== PUSH (internal -> provider) ==========

    def push_user_changes(self, user_id: str) -> PushResult:
        sync_settings = self.load_settings(user_id)
        if sync_settings.sync_direction == SyncDirection.PULL_ONLY:
            logger.info(f"Push skipped for user {user_id}: direction is PULL_ONLY")
            return PushResult(status=RunStatus.SKIPPED, reason="direction_pull_only")

        with self._sync_run(user_id, "push"):
            result = self._push(sync_settings, self.prepare(sync_settings))
            self._finish(sync_settings, "push", result)
        return result

    def _dirty_items(self, user_id: str) -> List[SyncableItem]:
        tasks = (
            self.db.query(Task)
            .filter(
                or_(
                    Task.creator_id == user_id,
                    Task.assignee_id == user_id,
                    Task.collaborators.any(User.id == user_id),
                ),
                Task.due_date.isnot(None),
                or_(Task.synced_at.is_(None), Task.updated_at > Task.synced_at),
            )
            .order_by(Task.due_date)
            .all()
        )
        events = (
            self.db.query(Event)
            .filter(
                Event.creator_id == user_id,
                or_(Event.synced_at.is_(None), Event.updated_at > Event.synced_at),
            )
            .order_by(Event.start_time)
            .all()
        )
        return [wrap(record) for record in tasks + events]

    def _push(self, sync_settings: CalendarSyncSettings, calendar_id: str) -> PushResult:
        result = PushResult()
        for item in self._dirty_items(sync_settings.user_id):
            if not self.category_enabled(sync_settings, item.category):
                result.skipped += 1
                continue
            ref = item.external_ref
            if ref and ref.calendar_id != calendar_id:
                # mirrored into another participant's calendar
                result.skipped += 1
                continue
            self._push_item(sync_settings.user_id, item, calendar_id, result)
        return result

    def _push_item(self, user_id: str, item: SyncableItem, calendar_id: str, result: PushResult):
        try:
            body = item.to_external()
            ref = item.external_ref
            if ref is None:
                created = self.provider.create_event(user_id, body, calendar_id)
                item.mark_synced(calendar_id, created["id"], utc_now())
                result.created += 1
            else:
                try:
                    self.provider.update_event(user_id, ref.event_id, body, calendar_id)
                    item.mark_synced(calendar_id, ref.event_id, utc_now())
                    result.updated += 1
                except ProviderNotFound:
                    logger.info(f"External event {ref.event_id} for {item.kind} {item.id} is gone, re-creating")
                    created = self.provider.create_event(user_id, body, calendar_id)
                    item.mark_synced(calendar_id, created["id"], utc_now())
                    result.created += 1
            self.db.commit()
        except (ProviderError, MappingError) as e:
            self.db.rollback()
            logger.error(f"Failed to push {item.kind} {item.id}: {e}")
            result.record_failure(f"{item.kind} {item.id}", e)

    def sync_task(self, user_id: str, task_id: str) -> PushResult:
        """Push one task right after it was created or edited"""
        sync_settings = self.load_settings(user_id)
        if sync_settings.sync_direction == SyncDirection.PULL_ONLY:
            return PushResult(status=RunStatus.SKIPPED, reason="direction_pull_only")
        if not sync_settings.sync_task_deadlines:
            return PushResult(status=RunStatus.SKIPPED, reason="task_deadlines_disabled")

        task = self.db.query(Task).filter_by(id=task_id).first()
        if task is None:
            return PushResult(status=RunStatus.SKIPPED, reason="task_not_found")

        result = PushResult()
        with self.lock.hold(user_id, "task sync"):
            calendar_id = self.prepare(sync_settings)
            item = TaskItem(task)
            ref = item.external_ref

            if ref and ref.calendar_id != calendar_id:
                result.skipped += 1
            elif task.due_date is None:
                if ref:
                    try:
                        self.provider.delete_event(user_id, ref.event_id, ref.calendar_id)
                        item.clear_mapping()
                        self.db.commit()
                        result.deleted += 1
                    except ProviderError as e:
                        result.record_failure(f"task {task.id}", e)
                else:
                    result.skipped += 1
            else:
                self._push_item(user_id, item, calendar_id, result)
        return result

    def delete_external_event(self, user_id: str, calendar_id: str, event_id: str) -> bool:
        """Remove the provider copy of an internal item that was deleted"""
        sync_settings = self.load_settings(user_id)
        if sync_settings.sync_direction == SyncDirection.PULL_ONLY:
            return False
        self.token_manager.ensure_valid_token(user_id)
        self.provider.delete_event(user_id, event_id, calendar_id)
        logger.info(f"Deleted external event {event_id} for user {user_id}")
        return True

    # ========== PULL (provider -> internal) ==========

    def default_pull_window(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        now = now or utc_now()
        span = timedelta(days=self.settings.SYNC_PULL_WINDOW_DAYS)
        return now - span, now + span

    def pull_provider_changes(self, user_id: str,
                              window: Optional[Tuple[datetime, datetime]] = None) -> PullResult:
        sync_settings = self.load_settings(user_id)
        if sync_settings.sync_direction == SyncDirection.PUSH_ONLY:
            logger.info(f"Pull skipped for user {user_id}: direction is PUSH_ONLY")
            return PullResult(status=RunStatus.SKIPPED, reason="direction_push_only")

        with self._sync_run(user_id, "pull"):
            result = self._pull(sync_settings, self.prepare(sync_settings), window)
            self._finish(sync_settings, "pull", result)
        return result

    def _find_mapped(self, calendar_id: str, event_id: str):
        for model in (Task, Event):
            record = (
                self.db.query(model)
                .filter_by(external_calendar_id=calendar_id, external_event_id=event_id)
                .first()
            )
            if record is not None:
                return record
        return None

    def _pull(self, sync_settings: CalendarSyncSettings, calendar_id: str,
              window: Optional[Tuple[datetime, datetime]]) -> PullResult:
        user_id = sync_settings.user_id
        time_min, time_max = window or self.default_pull_window()
        external_events = self.provider.list_events(
            user_id, calendar_id, time_min, time_max, max_results=self.settings.SYNC_MAX_RESULTS
        )

        result = PullResult()
        for external in external_events:
            event_id = external.get("id")
            if not event_id:
                result.skipped += 1
                continue
            if series_id(external):
                # single occurrence of a series; the master event carries the mapping
                logger.info(f"Skipping occurrence {event_id} of recurring event {series_id(external)}")
                result.skipped += 1
                continue
            try:
                record = self._find_mapped(calendar_id, event_id)
                if record is not None:
                    item = wrap(record)
                    item.apply_external(external)
                    item.mark_synced(calendar_id, event_id, utc_now())
                    result.updated += 1
                else:
                    record = Event(
                        creator_id=user_id,
                        source=EventSource.PROVIDER.value,
                        **external_to_event_fields(external),
                    )
                    self.db.add(record)
                    wrap(record).mark_synced(calendar_id, event_id, utc_now())
                    result.created += 1
                self.db.commit()
            except (MappingError, IntegrityError) as e:
                self.db.rollback()
                logger.error(f"Failed to import external event {event_id}: {e}")
                result.record_failure(f"external event {event_id}", e)

        return result

    # ========== COMBINED ==========

    def sync_user(self, user_id: str) -> SyncRunResult:
        """Push then pull under one lock; used by "sync now" and periodic reconciliation"""
        sync_settings = self.load_settings(user_id)
        direction = sync_settings.sync_direction

        with self._sync_run(user_id, "sync"):
            calendar_id = self.prepare(sync_settings)
            if direction == SyncDirection.PULL_ONLY:
                push = PushResult(status=RunStatus.SKIPPED, reason="direction_pull_only")
            else:
                push = self._push(sync_settings, calendar_id)
            if direction == SyncDirection.PUSH_ONLY:
                pull = PullResult(status=RunStatus.SKIPPED, reason="direction_push_only")
            else:
                pull = self._pull(sync_settings, calendar_id, None)

            sync_settings.last_synced_at = utc_now()
            self.db.commit()
            logger.info(f"Calendar sync for user {user_id}: push {push.summary()}; pull {pull.summary()}")
            self.emit(user_id, SYNC_COMPLETED, {"push": push.model_dump(), "pull": pull.model_dump()})
            if pull.writes:
                self.emit(user_id, CALENDAR_UPDATED, {"source": "sync"})
        return SyncRunResult(push=push, pull=pull)

    def _finish(self, sync_settings: CalendarSyncSettings, operation: str, result):
        sync_settings.last_synced_at = utc_now()
        self.db.commit()
        logger.info(f"Calendar {operation} for user {sync_settings.user_id}: {result.summary()}")
        self.emit(sync_settings.user_id, SYNC_COMPLETED, {"operation": operation, **result.model_dump()})

    def check_for_updates(self, user_id: str) -> UpdateCheck:
        """Cheap probe: did anything change in the dedicated calendar since the last sync?"""
        sync_settings = self.load_settings(user_id)
        calendar_id = self.prepare(sync_settings)
        now = utc_now()
        since = sync_settings.last_synced_at or now - timedelta(hours=24)
        time_min, _ = self.default_pull_window(now)

        events = self.provider.list_events(
            user_id, calendar_id, time_min, max_results=10, updated_min=since
        )
        return UpdateCheck(has_updates=bool(events), event_count=len(events))

    # ========== CONNECTION LIFECYCLE ==========

    def complete_authorization(self, user_id: str, tokens: Dict) -> CalendarSyncSettings:
        """Store the OAuth grant from the consent callback and enable sync"""
        sync_settings = self.db.query(CalendarSyncSettings).filter_by(user_id=user_id).first()
        if sync_settings is None:
            sync_settings = CalendarSyncSettings(user_id=user_id)
            self.db.add(sync_settings)

        TokenManager.store_tokens(
            sync_settings,
            tokens["access_token"],
            tokens.get("refresh_token"),
            tokens.get("expiry"),
        )
        sync_settings.is_enabled = True
        self.db.commit()
        logger.info(f"Google Calendar connected for user {user_id}")
        return sync_settings

    def disconnect(self, user_id: str) -> DisconnectResult:
        sync_settings = self.db.query(CalendarSyncSettings).filter_by(user_id=user_id).first()
        if sync_settings is None:
            return DisconnectResult(success=True, deleted_events=0)

        if sync_settings.is_enabled:
            self._stop_channel(sync_settings)

        deleted = (
            self.db.query(Event)
            .filter(Event.creator_id == user_id, Event.source == EventSource.PROVIDER.value)
            .delete(synchronize_session=False)
        )

        sync_settings.is_enabled = False
        sync_settings.external_calendar_id = None
        sync_settings.last_synced_at = None
        sync_settings.clear_channel()
        TokenManager.clear_tokens(sync_settings)
        self.db.commit()

        logger.info(f"Google Calendar disconnected for user {user_id}, removed {deleted} imported events")
        return DisconnectResult(success=True, deleted_events=deleted)

    def get_settings(self, user_id: str) -> Optional[CalendarSyncSettings]:
        return self.db.query(CalendarSyncSettings).filter_by(user_id=user_id).first()

    def update_settings(self, user_id: str, changes: SyncSettingsUpdate) -> CalendarSyncSettings:
        sync_settings = self.get_settings(user_id)
        if sync_settings is None:
            raise AuthRequired("Connect Google Calendar before changing sync settings")

        values = changes.model_dump(exclude_unset=True, exclude_none=True)
        if values.get("is_enabled") and not sync_settings.refresh_token_encrypted:
            raise AuthRequired("Calendar must be reconnected before sync can be enabled")

        if values.get("is_enabled") is False and sync_settings.is_enabled:
            # Deliveries for disabled users are ignored, so the channel would only linger
            self._stop_channel(sync_settings)

        for field, value in values.items():
            setattr(sync_settings, field, value)
        self.db.commit()
        return sync_settings

    def _stop_channel(self, sync_settings: CalendarSyncSettings):
        """Best-effort unsubscribe, then forget the channel"""
        if sync_settings.channel_id and sync_settings.resource_id:
            try:
                self.provider.unsubscribe(sync_settings.user_id, sync_settings.channel_id, sync_settings.resource_id)
            except CalendarSyncError as e:
                logger.warning(f"Could not stop webhook channel for user {sync_settings.user_id}: {e}")
        sync_settings.clear_channel()
