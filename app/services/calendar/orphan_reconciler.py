# app/services/calendar/orphan_reconciler.py
import logging
from datetime import timedelta

from app.models.task import Task
from app.schemas.calendar_sync import CleanupResult
from app.services.calendar.exceptions import ProviderError
from app.services.calendar.item_mapper import is_task_event, series_id
from app.services.calendar.sync_service import CalendarSyncService
from app.utils.datetime_utils import utc_now

logger = logging.getLogger(__name__)


class OrphanReconciler:
    """Deletes task events from the dedicated calendar whose task no longer exists.

    Safety net for tasks deleted while sync was disabled or failing. Only events
    carrying the task provenance marker are candidates; anything the user created
    directly in the calendar is left alone.
    """

    def __init__(self, sync_service: CalendarSyncService):
        self.sync_service = sync_service
        self.db = sync_service.db
        self.provider = sync_service.provider
        self.settings = sync_service.settings

    def cleanup_orphans(self, user_id: str) -> CleanupResult:
        sync_settings = self.sync_service.load_settings(user_id)

        with self.sync_service.lock.hold(user_id, "cleanup"):
            calendar_id = self.sync_service.prepare(sync_settings)
            now = utc_now()
            external_events = self.provider.list_events(
                user_id,
                calendar_id,
                now - timedelta(days=self.settings.SYNC_CLEANUP_LOOKBACK_DAYS),
                now + timedelta(days=self.settings.SYNC_CLEANUP_LOOKAHEAD_DAYS),
                max_results=self.settings.SYNC_MAX_RESULTS,
            )
            task_events = [e for e in external_events if e.get("id") and is_task_event(e)]

            mapped_ids = {
                event_id for (event_id,) in
                self.db.query(Task.external_event_id).filter(Task.external_event_id.isnot(None)).all()
            }
            orphans = [e for e in task_events if self._is_orphan(e, mapped_ids)]
            orphan_ids = {e["id"] for e in orphans}
            # occurrences go away together with their master
            orphans = [e for e in orphans if series_id(e) not in orphan_ids]

            result = CleanupResult(
                total_external_events=len(task_events),
                tasks_with_events=len(mapped_ids),
                orphaned=len(orphans),
            )
            logger.info(
                f"Cleanup for user {user_id}: {len(task_events)} task events, "
                f"{len(mapped_ids)} mapped tasks, {len(orphans)} orphans"
            )

            for orphan in orphans:
                try:
                    self.provider.delete_event(user_id, orphan["id"], calendar_id)
                    result.deleted += 1
                    logger.info(f"Deleted orphaned event {orphan['id']} ({orphan.get('summary')})")
                except ProviderError as e:
                    result.errors += 1
                    result.error_messages.append(f"{orphan['id']}: {e}")
                    logger.error(f"Failed to delete orphaned event {orphan['id']}: {e}")

        return result

    @staticmethod
    def _is_orphan(external, mapped_ids) -> bool:
        """A recurring occurrence belongs to its master's task"""
        if external["id"] in mapped_ids:
            return False
        master_id = series_id(external)
        return master_id is None or master_id not in mapped_ids
