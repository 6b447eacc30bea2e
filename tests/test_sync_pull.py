from datetime import datetime, timezone

from app.models import Event, EventSource, EventType, SyncDirection, Task
from app.schemas.calendar_sync import RunStatus

from tests.conftest import DEDICATED_CALENDAR


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


def google_event(event_id, summary="Dentist", start="2024-06-03T09:00:00Z", end="2024-06-03T10:00:00Z", **extra):
    return dict(
        id=event_id,
        summary=summary,
        start={"dateTime": start},
        end={"dateTime": end},
        **extra,
    )


def test_pull_imports_new_external_event(db, sync_service, provider, user, sync_settings):
    provider.seed(google_event("g1", colorId="9"))

    result = sync_service.pull_provider_changes(user.id)

    assert result.created == 1
    event = db.query(Event).one()
    assert event.title == "Dentist"
    assert event.type == EventType.MEETING
    assert event.source == EventSource.PROVIDER.value
    assert event.creator_id == user.id
    assert (event.external_calendar_id, event.external_event_id) == (DEDICATED_CALENDAR, "g1")
    assert event.synced_at is not None


def test_pulling_twice_updates_the_same_item(db, sync_service, provider, user, sync_settings):
    provider.seed(google_event("g1"))

    sync_service.pull_provider_changes(user.id)
    first_id = db.query(Event).one().id
    second = sync_service.pull_provider_changes(user.id)

    assert second.created == 0
    assert second.updated == 1
    assert [e.id for e in db.query(Event).all()] == [first_id]


def test_pull_applies_external_edits(db, sync_service, provider, user, sync_settings):
    provider.seed(google_event("g1"))
    sync_service.pull_provider_changes(user.id)

    provider.seed(google_event("g1", summary="Dentist (moved)",
                               start="2024-06-04T15:00:00Z", end="2024-06-04T16:00:00Z"))
    sync_service.pull_provider_changes(user.id)

    event = db.query(Event).one()
    assert event.title == "Dentist (moved)"
    assert event.start_time.replace(tzinfo=timezone.utc) == utc(2024, 6, 4, 15)


def test_pull_updates_mapped_task(db, sync_service, provider, user, sync_settings, make_task):
    task = make_task("Ship", due_date=utc(2024, 6, 1, 17))
    sync_service.push_user_changes(user.id)
    event_id = task.external_event_id

    provider.seed(dict(provider.events()[event_id], summary="[Task] Ship it",
                       start={"date": "2024-06-05"}, end={"date": "2024-06-06"}))
    result = sync_service.pull_provider_changes(user.id)

    assert result.updated == 1
    assert result.created == 0
    db.refresh(task)
    assert task.title == "Ship it"
    assert task.due_date.replace(tzinfo=timezone.utc) == utc(2024, 6, 5, 17)
    assert db.query(Event).count() == 0


def test_pulled_items_are_not_pushed_back(db, sync_service, provider, user, sync_settings):
    provider.seed(google_event("g1"))
    sync_service.pull_provider_changes(user.id)
    provider.calls.clear()

    result = sync_service.push_user_changes(user.id)

    assert result.writes == 0
    assert provider.writes == []


def test_events_without_id_are_skipped(db, sync_service, provider, user, sync_settings):
    provider.seed({"summary": "Ghost", "start": {"date": "2024-06-03"}, "end": {"date": "2024-06-04"}})
    provider.seed(google_event("g2"))

    result = sync_service.pull_provider_changes(user.id)

    assert result.skipped == 1
    assert result.created == 1
    assert result.failed == 0


def test_malformed_event_is_a_per_item_failure(db, sync_service, provider, user, sync_settings):
    provider.seed(google_event("bad", start="2024-06-03T10:00:00Z", end="2024-06-03T09:00:00Z"))
    provider.seed(google_event("good"))

    result = sync_service.pull_provider_changes(user.id)

    assert result.failed == 1
    assert result.created == 1
    assert db.query(Event).one().external_event_id == "good"


def test_push_only_direction_makes_no_internal_writes(db, sync_service, provider, user, sync_settings):
    sync_settings.sync_direction = SyncDirection.PUSH_ONLY
    db.commit()
    provider.seed(google_event("g1"))

    result = sync_service.pull_provider_changes(user.id)

    assert result.status == RunStatus.SKIPPED
    assert db.query(Event).count() == 0
    assert db.query(Task).count() == 0
    assert provider.calls == []


def test_sync_user_runs_push_then_pull(db, sync_service, provider, notifier, user, sync_settings, make_task):
    make_task("Ship", due_date=utc(2024, 6, 1))
    provider.seed(google_event("g1"))

    result = sync_service.sync_user(user.id)

    assert result.push.created == 1
    # the task event just pushed is found again by its mapping
    assert result.pull.created == 1
    assert result.pull.updated == 1
    assert db.query(Event).count() == 1
    assert "calendar-updated" in notifier.names()


def test_check_for_updates(db, sync_service, provider, user, sync_settings):
    provider.seed(google_event("g1"))

    check = sync_service.check_for_updates(user.id)

    assert check.has_updates is True
    assert check.event_count == 1


def occurrences(master, count):
    return [
        dict(master, id=f"{master['id']}_2024060{n + 3}T090000Z", recurringEventId=master["id"])
        for n in range(count)
    ]


def test_occurrences_of_pushed_series_do_not_duplicate_it(db, sync_service, provider, user, sync_settings, make_event):
    event = make_event("Standup", start_time=utc(2030, 6, 3, 9), recurrence="RRULE:FREQ=DAILY;COUNT=3")
    sync_service.push_user_changes(user.id)
    master = provider.events()[event.external_event_id]
    for occurrence in occurrences(master, 3):
        provider.seed(occurrence)

    result = sync_service.pull_provider_changes(user.id)

    assert result.created == 0
    assert result.skipped == 3
    assert result.updated == 1
    assert db.query(Event).count() == 1


def test_occurrences_alone_are_not_imported_per_instance(db, sync_service, provider, user, sync_settings):
    for occurrence in occurrences(google_event("series"), 3):
        provider.seed(occurrence)

    result = sync_service.pull_provider_changes(user.id)

    assert result.created == 0
    assert db.query(Event).count() == 0


def test_garbage_timestamp_fails_only_that_event(db, sync_service, provider, user, sync_settings):
    provider.seed({"id": "broken", "summary": "Broken", "start": {"dateTime": "not-a-date"},
                   "end": {"dateTime": "not-a-date"}})
    provider.seed({"id": "bad-day", "summary": "Bad day", "start": {"date": "2024-13-45"},
                   "end": {"date": "2024-13-46"}})
    provider.seed(google_event("good"))

    result = sync_service.pull_provider_changes(user.id)

    assert result.failed == 2
    assert result.created == 1
    assert db.query(Event).one().external_event_id == "good"
