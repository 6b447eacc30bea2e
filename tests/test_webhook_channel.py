from datetime import timedelta

import pytest

from app.models import CalendarSyncSettings, SyncDirection
from app.schemas.calendar_sync import SyncSettingsUpdate
from app.services.calendar.exceptions import (
    AuthRequired, ProviderNotFound, ProviderUnavailable, TokenRefreshFailed, WebhookRegistrationFailed,
)
from app.utils.datetime_utils import utc_now

from tests.conftest import DEDICATED_CALENDAR


def test_register_persists_channel(db, webhook_service, provider, user, sync_settings):
    channel = webhook_service.register(user.id)

    db.refresh(sync_settings)
    assert sync_settings.channel_id == channel.channel_id
    assert sync_settings.resource_id == channel.resource_id
    assert sync_settings.channel_expiry is not None
    name, _, calendar_id, url = provider.calls[-1]
    assert name == "subscribe_to_calendar"
    assert calendar_id == DEDICATED_CALENDAR
    assert url.endswith("/webhooks/calendar/google")


def test_register_again_stops_previous_channel(webhook_service, provider, user, sync_settings):
    first = webhook_service.register(user.id)
    second = webhook_service.register(user.id)

    assert provider.stopped_channels == [first.channel_id]
    assert second.channel_id != first.channel_id


def test_register_survives_failure_to_stop_old_channel(db, webhook_service, provider, user, sync_settings):
    webhook_service.register(user.id)
    provider.failures["unsubscribe"] = ProviderUnavailable("network down")

    channel = webhook_service.register(user.id)

    db.refresh(sync_settings)
    assert sync_settings.channel_id == channel.channel_id


def test_subscribe_failure_raises_registration_failed(db, webhook_service, provider, user, sync_settings):
    provider.failures["subscribe_to_calendar"] = ProviderUnavailable("quota")

    with pytest.raises(WebhookRegistrationFailed):
        webhook_service.register(user.id)
    db.refresh(sync_settings)
    assert sync_settings.channel_id is None


def test_check_and_renew_only_when_expiring(db, webhook_service, provider, user, sync_settings):
    webhook_service.register(user.id)
    assert webhook_service.check_and_renew(user.id) is None

    sync_settings.channel_expiry = utc_now() + timedelta(minutes=30)
    db.commit()
    renewed = webhook_service.check_and_renew(user.id)

    assert renewed is not None
    assert provider.call_names().count("subscribe_to_calendar") == 2


def test_check_and_renew_without_channel_does_nothing(webhook_service, provider, user, sync_settings):
    assert webhook_service.check_and_renew(user.id) is None
    assert provider.calls == []


def test_cancel_clears_channel_and_tolerates_gone_channel(db, webhook_service, provider, user, sync_settings):
    webhook_service.register(user.id)
    provider.failures["unsubscribe"] = ProviderNotFound("channel not found")

    assert webhook_service.cancel(user.id) is True

    db.refresh(sync_settings)
    assert sync_settings.channel_id is None
    assert sync_settings.resource_id is None
    assert sync_settings.channel_expiry is None
    assert webhook_service.status(user.id).webhook_active is False


def test_status_reports_expiring_soon(db, webhook_service, user, sync_settings):
    webhook_service.register(user.id)
    assert webhook_service.status(user.id).expiring_soon is False

    sync_settings.channel_expiry = utc_now() + timedelta(minutes=10)
    db.commit()
    status = webhook_service.status(user.id)

    assert status.webhook_active is True
    assert status.expiring_soon is True


def test_resolve_channel_ignores_disabled_users(db, webhook_service, user, sync_settings):
    channel = webhook_service.register(user.id)
    assert webhook_service.resolve_channel(channel.channel_id).user_id == user.id

    sync_settings.is_enabled = False
    db.commit()
    assert webhook_service.resolve_channel(channel.channel_id) is None
    assert webhook_service.resolve_channel("unknown") is None


def test_process_change_pulls_and_notifies(webhook_service, provider, notifier, user, sync_settings):
    provider.seed({"id": "g1", "summary": "Call", "start": {"dateTime": "2024-06-03T09:00:00Z"},
                   "end": {"dateTime": "2024-06-03T09:30:00Z"}})

    result = webhook_service.process_change(user.id)

    assert result.created == 1
    assert notifier.names()[-1] == "calendar-updated"


def test_process_change_swallows_failures(db, webhook_service, oauth_client, user, sync_settings):
    sync_settings.token_expiry = utc_now() - timedelta(hours=1)
    db.commit()
    oauth_client.fail_refresh = True

    assert webhook_service.process_change(user.id) is None


def test_process_change_coalesces_with_running_sync(webhook_service, sync_lock, provider, user, sync_settings):
    sync_lock.acquire(user.id)

    assert webhook_service.process_change(user.id) is None
    assert provider.calls == []


def test_renew_all_expiring(db, webhook_service, provider, user, sync_settings):
    webhook_service.register(user.id)
    sync_settings.channel_expiry = utc_now() + timedelta(minutes=5)
    db.commit()

    assert webhook_service.renew_all_expiring() == 1
    assert webhook_service.renew_all_expiring() == 0


def test_disconnect_disables_and_clears_everything(db, sync_service, webhook_service, provider, user, sync_settings):
    channel = webhook_service.register(user.id)
    provider.seed({"id": "g1", "summary": "Imported", "start": {"dateTime": "2024-06-03T09:00:00Z"},
                   "end": {"dateTime": "2024-06-03T10:00:00Z"}})
    sync_service.pull_provider_changes(user.id)

    result = sync_service.disconnect(user.id)

    assert result.deleted_events == 1
    assert channel.channel_id in provider.stopped_channels
    row = db.query(CalendarSyncSettings).filter_by(user_id=user.id).one()
    assert row.is_enabled is False
    assert row.access_token_encrypted is None
    assert row.refresh_token_encrypted is None
    assert row.channel_id is None
    assert row.external_calendar_id is None


def test_disabled_user_triggers_no_provider_calls(db, sync_service, provider, user, sync_settings):
    sync_settings.is_enabled = False
    db.commit()

    with pytest.raises(AuthRequired):
        sync_service.push_user_changes(user.id)
    with pytest.raises(AuthRequired):
        sync_service.pull_provider_changes(user.id)
    assert provider.calls == []


def test_complete_authorization_creates_enabled_settings(db, sync_service, user):
    row = sync_service.complete_authorization(
        user.id, {"access_token": "a", "refresh_token": "r", "expiry": utc_now() + timedelta(hours=1)}
    )

    assert row.is_enabled is True
    assert row.refresh_token_encrypted is not None


def test_refresh_failure_blocks_registration(db, webhook_service, provider, oauth_client, user, sync_settings):
    sync_settings.token_expiry = None
    db.commit()
    oauth_client.fail_refresh = True

    with pytest.raises(TokenRefreshFailed):
        webhook_service.register(user.id)
    assert provider.calls == []


def test_disabling_sync_in_settings_stops_channel(db, sync_service, webhook_service, provider, user, sync_settings):
    channel = webhook_service.register(user.id)

    sync_service.update_settings(user.id, SyncSettingsUpdate(is_enabled=False))

    assert provider.stopped_channels == [channel.channel_id]
    db.refresh(sync_settings)
    assert sync_settings.is_enabled is False
    assert sync_settings.channel_id is None
    assert sync_settings.resource_id is None


def test_other_settings_changes_keep_channel(db, sync_service, webhook_service, provider, user, sync_settings):
    channel = webhook_service.register(user.id)

    sync_service.update_settings(user.id, SyncSettingsUpdate(sync_direction=SyncDirection.PUSH_ONLY))

    assert provider.stopped_channels == []
    db.refresh(sync_settings)
    assert sync_settings.channel_id == channel.channel_id


def test_disabling_survives_failure_to_stop_channel(db, sync_service, webhook_service, provider, user, sync_settings):
    webhook_service.register(user.id)
    provider.failures["unsubscribe"] = ProviderUnavailable("network down")

    sync_service.update_settings(user.id, SyncSettingsUpdate(is_enabled=False))

    db.refresh(sync_settings)
    assert sync_settings.is_enabled is False
    assert sync_settings.channel_id is None
