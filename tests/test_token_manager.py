from datetime import timedelta

import pytest

from app.models import CalendarSyncSettings
from app.services.calendar.exceptions import AuthRequired, TokenRefreshFailed
from app.services.calendar.token_manager import TokenManager
from app.utils.datetime_utils import as_utc, utc_now
from app.utils.encryption import decrypt_token


def test_valid_token_is_returned_without_refresh(token_manager, oauth_client, user, sync_settings):
    assert token_manager.ensure_valid_token(user.id) == "valid-access-token"
    assert oauth_client.refresh_calls == 0


def test_expired_token_is_refreshed_once_and_persisted(db, token_manager, oauth_client, user, sync_settings):
    sync_settings.token_expiry = utc_now() - timedelta(minutes=5)
    db.commit()

    token = token_manager.ensure_valid_token(user.id)

    assert token == "fresh-token-1"
    assert oauth_client.refresh_calls == 1
    db.refresh(sync_settings)
    assert decrypt_token(sync_settings.access_token_encrypted) == "fresh-token-1"
    assert as_utc(sync_settings.token_expiry) > utc_now()

    # the stored token is fresh now, no second refresh
    assert token_manager.ensure_valid_token(user.id) == "fresh-token-1"
    assert oauth_client.refresh_calls == 1


def test_token_inside_skew_window_is_refreshed(db, token_manager, oauth_client, user, sync_settings):
    sync_settings.token_expiry = utc_now() + timedelta(seconds=60)
    db.commit()

    token_manager.ensure_valid_token(user.id)

    assert oauth_client.refresh_calls == 1


def test_unknown_expiry_counts_as_expired(db, token_manager, oauth_client, user, sync_settings):
    sync_settings.token_expiry = None
    db.commit()

    token_manager.ensure_valid_token(user.id)

    assert oauth_client.refresh_calls == 1


def test_rejected_refresh_raises(db, token_manager, oauth_client, user, sync_settings):
    sync_settings.token_expiry = utc_now() - timedelta(hours=1)
    db.commit()
    oauth_client.fail_refresh = True

    with pytest.raises(TokenRefreshFailed):
        token_manager.ensure_valid_token(user.id)
    assert decrypt_token(sync_settings.access_token_encrypted) == "valid-access-token"


def test_missing_refresh_token_raises(db, token_manager, oauth_client, user, sync_settings):
    sync_settings.token_expiry = utc_now() - timedelta(hours=1)
    sync_settings.refresh_token_encrypted = None
    db.commit()

    with pytest.raises(TokenRefreshFailed):
        token_manager.ensure_valid_token(user.id)
    assert oauth_client.refresh_calls == 0


def test_no_settings_requires_auth(token_manager, user):
    with pytest.raises(AuthRequired):
        token_manager.ensure_valid_token(user.id)


def test_disabled_sync_requires_auth(db, token_manager, oauth_client, user, sync_settings):
    sync_settings.is_enabled = False
    db.commit()

    with pytest.raises(AuthRequired):
        token_manager.ensure_valid_token(user.id)
    assert oauth_client.refresh_calls == 0


def test_store_tokens_keeps_previous_refresh_token(user):
    row = CalendarSyncSettings(user_id=user.id)

    TokenManager.store_tokens(row, "a1", "r1", None)
    TokenManager.store_tokens(row, "a2", None, None)

    assert decrypt_token(row.access_token_encrypted) == "a2"
    assert decrypt_token(row.refresh_token_encrypted) == "r1"
