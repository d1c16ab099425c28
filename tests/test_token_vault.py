from datetime import datetime, timedelta, timezone

from mailbridge.adapters.base import TokenSet
from mailbridge.adapters.outlook import MicrosoftProvider, TOKEN_URL
from mailbridge.auth.credential_store import TokenVault
from tests.fakes import FakeResponse


def _iso(delta):
    return (datetime.now(timezone.utc) + delta).isoformat()


def test_save_encrypts_tokens(db, store, security):
    vault = TokenVault(store, security)
    vault.save("user-1", "google", TokenSet(access_token="plain-at", refresh_token="plain-rt", expires_in=3600))

    row = db.rows("oauth_token_vault")[0]
    assert row["encrypted_access_token"] != "plain-at"
    assert security.decrypt_token(row["encrypted_refresh_token"]) == "plain-rt"
    assert row["expires_at"] is not None

    vault.save("user-1", "google", TokenSet(access_token="second"))
    assert len(db.rows("oauth_token_vault")) == 1


def test_unexpired_token_is_decrypted(store, security, session):
    row = {"provider": "outlook", "encrypted_access_token": security.encrypt_token("at-1"),
           "expires_at": _iso(timedelta(minutes=30))}
    provider = MicrosoftProvider("id", "s", session=session)
    assert TokenVault(store, security).get_valid_access_token("user-1", row, provider) == "at-1"
    assert not session.requests


def test_expired_token_is_refreshed_and_rotation_stored(db, store, security, session):
    db.seed("oauth_token_vault", {
        "user_id": "user-1", "provider": "outlook",
        "encrypted_access_token": security.encrypt_token("old-at"),
        "encrypted_refresh_token": security.encrypt_token("old-rt"),
        "expires_at": _iso(timedelta(minutes=-5)),
    })
    session.on("POST", TOKEN_URL, FakeResponse(200, {
        "access_token": "new-at", "refresh_token": "new-rt", "expires_in": 3600,
    }))
    row = store.list_vault_tokens("user-1")[0]
    provider = MicrosoftProvider("id", "s", session=session)

    assert TokenVault(store, security).get_valid_access_token("user-1", row, provider) == "new-at"

    stored = db.rows("oauth_token_vault")[0]
    assert security.decrypt_token(stored["encrypted_access_token"]) == "new-at"
    assert security.decrypt_token(stored["encrypted_refresh_token"]) == "new-rt"


def test_expired_token_without_refresh_token(store, security, session):
    row = {"provider": "google", "encrypted_access_token": security.encrypt_token("at"),
           "encrypted_refresh_token": None, "expires_at": _iso(timedelta(hours=-1))}
    provider = MicrosoftProvider("id", "s", session=session)
    assert TokenVault(store, security).get_valid_access_token("user-1", row, provider) is None


def test_failed_refresh_returns_none(store, security, session):
    session.on("POST", TOKEN_URL, FakeResponse(400, {"error": "invalid_grant"}))
    row = {"provider": "outlook", "encrypted_access_token": security.encrypt_token("at"),
           "encrypted_refresh_token": security.encrypt_token("rt"), "expires_at": _iso(timedelta(hours=-1))}
    provider = MicrosoftProvider("id", "s", session=session)
    assert TokenVault(store, security).get_valid_access_token("user-1", row, provider) is None


def test_undecryptable_row_returns_none(store, security, session):
    row = {"provider": "outlook", "encrypted_access_token": "bm90LWEtdG9rZW4tYXQtYWxsLWZvci1zdXJl", "expires_at": None}
    provider = MicrosoftProvider("id", "s", session=session)
    assert TokenVault(store, security).get_valid_access_token("user-1", row, provider) is None


def test_delete_only_removes_that_provider(db, store, security):
    vault = TokenVault(store, security)
    vault.save("user-1", "google", TokenSet(access_token="g"))
    vault.save("user-1", "outlook", TokenSet(access_token="o"))

    vault.delete("user-1", "google")

    assert [row["provider"] for row in vault.list_for_user("user-1")] == ["outlook"]
