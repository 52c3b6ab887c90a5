"""Tests for the SQLite account and session repository."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from sessionward.core.db import (
    AccountNotFoundError,
    AuthRepository,
    DuplicateRecordError,
    QueryError,
    TransactionError,
)
from sessionward.core.models import AuthProvider, LockoutState, SessionRecord

NOW = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


async def _create_local(repo: AuthRepository, email: str = "alice@example.com", **kwargs):
    return await repo.create_account(
        email=email,
        name="Alice",
        provider=AuthProvider.LOCAL,
        password_hash="$2b$04$placeholderplaceholderplaceholderplaceholderplacehol",
        now=kwargs.pop("now", NOW),
        **kwargs,
    )


def _session(account_id: int, token: str, created_at: datetime = NOW, **kwargs) -> SessionRecord:
    return SessionRecord(
        token=token,
        account_id=account_id,
        expires_at=kwargs.pop("expires_at", created_at + timedelta(days=7)),
        created_at=created_at,
        **kwargs,
    )


@pytest.mark.asyncio
class TestAccounts:
    """Account CRUD."""

    async def test_repository_initialization(self, test_repository: AuthRepository):
        assert test_repository.db_path.exists()
        assert await test_repository.list_accounts() == []

    async def test_create_account(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)

        assert account.id > 0
        assert account.email == "alice@example.com"
        assert account.provider == AuthProvider.LOCAL
        assert account.is_local is True
        assert account.enabled is True
        assert account.email_verified is False
        assert account.failed_attempts == 0
        assert account.locked_since is None
        assert account.created_at == NOW
        assert account.last_login_at is None

    async def test_duplicate_email(self, test_repository: AuthRepository):
        await _create_local(test_repository)
        with pytest.raises(DuplicateRecordError):
            await _create_local(test_repository)

    async def test_find_and_exists(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)

        assert (await test_repository.find_account_by_email("alice@example.com")).id == account.id
        assert await test_repository.find_account_by_email("bob@example.com") is None
        assert await test_repository.email_exists("alice@example.com") is True
        assert await test_repository.email_exists("bob@example.com") is False
        assert await test_repository.account_exists(account.id) is True
        assert await test_repository.account_exists(account.id + 1) is False

    async def test_get_account_by_id_not_found(self, test_repository: AuthRepository):
        with pytest.raises(AccountNotFoundError):
            await test_repository.get_account_by_id(99999)

    async def test_update_account_profile(self, test_repository: AuthRepository):
        account = await test_repository.create_account(
            email="carol@example.com",
            name="Carol",
            provider=AuthProvider.GITHUB,
            provider_id="gh-1",
            email_verified=True,
        )

        updated = await test_repository.update_account_profile(
            account.id, name="Carol C.", image_url="https://example.com/carol.png"
        )

        assert updated.name == "Carol C."
        assert updated.image_url == "https://example.com/carol.png"
        assert updated.provider_id == "gh-1"
        assert updated.password_hash is None

    async def test_set_account_enabled(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)

        await test_repository.set_account_enabled(account.id, False)
        assert (await test_repository.get_account_by_id(account.id)).enabled is False

        with pytest.raises(AccountNotFoundError):
            await test_repository.set_account_enabled(99999, True)

    async def test_delete_account_removes_sessions(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.create_session(_session(account.id, "token-1"))

        await test_repository.delete_account(account.id)

        assert await test_repository.account_exists(account.id) is False
        assert await test_repository.find_session_by_token("token-1") is None

    async def test_delete_missing_account(self, test_repository: AuthRepository):
        with pytest.raises(AccountNotFoundError):
            await test_repository.delete_account(99999)

    async def test_requires_connection(self, test_repository: AuthRepository):
        assert await test_repository.ping() is True
        await test_repository.close()
        assert await test_repository.ping() is False
        with pytest.raises(QueryError):
            await test_repository.list_accounts()

    async def test_writes_wait_for_open_transaction(self, test_repository: AuthRepository):
        doomed = await _create_local(test_repository, "doomed@example.com")
        other = await _create_local(test_repository, "other@example.com")
        await test_repository.create_session(_session(doomed.id, "doomed-token"))

        await asyncio.gather(
            test_repository.delete_account(doomed.id),
            test_repository.create_session(_session(other.id, "other-token")),
            test_repository.record_failed_attempt(other.id, 5, NOW),
            test_repository.touch_last_login(other.id, NOW),
        )

        assert await test_repository.account_exists(doomed.id) is False
        assert await test_repository.find_session_by_token("doomed-token") is None
        assert await test_repository.find_session_by_token("other-token") is not None
        state = await test_repository.get_lockout_state(other.id)
        assert state.failed_attempts == 1

    async def test_failed_transaction_leaves_no_partial_writes(
        self, test_repository: AuthRepository
    ):
        account = await _create_local(test_repository)

        with pytest.raises(TransactionError):
            async with test_repository.transaction() as conn:
                await conn.execute("DELETE FROM accounts WHERE id = ?", (account.id,))
                raise RuntimeError("abort")

        assert await test_repository.account_exists(account.id) is True
        # Lock released after rollback
        await test_repository.touch_last_login(account.id, NOW)


@pytest.mark.asyncio
class TestVerificationTokens:
    """Email verification tokens and the unverified account purge."""

    async def test_replace_and_find(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)

        first = await test_repository.replace_verification_token(
            account.id, "first", NOW + timedelta(hours=24), NOW
        )
        assert first.account_id == account.id
        assert first.expires_at == NOW + timedelta(hours=24)
        assert first.is_used is False

        await test_repository.replace_verification_token(
            account.id, "second", NOW + timedelta(hours=30), NOW + timedelta(hours=6)
        )

        # One token per account; the earlier one stops existing
        assert await test_repository.find_verification_token("first") is None
        second = await test_repository.find_verification_token("second")
        assert second.created_at == NOW + timedelta(hours=6)

    async def test_token_for_missing_account(self, test_repository: AuthRepository):
        with pytest.raises(AccountNotFoundError):
            await test_repository.replace_verification_token(
                99999, "orphan", NOW + timedelta(hours=24), NOW
            )

    async def test_consume_marks_email_verified(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.replace_verification_token(
            account.id, "tok", NOW + timedelta(hours=24), NOW
        )

        consumed = await test_repository.consume_verification_token("tok", NOW + timedelta(hours=1))

        assert consumed is True
        assert (await test_repository.get_account_by_id(account.id)).email_verified is True
        record = await test_repository.find_verification_token("tok")
        assert record.verified_at == NOW + timedelta(hours=1)
        assert record.is_used is True

    async def test_consume_only_once(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.replace_verification_token(
            account.id, "tok", NOW + timedelta(hours=24), NOW
        )

        results = await asyncio.gather(
            *(test_repository.consume_verification_token("tok", NOW) for _ in range(3))
        )

        assert sorted(results) == [False, False, True]

    async def test_consume_expired_or_unknown(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.replace_verification_token(
            account.id, "tok", NOW + timedelta(hours=24), NOW
        )

        assert await test_repository.consume_verification_token(
            "tok", NOW + timedelta(hours=24)
        ) is False
        assert await test_repository.consume_verification_token("missing", NOW) is False
        assert (await test_repository.get_account_by_id(account.id)).email_verified is False

    async def test_purge_only_expired_unused_tokens(self, test_repository: AuthRepository):
        expired = await _create_local(test_repository, "expired@example.com")
        verified = await _create_local(test_repository, "verified@example.com")
        reissued = await _create_local(test_repository, "reissued@example.com")
        await _create_local(test_repository, "no-token@example.com")

        for account in (expired, verified, reissued):
            await test_repository.replace_verification_token(
                account.id, f"tok-{account.id}", NOW + timedelta(hours=24), NOW
            )
        await test_repository.consume_verification_token(f"tok-{verified.id}", NOW)
        await test_repository.replace_verification_token(
            reissued.id, "fresh", NOW + timedelta(hours=72), NOW + timedelta(hours=48)
        )

        deleted = await test_repository.delete_unverified_accounts(NOW + timedelta(hours=72))

        assert deleted == 1
        assert await test_repository.account_exists(expired.id) is False
        emails = {a.email for a in await test_repository.list_accounts()}
        assert emails == {"verified@example.com", "reissued@example.com", "no-token@example.com"}
        assert await test_repository.find_verification_token(f"tok-{expired.id}") is None
        assert await test_repository.find_verification_token(f"tok-{verified.id}") is not None
        assert await test_repository.find_verification_token("fresh") is not None

    async def test_purge_keeps_unexpired(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.replace_verification_token(
            account.id, "tok", NOW + timedelta(hours=24), NOW
        )

        assert await test_repository.delete_unverified_accounts(NOW + timedelta(hours=23)) == 0
        assert await test_repository.account_exists(account.id) is True

    async def test_purge_skips_external_accounts(self, test_repository: AuthRepository):
        external = await test_repository.create_account(
            email="ext@example.com",
            name="External",
            provider=AuthProvider.GOOGLE,
            now=NOW,
        )
        await test_repository.replace_verification_token(
            external.id, "tok", NOW + timedelta(hours=1), NOW
        )

        assert await test_repository.delete_unverified_accounts(NOW + timedelta(days=2)) == 0
        assert await test_repository.account_exists(external.id) is True

    async def test_deleting_account_drops_token(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.replace_verification_token(
            account.id, "tok", NOW + timedelta(hours=24), NOW
        )

        await test_repository.delete_account(account.id)

        assert await test_repository.find_verification_token("tok") is None


@pytest.mark.asyncio
class TestLockoutUpdates:
    """Atomic counter and lock transitions."""

    async def test_failed_attempts_lock_at_threshold(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)

        states = [
            await test_repository.record_failed_attempt(account.id, 5, NOW) for _ in range(5)
        ]

        assert [s.failed_attempts for s in states] == [1, 2, 3, 4, 5]
        assert [s.is_locked for s in states] == [False, False, False, False, True]
        assert states[-1].locked_since == NOW

    async def test_attempts_while_locked_change_nothing(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        for _ in range(5):
            await test_repository.record_failed_attempt(account.id, 5, NOW)

        state = await test_repository.record_failed_attempt(
            account.id, 5, NOW + timedelta(minutes=5)
        )

        assert state == LockoutState(failed_attempts=5, locked_since=NOW)

    async def test_concurrent_failures_are_all_counted(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)

        await asyncio.gather(
            *(test_repository.record_failed_attempt(account.id, 5, NOW) for _ in range(8))
        )

        state = await test_repository.get_lockout_state(account.id)
        assert state.failed_attempts == 5
        assert state.locked_since == NOW

    async def test_clear_expired_lock_compares_observed_value(
        self, test_repository: AuthRepository
    ):
        account = await _create_local(test_repository)
        for _ in range(5):
            await test_repository.record_failed_attempt(account.id, 5, NOW)
        later = NOW + timedelta(hours=25)

        stale = await test_repository.clear_expired_lock(
            account.id, NOW - timedelta(seconds=1), later
        )
        assert stale is False
        assert (await test_repository.get_lockout_state(account.id)).is_locked is True

        assert await test_repository.clear_expired_lock(account.id, NOW, later) is True
        assert await test_repository.get_lockout_state(account.id) == LockoutState()

    async def test_successful_login_resets_counter(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.record_failed_attempt(account.id, 5, NOW)
        await test_repository.record_failed_attempt(account.id, 5, NOW)

        assert await test_repository.record_successful_login(account.id, NOW) is True

        refreshed = await test_repository.get_account_by_id(account.id)
        assert refreshed.failed_attempts == 0
        assert refreshed.last_login_at == NOW

    async def test_successful_login_refused_when_locked(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        for _ in range(5):
            await test_repository.record_failed_attempt(account.id, 5, NOW)

        assert await test_repository.record_successful_login(account.id, NOW) is False
        assert (await test_repository.get_lockout_state(account.id)).failed_attempts == 5

    async def test_unlock_account(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        for _ in range(5):
            await test_repository.record_failed_attempt(account.id, 5, NOW)

        await test_repository.unlock_account(account.id)

        assert await test_repository.get_lockout_state(account.id) == LockoutState()
        with pytest.raises(AccountNotFoundError):
            await test_repository.unlock_account(99999)


@pytest.mark.asyncio
class TestSessions:
    """Session persistence."""

    async def test_create_and_find(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)

        stored = await test_repository.create_session(
            _session(account.id, "token-1", device_info="Firefox", ip_address="10.0.0.1")
        )

        assert stored.token == "token-1"
        assert stored.account_id == account.id
        assert stored.device_info == "Firefox"
        assert stored.ip_address == "10.0.0.1"
        assert stored.revoked is False
        assert stored.expires_at == NOW + timedelta(days=7)
        assert await test_repository.find_session_by_token("token-1") == stored
        assert await test_repository.find_session_by_token("missing") is None

    async def test_session_for_missing_account(self, test_repository: AuthRepository):
        with pytest.raises(AccountNotFoundError):
            await test_repository.create_session(_session(99999, "token-1"))

    async def test_duplicate_token(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.create_session(_session(account.id, "token-1"))
        with pytest.raises(DuplicateRecordError):
            await test_repository.create_session(_session(account.id, "token-1"))

    async def test_revoke_session(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.create_session(_session(account.id, "token-1"))

        assert await test_repository.revoke_session("token-1") is True
        assert await test_repository.revoke_session("token-1") is False
        assert await test_repository.revoke_session("missing") is False
        assert (await test_repository.find_session_by_token("token-1")).revoked is True

    async def test_revoke_and_delete_all(self, test_repository: AuthRepository):
        alice = await _create_local(test_repository)
        bob = await _create_local(test_repository, "bob@example.com")
        for token in ("a-1", "a-2", "a-3"):
            await test_repository.create_session(_session(alice.id, token))
        await test_repository.create_session(_session(bob.id, "b-1"))
        await test_repository.revoke_session("a-3")

        assert await test_repository.revoke_all_sessions(alice.id) == 2
        assert (await test_repository.find_session_by_token("b-1")).revoked is False

        assert await test_repository.delete_all_sessions(alice.id) == 3
        assert await test_repository.find_session_by_token("a-1") is None

    async def test_list_sessions_newest_first(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.create_session(_session(account.id, "oldest", NOW))
        await test_repository.create_session(
            _session(account.id, "newest", NOW + timedelta(hours=2))
        )
        await test_repository.create_session(
            _session(account.id, "middle", NOW + timedelta(hours=1))
        )
        await test_repository.create_session(
            _session(account.id, "revoked", NOW, revoked=True)
        )
        await test_repository.create_session(
            _session(account.id, "expired", NOW, expires_at=NOW + timedelta(hours=3))
        )

        sessions = await test_repository.list_sessions(account.id, NOW + timedelta(hours=3))

        assert [s.token for s in sessions] == ["newest", "middle", "oldest"]

    async def test_delete_expired_sessions(self, test_repository: AuthRepository):
        account = await _create_local(test_repository)
        await test_repository.create_session(
            _session(account.id, "short", expires_at=NOW + timedelta(hours=1))
        )
        await test_repository.create_session(_session(account.id, "long"))

        deleted = await test_repository.delete_expired_sessions(NOW + timedelta(hours=1))

        assert deleted == 1
        assert await test_repository.find_session_by_token("short") is None
        assert await test_repository.find_session_by_token("long") is not None
