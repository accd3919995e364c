"""Unit tests for auth/login.py -- the password login and token minting flow.

These run issue_token() directly against an in-memory AuthContext. A list
stands in for the background-task queue so tests can see what the login
deferred and run it when they choose.

Coverage:
  - MissingField lists every absent field
  - NotFound vs CredentialRejected; id takes priority over username
  - Lockout precedes hashing and holds even for the correct password
  - Legacy password version never reaches the comparison
  - Banned soft fail: no token
  - Issued privileges = requested & entitlement(rank)
  - Token plaintext is not stored; its reference is
  - Uniqueness loop: regenerate on collision, bounded attempts, IntegrityError retry
  - Store failures surface as Internal
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from auth.context import AuthContext
from auth.errors import (
    CredentialRejected,
    Internal,
    LegacyCredentialVersion,
    MissingField,
    NotFound,
    RateLimited,
    TokenGenerationExhausted,
)
from auth.login import issue_token, mint_token
from auth.models import Token
from auth.privileges import Privileges, Rank, entitlement
from auth.tokens import hash_token
from conftest import PASSWORD, make_context


class DeferredTasks(list):
    """Collects (func, args) like BackgroundTasks.add_task, runs them on demand."""

    def __call__(self, func, *args) -> None:
        self.append((func, args))

    def run(self) -> None:
        for func, args in self:
            func(*args)
        self.clear()


@pytest.fixture
def deferred() -> DeferredTasks:
    return DeferredTasks()


def _login(ctx: AuthContext, deferred=None, **kwargs):
    kwargs.setdefault("password", PASSWORD)
    if deferred is not None:
        kwargs["defer"] = deferred
    return issue_token(ctx, **kwargs)


class TestRequiredFields:
    def test_missing_selector_and_password(self, ctx: AuthContext) -> None:
        with pytest.raises(MissingField) as exc_info:
            issue_token(ctx, password="")
        assert exc_info.value.fields == ["username|id", "password"]
        assert exc_info.value.message == "Missing parameters: username|id, password."
        assert exc_info.value.code == 400

    def test_missing_password_only(self, ctx: AuthContext) -> None:
        with pytest.raises(MissingField) as exc_info:
            issue_token(ctx, username="alice", password="")
        assert exc_info.value.fields == ["password"]


class TestLookup:
    def test_unknown_username(self, ctx: AuthContext, users: dict[str, int]) -> None:
        with pytest.raises(NotFound) as exc_info:
            _login(ctx, username="nobody")
        assert exc_info.value.code == 404

    def test_unknown_id(self, ctx: AuthContext, users: dict[str, int]) -> None:
        with pytest.raises(NotFound):
            _login(ctx, user_id=999_999)

    def test_id_takes_priority_over_username(self, ctx: AuthContext, users: dict[str, int]) -> None:
        result = _login(ctx, user_id=users["dev"], username="alice")
        assert result.user_id == users["dev"]
        assert result.username == "dev"

    def test_store_failure_is_internal(self, ctx: AuthContext) -> None:
        ctx.store = MagicMock()
        ctx.store.get_principal_by_username.side_effect = OperationalError("SELECT", {}, Exception("down"))
        with pytest.raises(Internal) as exc_info:
            _login(ctx, username="alice")
        assert exc_info.value.code == 500
        assert "down" not in exc_info.value.message


class TestCredentials:
    def test_wrong_password_rejected_and_failure_deferred(
        self, ctx: AuthContext, users: dict[str, int], deferred: DeferredTasks
    ) -> None:
        with pytest.raises(CredentialRejected) as exc_info:
            _login(ctx, deferred, username="alice", password="wrong")
        assert exc_info.value.code == 403
        # Nothing recorded until the deferred task runs.
        assert ctx.limiter.failed_attempts(users["alice"]) == 0
        assert len(deferred) == 1
        deferred.run()
        assert ctx.limiter.failed_attempts(users["alice"]) == 1

    def test_legacy_version_never_compares(self, ctx: AuthContext, users: dict[str, int]) -> None:
        with patch("auth.login.verify_password") as verify:
            with pytest.raises(LegacyCredentialVersion) as exc_info:
                _login(ctx, username="legacy")
            with pytest.raises(LegacyCredentialVersion):
                _login(ctx, username="legacy", password="wrong")
        verify.assert_not_called()
        assert exc_info.value.code == 418

    def test_malformed_stored_hash_is_internal(self, ctx: AuthContext) -> None:
        from auth.models import Principal

        ctx.store.create_principal(Principal(username="broken", rank=Rank.USER, password_hash="garbage"))
        with pytest.raises(Internal):
            _login(ctx, username="broken")


class TestLockout:
    def test_locked_out_even_with_correct_password(self, ctx: AuthContext, users: dict[str, int]) -> None:
        uid = users["alice"]
        for _ in range(ctx.settings.max_failed_attempts + 1):
            ctx.store.increment_failed_attempts(uid)
        with patch("auth.login.verify_password") as verify:
            with pytest.raises(RateLimited) as exc_info:
                _login(ctx, username="alice")
        verify.assert_not_called()
        assert exc_info.value.code == 429

    def test_at_threshold_login_still_allowed_and_resets(self, ctx: AuthContext, users: dict[str, int]) -> None:
        uid = users["alice"]
        for _ in range(ctx.settings.max_failed_attempts):
            ctx.store.increment_failed_attempts(uid)
        result = _login(ctx, username="alice")
        assert result.token
        assert ctx.limiter.failed_attempts(uid) == 0

    def test_lockout_takes_over_after_repeated_failures(self) -> None:
        from conftest import seed_principals

        ctx = make_context("lockout", max_failed_attempts=2)
        try:
            seed_principals(ctx.store)
            for _ in range(3):
                with pytest.raises(CredentialRejected):
                    _login(ctx, username="alice", password="wrong")
            with pytest.raises(RateLimited):
                _login(ctx, username="alice")
        finally:
            ctx.close()


    def test_failed_mint_keeps_the_counter(self, ctx: AuthContext, users: dict[str, int]) -> None:
        uid = users["alice"]
        ctx.store.increment_failed_attempts(uid)
        ctx.store.increment_failed_attempts(uid)
        with patch("auth.login.mint_token", side_effect=TokenGenerationExhausted()):
            with pytest.raises(TokenGenerationExhausted):
                _login(ctx, username="alice")
        assert ctx.limiter.failed_attempts(uid) == 2

    def test_reset_failure_still_returns_token(self, ctx: AuthContext, users: dict[str, int], caplog) -> None:
        ctx.limiter = MagicMock()
        ctx.limiter.reset.side_effect = OperationalError("DELETE", {}, Exception("down"))
        result = _login(ctx, username="alice")
        assert result.token
        assert f"Could not clear failed attempts for user_id={users['alice']}" in caplog.text


class TestBanned:
    def test_banned_gets_no_token(self, ctx: AuthContext, users: dict[str, int]) -> None:
        result = _login(ctx, username="banned", privileges=int(Privileges.WRITE))
        assert result.banned is True
        assert result.token is None
        assert result.privileges == 0
        assert ctx.store.count_tokens(users["banned"]) == 0

    def test_banned_with_wrong_password_is_rejected(self, ctx: AuthContext, users: dict[str, int]) -> None:
        with pytest.raises(CredentialRejected):
            _login(ctx, username="banned", password="wrong")


class TestIssuance:
    @pytest.mark.parametrize("username", ["alice", "dev", "admin"])
    @pytest.mark.parametrize("requested", [0, 1, 3, 0b110, 0b111_1111_1111, -1])
    def test_granted_is_requested_capped_by_rank(
        self, ctx: AuthContext, users: dict[str, int], username: str, requested: int
    ) -> None:
        result = _login(ctx, username=username, privileges=requested)
        rank = ctx.store.get_principal_by_username(username).rank
        assert result.privileges == requested & int(entitlement(rank))

        stored = ctx.store.get_token_by_reference(hash_token(result.token, ctx.settings.secret_key))
        assert stored.privileges == result.privileges
        assert stored.privileges & ~int(entitlement(rank)) == 0

    def test_plaintext_is_never_stored(self, ctx: AuthContext, users: dict[str, int]) -> None:
        result = _login(ctx, username="alice", description="laptop")
        assert len(result.token) == ctx.settings.token_length
        assert ctx.store.get_token_by_reference(result.token) is None
        stored = ctx.store.get_token_by_reference(hash_token(result.token, ctx.settings.secret_key))
        assert stored.user_id == users["alice"]
        assert stored.description == "laptop"

    def test_each_login_gets_a_fresh_token(self, ctx: AuthContext, users: dict[str, int]) -> None:
        first = _login(ctx, username="alice").token
        second = _login(ctx, username="alice").token
        assert first != second
        assert ctx.store.count_tokens(users["alice"]) == 2


class TestMintToken:
    def test_regenerates_on_existing_reference(self, ctx: AuthContext, users: dict[str, int]) -> None:
        key = ctx.settings.secret_key
        ctx.store.insert_token(Token(user_id=users["alice"], privileges=0, reference=hash_token("A" * 32, key)))
        with patch("auth.login.generate_token", side_effect=["A" * 32, "B" * 32]) as gen:
            token = mint_token(ctx, users["alice"], Privileges.WRITE)
        assert token == "B" * 32
        assert gen.call_count == 2

    def test_regenerates_when_insert_loses_the_race(self, ctx: AuthContext) -> None:
        ctx.store = MagicMock()
        ctx.store.token_reference_exists.return_value = False
        ctx.store.insert_token.side_effect = [IntegrityError("INSERT", {}, Exception("UNIQUE")), 1]
        with patch("auth.login.generate_token", side_effect=["A" * 32, "B" * 32]):
            token = mint_token(ctx, 1, 0)
        assert token == "B" * 32
        assert ctx.store.insert_token.call_count == 2

    def test_bounded_attempts(self, ctx: AuthContext) -> None:
        ctx.store = MagicMock()
        ctx.store.token_reference_exists.return_value = True
        with pytest.raises(TokenGenerationExhausted) as exc_info:
            mint_token(ctx, 1, 0)
        assert exc_info.value.code == 500
        assert ctx.store.token_reference_exists.call_count == ctx.settings.token_mint_max_attempts
        ctx.store.insert_token.assert_not_called()

    def test_store_failure_is_internal(self, ctx: AuthContext) -> None:
        ctx.store = MagicMock()
        ctx.store.token_reference_exists.side_effect = OperationalError("SELECT", {}, Exception("down"))
        with pytest.raises(Internal):
            mint_token(ctx, 1, 0)
