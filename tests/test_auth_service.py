"""Unit tests for auth/service.py -- the authentication protocol engine.

Every test runs against the in-memory fakes in tests/fakes.py. The User and
Employee services share one refresh token store, like the real app.

Covers:
- register / login round trip, email normalization, duplicate rejection
- payload validation (email format, password length, empty refresh token)
- unknown email and wrong password are indistinguishable, with equal bcrypt work
- refresh rotation: single use, expired, revoked, invalid signature,
  principal deleted, lost race, wrong kind
- logout idempotency and its effect on refresh
- whoami and list_principals projections
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

import auth.service as service_module
from auth.errors import (
    ConflictError,
    ExpiredTokenError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    ValidationError,
)
from auth.kinds import EMPLOYEE, USER
from auth.models import RefreshTokenRecord
from auth.service import AuthService, normalize_email
from auth.tokens import Ok
from tests.fakes import InMemoryRefreshTokenStore

PASSWORD = "correct-horse-battery"


def _claims(service: AuthService, access_token: str) -> dict:
    result = service.codec.verify_access(access_token)
    assert isinstance(result, Ok)
    return result.claims


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def test_codec_kind_must_match(user_codec, user_principals, refresh_store):
    with pytest.raises(ValueError):
        AuthService(kind=EMPLOYEE, codec=user_codec, principals=user_principals, refresh_tokens=refresh_store)


# ---------------------------------------------------------------------------
# Email normalization
# ---------------------------------------------------------------------------


class TestNormalizeEmail:
    def test_lowercases_and_trims(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"

    @pytest.mark.parametrize("email", ["", "   ", "no-at-sign", "a@", "@b.com", "a b@c.com"])
    def test_rejects_malformed(self, email):
        with pytest.raises(ValidationError):
            normalize_email(email)

    def test_rejects_too_long(self):
        with pytest.raises(ValidationError):
            normalize_email("a" * 250 + "@example.com")


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_issues_pair_and_persists_refresh(self, user_service, refresh_store):
        pair = user_service.register("alice@example.com", PASSWORD)
        assert pair.access_token and pair.refresh_token
        assert pair.refresh_token in refresh_store
        record = refresh_store.get(pair.refresh_token, "User")
        assert record.subject_kind == "User"
        assert record.revoked_at is None

    def test_register_assigns_default_roles(self, user_service, employee_service):
        user_claims = _claims(user_service, user_service.register("a@example.com", PASSWORD).access_token)
        emp_claims = _claims(employee_service, employee_service.register("b@example.com", PASSWORD).access_token)
        assert user_claims["roles"] == ["user"]
        assert emp_claims["roles"] == ["employee"]
        assert emp_claims["aud"] == "employee"

    def test_stored_email_is_normalized(self, user_service, user_principals):
        user_service.register("  Bob@Example.com", PASSWORD)
        assert user_principals.get_by_email("bob@example.com") is not None

    def test_password_is_hashed(self, user_service, user_principals):
        user_service.register("carol@example.com", PASSWORD)
        stored = user_principals.get_by_email("carol@example.com")
        assert stored.password_hash != PASSWORD
        assert stored.password_hash.startswith("$2")

    def test_duplicate_email_conflicts(self, user_service):
        user_service.register("dave@example.com", PASSWORD)
        with pytest.raises(ConflictError):
            user_service.register("DAVE@example.com", PASSWORD)

    def test_same_email_allowed_once_per_kind(self, user_service, employee_service):
        user_service.register("erin@example.com", PASSWORD)
        employee_service.register("erin@example.com", PASSWORD)

    @pytest.mark.parametrize("password", ["", "short77", "x" * 129])
    def test_password_length_enforced(self, user_service, password):
        with pytest.raises(ValidationError):
            user_service.register("frank@example.com", password)

    @pytest.mark.parametrize("password", ["x" * 8, "x" * 128, "é" * 100])
    def test_password_length_bounds_accepted(self, user_service, password):
        pair = user_service.register("grace@example.com", password)
        assert user_service.login("grace@example.com", password).access_token
        assert pair.refresh_token

    def test_invalid_email_rejected(self, user_service, user_principals):
        with pytest.raises(ValidationError):
            user_service.register("not-an-email", PASSWORD)
        assert user_principals.list_principals() == []


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_after_register(self, user_service, refresh_store):
        registered = user_service.register("heidi@example.com", PASSWORD)
        pair = user_service.login("Heidi@Example.com", PASSWORD)
        assert pair.refresh_token != registered.refresh_token
        login_claims = _claims(user_service, pair.access_token)
        assert login_claims["email"] == "heidi@example.com"
        assert login_claims["sub"] == _claims(user_service, registered.access_token)["sub"]
        assert len(refresh_store) == 2

    def test_wrong_password_and_unknown_email_are_indistinguishable(self, user_service):
        user_service.register("ivan@example.com", PASSWORD)
        with pytest.raises(InvalidCredentialsError) as wrong_password:
            user_service.login("ivan@example.com", "wrong-password")
        with pytest.raises(InvalidCredentialsError) as unknown_email:
            user_service.login("nobody@example.com", PASSWORD)
        assert wrong_password.value.message == unknown_email.value.message
        assert wrong_password.value.status_code == unknown_email.value.status_code == 401

    def test_unknown_email_still_runs_bcrypt(self, user_service, monkeypatch):
        user_service.register("judy@example.com", PASSWORD)
        calls = []
        real_verify = service_module.verify_password

        def counting_verify(plain, hashed):
            calls.append(hashed)
            return real_verify(plain, hashed)

        monkeypatch.setattr(service_module, "verify_password", counting_verify)
        with pytest.raises(InvalidCredentialsError):
            user_service.login("nobody@example.com", PASSWORD)
        with pytest.raises(InvalidCredentialsError):
            user_service.login("judy@example.com", "wrong-password")
        assert len(calls) == 2
        assert calls[0] == user_service._dummy_hash

    def test_unknown_email_dummy_hash_matches_configured_cost(
        self, user_codec, user_principals, refresh_store, monkeypatch
    ):
        service = AuthService(
            kind=USER, codec=user_codec, principals=user_principals, refresh_tokens=refresh_store, bcrypt_rounds=5
        )
        service.register("kim@example.com", PASSWORD)
        calls = []
        real_verify = service_module.verify_password

        def counting_verify(plain, hashed):
            calls.append(hashed)
            return real_verify(plain, hashed)

        monkeypatch.setattr(service_module, "verify_password", counting_verify)
        with pytest.raises(InvalidCredentialsError):
            service.login("nobody@example.com", PASSWORD)
        stored = user_principals.get_by_email("kim@example.com").password_hash
        assert calls[0][:7] == stored[:7] == "$2b$05$"

    def test_empty_password_is_validation_error(self, user_service):
        with pytest.raises(ValidationError):
            user_service.login("judy@example.com", "")

    def test_short_password_is_invalid_credentials(self, user_service):
        user_service.register("kim@example.com", PASSWORD)
        with pytest.raises(InvalidCredentialsError):
            user_service.login("kim@example.com", "short")

    def test_login_is_kind_scoped(self, user_service, employee_service):
        user_service.register("leo@example.com", PASSWORD)
        with pytest.raises(InvalidCredentialsError):
            employee_service.login("leo@example.com", PASSWORD)


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_rotation_replaces_record(self, user_service, refresh_store):
        first = user_service.register("mia@example.com", PASSWORD)
        second = user_service.refresh(first.refresh_token)
        assert second.refresh_token != first.refresh_token
        assert first.refresh_token not in refresh_store
        assert second.refresh_token in refresh_store
        assert len(refresh_store) == 1

    def test_refresh_token_is_single_use(self, user_service):
        first = user_service.register("ned@example.com", PASSWORD)
        user_service.refresh(first.refresh_token)
        with pytest.raises(NotFoundError):
            user_service.refresh(first.refresh_token)

    def test_new_token_keeps_working(self, employee_service):
        pair = employee_service.register("olga@example.com", PASSWORD)
        for _ in range(3):
            pair = employee_service.refresh(pair.refresh_token)
        assert _claims(employee_service, pair.access_token)["email"] == "olga@example.com"

    def test_expired_record_is_deleted(self, user_service, refresh_store):
        pair = user_service.register("pat@example.com", PASSWORD)
        refresh_store.expire(pair.refresh_token, datetime.now(timezone.utc) - timedelta(seconds=1))
        with pytest.raises(ExpiredTokenError) as exc_info:
            user_service.refresh(pair.refresh_token)
        assert exc_info.value.status_code == 403
        assert pair.refresh_token not in refresh_store
        with pytest.raises(NotFoundError):
            user_service.refresh(pair.refresh_token)

    def test_expiry_follows_service_clock(self, user_codec, user_principals, refresh_store):
        clock = {"now": datetime.now(timezone.utc)}
        service = AuthService(
            kind=USER,
            codec=user_codec,
            principals=user_principals,
            refresh_tokens=refresh_store,
            bcrypt_rounds=4,
            now=lambda: clock["now"],
        )
        pair = service.register("quinn@example.com", PASSWORD)
        clock["now"] += timedelta(days=31)
        with pytest.raises(ExpiredTokenError):
            service.refresh(pair.refresh_token)

    def test_revoked_record_is_not_found(self, user_service, refresh_store):
        pair = user_service.register("rita@example.com", PASSWORD)
        assert refresh_store.revoke(pair.refresh_token)
        with pytest.raises(NotFoundError):
            user_service.refresh(pair.refresh_token)

    def test_unknown_token_is_not_found(self, user_service):
        with pytest.raises(NotFoundError) as exc_info:
            user_service.refresh("never-issued")
        assert exc_info.value.status_code == 404

    def test_bad_signature_deletes_record(self, user_service, refresh_store):
        refresh_store.add(
            RefreshTokenRecord(
                token="forged.token.value",
                subject_id=1,
                subject_kind="User",
                expires_at=datetime.now(timezone.utc) + timedelta(days=1),
            )
        )
        with pytest.raises(InvalidTokenError) as exc_info:
            user_service.refresh("forged.token.value")
        assert exc_info.value.code == "invalid_token"
        assert "forged.token.value" not in refresh_store

    def test_deleted_principal(self, user_service, user_principals, refresh_store):
        pair = user_service.register("sam@example.com", PASSWORD)
        user_principals.remove(int(_claims(user_service, pair.access_token)["sub"]))
        with pytest.raises(NotFoundError) as exc_info:
            user_service.refresh(pair.refresh_token)
        assert exc_info.value.message == "User not found."
        assert pair.refresh_token not in refresh_store

    def test_other_kind_token_is_not_found(self, user_service, employee_service, refresh_store):
        pair = user_service.register("tina@example.com", PASSWORD)
        with pytest.raises(NotFoundError):
            employee_service.refresh(pair.refresh_token)
        assert pair.refresh_token in refresh_store

    @pytest.mark.parametrize("token", ["", "   "])
    def test_empty_token_is_validation_error(self, user_service, token):
        with pytest.raises(ValidationError):
            user_service.refresh(token)

    def test_lost_race_issues_nothing(self, user_codec, user_principals):
        """If another exchange deletes the record after lookup, this one fails and mints nothing."""

        class RacingStore(InMemoryRefreshTokenStore):
            def get(self, token, subject_kind):
                record = super().get(token, subject_kind)
                if record is not None:
                    super().delete(token, subject_kind)
                return record

        store = RacingStore()
        service = AuthService(
            kind=USER, codec=user_codec, principals=user_principals, refresh_tokens=store, bcrypt_rounds=4
        )
        pair = service.register("uma@example.com", PASSWORD)
        with pytest.raises(NotFoundError):
            service.refresh(pair.refresh_token)
        assert len(store) == 0

    def test_concurrent_exchange_has_one_winner(self, user_service, refresh_store):
        pair = user_service.register("vic@example.com", PASSWORD)

        def attempt():
            try:
                return user_service.refresh(pair.refresh_token)
            except NotFoundError as exc:
                return exc

        with ThreadPoolExecutor(max_workers=4) as pool:
            results = list(pool.map(lambda _: attempt(), range(4)))

        winners = [r for r in results if not isinstance(r, NotFoundError)]
        assert len(winners) == 1
        assert len(refresh_store) == 1
        assert winners[0].refresh_token in refresh_store


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout_then_refresh_fails(self, user_service, refresh_store):
        pair = user_service.register("walt@example.com", PASSWORD)
        user_service.logout(pair.refresh_token)
        assert pair.refresh_token not in refresh_store
        with pytest.raises(NotFoundError):
            user_service.refresh(pair.refresh_token)

    def test_logout_is_idempotent(self, user_service):
        pair = user_service.register("xena@example.com", PASSWORD)
        user_service.logout(pair.refresh_token)
        user_service.logout(pair.refresh_token)
        user_service.logout("never-issued")

    def test_logout_leaves_other_sessions(self, user_service, refresh_store):
        first = user_service.register("yuri@example.com", PASSWORD)
        second = user_service.login("yuri@example.com", PASSWORD)
        user_service.logout(first.refresh_token)
        assert second.refresh_token in refresh_store
        assert user_service.refresh(second.refresh_token).access_token

    def test_logout_requires_token(self, user_service):
        with pytest.raises(ValidationError):
            user_service.logout("")


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class TestIdentity:
    def test_whoami(self, employee_service):
        pair = employee_service.register("zoe@example.com", PASSWORD)
        me = employee_service.whoami(_claims(employee_service, pair.access_token))
        assert me.email == "zoe@example.com"
        assert me.roles == ["employee"]
        assert me.created_at is not None
        assert not hasattr(me, "password_hash")

    def test_whoami_deleted_principal(self, user_service, user_principals):
        pair = user_service.register("amy@example.com", PASSWORD)
        claims = _claims(user_service, pair.access_token)
        user_principals.remove(int(claims["sub"]))
        with pytest.raises(NotFoundError):
            user_service.whoami(claims)

    def test_whoami_bad_subject(self, user_service):
        with pytest.raises(NotFoundError):
            user_service.whoami({"sub": "not-a-number"})

    def test_list_principals(self, employee_service):
        for i in range(3):
            employee_service.register(f"staff{i}@example.com", PASSWORD)
        listed = employee_service.list_principals(limit=2)
        assert [p.email for p in listed] == ["staff0@example.com", "staff1@example.com"]
