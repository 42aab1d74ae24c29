"""
tests/test_auth_routes.py -- Integration tests for the /api/v1/auth/* endpoints.

Runs through the real ASGI stack (middleware, slowapi throttle, exception
handlers) via the api_env fixture. The store behind the service is wrapped in
a MagicMock spy so tests can count how often the login path reached it.

Coverage:
  - register: 201, duplicate -> 422 already_exists, bad input -> 422 validation_error,
    passwords over 72 UTF-8 bytes -> 422 on register and reset
  - login: token pair + public user, Cache-Control no-store, identical 401 for
    unknown user and wrong password
  - refresh / logout / me: bearer handling, revocation on logout
  - forgot/reset password: identical responses, mailed token works, failures
  - throttle: 6th attempt from one IP is 429 without touching the store,
    Retry-After counts down the window, another IP and other endpoints are unaffected
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from api.main import app

LOGIN = "/api/v1/auth/login"
REGISTER = "/api/v1/auth/register"
REFRESH = "/api/v1/auth/refresh-token"
LOGOUT = "/api/v1/auth/logout"
ME = "/api/v1/auth/me"
FORGOT = "/api/v1/auth/forgot-password"
RESET = "/api/v1/auth/reset-password"


def _register(client: TestClient, **overrides) -> dict:
    body = {
        "name": "Grace Hopper",
        "email": "grace@example.com",
        "phone": "15551234567",
        "password": "cobol-rules-1959",
    }
    body.update(overrides)
    resp = client.post(REGISTER, json=body)
    assert resp.status_code == 201, resp.text
    return body


def _login(client: TestClient, account: dict) -> dict:
    resp = client.post(LOGIN, json={"email": account["email"], "password": account["password"]})
    assert resp.status_code == 200, resp.text
    return resp.json()


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _error_code(resp) -> str:
    return resp.json()["error"]["code"]


class TestRegister:
    def test_register_returns_201_without_tokens(self, api_env) -> None:
        resp = api_env.client.post(
            REGISTER,
            json={"name": "Grace Hopper", "email": "grace@example.com", "phone": "15551234567", "password": "cobol-rules-1959"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data == {"message": "Account created successfully."}

    def test_duplicate_email_is_422_already_exists(self, api_env) -> None:
        _register(api_env.client)
        resp = api_env.client.post(
            REGISTER,
            json={"name": "Grace Again", "email": "grace@example.com", "phone": "15550000001", "password": "another-pass"},
        )
        assert resp.status_code == 422
        assert _error_code(resp) == "already_exists"

    def test_invalid_phone_is_validation_error(self, api_env) -> None:
        resp = api_env.client.post(
            REGISTER,
            json={"name": "Grace Hopper", "email": "grace@example.com", "phone": "12ab", "password": "cobol-rules-1959"},
        )
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"

    def test_short_password_is_validation_error(self, api_env) -> None:
        resp = api_env.client.post(
            REGISTER,
            json={"name": "Grace Hopper", "email": "grace@example.com", "phone": "15551234567", "password": "short"},
        )
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"

    def test_multibyte_password_over_72_bytes_is_validation_error(self, api_env) -> None:
        """40 x 'é' is 40 characters but 80 UTF-8 bytes: rejected up front, not a 500 from bcrypt."""
        resp = api_env.client.post(
            REGISTER,
            json={"name": "Grace Hopper", "email": "grace@example.com", "phone": "15551234567", "password": "é" * 40},
        )
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"
        assert api_env.spy.create_user.call_count == 0

    def test_multibyte_password_at_72_bytes_registers_and_signs_in(self, api_env) -> None:
        account = _register(api_env.client, password="é" * 36)
        tokens = _login(api_env.client, account)
        assert tokens["user"]["email"] == account["email"]


class TestLogin:
    def test_login_returns_tokens_and_public_user(self, api_env) -> None:
        account = _register(api_env.client)
        resp = api_env.client.post(LOGIN, json={"email": account["email"], "password": account["password"]})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"

        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["expires_in"] > 0
        assert data["user"]["email"] == account["email"]
        assert data["user"]["status"] == "logged_in"
        assert "hashed_password" not in data["user"]
        assert "password" not in data["user"]

    def test_login_by_phone(self, api_env) -> None:
        account = _register(api_env.client)
        resp = api_env.client.post(LOGIN, json={"phone": account["phone"], "password": account["password"]})
        assert resp.status_code == 200
        assert resp.json()["user"]["phone"] == account["phone"]

    def test_unknown_user_and_wrong_password_get_same_401(self, api_env) -> None:
        account = _register(api_env.client)
        unknown = api_env.client.post(LOGIN, json={"email": "nobody@example.com", "password": "whatever-pass"})
        wrong = api_env.client.post(LOGIN, json={"email": account["email"], "password": "wrong-password"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert _error_code(unknown) == "invalid_credentials"
        assert unknown.json()["error"]["detail"] is None

    def test_storage_outage_is_503_retryable(self, api_env) -> None:
        api_env.spy.find_by_email_or_phone.side_effect = OperationalError("SELECT", {}, Exception("database is locked"))
        resp = api_env.client.post(LOGIN, json={"email": "grace@example.com", "password": "cobol-rules-1959"})
        assert resp.status_code == 503
        assert resp.headers["retry-after"] == "1"
        assert _error_code(resp) == "temporarily_unavailable"

    def test_login_requires_email_or_phone(self, api_env) -> None:
        resp = api_env.client.post(LOGIN, json={"password": "cobol-rules-1959"})
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"


class TestSessionLifecycle:
    def test_refresh_returns_new_access_token(self, api_env) -> None:
        tokens = _login(api_env.client, _register(api_env.client))
        resp = api_env.client.post(REFRESH, json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["access_token"]
        assert data["token_type"] == "bearer"

    def test_logout_revokes_refresh_token(self, api_env) -> None:
        tokens = _login(api_env.client, _register(api_env.client))

        resp = api_env.client.post(LOGOUT, headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out successfully."}

        resp = api_env.client.post(REFRESH, json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_refresh_token"

    def test_access_token_as_refresh_token_rejected(self, api_env) -> None:
        tokens = _login(api_env.client, _register(api_env.client))
        resp = api_env.client.post(REFRESH, json={"refresh_token": tokens["access_token"]})
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_refresh_token"

    def test_logout_without_token_is_401(self, api_env) -> None:
        resp = api_env.client.post(LOGOUT)
        assert resp.status_code == 401
        assert _error_code(resp) == "access_token_required"

    def test_logout_with_garbage_token_is_401(self, api_env) -> None:
        resp = api_env.client.post(LOGOUT, headers=_bearer("not-a-token"))
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_token"

    def test_refresh_token_cannot_authorize_logout(self, api_env) -> None:
        tokens = _login(api_env.client, _register(api_env.client))
        resp = api_env.client.post(LOGOUT, headers=_bearer(tokens["refresh_token"]))
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_token"

    def test_me_returns_public_profile(self, api_env) -> None:
        account = _register(api_env.client)
        tokens = _login(api_env.client, account)
        resp = api_env.client.get(ME, headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        data = resp.json()
        assert data["email"] == account["email"]
        assert data["name"] == account["name"]
        assert "hashed_password" not in data

    def test_logout_of_deleted_user_is_404(self, api_env) -> None:
        tokens = _login(api_env.client, _register(api_env.client))
        api_env.store.delete_user(tokens["user"]["id"])
        resp = api_env.client.post(LOGOUT, headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 404
        assert _error_code(resp) == "not_found"


class TestPasswordReset:
    def test_forgot_password_response_is_identical_for_unknown_email(self, api_env) -> None:
        account = _register(api_env.client)
        known = api_env.client.post(FORGOT, json={"email": account["email"]})
        unknown = api_env.client.post(FORGOT, json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()
        assert len(api_env.mailer.sent) == 1
        assert api_env.mailer.sent[0].to_email == account["email"]

    def test_reset_with_mailed_token(self, api_env) -> None:
        account = _register(api_env.client)
        api_env.client.post(FORGOT, json={"email": account["email"]})
        token = api_env.mailer.sent[0].token

        resp = api_env.client.post(
            RESET,
            json={"token": token, "new_password": "new-password-42", "confirm_password": "new-password-42"},
        )
        assert resp.status_code == 200
        assert resp.json() == {"message": "Password has been reset successfully."}

        old = api_env.client.post(LOGIN, json={"email": account["email"], "password": account["password"]})
        assert old.status_code == 401
        new = api_env.client.post(LOGIN, json={"email": account["email"], "password": "new-password-42"})
        assert new.status_code == 200

    def test_reset_with_mismatched_confirmation_is_422(self, api_env) -> None:
        resp = api_env.client.post(
            RESET,
            json={"token": "anything", "new_password": "new-password-42", "confirm_password": "different-pass"},
        )
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"

    def test_reset_with_multibyte_password_over_72_bytes_is_422(self, api_env) -> None:
        account = _register(api_env.client)
        api_env.client.post(FORGOT, json={"email": account["email"]})
        token = api_env.mailer.sent[0].token

        resp = api_env.client.post(RESET, json={"token": token, "new_password": "é" * 40, "confirm_password": "é" * 40})
        assert resp.status_code == 422
        assert _error_code(resp) == "validation_error"
        assert api_env.spy.update_user.call_count == 0

    def test_reset_with_invalid_token_is_401(self, api_env) -> None:
        resp = api_env.client.post(
            RESET,
            json={"token": "garbage", "new_password": "new-password-42", "confirm_password": "new-password-42"},
        )
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_reset_token"

    def test_mail_failure_is_500_email_send_failed(self, api_env) -> None:
        account = _register(api_env.client)
        api_env.mailer.fail = True
        resp = api_env.client.post(FORGOT, json={"email": account["email"]})
        assert resp.status_code == 500
        assert _error_code(resp) == "email_send_failed"


class TestLoginThrottle:
    def _exhaust(self, client: TestClient, account: dict) -> None:
        bad = {"email": account["email"], "password": "wrong-password"}
        for _ in range(5):
            assert client.post(LOGIN, json=bad).status_code == 401
        assert client.post(LOGIN, json=bad).status_code == 429

    def test_sixth_attempt_is_throttled_before_lookup(self, api_env) -> None:
        account = _register(api_env.client)
        bad = {"email": account["email"], "password": "wrong-password"}

        for _ in range(5):
            assert api_env.client.post(LOGIN, json=bad).status_code == 401

        resp = api_env.client.post(LOGIN, json=bad)
        assert resp.status_code == 429
        assert _error_code(resp) == "too_many_requests"
        assert api_env.spy.find_by_email_or_phone.call_count == 5

    def test_retry_after_is_time_left_in_window(self, api_env) -> None:
        """Retry-After counts down the current window rather than restating its length."""
        account = _register(api_env.client)
        self._exhaust(api_env.client, account)
        resp = api_env.client.post(LOGIN, json={"email": account["email"], "password": "wrong-password"})
        assert resp.status_code == 429
        assert 1 <= int(resp.headers["retry-after"]) <= 60

    def test_throttle_applies_to_correct_password_too(self, api_env) -> None:
        account = _register(api_env.client)
        for _ in range(5):
            api_env.client.post(LOGIN, json={"email": account["email"], "password": "wrong-password"})
        resp = api_env.client.post(LOGIN, json={"email": account["email"], "password": account["password"]})
        assert resp.status_code == 429

    def test_throttle_is_per_client_address(self, api_env) -> None:
        account = _register(api_env.client)
        self._exhaust(api_env.client, account)

        # Same app and lifespan state, different peer address.
        other = TestClient(app, client=("10.0.0.2", 50000))
        resp = other.post(LOGIN, json={"email": account["email"], "password": "wrong-password"})
        assert resp.status_code == 401
        assert _error_code(resp) == "invalid_credentials"

        # The first address is still locked out.
        assert api_env.client.post(LOGIN, json={"email": account["email"], "password": "x" * 8}).status_code == 429

    def test_other_endpoints_are_not_throttled(self, api_env) -> None:
        account = _register(api_env.client)
        self._exhaust(api_env.client, account)
        for i in range(8):
            resp = api_env.client.post(FORGOT, json={"email": f"user{i}@example.com"})
            assert resp.status_code == 200
        tokens = api_env.service.authenticate_user(account["password"], email=account["email"])
        resp = api_env.client.post(REFRESH, json={"refresh_token": tokens.refresh_token})
        assert resp.status_code == 200
