# =============================================================================
# tests/test_api.py - HTTP surface
# =============================================================================

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from appfun.api import create_app
from appfun.config import AppConfig
from appfun.exceptions import InvitationStoreError
from appfun.providers.offline_provider import OfflineIdentityProvider
from appfun.providers.supabase_provider import SupabaseIdentityProvider
from appfun.services import create_services
from tests.conftest import TEST_KDF_ITERATIONS

LOGIN = {"email": "alice@example.com", "password": "secret-pass"}


def _future(days: int = 30) -> str:
    return (datetime.now(tz=timezone.utc) + timedelta(days=days)).isoformat()


@pytest.fixture
def config(tmp_path):
    return AppConfig(SESSION_SALT_PATH=str(tmp_path / "salt.bin"), SITE_URL="https://appfun.test")


@pytest.fixture
def services(online_db, provider, config):
    container = create_services(
        online_db, config, provider=provider, kdf_iterations=TEST_KDF_ITERATIONS,
    )
    container["auth_manager"].initialize()
    yield container
    container["auth_manager"].shutdown()


@pytest.fixture
def api(services):
    with TestClient(create_app(services)) as test_client:
        yield test_client


class TestContainer:
    def test_offline_db_selects_offline_provider(self, db, config):
        container = create_services(db, config, kdf_iterations=TEST_KDF_ITERATIONS)
        assert isinstance(container["identity_provider"], OfflineIdentityProvider)

    def test_online_db_selects_supabase_provider(self, online_db, config):
        container = create_services(online_db, config, kdf_iterations=TEST_KDF_ITERATIONS)
        provider = container["identity_provider"]
        try:
            assert isinstance(provider, SupabaseIdentityProvider)
        finally:
            provider.close()


def test_health(api):
    response = api.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert response.json()["supabase"] == "configured"


class TestInvitationEndpoints:
    def test_validate_valid_code(self, api, fake_supabase):
        fake_supabase.add_code("TEST0001", expires_at=_future())
        response = api.post("/auth/validate-invitation", json={"code": "test0001"})
        assert response.status_code == 200
        assert response.json() == {"valid": True, "message": "Invitation code is valid."}

    def test_validate_empty_code(self, api):
        response = api.post("/auth/validate-invitation", json={})
        assert response.status_code == 400
        assert response.json()["valid"] is False

    def test_validate_unknown_code(self, api):
        response = api.post("/auth/validate-invitation", json={"code": "ZZZZ9999"})
        assert response.status_code == 200
        assert response.json()["valid"] is False

    def test_validate_store_error(self, api, fake_supabase):
        fake_supabase.failures["invitation_codes"] = ValueError("upstream broke")
        response = api.post("/auth/validate-invitation", json={"code": "TEST0001"})
        assert response.status_code == 500

    def test_use_invitation(self, api, fake_supabase):
        fake_supabase.add_code("TEST0001", expires_at=_future())
        fake_supabase.tables["user_profiles"].append({"id": 42, "auth_user_id": "u-42"})

        first = api.post("/auth/use-invitation", json={"code": "TEST0001", "userId": "u-42"})
        assert first.status_code == 200
        assert first.json()["success"] is True
        assert first.json()["profileId"] == 42
        assert fake_supabase.code_row("TEST0001")["current_uses"] == 1

        second = api.post("/auth/use-invitation", json={"code": "TEST0001", "userId": "u-42"})
        assert second.status_code == 400
        assert second.json()["success"] is False
        assert "exhausted" in second.json()["error"]

    def test_use_invitation_requires_user(self, api):
        response = api.post("/auth/use-invitation", json={"code": "TEST0001"})
        assert response.status_code == 400
        assert response.json()["success"] is False

    def test_use_invitation_store_failure_is_not_test_mode(self, api, fake_supabase):
        fake_supabase.add_code("TEST0001", expires_at=_future())
        fake_supabase.failures["invitation_codes"] = RuntimeError(
            "Cannot send a request, as the client has been closed."
        )
        response = api.post("/auth/use-invitation", json={"code": "TEST0001", "userId": "u-1"})
        assert response.status_code == 500
        assert response.json()["success"] is False
        assert "test mode" not in response.json()["error"]

    def test_list_invitations(self, api, fake_supabase):
        fake_supabase.add_code("TEST0001", expires_at=_future())
        response = api.get("/auth/invitations", params={"status": "active"})
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["invitations"][0]["code"] == "TEST0001"

    def test_list_invitations_rejects_unknown_status(self, api):
        assert api.get("/auth/invitations", params={"status": "bogus"}).status_code == 422


class TestSessionEndpoints:
    def test_session_when_logged_out(self, api):
        response = api.get("/auth/session")
        assert response.status_code == 401
        body = response.json()
        assert body["isLoggedIn"] is False
        assert body["session"] is None
        assert body["error"]

    def test_login_then_session(self, api):
        login = api.post("/auth/login", json=LOGIN)
        assert login.status_code == 200
        assert login.json()["user"]["username"] == "alice"

        response = api.get("/auth/session")
        assert response.status_code == 200
        body = response.json()
        assert body["isLoggedIn"] is True
        assert body["user"]["email"] == "alice@example.com"
        assert body["session"]["expiresAt"]

    def test_login_bad_credentials(self, api):
        response = api.post("/auth/login", json={**LOGIN, "password": "wrong-password"})
        assert response.status_code == 401
        assert response.json()["errorCode"] == "invalid_credentials"

    def test_login_validation(self, api, provider):
        response = api.post("/auth/login", json={"email": "a@b.com", "password": "short"})
        assert response.status_code == 400
        assert "sign_in_with_password" not in provider.calls

    @pytest.mark.parametrize("method, path", [("post", "/auth/logout"), ("delete", "/auth/session")])
    def test_sign_out(self, api, method, path):
        api.post("/auth/login", json=LOGIN)
        response = getattr(api, method)(path)
        assert response.status_code == 200
        assert response.json()["success"] is True
        assert api.get("/auth/session").status_code == 401

    def test_user(self, api):
        assert api.get("/auth/user").json() == {"user": None, "error": None}
        api.post("/auth/login", json=LOGIN)
        assert api.get("/auth/user").json()["user"]["isLoggedIn"] is True

    def test_status_under_review(self, api, provider):
        response = api.get("/auth/status", params={"path": "/software/12", "under_review": "true"})
        body = response.json()
        assert body["isLoggedIn"] is True
        assert body["underReview"] is True
        assert body["canDownload"] is True
        assert body["user"]["email"] == "review@example.com"

    def test_status_logged_out(self, api):
        body = api.get("/auth/status", params={"path": "/profile"}).json()
        assert body["isLoggedIn"] is False
        assert body["canDownload"] is False


class TestAccountEndpoints:
    def test_sign_up_requires_confirmation(self, api, provider):
        provider.require_confirmation = True
        response = api.post(
            "/auth/sign-up",
            json={"email": "bob@example.com", "password": "password1", "confirmPassword": "password1"},
        )
        assert response.status_code == 200
        assert response.json()["requiresEmailConfirmation"] is True

    def test_sign_up_existing(self, api):
        response = api.post("/auth/sign-up", json={"email": "alice@example.com", "password": "password1"})
        assert response.status_code == 409

    def test_reset_password(self, api):
        response = api.post("/auth/reset-password", json={"email": "alice@example.com"})
        assert response.status_code == 200

    def test_update_password_needs_session(self, api):
        response = api.post("/auth/update-password", json={"password": "new-password"})
        assert response.status_code == 401

    def test_update_password(self, api):
        api.post("/auth/login", json=LOGIN)
        response = api.post("/auth/update-password", json={"password": "short"})
        assert response.status_code == 400
        response = api.post("/auth/update-password", json={"password": "new-password"})
        assert response.status_code == 200


def test_appfun_error_handler(services):
    app = create_app(services)

    def _boom():
        raise InvitationStoreError("store exploded")

    app.add_api_route("/boom", _boom)
    with TestClient(app) as client:
        response = client.get("/boom")
    assert response.status_code == 500
    assert response.json() == {"error": "store exploded", "code": "STORE_ERROR"}
