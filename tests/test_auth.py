import pytest

from auth import Identity, get_authenticator, is_truthy
from conftest import ADMIN_EMAIL, ADMIN_SECRET, USER_EMAIL, USER_PASSWORD, login_admin, signup
from config import AdminConfig
from errors import ConfigError, EmailTaken, ValidationError
from models import User, db


def cookie_header(response, name="token"):
    for header in response.headers.getlist("Set-Cookie"):
        if header.startswith(f"{name}="):
            return header
    return None


class TestAdminConfig:
    def test_allow_list_is_case_insensitive(self):
        config = AdminConfig(emails=frozenset({"boss@example.com"}), password="pw")
        assert config.is_admin_email(" Boss@Example.com ")
        assert not config.is_admin_email("someone@example.com")
        assert not config.is_admin_email(None)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ADMIN_EMAILS", "A@x.com, b@x.com,,")
        monkeypatch.setenv("ADMIN_PASSWORD", " secret ")
        config = AdminConfig.from_env()
        assert config.emails == frozenset({"a@x.com", "b@x.com"})
        assert config.password == "secret"


@pytest.mark.parametrize("value, expected", [
    (True, True), ("true", True), ("on", True), ("1", True),
    (False, False), ("false", False), (None, False), ("", False),
])
def test_is_truthy(value, expected):
    assert is_truthy(value) is expected


class TestAuthenticator:
    def test_register_hashes_password(self, ctx):
        user = get_authenticator().register("Ada", "Ada@Example.com", "secret1", "secret1")
        assert user.email == "ada@example.com"
        assert user.role == "user"
        assert user.password != "secret1"
        assert get_authenticator().check_password("secret1", user.password)

    @pytest.mark.parametrize("name, email, password, confirm, message", [
        ("", "a@x.com", "secret1", "secret1", "fill all fields"),
        ("Ada", "a@x.com", "secret1", "secret2", "do not match"),
        ("Ada", "a@x.com", "short", "short", "at least 6"),
        ("Ada", "a@x.com", "x" * 73, "x" * 73, "too long"),
    ])
    def test_register_validation(self, ctx, name, email, password, confirm, message):
        with pytest.raises(ValidationError, match=message):
            get_authenticator().register(name, email, password, confirm)
        assert User.query.count() == 0

    def test_register_duplicate_email(self, ctx):
        get_authenticator().register("Ada", "ada@example.com", "secret1", "secret1")
        with pytest.raises(EmailTaken):
            get_authenticator().register("Ada Again", "ADA@example.com", "secret1", "secret1")

    def test_authenticate_user(self, ctx):
        user = get_authenticator().register("Ada", "ada@example.com", "secret1", "secret1")
        identity = get_authenticator().authenticate("ADA@example.com", "secret1")
        assert identity == Identity(user_id=user.id, name="Ada", email="ada@example.com", role="user")

    def test_password_whitespace_is_kept(self, ctx):
        get_authenticator().register("Ada", "ada@example.com", "  secret123  ", "  secret123  ")
        identity = get_authenticator().authenticate("ada@example.com", "  secret123  ")
        assert identity.email == "ada@example.com"
        with pytest.raises(ValidationError, match="Invalid credentials"):
            get_authenticator().authenticate("ada@example.com", "secret123")

    def test_authenticate_bad_password(self, ctx):
        get_authenticator().register("Ada", "ada@example.com", "secret1", "secret1")
        with pytest.raises(ValidationError, match="Invalid credentials"):
            get_authenticator().authenticate("ada@example.com", "wrong-one")

    def test_authenticate_unknown_email(self, ctx):
        with pytest.raises(ValidationError, match="Invalid credentials"):
            get_authenticator().authenticate("nobody@example.com", "secret1")

    def test_admin_email_needs_admin_flag(self, ctx):
        with pytest.raises(ValidationError, match="admin email"):
            get_authenticator().authenticate(ADMIN_EMAIL, ADMIN_SECRET)

    def test_admin_elevation(self, ctx):
        identity = get_authenticator().authenticate(ADMIN_EMAIL, ADMIN_SECRET, as_admin=True)
        assert identity.is_admin
        assert identity.user_id is None
        assert identity.name == "Administrator"

    def test_admin_elevation_borrows_stored_account_id(self, ctx):
        user = get_authenticator().register("Boss", ADMIN_EMAIL, "whatever1", "whatever1")
        identity = get_authenticator().authenticate(ADMIN_EMAIL, ADMIN_SECRET, as_admin=True)
        assert identity.user_id == user.id
        assert identity.role == "admin"
        # stored role is untouched
        assert db.session.get(User, user.id).role == "user"

    def test_admin_elevation_rejects_unlisted_email(self, ctx):
        with pytest.raises(ValidationError, match="not on the admin list"):
            get_authenticator().authenticate("intruder@example.com", ADMIN_SECRET, as_admin=True)

    def test_admin_elevation_rejects_wrong_secret(self, ctx):
        with pytest.raises(ValidationError, match="Incorrect admin password"):
            get_authenticator().authenticate(ADMIN_EMAIL, "guess", as_admin=True)

    def test_admin_elevation_without_configured_secret(self, ctx):
        authenticator = get_authenticator()
        authenticator.admin = AdminConfig(emails=frozenset({ADMIN_EMAIL}), password="")
        with pytest.raises(ConfigError):
            authenticator.authenticate(ADMIN_EMAIL, "anything", as_admin=True)


class TestSessionCookie:
    def test_signup_issues_http_only_lax_cookie(self, client):
        response = signup(client)
        assert response.status_code == 201
        header = cookie_header(response)
        assert header is not None
        assert "HttpOnly" in header
        assert "SameSite=Lax" in header
        assert "Max-Age=604800" in header

    def test_login_cookie_lives_as_long_as_the_token(self, client, settings):
        response = login_admin(client)
        seconds = int(settings.token_expiry.total_seconds())
        assert f"Max-Age={seconds}" in cookie_header(response)

    def test_signup_duplicate_email(self, client):
        signup(client)
        response = signup(client, email=USER_EMAIL.upper())
        assert response.status_code == 400
        assert response.get_json()["message"] == "Email already registered."

    def test_login_and_logout(self, client):
        signup(client)
        client.post("/auth/logout", json={})
        assert client.get("/api/books/stats/borrowed").status_code == 401

        response = client.post("/auth/login", json={"email": USER_EMAIL, "password": USER_PASSWORD})
        assert response.status_code == 200
        assert response.get_json()["role"] == "user"
        assert response.get_json()["redirect"] == "/search"
        assert client.get("/api/books/stats/borrowed").status_code == 200

    def test_login_invalid_credentials(self, client):
        signup(client)
        client.post("/auth/logout", json={})
        response = client.post("/auth/login", json={"email": USER_EMAIL, "password": "nope-nope"})
        assert response.status_code == 400
        assert response.get_json()["message"] == "Invalid credentials"
        assert cookie_header(response) is None

    def test_admin_login_lands_on_admin(self, client):
        response = login_admin(client)
        assert response.status_code == 200
        assert response.get_json()["redirect"] == "/admin"

    def test_tampered_token_is_anonymous_and_cleared(self, client):
        client.set_cookie("token", "not-a-jwt")
        response = client.get("/api/books/history")
        assert response.status_code == 401
        header = cookie_header(response)
        assert header is not None and "token=;" in header

    def test_form_login_error_renders_page(self, client):
        response = client.post("/auth/login", data={"email": "", "password": ""})
        assert response.status_code == 400
        assert b"Please enter email and password." in response.data

    def test_form_login_redirects(self, client):
        signup(client)
        client.post("/auth/logout", json={})
        response = client.post("/auth/login", data={"email": USER_EMAIL, "password": USER_PASSWORD})
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/search")

    def test_form_signup_mismatch(self, client):
        response = client.post("/auth/signup", data={
            "name": "Ada", "email": "ada@example.com", "password": "secret1", "confirmPassword": "secret2",
        })
        assert response.status_code == 400
        assert b"Passwords do not match." in response.data


class TestGuards:
    def test_users_listing_is_admin_only(self, user_client, admin_client, client):
        assert client.get("/auth/users").status_code == 401
        assert user_client.get("/auth/users").status_code == 403

        response = admin_client.get("/auth/users")
        assert response.status_code == 200
        users = response.get_json()
        assert [u["email"] for u in users] == [USER_EMAIL]
        assert "password" not in users[0]

    def test_admin_page(self, user_client, admin_client):
        assert user_client.get("/admin").status_code == 403
        response = admin_client.get("/admin")
        assert response.status_code == 200
        assert b'id="editBookForm"' in response.data
        assert b'id="returnerSelect"' in response.data

    def test_search_page_redirects_anonymous(self, client):
        response = client.get("/search")
        assert response.status_code == 302
        assert "/auth/login" in response.headers["Location"]

    def test_search_page_for_user(self, user_client):
        assert user_client.get("/search").status_code == 200

    def test_student_page_forwards_to_search(self, user_client):
        response = user_client.get("/student")
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/search")

    def test_root_clears_cookie(self, user_client):
        response = user_client.get("/")
        assert response.status_code == 302
        assert "token=;" in cookie_header(response)
