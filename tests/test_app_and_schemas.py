import importlib

import pytest
from fastapi.testclient import TestClient
from pydantic import ValidationError

from coursesphere import app as app_module
from coursesphere.api import schemas
from coursesphere.config import Settings


@pytest.fixture
def fresh_app(monkeypatch):
    """Reload the app module to respect env overrides for CORS tests."""

    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)
    reloaded = importlib.reload(app_module)
    try:
        yield reloaded.app
    finally:
        importlib.reload(app_module)


def test_security_headers_and_health(fresh_app):
    client = TestClient(fresh_app)
    response = client.get("/healthz", headers={"Origin": "http://localhost:3000"})

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "version": app_module.__version__}
    assert response.headers["X-Frame-Options"] == "DENY"
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    assert response.headers["Cache-Control"].startswith("no-store")
    assert response.headers["API-Version"] == app_module.__version__
    assert response.headers["access-control-allow-origin"] == "http://localhost:3000"
    assert response.headers["access-control-allow-credentials"] == "true"
    # Plain http test server never gets HSTS
    assert "Strict-Transport-Security" not in response.headers


def test_unknown_origin_gets_no_cors_grant(fresh_app):
    client = TestClient(fresh_app)
    response = client.get("/healthz", headers={"Origin": "https://evil.example.com"})
    assert "access-control-allow-origin" not in response.headers


def test_allowed_origins_default(monkeypatch):
    monkeypatch.delenv("CORS_ALLOW_ORIGINS", raising=False)
    reloaded = importlib.reload(app_module)
    try:
        origins = reloaded._allowed_origins()
        assert "http://localhost:3000" in origins
        assert "*" not in origins
    finally:
        importlib.reload(app_module)


def test_allowed_origins_override(monkeypatch):
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://example.com, https://demo.local")
    reloaded = importlib.reload(app_module)
    try:
        assert reloaded._allowed_origins() == ["https://example.com", "https://demo.local"]
    finally:
        monkeypatch.delenv("CORS_ALLOW_ORIGINS")
        importlib.reload(app_module)


def test_settings_require_supabase_without_memory_store():
    with pytest.raises(ValidationError):
        Settings(use_memory_store=False)

    settings = Settings(
        use_memory_store=False,
        supabase_url="https://x.supabase.co/",
        supabase_anon_key="anon",
    )
    assert settings.supabase_url == "https://x.supabase.co"


def test_settings_reject_unknown_samesite():
    with pytest.raises(ValidationError):
        Settings(use_memory_store=True, session_cookie_samesite="sometimes")


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("USE_MEMORY_STORE", "true")
    monkeypatch.setenv("MIN_PASSWORD_LENGTH", "10")
    monkeypatch.setenv("PROFILE_TABLE", "profiles")

    settings = Settings.from_env()

    assert settings.min_password_length == 10
    assert settings.profile_table == "profiles"


def test_login_request_normalizes_email():
    req = schemas.LoginRequest(email=" User@example.com\u200b ", password="pw")
    assert req.email == "user@example.com"


def test_register_and_forgot_password_lowercase_email():
    register = schemas.RegisterRequest(email=" Ada@Example.COM", password="pw")
    forgot = schemas.ForgotPasswordRequest(email="ADA@example.com ")
    assert register.email == forgot.email == "ada@example.com"


def test_login_request_allows_missing_fields():
    req = schemas.LoginRequest()
    assert req.email is None
    assert req.password is None


def test_register_request_accepts_both_name_spellings():
    camel = schemas.RegisterRequest(firstName="Ada", lastName="L", email="a@b.c")
    snake = schemas.RegisterRequest(first_name="Ada", last_name="L", email="a@b.c")
    assert camel.first_name == snake.first_name == "Ada"


def test_course_update_ignores_unknown_fields():
    req = schemas.CourseUpdateRequest(title="T", instructor_id="x")
    assert req.model_dump(exclude_unset=True) == {"title": "T"}


def test_lesson_update_rejects_negative_duration():
    with pytest.raises(ValidationError):
        schemas.LessonUpdateRequest(duration=-5)


def test_settings_from_env_needs_supabase_unless_memory_store(monkeypatch):
    monkeypatch.setenv("USE_MEMORY_STORE", "false")
    monkeypatch.setenv("TEST_MODE", "true")
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    monkeypatch.delenv("SUPABASE_ANON_KEY", raising=False)

    with pytest.raises(ValidationError):
        Settings.from_env()
    assert "test_mode" not in Settings.model_fields
