from coursesphere.logging import (
    _redact_credentials,
    correlation_id_var,
    email_fingerprint,
    get_correlation_id,
    sanitize_error_message,
    set_correlation_id,
)


def test_tokens_fully_redacted():
    event = _redact_credentials(
        None,
        "info",
        {"event": "x", "access_token": "eyJhbGciOi.abc.def", "refresh_token": "r-123456"},
    )
    assert event["access_token"] == "[redacted]"
    assert event["refresh_token"] == "[redacted]"


def test_email_partially_masked_and_fingerprint_kept():
    fingerprint = email_fingerprint("User@Example.com ")
    event = _redact_credentials(
        None,
        "info",
        {"email": "user@example.com", "email_fingerprint": fingerprint, "status_code": "400"},
    )
    assert event["email"] == "us***om"
    assert event["email_fingerprint"] == fingerprint
    assert event["status_code"] == "400"


def test_fingerprint_is_case_insensitive():
    assert email_fingerprint("A@B.com") == email_fingerprint(" a@b.COM")
    assert len(email_fingerprint("a@b.com")) == 16


def test_sanitize_keeps_plain_provider_messages():
    message = "New password should be different from the old password."
    assert sanitize_error_message(message) == message


def test_sanitize_strips_urls_and_queries():
    result = sanitize_error_message(
        "failed: SELECT id FROM users WHERE x=1 at https://db.internal/rest"
    )
    assert "SELECT" not in result
    assert "db.internal" not in result


def test_sanitize_empty_message():
    assert sanitize_error_message("") == "An error occurred"


def test_correlation_id_generated_when_absent():
    cid = set_correlation_id()
    assert get_correlation_id() == cid
    assert set_correlation_id("abc") == "abc"
    correlation_id_var.set(None)
