from common.logging_config import redact_secrets


def test_grant_values_are_redacted():
    event = {
        "event": "Token request rejected",
        "client_id": "abc",
        "refresh_token": "f" * 64,
        "code_verifier": "v" * 43,
        "password": "hunter2",
    }
    redacted = redact_secrets(None, "info", event)
    assert redacted["client_id"] == "abc"
    assert redacted["refresh_token"] == "[redacted]"
    assert redacted["code_verifier"] == "[redacted]"
    assert redacted["password"] == "[redacted]"


def test_events_without_secrets_pass_through():
    event = {"event": "Authorization code issued", "user_id": "u1"}
    assert redact_secrets(None, "info", dict(event)) == event
