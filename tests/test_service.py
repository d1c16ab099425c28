import logging

from fastapi.testclient import TestClient

from mailbridge.api.service import create_app
from mailbridge.config import Config
from mailbridge.utils.logger import JSONFormatter, configure_logging


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_cors_preflight(client):
    response = client.options("/functions/v1/oauth-init", headers={
        "Origin": "https://preview.lovable.app",
        "Access-Control-Request-Method": "POST",
        "Access-Control-Request-Headers": "authorization, content-type",
    })
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "x-client-info" in response.headers["access-control-allow-headers"].lower()


def test_invalid_json_body_is_bad_request(client, auth_headers):
    response = client.post("/functions/v1/oauth-init", content="{not json",
                           headers={"Content-Type": "application/json", **auth_headers})
    assert response.status_code == 400
    assert "error" in response.json()


def test_wrong_field_type_is_bad_request(client, auth_headers):
    response = client.post("/functions/v1/oauth-init", json={"provider": ["google"]}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["error"].startswith("provider:")


def test_invalid_bearer_token(client):
    response = client.post("/functions/v1/sync-categories", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}


def test_config_validation_is_fatal_only_in_production(monkeypatch):
    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY", "TOKEN_ENCRYPTION_KEY"):
        monkeypatch.delenv(name, raising=False)
    config = Config()
    config.validate()

    config.ENVIRONMENT = "production"
    try:
        config.validate()
    except RuntimeError as e:
        assert "TOKEN_ENCRYPTION_KEY" in str(e)
    else:
        raise AssertionError("validate() should fail in production")


def test_config_derived_urls(config):
    assert config.callback_url == "https://api.example.com/functions/v1/oauth-callback"
    assert config.cognito_jwks_url == (
        "https://cognito-idp.us-west-2.amazonaws.com/us-west-2_pool/.well-known/jwks.json"
    )
    assert config.stripe_price_for("enterprise") == "price_enterprise"
    assert config.stripe_price_for("gold") is None


def test_json_log_format():
    record = logging.LogRecord("mailbridge", logging.INFO, __file__, 1, "[SYNC] done", None, None)
    formatted = JSONFormatter().format(record)
    assert '"message": "[SYNC] done"' in formatted


def test_configure_logging_replaces_root_handlers():
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        configure_logging("debug", "text")
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        configure_logging("INFO", "json")
        assert isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers, root.level = saved_handlers, saved_level


def test_app_startup_configures_logging(monkeypatch, config):
    config.LOG_LEVEL, config.LOG_FORMAT = "DEBUG", "text"
    monkeypatch.setattr("mailbridge.config._config_instance", config)
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    try:
        with TestClient(create_app(validate_config=False)) as client:
            assert client.get("/health").status_code == 200
            assert len(root.handlers) == 1
            assert root.level == logging.DEBUG
            assert not isinstance(root.handlers[0].formatter, JSONFormatter)
    finally:
        root.handlers, root.level = saved_handlers, saved_level
