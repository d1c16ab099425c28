import pytest

from mailbridge.services.connections import resolve_app_url, safe_redirect_path


def test_allowed_https_origin_drops_path(config):
    assert resolve_app_url("https://preview.lovable.app/some/path?x=1", config) == "https://preview.lovable.app"


def test_plain_http_origin_falls_back(config):
    assert resolve_app_url("http://preview.lovable.app", config) == "https://app.example.com"


def test_localhost_may_use_http(config):
    assert resolve_app_url("http://localhost:5173/dashboard", config) == "http://localhost:5173"
    assert resolve_app_url("http://127.0.0.1", config) == "http://127.0.0.1"


def test_port_is_kept(config):
    assert resolve_app_url("https://preview.lovable.app:8443/x", config) == "https://preview.lovable.app:8443"


@pytest.mark.parametrize("origin", [
    "https://lovable.app.evil.com",
    "https://evillovable.app",
    "https://evil.example.net",
    "preview.lovable.app",
    "https://preview.lovable.app:notaport",
    "",
    None,
    42,
])
def test_untrusted_origins_fall_back(config, origin):
    assert resolve_app_url(origin, config) == "https://app.example.com"


def test_in_app_paths_are_kept():
    assert safe_redirect_path("/settings") == "/settings"
    assert safe_redirect_path("/settings/mail?tab=rules") == "/settings/mail?tab=rules"


@pytest.mark.parametrize("redirect_url", [
    "@evil.example/phish",
    "//evil.example/phish",
    "/\\evil.example",
    "https://evil.example",
    "javascript:alert(1)",
    "settings",
    "/settings\r\nSet-Cookie: x=1",
    "",
    None,
])
def test_escaping_redirects_use_default(redirect_url):
    assert safe_redirect_path(redirect_url) == "/integrations"


def test_redirect_url_cannot_change_host(config):
    location = f"{resolve_app_url('https://preview.lovable.app', config)}{safe_redirect_path('@evil.example')}"
    assert location == "https://preview.lovable.app/integrations"
