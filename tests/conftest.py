import base64
import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from mailbridge.api import deps
from mailbridge.api.service import create_app
from mailbridge.config import Config
from mailbridge.infrastructure.supabase_store import SupabaseStore
from mailbridge.security.security_manager import SecurityManager
from tests.fakes import FakeGmail, FakeSession, FakeSupabase

TEST_VAULT_KEY = "test-vault-secret"


def make_jwt(claims) -> str:
    """Unsigned JWT; enough for code paths that only read the payload."""
    def segment(data):
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")
    return f"{segment({'alg': 'none', 'typ': 'JWT'})}.{segment(claims)}.sig"


@pytest.fixture
def config():
    cfg = Config()
    cfg.ENVIRONMENT = "test"
    cfg.SUPABASE_URL = "https://db.example.supabase.co"
    cfg.SUPABASE_SERVICE_ROLE_KEY = "service-role"
    cfg.TOKEN_ENCRYPTION_KEY = TEST_VAULT_KEY
    cfg.OAUTH_STATE_TTL_SECONDS = 600
    cfg.PUBLIC_API_URL = "https://api.example.com"
    cfg.CONNECT_REDIRECT_URI = "https://app.example.com/auth/callback"
    cfg.APP_URL = "https://app.example.com"
    cfg.ALLOWED_APP_ORIGIN_SUFFIXES = [".lovable.app"]
    cfg.GOOGLE_CLIENT_ID = "google-client"
    cfg.GOOGLE_CLIENT_SECRET = "google-secret"
    cfg.MICROSOFT_CLIENT_ID = "ms-client"
    cfg.MICROSOFT_CLIENT_SECRET = "ms-secret"
    cfg.COGNITO_DOMAIN = "https://login.example.auth.us-west-2.amazoncognito.com"
    cfg.COGNITO_CLIENT_ID = "cognito-client"
    cfg.COGNITO_USER_POOL_ID = "us-west-2_pool"
    cfg.COGNITO_REGION = "us-west-2"
    cfg.COGNITO_REDIRECT_URI = "https://app.example.com/auth/cognito"
    cfg.COGNITO_LOGOUT_URI = "https://app.example.com/"
    cfg.COGNITO_VERIFY_ID_TOKEN = False
    cfg.MISTRAL_API_KEY = "mistral-key"
    cfg.OPENAI_API_KEY = "openai-key"
    cfg.STRIPE_SECRET_KEY = "sk_test_123"
    cfg.STRIPE_PRICE_STARTER = "price_starter"
    cfg.STRIPE_PRICE_PRO = "price_pro"
    cfg.STRIPE_PRICE_ENTERPRISE = "price_enterprise"
    return cfg


@pytest.fixture
def db():
    return FakeSupabase()


@pytest.fixture
def store(db):
    return SupabaseStore(client=db)


@pytest.fixture
def security():
    return SecurityManager(TEST_VAULT_KEY)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def gmail(monkeypatch):
    fake = FakeGmail()
    fake.build = MagicMock(return_value=fake)
    monkeypatch.setattr("mailbridge.adapters.gmail.build", fake.build)
    return fake


@pytest.fixture
def app(config, store, security, session):
    application = create_app(validate_config=False)
    application.dependency_overrides[deps.get_app_config] = lambda: config
    application.dependency_overrides[deps.get_store] = lambda: store
    application.dependency_overrides[deps.get_security] = lambda: security
    application.dependency_overrides[deps.get_http_session] = lambda: session
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def user(db):
    return db.auth.login("user-jwt", "user-1", email="owner@example.com")


@pytest.fixture
def auth_headers(user):
    return {"Authorization": "Bearer user-jwt"}
