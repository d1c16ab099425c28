"""
Configuration Management with Environment Validation

Centralised configuration for the mailbridge functions service. Values are
read from the environment (a local .env file is loaded first) and validated
at startup so a misconfigured deployment fails immediately instead of
failing on the first OAuth callback.
"""

import os
import logging
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """
    Application configuration with environment validation.
    Fails fast if critical variables are missing in production.
    """

    def __init__(self):
        # Environment
        self.ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FORMAT: str = os.getenv("LOG_FORMAT", "json")

        # Database platform
        self.SUPABASE_URL: str = os.getenv("SUPABASE_URL", "")
        self.SUPABASE_SERVICE_ROLE_KEY: str = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
        self.SUPABASE_ANON_KEY: str = os.getenv("SUPABASE_ANON_KEY", "")

        # Token vault
        self.TOKEN_ENCRYPTION_KEY: str = os.getenv("TOKEN_ENCRYPTION_KEY", "")
        self.OAUTH_STATE_TTL_SECONDS: int = int(os.getenv("OAUTH_STATE_TTL_SECONDS", "600"))

        # Public URLs
        self.PUBLIC_API_URL: str = os.getenv("PUBLIC_API_URL", "http://localhost:8000").rstrip("/")
        self.CONNECT_REDIRECT_URI: str = os.getenv(
            "CONNECT_REDIRECT_URI", "http://localhost:5173/auth/callback"
        )
        self.APP_URL: str = os.getenv("APP_URL", "http://localhost:5173").rstrip("/")
        self.ALLOWED_APP_ORIGIN_SUFFIXES: List[str] = _env_list(
            "ALLOWED_APP_ORIGIN_SUFFIXES", ".lovable.app,.lovableproject.com"
        )

        # Email provider OAuth
        self.GOOGLE_CLIENT_ID: str = os.getenv("GOOGLE_CLIENT_ID", "")
        self.GOOGLE_CLIENT_SECRET: str = os.getenv("GOOGLE_CLIENT_SECRET", "")
        self.MICROSOFT_CLIENT_ID: str = os.getenv("MICROSOFT_CLIENT_ID", "")
        self.MICROSOFT_CLIENT_SECRET: str = os.getenv("MICROSOFT_CLIENT_SECRET", "")

        # Cognito (primary login)
        self.COGNITO_DOMAIN: str = os.getenv("COGNITO_DOMAIN", "").rstrip("/")
        self.COGNITO_CLIENT_ID: str = os.getenv("COGNITO_CLIENT_ID", "")
        self.COGNITO_USER_POOL_ID: str = os.getenv("COGNITO_USER_POOL_ID", "")
        self.COGNITO_REGION: str = os.getenv("COGNITO_REGION", "us-west-2")
        self.COGNITO_REDIRECT_URI: str = os.getenv(
            "COGNITO_REDIRECT_URI", "http://localhost:5173/auth/callback"
        )
        self.COGNITO_LOGOUT_URI: str = os.getenv("COGNITO_LOGOUT_URI", "http://localhost:5173/")
        self.COGNITO_VERIFY_ID_TOKEN: bool = _env_bool("COGNITO_VERIFY_ID_TOKEN", True)

        # AI
        self.MISTRAL_API_KEY: str = os.getenv("MISTRAL_API_KEY", "")
        self.MISTRAL_DRAFT_MODEL: str = os.getenv("MISTRAL_DRAFT_MODEL", "mistral-large-latest")
        self.OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
        self.TRANSCRIPTION_URL: str = os.getenv(
            "TRANSCRIPTION_URL", "https://api.openai.com/v1/audio/transcriptions"
        )
        self.TRANSCRIPTION_MODEL: str = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")

        # Scheduler: bearer secret for the all-users AI inbox run
        self.CRON_SECRET: str = os.getenv("CRON_SECRET", "")

        # Billing
        self.STRIPE_SECRET_KEY: str = os.getenv("STRIPE_SECRET_KEY", "")
        self.STRIPE_PRICE_STARTER: str = os.getenv("STRIPE_PRICE_STARTER", "")
        self.STRIPE_PRICE_PRO: str = os.getenv("STRIPE_PRICE_PRO", "")
        self.STRIPE_PRICE_ENTERPRISE: str = os.getenv("STRIPE_PRICE_ENTERPRISE", "")

    def validate(self) -> None:
        """
        Validate critical environment variables at startup.
        Raises RuntimeError in production if any required variables are missing.

        Optional integrations (providers, AI, billing) only produce warnings;
        the matching endpoints answer 500 "not configured" instead.
        """
        missing = []
        warnings = []

        if not self.SUPABASE_URL:
            missing.append("SUPABASE_URL")
        if not self.SUPABASE_SERVICE_ROLE_KEY:
            missing.append("SUPABASE_SERVICE_ROLE_KEY")
        if not self.TOKEN_ENCRYPTION_KEY:
            missing.append("TOKEN_ENCRYPTION_KEY")

        if not self.GOOGLE_CLIENT_ID or not self.GOOGLE_CLIENT_SECRET:
            warnings.append("GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET (Gmail connect disabled)")
        if not self.MICROSOFT_CLIENT_ID or not self.MICROSOFT_CLIENT_SECRET:
            warnings.append("MICROSOFT_CLIENT_ID/MICROSOFT_CLIENT_SECRET (Outlook connect disabled)")
        if not self.COGNITO_DOMAIN or not self.COGNITO_CLIENT_ID:
            warnings.append("COGNITO_DOMAIN/COGNITO_CLIENT_ID (hosted login disabled)")
        if self.COGNITO_VERIFY_ID_TOKEN and not self.COGNITO_USER_POOL_ID:
            warnings.append("COGNITO_USER_POOL_ID (ID token verification will reject every token)")
        if not self.MISTRAL_API_KEY:
            warnings.append("MISTRAL_API_KEY (AI drafting disabled)")
        if not self.OPENAI_API_KEY:
            warnings.append("OPENAI_API_KEY (voice transcription disabled)")
        if not self.CRON_SECRET:
            warnings.append("CRON_SECRET (scheduled AI inbox runs disabled)")
        if not self.STRIPE_SECRET_KEY:
            warnings.append("STRIPE_SECRET_KEY (admin plan assignment disabled)")

        if missing:
            message = "Missing required environment variables: " + ", ".join(missing)
            if self.is_production():
                raise RuntimeError(message)
            logger.error(f"[CONFIG] {message}")

        for warning in warnings:
            logger.warning(f"[CONFIG] Optional variable not set: {warning}")

    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.ENVIRONMENT.lower() == "production"

    @property
    def callback_url(self) -> str:
        """Server-side redirect URI for the connect flow."""
        return f"{self.PUBLIC_API_URL}/functions/v1/oauth-callback"

    @property
    def cognito_issuer(self) -> str:
        return f"https://cognito-idp.{self.COGNITO_REGION}.amazonaws.com/{self.COGNITO_USER_POOL_ID}"

    @property
    def cognito_jwks_url(self) -> str:
        return f"{self.cognito_issuer}/.well-known/jwks.json"

    def stripe_price_for(self, plan: str) -> Optional[str]:
        prices = {
            "starter": self.STRIPE_PRICE_STARTER,
            "pro": self.STRIPE_PRICE_PRO,
            "enterprise": self.STRIPE_PRICE_ENTERPRISE,
        }
        return prices.get(plan) or None


_config_instance: Optional[Config] = None


def get_config() -> Config:
    """Get or create the process-wide Config instance."""
    global _config_instance

    if _config_instance is None:
        _config_instance = Config()

    return _config_instance
