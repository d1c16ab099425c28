"""
FastAPI dependencies shared by the function routers.

Every collaborator (config, store, vault cipher, HTTP session) is resolved
through a dependency so tests can swap it with app.dependency_overrides.
"""

import hmac
import logging
from typing import Optional

import requests
from fastapi import Depends, Header

from mailbridge.api.errors import ApiError
from mailbridge.auth.jwt_service import CognitoTokenVerifier
from mailbridge.config import Config, get_config
from mailbridge.engine.drafter import EmailDrafter
from mailbridge.engine.nlp_engine import MistralEngine
from mailbridge.infrastructure.supabase_store import SupabaseStore
from mailbridge.security.security_manager import (
    SecurityManager,
    SecurityManagerError,
    get_security_manager,
)

logger = logging.getLogger(__name__)

_store: Optional[SupabaseStore] = None
_session: Optional[requests.Session] = None
_verifier: Optional[CognitoTokenVerifier] = None


def get_app_config() -> Config:
    return get_config()


def get_store(config: Config = Depends(get_app_config)) -> SupabaseStore:
    global _store
    if _store is None:
        _store = SupabaseStore(url=config.SUPABASE_URL, key=config.SUPABASE_SERVICE_ROLE_KEY)
    return _store


def get_security(config: Config = Depends(get_app_config)) -> Optional[SecurityManager]:
    """Vault cipher, or None when TOKEN_ENCRYPTION_KEY is unusable."""
    try:
        return get_security_manager(config.TOKEN_ENCRYPTION_KEY)
    except SecurityManagerError as e:
        logger.error(f"[SECURITY] Vault unavailable: {e}")
        return None


def get_http_session() -> requests.Session:
    global _session
    if _session is None:
        _session = requests.Session()
    return _session


def get_cognito_verifier(config: Config = Depends(get_app_config)) -> CognitoTokenVerifier:
    """Process-wide verifier so the JWKS client and its key cache are reused."""
    global _verifier
    if _verifier is None:
        _verifier = CognitoTokenVerifier.from_config(config)
    return _verifier


def get_drafter(config: Config = Depends(get_app_config)) -> EmailDrafter:
    return EmailDrafter(MistralEngine(api_key=config.MISTRAL_API_KEY), model=config.MISTRAL_DRAFT_MODEL)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def require_user(authorization: Optional[str] = Header(default=None),
                 store: SupabaseStore = Depends(get_store)):
    """Supabase auth user behind the caller's bearer token."""
    if not authorization:
        raise ApiError("Missing authorization header", 401)
    token = bearer_token(authorization)
    user = store.get_auth_user(token) if token else None
    if user is None:
        raise ApiError("Unauthorized", 401)
    return user


def require_super_admin(authorization: Optional[str] = Header(default=None),
                        store: SupabaseStore = Depends(get_store)):
    token = bearer_token(authorization)
    caller = store.get_auth_user(token) if token else None
    if caller is None:
        raise ApiError("Unauthorized", 401)
    if not store.is_super_admin(caller.id):
        raise ApiError("Forbidden: super_admin only", 403)
    return caller


def require_cron_secret(authorization: Optional[str], config: Config) -> None:
    """Scheduler calls carry Authorization: Bearer <CRON_SECRET>."""
    token = bearer_token(authorization)
    if not config.CRON_SECRET or not token or not hmac.compare_digest(token, config.CRON_SECRET):
        logger.warning("[AUTH] Scheduled run rejected: bad or missing cron secret")
        raise ApiError("Unauthorized", 401)
