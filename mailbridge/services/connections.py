"""
Mailbox connect flow (Gmail / Outlook)

init      -> signed state + PKCE challenge -> provider consent URL
callback  -> server redirect flow, always answers with a 302
exchange  -> SPA flow, JSON answers

Both completions store the tokens encrypted in the vault, upsert the
provider connection (status only, never tokens), create default rows for a
first connection and write one connect_attempts audit row per stage.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import quote, urlparse

import requests

from mailbridge.adapters.base import (
    EmailProvider,
    ProviderError,
    TokenSet,
    UnsupportedProviderError,
    get_provider,
    normalize_provider,
    PROVIDER_GOOGLE,
)
from mailbridge.api.errors import ApiError
from mailbridge.auth.credential_store import TokenVault
from mailbridge.auth.jwt_service import decode_unverified
from mailbridge.auth.oauth_state import (
    DEFAULT_REDIRECT_URL,
    FLOW_EXCHANGE,
    FLOW_REDIRECT,
    IncompleteStateError,
    InvalidStateError,
    OAuthState,
    decode_state,
    encode_state,
    open_verifier,
    peek_state,
)
from mailbridge.auth.pkce import generate_code_challenge, generate_code_verifier, generate_state_nonce
from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore, utc_now_iso
from mailbridge.security.security_manager import SecurityManager, SecurityManagerError
from mailbridge.services.onboarding import initialize_connection_defaults

logger = logging.getLogger(__name__)

LOCAL_HOSTS = ("localhost", "127.0.0.1")


def resolve_app_url(app_origin: Any, config) -> str:
    """
    Origin to send the browser back to.

    Only https origins on an allowed host suffix, or localhost on any
    scheme, are accepted; path and query are dropped. Anything else falls
    back to APP_URL so the callback can never become an open redirect.
    """
    fallback = config.APP_URL
    if not isinstance(app_origin, str) or not app_origin:
        return fallback

    try:
        parsed = urlparse(app_origin)
        host = (parsed.hostname or "").lower()
        port = parsed.port
    except ValueError:
        return fallback

    if not parsed.scheme or not host:
        return fallback

    is_local = host in LOCAL_HOSTS
    is_allowed = any(host.endswith(suffix) for suffix in config.ALLOWED_APP_ORIGIN_SUFFIXES)

    if not is_allowed and not is_local:
        return fallback
    if parsed.scheme != "https" and not is_local:
        return fallback

    origin = f"{parsed.scheme}://{host}"
    if port:
        origin += f":{port}"
    return origin


def safe_redirect_path(redirect_url: Any) -> str:
    """
    In-app path to land on after connecting.

    Only a single-slash relative path is kept. Protocol-relative values,
    backslashes, userinfo markers and schemes all collapse to the default.
    """
    if not isinstance(redirect_url, str) or not redirect_url:
        return DEFAULT_REDIRECT_URL
    if not redirect_url.startswith("/") or redirect_url.startswith("//"):
        return DEFAULT_REDIRECT_URL
    if any(ch in redirect_url for ch in ("@", "\\", ":")):
        return DEFAULT_REDIRECT_URL
    if any(ord(ch) < 0x20 for ch in redirect_url):
        return DEFAULT_REDIRECT_URL
    return redirect_url


def _provider_label(provider: str) -> str:
    return "Google" if provider == PROVIDER_GOOGLE else "Microsoft"


class ConnectionService:
    def __init__(self, config, store: SupabaseStore, security: Optional[SecurityManager],
                 session: Optional[requests.Session] = None):
        self.config = config
        self.store = store
        self.security = security
        self.session = session

    def _provider(self, name: Any) -> EmailProvider:
        return get_provider(name, self.config, session=self.session)

    def _vault(self) -> TokenVault:
        return TokenVault(self.store, self.security)

    def _redirect_uri(self, flow: str) -> str:
        if flow == FLOW_EXCHANGE:
            return self.config.CONNECT_REDIRECT_URI
        return self.config.callback_url

    def _log_attempt(self, state: OAuthState, stage: str, error_code: Optional[str] = None,
                     error_message: Optional[str] = None) -> None:
        self.store.log_connect_attempt({
            "user_id": state.user_id,
            "organization_id": state.organization_id,
            "provider": state.provider,
            "stage": stage,
            "error_code": error_code,
            "error_message": error_message,
            "app_origin": state.app_origin,
            "meta": {"flow": state.flow},
        })

    # ------------------------------------------------------------------
    # oauth-init
    # ------------------------------------------------------------------

    def init(self, provider: Optional[str], user_id: Optional[str], organization_id: Optional[str],
             redirect_url: Optional[str] = None, app_origin: Optional[str] = None,
             flow: Optional[str] = None) -> Dict[str, str]:
        logger.info(f"[OAUTH] Init request for provider={provider}, user={user_id}")

        if not provider or not user_id or not organization_id:
            raise ApiError("Missing required parameters: provider, userId, organizationId", 400)

        try:
            adapter = self._provider(provider)
        except UnsupportedProviderError as e:
            raise ApiError(str(e), 400) from e

        if not adapter.is_configured:
            logger.error(f"[OAUTH] {adapter.name} client id not configured")
            raise ApiError(f"{_provider_label(adapter.name)} OAuth not configured", 500)

        if self.security is None:
            raise ApiError("Server configuration error", 500)

        flow = flow if flow in (FLOW_REDIRECT, FLOW_EXCHANGE) else FLOW_REDIRECT
        code_verifier = generate_code_verifier()
        state = OAuthState(
            state=generate_state_nonce(),
            user_id=user_id,
            organization_id=organization_id,
            provider=adapter.name,
            redirect_url=safe_redirect_path(redirect_url),
            app_origin=app_origin,
            flow=flow,
        )
        encoded = encode_state(state, self.security, code_verifier=code_verifier)

        auth_url = adapter.authorization_url(
            self._redirect_uri(flow), encoded, generate_code_challenge(code_verifier)
        )
        logger.info(f"[OAUTH] Generated {adapter.name} authorization URL (flow={flow})")
        return {"authUrl": auth_url}

    # ------------------------------------------------------------------
    # Shared completion steps
    # ------------------------------------------------------------------

    def _connected_email(self, adapter: EmailProvider, tokens: TokenSet,
                         claims: Optional[Dict[str, Any]]) -> Optional[str]:
        email = (claims or {}).get("email")
        if email:
            return email
        return adapter.fetch_email(tokens.access_token)

    def _save_connection(self, state: OAuthState, connected_email: Optional[str],
                         with_calendar: bool) -> Optional[Dict[str, Any]]:
        now = utc_now_iso()
        row = {
            "user_id": state.user_id,
            "organization_id": state.organization_id,
            "provider": state.provider,
            "is_connected": True,
            "connected_at": now,
            "updated_at": now,
        }
        if connected_email or with_calendar:
            row["connected_email"] = connected_email
        if with_calendar:
            row["calendar_connected"] = True
            row["calendar_connected_at"] = now
        return self.store.upsert_connection(row)

    # ------------------------------------------------------------------
    # oauth-callback (server redirect flow)
    # ------------------------------------------------------------------

    def _error_location(self, message: str, app_url: Optional[str] = None,
                        provider: Optional[str] = None) -> str:
        resolved = app_url or self.config.APP_URL
        location = f"{resolved}/integrations?error={quote(message, safe='')}"
        if provider:
            location += f"&provider={quote(str(provider), safe='')}"
        return location

    def complete_callback(self, code: Optional[str], raw_state: Optional[str],
                          error: Optional[str] = None,
                          error_description: Optional[str] = None) -> str:
        """Run the redirect flow and return the Location to send the browser to."""
        logger.info("[OAUTH] Callback received")

        early = peek_state(raw_state)
        early_provider = early.get("provider")
        early_app_url = resolve_app_url(early.get("appOrigin"), self.config)

        if error:
            logger.error(f"[OAUTH] Provider returned error: {error} - {error_description}")
            return self._error_location(
                f"OAuth failed: {error_description or error}", early_app_url, early_provider
            )

        if not code or not raw_state:
            logger.error("[OAUTH] Missing code or state parameter")
            return self._error_location("Missing authorization code or state", early_app_url, early_provider)

        if self.security is None:
            logger.error("[OAUTH] TOKEN_ENCRYPTION_KEY not configured")
            return self._error_location("Server configuration error", early_app_url, early_provider)

        try:
            state = decode_state(raw_state, self.security, self.config.OAUTH_STATE_TTL_SECONDS)
            code_verifier = open_verifier(state, self.security)
        except InvalidStateError as e:
            logger.error(f"[OAUTH] Rejected state: {e.message}")
            return self._error_location(e.message)

        app_url = resolve_app_url(state.app_origin, self.config)
        logger.info(f"[OAUTH] Processing callback for provider={state.provider}, user={state.user_id}")

        try:
            return self._finish_callback(state, code, code_verifier, app_url)
        except Exception as e:
            logger.exception("[OAUTH] Callback failed unexpectedly")
            return self._error_location(str(e) or "Unknown error", app_url, state.provider)

    def _finish_callback(self, state: OAuthState, code: str, code_verifier: Optional[str],
                         app_url: str) -> str:
        self._log_attempt(state, "callback_received")

        try:
            adapter = self._provider(state.provider)
        except UnsupportedProviderError as e:
            self._log_attempt(state, "callback_error", "unsupported_provider")
            return self._error_location(str(e), app_url, state.provider)

        try:
            tokens = adapter.exchange_code(code, self._redirect_uri(state.flow), code_verifier)
        except ProviderError as e:
            self._log_attempt(state, "callback_error", "token_exchange_failed", str(e))
            return self._error_location("Failed to exchange authorization code", app_url, state.provider)

        logger.info(f"[OAUTH] Obtained tokens for {state.provider}")

        claims = decode_unverified(tokens.id_token) if tokens.id_token else None
        connected_email = self._connected_email(adapter, tokens, claims)

        try:
            self._vault().save(state.user_id, state.provider, tokens)
        except (SecurityManagerError, StoreError) as e:
            logger.error(f"[OAUTH] Token vault error: {e}")
            self._log_attempt(state, "callback_error", "vault_save_failed")
            return self._error_location("Failed to save tokens securely", app_url, state.provider)

        try:
            existing = self.store.get_connection(state.user_id, state.provider)
            connection = self._save_connection(state, connected_email, with_calendar=False)
        except StoreError as e:
            logger.error(f"[OAUTH] Connection save error: {e}")
            existing, connection = None, None
        if not connection:
            self._log_attempt(state, "callback_error", "connection_save_failed")
            return self._error_location("Failed to save connection", app_url, state.provider)

        if not existing:
            initialize_connection_defaults(self.store, state.user_id, state.organization_id, connection["id"])

        logger.info(f"[OAUTH] Connection saved for {state.provider} (tokens encrypted in vault)")
        self._log_attempt(state, "callback_success")
        return f"{app_url}{safe_redirect_path(state.redirect_url)}?connected={state.provider}"

    # ------------------------------------------------------------------
    # oauth-exchange (SPA flow)
    # ------------------------------------------------------------------

    def exchange(self, code: Optional[str], raw_state: Optional[str]) -> Dict[str, Any]:
        logger.info("[OAUTH] Exchange request (mailbox connect flow)")

        if not code or not raw_state:
            raise ApiError("Missing code or state", 400)

        if self.security is None:
            logger.error("[OAUTH] TOKEN_ENCRYPTION_KEY not configured")
            raise ApiError("Server configuration error", 500)

        try:
            state = decode_state(raw_state, self.security, self.config.OAUTH_STATE_TTL_SECONDS)
            code_verifier = open_verifier(state, self.security)
        except IncompleteStateError as e:
            raise ApiError(e.message, 400) from e
        except InvalidStateError as e:
            raise ApiError("Invalid state parameter", 400) from e

        logger.info(f"[OAUTH] Exchange for provider={state.provider}, user={state.user_id}")
        self._log_attempt(state, "exchange_received")

        if normalize_provider(state.provider) is None:
            self._log_attempt(state, "exchange_error", "unsupported_provider")
            raise ApiError(f"Unsupported provider: {state.provider}", 400)
        adapter = self._provider(state.provider)

        try:
            tokens = adapter.exchange_code(code, self._redirect_uri(state.flow), code_verifier)
        except ProviderError as e:
            self._log_attempt(state, "exchange_error", "token_exchange_failed", str(e))
            raise ApiError("Failed to exchange authorization code", 502) from e

        if not tokens.id_token:
            logger.error("[OAUTH] id_token missing from token response")
            self._log_attempt(state, "exchange_error", "id_token_missing")
            raise ApiError("Identity token missing from provider response", 502)

        claims = decode_unverified(tokens.id_token)
        if claims is None:
            self._log_attempt(state, "exchange_error", "id_token_decode_failed")
            raise ApiError("Invalid identity token from provider", 502)

        connected_email = self._connected_email(adapter, tokens, claims)
        logger.info(f"[OAUTH] Connected email resolved: {'yes' if connected_email else 'no'}")

        try:
            self._vault().save(state.user_id, state.provider, tokens)
        except (SecurityManagerError, StoreError) as e:
            logger.error(f"[OAUTH] Vault error: {e}")
            self._log_attempt(state, "exchange_error", "vault_save_failed")
            raise ApiError("Failed to save tokens securely", 500) from e

        try:
            existing = self.store.get_connection(state.user_id, state.provider)
            connection = self._save_connection(state, connected_email, with_calendar=True)
        except StoreError as e:
            logger.error(f"[OAUTH] DB error: {e}")
            existing, connection = None, None
        if not connection:
            self._log_attempt(state, "exchange_error", "connection_save_failed")
            raise ApiError("Failed to save connection", 500)

        is_new = not existing
        logger.info(f"[OAUTH] Connection saved: {connection['id']} (new={is_new})")
        if is_new:
            initialize_connection_defaults(self.store, state.user_id, state.organization_id, connection["id"])

        self._log_attempt(state, "exchange_success")
        return {
            "success": True,
            "provider": state.provider,
            "connectedEmail": connected_email,
            "redirectUrl": safe_redirect_path(state.redirect_url),
        }

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def list_connections(self, user_id: str):
        return {"connections": self.store.list_connections(user_id)}

    def disconnect(self, user_id: str, provider: Optional[str]) -> Dict[str, Any]:
        canonical = normalize_provider(provider)
        if canonical is None:
            raise ApiError(f"Unsupported provider: {provider}", 400)

        self._vault().delete(user_id, canonical)
        self.store.update_rows(
            "provider_connections",
            {"is_connected": False, "updated_at": utc_now_iso()},
            {"user_id": user_id, "provider": canonical},
        )
        logger.info(f"[OAUTH] Disconnected {canonical} for user {user_id}")
        return {"success": True, "provider": canonical}
