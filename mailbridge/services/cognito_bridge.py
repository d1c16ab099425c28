"""
Cognito -> Supabase session bridge.

The SPA signs in through the Cognito hosted UI and posts the resulting ID
token here. The matching Supabase auth user is found or created (with a
bootstrapped workspace on first sign-in) and a one-time magic-link token
hash is returned for the SPA to open a Supabase session with.
"""

import logging
from typing import Any, Dict, Optional

from mailbridge.api.errors import ApiError
from mailbridge.auth.jwt_service import (
    CognitoTokenVerifier,
    TokenVerificationError,
    decode_unverified,
    is_expired,
)
from mailbridge.infrastructure.supabase_store import SupabaseStore
from mailbridge.services.onboarding import bootstrap_new_user

logger = logging.getLogger(__name__)


def full_name_from_claims(claims: Dict[str, Any], email: str) -> str:
    if claims.get("name"):
        return claims["name"]
    joined = " ".join(part for part in (claims.get("given_name"), claims.get("family_name")) if part)
    return joined or email.split("@")[0]


def infer_auth_provider(claims: Dict[str, Any]) -> str:
    """Federated identity provider behind a Cognito token: google, microsoft or cognito."""
    identities = claims.get("identities")
    if isinstance(identities, list) and identities and isinstance(identities[0], dict):
        provider_name = (identities[0].get("providerName") or "").lower()
        if provider_name:
            if "google" in provider_name:
                return "google"
            if any(marker in provider_name for marker in ("microsoft", "azure", "entra")):
                return "microsoft"
            return provider_name

    issuer = claims.get("iss") or ""
    if "google" in issuer:
        return "google"
    if "microsoft" in issuer or "login.microsoftonline" in issuer:
        return "microsoft"
    return "cognito"


class CognitoUserBridge:
    def __init__(self, config, store: SupabaseStore,
                 verifier: Optional[CognitoTokenVerifier] = None):
        self.config = config
        self.store = store
        self._verifier = verifier

    @property
    def verifier(self) -> CognitoTokenVerifier:
        if self._verifier is None:
            self._verifier = CognitoTokenVerifier.from_config(self.config)
        return self._verifier

    def _claims(self, id_token: str) -> Dict[str, Any]:
        if self.config.COGNITO_VERIFY_ID_TOKEN:
            try:
                claims = self.verifier.verify(id_token)
            except TokenVerificationError as e:
                if e.expired:
                    raise ApiError("ID token has expired", 401)
                raise ApiError(f"Unauthorized: {e.message}", 401)
            if not claims.get("email"):
                raise ApiError("Invalid ID token: missing email claim", 400)
            return claims

        claims = decode_unverified(id_token)
        if not claims or not claims.get("email"):
            raise ApiError("Invalid ID token: missing email claim", 400)
        if is_expired(claims):
            raise ApiError("ID token has expired", 401)
        return claims

    def bridge(self, id_token: Optional[str]) -> Dict[str, Any]:
        """
        Returns:
            {token_hash, type: "magiclink", user_id, is_new_user}
        """
        if not id_token:
            raise ApiError("Missing id_token", 400)

        claims = self._claims(id_token)
        email = claims["email"].lower().strip()
        full_name = full_name_from_claims(claims, email)
        auth_provider = infer_auth_provider(claims)
        logger.info(f"[COGNITO] Bridge: email={email}, provider={auth_provider}")

        existing_user = self.store.find_auth_user_by_email(email)
        if existing_user is not None:
            user_id = existing_user.id
            logger.info(f"[COGNITO] Found existing user: {user_id}")
        else:
            try:
                new_user = self.store.create_auth_user(email, {
                    "full_name": full_name,
                    "cognito_sub": claims.get("sub"),
                    "auth_provider": auth_provider,
                })
            except Exception as e:
                logger.error(f"[COGNITO] Failed to create user: {e}")
                raise ApiError(f"Failed to create user: {e}", 500)
            user_id = new_user.id
            logger.info(f"[COGNITO] Created new user: {user_id}")
            bootstrap_new_user(self.store, user_id, email, full_name)

        try:
            token_hash = self.store.generate_magic_link_hash(email)
        except Exception as e:
            logger.error(f"[COGNITO] Failed to generate session link: {e}")
            raise ApiError("Failed to generate session", 500)
        if not token_hash:
            raise ApiError("No token hash in generated link", 500)

        logger.info(f"[OK] [COGNITO] Session token generated for user {user_id}")
        return {
            "token_hash": token_hash,
            "type": "magiclink",
            "user_id": user_id,
            "is_new_user": existing_user is None,
        }
