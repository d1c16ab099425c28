"""
Cognito hosted-UI login (public SPA client, PKCE, no client secret).
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests

from mailbridge.api.errors import ApiError
from mailbridge.auth.pkce import (
    generate_code_challenge,
    generate_code_verifier,
    generate_state_nonce,
    is_valid_code_verifier,
)

logger = logging.getLogger(__name__)

SCOPES = "openid email profile"
HTTP_TIMEOUT = 10

# Identity provider names as configured in the user pool
IDENTITY_PROVIDERS = {
    "google": "Google",
    "microsoft": "Microsoft",
}


class CognitoClient:
    def __init__(self, config, session: Optional[requests.Session] = None):
        self.config = config
        self.session = session or requests.Session()

    def _require_configured(self) -> None:
        if not self.config.COGNITO_DOMAIN or not self.config.COGNITO_CLIENT_ID:
            raise ApiError("Cognito login not configured", 500)

    def authorize(self, identity_provider: Optional[str] = None) -> Dict[str, str]:
        """
        Build the hosted-UI authorize URL.

        Returns:
            authUrl, codeVerifier and state; the SPA keeps the verifier for
            the token call after the redirect.
        """
        self._require_configured()

        code_verifier = generate_code_verifier()
        state = generate_state_nonce()
        params = {
            "client_id": self.config.COGNITO_CLIENT_ID,
            "response_type": "code",
            "scope": SCOPES,
            "redirect_uri": self.config.COGNITO_REDIRECT_URI,
            "code_challenge_method": "S256",
            "code_challenge": generate_code_challenge(code_verifier),
            "state": state,
        }
        idp = IDENTITY_PROVIDERS.get((identity_provider or "").lower())
        if idp:
            params["identity_provider"] = idp

        logger.info(f"[COGNITO] Authorize URL issued (identity_provider={idp or 'default'})")
        return {
            "authUrl": f"{self.config.COGNITO_DOMAIN}/oauth2/authorize?{urlencode(params)}",
            "codeVerifier": code_verifier,
            "state": state,
        }

    def exchange_code(self, code: Optional[str], code_verifier: Optional[str]) -> Dict[str, Any]:
        """
        Trade the hosted-UI authorization code for Cognito tokens.

        Raises:
            ApiError: 400 on bad input, 502 when Cognito refuses
        """
        self._require_configured()

        if not code:
            raise ApiError("Missing code", 400)
        if not is_valid_code_verifier(code_verifier):
            raise ApiError("Invalid code verifier", 400)

        try:
            response = self.session.post(
                f"{self.config.COGNITO_DOMAIN}/oauth2/token",
                data={
                    "grant_type": "authorization_code",
                    "client_id": self.config.COGNITO_CLIENT_ID,
                    "code": code,
                    "redirect_uri": self.config.COGNITO_REDIRECT_URI,
                    "code_verifier": code_verifier,
                },
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"[COGNITO] Token endpoint unreachable: {type(e).__name__}")
            raise ApiError("Failed to exchange authorization code", 502) from e

        if not response.ok:
            logger.error(f"[COGNITO] Token exchange failed: {response.status_code} {response.text[:300]}")
            raise ApiError("Failed to exchange authorization code", 502)

        tokens = response.json()
        if not isinstance(tokens.get("id_token"), str) or tokens["id_token"].count(".") != 2:
            raise ApiError("No valid ID token received from Cognito", 502)

        logger.info(f"[COGNITO] Token exchange successful (keys={sorted(tokens.keys())})")
        return tokens

    def logout_url(self) -> str:
        self._require_configured()
        params = {
            "client_id": self.config.COGNITO_CLIENT_ID,
            "logout_uri": self.config.COGNITO_LOGOUT_URI,
        }
        return f"{self.config.COGNITO_DOMAIN}/logout?{urlencode(params)}"
