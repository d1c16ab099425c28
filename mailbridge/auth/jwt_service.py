"""
JWT helpers

Two kinds of identity tokens pass through the service:
- provider id_tokens from the connect flow, read without verification
  (they arrive straight from the provider token endpoint over TLS)
- Cognito ID tokens from the SPA, verified against the user pool JWKS
"""

import logging
import time
from typing import Any, Dict, Optional

import jwt
from jwt import PyJWKClient

logger = logging.getLogger(__name__)

JWKS_CACHE_SECONDS = 3600


class TokenVerificationError(Exception):
    """An identity token failed verification."""

    def __init__(self, message: str, expired: bool = False):
        super().__init__(message)
        self.message = message
        self.expired = expired


def decode_unverified(token: str) -> Optional[Dict[str, Any]]:
    """
    Read a JWT payload without checking its signature.

    Returns:
        Claims dict, or None when the token is not a readable JWT
    """
    if not isinstance(token, str) or token.count(".") != 2:
        return None
    try:
        claims = jwt.decode(token.strip(), options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    return claims if isinstance(claims, dict) else None


def is_expired(claims: Dict[str, Any], now: Optional[float] = None) -> bool:
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return False
    return exp < (time.time() if now is None else now)


class CognitoTokenVerifier:
    """
    Verifies Cognito ID tokens: RS256 signature against the pool JWKS,
    expiry, issuer, audience (app client id) and token_use == "id".
    """

    def __init__(self, issuer: str, client_id: str, jwks_url: str,
                 jwks_client: Optional[PyJWKClient] = None):
        self.issuer = issuer
        self.client_id = client_id
        self.jwks_client = jwks_client or PyJWKClient(
            jwks_url, cache_keys=True, lifespan=JWKS_CACHE_SECONDS
        )

    @classmethod
    def from_config(cls, config) -> "CognitoTokenVerifier":
        return cls(config.cognito_issuer, config.COGNITO_CLIENT_ID, config.cognito_jwks_url)

    def verify(self, token: str, require_email: bool = False) -> Dict[str, Any]:
        """
        Verify a Cognito ID token.

        Raises:
            TokenVerificationError: on any failure; `expired` is set for an
            expired but otherwise well-formed token
        """
        try:
            signing_key = self.jwks_client.get_signing_key_from_jwt(token)
            claims = jwt.decode(
                token,
                signing_key.key,
                algorithms=["RS256"],
                audience=self.client_id,
                issuer=self.issuer,
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenVerificationError("ID token has expired", expired=True) from e
        except jwt.PyJWKClientError as e:
            logger.warning(f"[COGNITO] Signing key lookup failed: {e}")
            raise TokenVerificationError(str(e)) from e
        except jwt.InvalidTokenError as e:
            logger.warning(f"[COGNITO] ID token rejected: {e}")
            raise TokenVerificationError(str(e)) from e

        if claims.get("token_use") != "id":
            raise TokenVerificationError(
                f"Invalid token_use: expected 'id', got '{claims.get('token_use')}'"
            )
        if require_email and not claims.get("email"):
            raise TokenVerificationError("ID token missing 'email' claim")

        return claims
