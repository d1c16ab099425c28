"""
PKCE helpers (RFC 7636) shared by the provider connect flow and the
Cognito hosted-UI login.
"""

import base64
import hashlib
import re
import secrets
import uuid

_VERIFIER_PATTERN = re.compile(r"^[A-Za-z0-9\-._~]{43,128}$")


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code_verifier.
    32 random bytes, base64url without padding: always 43 characters.
    """
    return _base64url(secrets.token_bytes(32))


def generate_code_challenge(code_verifier: str) -> str:
    """
    Derive the S256 code_challenge.
    Per RFC 7636: BASE64URL(SHA256(ASCII(code_verifier)))
    """
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return _base64url(digest)


def is_valid_code_verifier(code_verifier) -> bool:
    """43-128 characters from [A-Z][a-z][0-9]-._~"""
    if not isinstance(code_verifier, str):
        return False
    return bool(_VERIFIER_PATTERN.match(code_verifier))


def generate_state_nonce() -> str:
    """Random CSRF nonce for the `state` parameter."""
    return str(uuid.uuid4())
