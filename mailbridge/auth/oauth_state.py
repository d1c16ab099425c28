"""
Signed `state` documents for the mailbox connect flow.

The state travels through the browser and the provider consent screen, so it
is HMAC-signed and carries an issued-at time. The PKCE verifier it holds is
sealed with the token vault cipher and never readable by the browser.
"""

import base64
import binascii
import json
import logging
import time
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from mailbridge.security.security_manager import SecurityManager, SecurityManagerError

logger = logging.getLogger(__name__)

DEFAULT_REDIRECT_URL = "/integrations"
FLOW_REDIRECT = "redirect"
FLOW_EXCHANGE = "exchange"


class InvalidStateError(Exception):
    """The state parameter is unreadable, tampered with or expired."""

    def __init__(self, message: str = "Invalid state parameter"):
        super().__init__(message)
        self.message = message


class IncompleteStateError(InvalidStateError):
    def __init__(self):
        super().__init__("Incomplete state data")


class OAuthState(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    state: str
    user_id: str = Field(alias="userId")
    organization_id: str = Field(alias="organizationId")
    provider: str
    redirect_url: str = Field(default=DEFAULT_REDIRECT_URL, alias="redirectUrl")
    app_origin: Optional[str] = Field(default=None, alias="appOrigin")
    flow: str = FLOW_REDIRECT
    verifier: Optional[str] = None
    iat: int = Field(default_factory=lambda: int(time.time()))

    def signing_payload(self) -> bytes:
        document = self.model_dump(by_alias=True)
        return json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _b64decode_json(raw: str) -> Dict[str, Any]:
    try:
        padded = raw + "=" * (-len(raw) % 4)
        data = json.loads(base64.b64decode(padded.encode("ascii"), altchars=b"-_"))
    except (binascii.Error, ValueError, UnicodeError) as e:
        raise InvalidStateError() from e
    if not isinstance(data, dict):
        raise InvalidStateError()
    return data


def encode_state(state: OAuthState, security: SecurityManager,
                 code_verifier: Optional[str] = None) -> str:
    """
    Serialise and sign a state document.

    Args:
        state: State fields; `verifier` is overwritten when code_verifier is given
        security: Vault cipher used for sealing and signing
        code_verifier: Plain PKCE verifier to seal into the state

    Returns:
        Standard base64 of the signed JSON document
    """
    if code_verifier:
        state = state.model_copy(update={"verifier": security.encrypt_token(code_verifier)})
    document = state.model_dump(by_alias=True)
    document["sig"] = security.sign(state.signing_payload())
    return base64.b64encode(json.dumps(document).encode("utf-8")).decode("ascii")


def decode_state(raw: str, security: SecurityManager, ttl_seconds: int,
                 now: Optional[float] = None) -> OAuthState:
    """
    Verify and parse a state document produced by encode_state().

    Raises:
        IncompleteStateError: userId, organizationId or provider missing
        InvalidStateError: bad encoding, signature mismatch or expired
    """
    data = _b64decode_json(raw)

    if not data.get("userId") or not data.get("organizationId") or not data.get("provider"):
        raise IncompleteStateError()

    signature = data.pop("sig", None)
    try:
        state = OAuthState.model_validate(data)
    except ValueError as e:
        raise InvalidStateError() from e

    if not signature or not security.verify_signature(state.signing_payload(), signature):
        logger.warning("[OAUTH] State signature mismatch")
        raise InvalidStateError()

    current = time.time() if now is None else now
    if current - state.iat > ttl_seconds:
        logger.warning(f"[OAUTH] State expired (age={int(current - state.iat)}s)")
        raise InvalidStateError()

    return state


def open_verifier(state: OAuthState, security: SecurityManager) -> Optional[str]:
    """Unseal the PKCE verifier carried by a verified state, if any."""
    if not state.verifier:
        return None
    try:
        return security.decrypt_token(state.verifier)
    except SecurityManagerError as e:
        raise InvalidStateError() from e


def peek_state(raw: Optional[str]) -> Dict[str, Any]:
    """
    Best-effort, unverified read of a state document.

    Only used to pick an error-redirect target and provider label before the
    state has been verified; never trust the result for anything else.
    """
    if not raw:
        return {}
    try:
        return _b64decode_json(raw)
    except InvalidStateError:
        return {}
