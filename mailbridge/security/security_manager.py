"""
SECURITY MANAGER: OAuth Token Encryption & Secrets Governance

ZERO-TRUST PRINCIPLE:
- All OAuth tokens (access + refresh) are encrypted at rest
- Decryption happens only in-memory at API call time
- No plaintext tokens in logs, databases, or persistent storage
- The PKCE verifier carried in the connect `state` is sealed with the same key

CIPHER:
AES-256-GCM. The key is the UTF-8 encoding of TOKEN_ENCRYPTION_KEY,
right-padded with "0" and cut to 32 bytes. A ciphertext is the standard
base64 of iv(12) || ciphertext || tag(16), which is the format already
stored in oauth_token_vault.
"""

import base64
import binascii
import hashlib
import hmac
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

IV_LENGTH = 12
KEY_LENGTH = 32


class SecurityManagerError(Exception):
    """Raised when security manager encounters a fatal error"""
    pass


def derive_key(secret: str) -> bytes:
    """Pad/truncate the configured secret to a 32-byte AES key."""
    return secret.ljust(KEY_LENGTH, "0").encode("utf-8")[:KEY_LENGTH]


class SecurityManager:
    """
    Cryptographic vault for OAuth token encryption using AES-256-GCM.

    Responsibilities:
    - Load and validate TOKEN_ENCRYPTION_KEY
    - Encrypt OAuth tokens before Supabase storage
    - Decrypt OAuth tokens at service layer call time
    - Sign connect-flow state documents (HMAC-SHA256)
    """

    def __init__(self, key: Optional[str] = None):
        """
        Initialize SecurityManager and load encryption key.

        Args:
            key: Explicit secret; defaults to the TOKEN_ENCRYPTION_KEY env var

        Raises:
            SecurityManagerError: If the key is missing or empty
        """
        self._cipher: Optional[AESGCM] = None
        self._signing_key: Optional[bytes] = None
        self._key_loaded = False

        self.load_or_fail_key(key)

    def load_or_fail_key(self, key: Optional[str] = None) -> None:
        """
        Load the vault key and initialize the AES-GCM cipher.

        Raises:
            SecurityManagerError: If key is missing or empty
        """
        if key is None:
            key = os.getenv("TOKEN_ENCRYPTION_KEY")

        if not key:
            logger.critical("[FAIL] [SECURITY] TOKEN_ENCRYPTION_KEY environment variable is MISSING")
            raise SecurityManagerError(
                "TOKEN_ENCRYPTION_KEY is required but not set. Tokens cannot be stored without encryption."
            )

        if not key.strip():
            logger.critical("[FAIL] [SECURITY] TOKEN_ENCRYPTION_KEY is empty")
            raise SecurityManagerError("TOKEN_ENCRYPTION_KEY cannot be empty")

        raw_key = derive_key(key)
        self._cipher = AESGCM(raw_key)
        # state signatures use a derived key, never the AES key itself
        self._signing_key = hashlib.sha256(b"mailbridge-oauth-state:" + raw_key).digest()
        self._key_loaded = True
        logger.info("[OK] [SECURITY] Encryption key loaded successfully")

    def encrypt_token(self, token: str) -> str:
        """
        Encrypt an OAuth token.

        Args:
            token: The plaintext OAuth token (access or refresh)

        Returns:
            Base64 of iv || ciphertext || tag (safe for database storage)

        Raises:
            SecurityManagerError: If encryption fails or token is empty
        """
        if not self._key_loaded or self._cipher is None:
            logger.critical("[FAIL] [SECURITY] Attempted to encrypt token with uninitialized cipher")
            raise SecurityManagerError("Cipher not initialized. Cannot encrypt tokens.")

        if not token or not token.strip():
            raise SecurityManagerError("Cannot encrypt empty token")

        iv = os.urandom(IV_LENGTH)
        sealed = self._cipher.encrypt(iv, token.encode("utf-8"), None)

        logger.debug("[OK] [SECURITY] Token encrypted successfully")
        return base64.b64encode(iv + sealed).decode("ascii")

    def decrypt_token(self, encrypted_token: str) -> str:
        """
        Decrypt an OAuth token at API call time (in-memory only).

        Args:
            encrypted_token: Base64 ciphertext from the database

        Returns:
            Plaintext OAuth token for immediate API use

        Raises:
            SecurityManagerError: If decryption fails or token is invalid
        """
        if not self._key_loaded or self._cipher is None:
            logger.critical("[FAIL] [SECURITY] Attempted to decrypt token with uninitialized cipher")
            raise SecurityManagerError("Cipher not initialized. Cannot decrypt tokens.")

        if not encrypted_token or not encrypted_token.strip():
            raise SecurityManagerError("Cannot decrypt empty token")

        try:
            combined = base64.b64decode(encrypted_token, validate=True)
        except (binascii.Error, ValueError) as e:
            logger.error("[FAIL] [SECURITY] Token decryption failed: not valid base64")
            raise SecurityManagerError("Token is invalid or corrupted. Decryption failed.") from e

        if len(combined) <= IV_LENGTH + 16:
            raise SecurityManagerError("Token is invalid or corrupted. Decryption failed.")

        iv, sealed = combined[:IV_LENGTH], combined[IV_LENGTH:]
        try:
            plaintext = self._cipher.decrypt(iv, sealed, None)
        except InvalidTag as e:
            logger.error("[FAIL] [SECURITY] Token decryption failed: Invalid or corrupted token")
            raise SecurityManagerError("Token is invalid or corrupted. Decryption failed.") from e

        logger.debug("[OK] [SECURITY] Token decrypted successfully")
        return plaintext.decode("utf-8")

    def sign(self, payload: bytes) -> str:
        """Hex HMAC-SHA256 of payload under the state-signing key."""
        if self._signing_key is None:
            raise SecurityManagerError("Cipher not initialized. Cannot sign state.")
        return hmac.new(self._signing_key, payload, hashlib.sha256).hexdigest()

    def verify_signature(self, payload: bytes, signature: str) -> bool:
        return hmac.compare_digest(self.sign(payload), signature or "")


_security_manager_instance: Optional[SecurityManager] = None


def get_security_manager(key: Optional[str] = None) -> SecurityManager:
    """
    Get or create the singleton SecurityManager instance.

    Args:
        key: Vault secret used on first creation (defaults to the env var)

    Raises:
        SecurityManagerError: If initialization fails
    """
    global _security_manager_instance

    if _security_manager_instance is None:
        logger.info("[SECURITY] Initializing SecurityManager singleton...")
        _security_manager_instance = SecurityManager(key)

    return _security_manager_instance
