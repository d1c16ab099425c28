from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
import logging

from mailbridge.adapters.base import EmailProvider, ProviderError, TokenSet
from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore, utc_now_iso
from mailbridge.security.security_manager import SecurityManager, SecurityManagerError

logger = logging.getLogger(__name__)


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class TokenVault:
    """
    Encrypted OAuth token storage (oauth_token_vault), one row per
    (user_id, provider).

    SECURITY CONTRACT:
    - Access and refresh tokens are encrypted before they reach Supabase
    - Decryption happens only when a provider call is about to be made
    - Rows returned by list_for_user() stay encrypted
    - delete() needs no cipher, so disconnect works without the vault key
    """

    def __init__(self, store: SupabaseStore, security: Optional[SecurityManager]):
        self._store = store
        self._security = security

    def save(self, user_id: str, provider: str, tokens: TokenSet) -> None:
        """
        Encrypt and upsert a token set.

        Raises:
            SecurityManagerError: encryption failed (nothing is stored)
            StoreError: the upsert failed
        """
        encrypted_access = self._security.encrypt_token(tokens.access_token)
        encrypted_refresh = (
            self._security.encrypt_token(tokens.refresh_token) if tokens.refresh_token else None
        )
        expires_at = None
        if tokens.expires_in:
            expires_at = (datetime.now(timezone.utc) + timedelta(seconds=tokens.expires_in)).isoformat()

        self._store.upsert_vault_tokens({
            "user_id": user_id,
            "provider": provider,
            "encrypted_access_token": encrypted_access,
            "encrypted_refresh_token": encrypted_refresh,
            "expires_at": expires_at,
            "updated_at": utc_now_iso(),
        })
        logger.info(
            f"[OK] [VAULT] Stored {provider} tokens for user {user_id} "
            f"(refresh_token={'yes' if encrypted_refresh else 'no'})"
        )

    def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        return self._store.list_vault_tokens(user_id)

    def delete(self, user_id: str, provider: str) -> None:
        self._store.delete_vault_tokens(user_id, provider)
        logger.info(f"[VAULT] Deleted {provider} tokens for user {user_id}")

    def get_valid_access_token(self, user_id: str, row: Dict[str, Any],
                               provider: EmailProvider) -> Optional[str]:
        """
        Decrypted access token for a vault row, refreshing it when expired.

        Returns None when the token is expired and cannot be refreshed; the
        caller counts that provider as failed.
        """
        provider_name = row.get("provider")
        expires_at = _parse_timestamp(row.get("expires_at"))
        is_expired = expires_at is not None and expires_at < datetime.now(timezone.utc)

        try:
            if not is_expired:
                return self._security.decrypt_token(row["encrypted_access_token"])

            logger.info(f"[VAULT] Token for {provider_name} is expired, attempting refresh...")

            if not row.get("encrypted_refresh_token"):
                logger.error(f"[VAULT] No refresh token available for {provider_name}")
                return None

            refresh_token = self._security.decrypt_token(row["encrypted_refresh_token"])
        except SecurityManagerError as e:
            logger.error(f"[FAIL] [VAULT] Could not decrypt {provider_name} tokens: {e}")
            return None

        try:
            new_tokens = provider.refresh(refresh_token)
        except ProviderError as e:
            logger.error(f"[VAULT] Failed to refresh token for {provider_name}: {e}")
            return None

        update = {
            "encrypted_access_token": self._security.encrypt_token(new_tokens.access_token),
            "expires_at": (
                datetime.now(timezone.utc) + timedelta(seconds=new_tokens.expires_in or 3600)
            ).isoformat(),
            "updated_at": utc_now_iso(),
        }
        if new_tokens.refresh_token and new_tokens.refresh_token != refresh_token:
            update["encrypted_refresh_token"] = self._security.encrypt_token(new_tokens.refresh_token)
            logger.info(f"[VAULT] {provider_name} rotated its refresh token")

        try:
            self._store.update_vault_tokens(user_id, provider_name, update)
            logger.info(f"[VAULT] Saved refreshed token for {provider_name}")
        except StoreError as e:
            # the fresh token is still usable for this request
            logger.error(f"[VAULT] Failed to save refreshed token for {provider_name}: {e}")

        return new_tokens.access_token

