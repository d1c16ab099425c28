"""
Category -> label/folder and rule -> filter/message-rule sync.

Each connected provider is handled independently: a provider whose token
cannot be obtained, or that fails mid-way, counts every item as failed and
the loop moves on to the next one.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from mailbridge.adapters.base import get_provider
from mailbridge.api.errors import ApiError
from mailbridge.auth.credential_store import TokenVault
from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore
from mailbridge.security.security_manager import SecurityManager

logger = logging.getLogger(__name__)

OUTLOOK_RULE_PREFIX = "Mailbridge"


def label_name(position: int, category_name: str) -> str:
    """Provider label for a category; the number keeps labels in sort order."""
    return f"{position + 1}: {category_name}"


def outlook_rule_name(rule: Dict[str, Any]) -> str:
    return f"{OUTLOOK_RULE_PREFIX}: {rule.get('rule_type')} - {rule.get('rule_value')}"


class MailboxSync:
    """Shared plumbing: caller organisation, vault rows and provider tokens."""

    def __init__(self, config, store: SupabaseStore, security: Optional[SecurityManager],
                 session: Optional[requests.Session] = None):
        self.config = config
        self.store = store
        self.security = security
        self.session = session

    def _organization_id(self, user_id: str) -> str:
        profile = self.store.get_profile(user_id, "organization_id")
        if not profile or not profile.get("organization_id"):
            raise ApiError("User profile not found", 400)
        return profile["organization_id"]

    def _vault(self) -> TokenVault:
        if self.security is None:
            raise ApiError("Server configuration error", 500)
        return TokenVault(self.store, self.security)

    def _vault_rows(self, vault: TokenVault, user_id: str) -> List[Dict[str, Any]]:
        try:
            rows = vault.list_for_user(user_id)
        except StoreError as e:
            raise ApiError(str(e), 500)
        if not rows:
            raise ApiError("No connected email providers found", 400)
        return rows


class CategorySyncService(MailboxSync):
    def sync(self, user_id: str) -> Dict[str, Any]:
        """
        Create labels/folders for enabled categories and delete them for
        disabled ones, on every connected provider.

        Returns:
            {success, results: [{provider, created, deleted, failed}],
             syncedCategoryIds, message}
        """
        organization_id = self._organization_id(user_id)
        try:
            categories = self.store.list_categories(organization_id)
        except StoreError:
            raise ApiError("Failed to fetch categories", 500)

        vault = self._vault()
        token_rows = self._vault_rows(vault, user_id)

        enabled = [c for c in categories if c.get("is_enabled")]
        disabled = [c for c in categories if not c.get("is_enabled")]
        logger.info(
            f"[SYNC] Categories: {len(enabled)} enabled, {len(disabled)} disabled, "
            f"{len(token_rows)} provider(s)"
        )

        results = []
        synced_category_ids: List[str] = []

        for row in token_rows:
            provider_name = row.get("provider")
            try:
                provider = get_provider(provider_name, self.config, session=self.session)
                access_token = vault.get_valid_access_token(user_id, row, provider)
                if not access_token:
                    logger.error(f"[SYNC] Could not get valid access token for {provider_name}")
                    results.append({"provider": provider_name, "created": 0, "deleted": 0,
                                    "failed": len(enabled)})
                    continue

                created = deleted = failed = 0
                for category in enabled:
                    name = label_name(category.get("sort_order") or 0, category["name"])
                    if provider.ensure_label(access_token, name, category.get("color") or ""):
                        created += 1
                        if category["id"] not in synced_category_ids:
                            synced_category_ids.append(category["id"])
                    else:
                        failed += 1

                for category in disabled:
                    name = label_name(category.get("sort_order") or 0, category["name"])
                    if provider.delete_label(access_token, name):
                        deleted += 1

                results.append({"provider": provider_name, "created": created,
                                "deleted": deleted, "failed": failed})
            except Exception:
                logger.exception(f"[SYNC] Failed to process {provider_name}")
                results.append({"provider": provider_name, "created": 0, "deleted": 0,
                                "failed": len(enabled)})

        if synced_category_ids:
            try:
                self.store.mark_categories_synced(synced_category_ids)
                logger.info(f"[SYNC] Updated last_synced_at for {len(synced_category_ids)} categories")
            except StoreError as e:
                logger.error(f"[SYNC] Failed to update last_synced_at: {e}")

        total_created = sum(r["created"] for r in results)
        return {
            "success": True,
            "results": results,
            "syncedCategoryIds": synced_category_ids,
            "message": f"Synced {total_created} labels/folders across {len(results)} provider(s)",
        }


class RuleSyncService(MailboxSync):
    def sync(self, user_id: str, rule_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Push enabled rules (optionally a single one) to every provider as a
        Gmail filter or an Outlook inbox rule targeting the category label.
        """
        organization_id = self._organization_id(user_id)
        try:
            rules = self.store.list_enabled_rules(organization_id, rule_id)
            categories = self.store.list_categories(organization_id)
        except StoreError:
            raise ApiError("Failed to fetch rules", 500)

        # label position is the category's place in sort order, not its raw sort_order
        category_positions = {
            category["id"]: (position, category)
            for position, category in enumerate(categories)
        }
        enabled_rules = [
            rule for rule in rules
            if rule.get("category_id") in category_positions
            and category_positions[rule["category_id"]][1].get("is_enabled")
        ]
        if not enabled_rules:
            return {"message": "No enabled rules found", "synced": 0}

        vault = self._vault()
        token_rows = self._vault_rows(vault, user_id)
        logger.info(f"[SYNC] Rules: {len(enabled_rules)} enabled, {len(token_rows)} provider(s)")

        results = []
        for row in token_rows:
            provider_name = row.get("provider")
            try:
                provider = get_provider(provider_name, self.config, session=self.session)
                access_token = vault.get_valid_access_token(user_id, row, provider)
                if not access_token:
                    logger.error(f"[SYNC] Could not get valid access token for {provider_name}")
                    results.append({"provider": provider_name, "synced": 0, "failed": len(enabled_rules)})
                    continue

                synced = failed = 0
                for rule in enabled_rules:
                    position, category = category_positions[rule["category_id"]]
                    name = label_name(position, category["name"])
                    label_id = provider.find_label_id(access_token, name)
                    if not label_id:
                        logger.info(f"[SYNC] Label \"{name}\" not found on {provider_name}, sync categories first")
                        failed += 1
                        continue
                    if provider.apply_rule(access_token, rule, label_id, outlook_rule_name(rule)):
                        synced += 1
                    else:
                        failed += 1

                results.append({"provider": provider_name, "synced": synced, "failed": failed})
            except Exception:
                logger.exception(f"[SYNC] Failed to process {provider_name}")
                results.append({"provider": provider_name, "synced": 0, "failed": len(enabled_rules)})

        total_synced = sum(r["synced"] for r in results)
        return {
            "success": True,
            "results": results,
            "message": f"Synced {total_synced} rule(s) across {len(results)} provider(s)",
        }
