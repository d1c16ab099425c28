"""
AI inbox pass: draft or auto-send replies for mail in AI-enabled categories.

For every connected mailbox, each enabled rule of an AI-enabled category is
turned into a provider search (unread mail already carrying the category
label, else unread mail from the last day matching the rule). Every hit is
replied to at most once per category and action; processed_emails is the
ledger that makes repeated runs idempotent.
"""

import html
import logging
from typing import Any, Dict, Optional, Set

import requests

from mailbridge.adapters.base import EmailProvider, MailMessage, UnsupportedProviderError, get_provider
from mailbridge.api.errors import ApiError
from mailbridge.auth.credential_store import TokenVault
from mailbridge.engine.drafter import PROFILE_COLUMNS, EmailDrafter, build_signature_html
from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore, utc_now_iso
from mailbridge.security.security_manager import SecurityManager
from mailbridge.services.sync import label_name

logger = logging.getLogger(__name__)

PROCESSING_PROFILE_COLUMNS = f"user_id, organization_id, email, {PROFILE_COLUMNS}"

ACTION_DRAFT = "draft"
ACTION_AUTO_REPLY = "auto_reply"

AI_DRAFT_LABEL = "AI Draft"
AI_SENT_LABEL = "AI Sent"
DEFAULT_DRAFT_LABEL_COLOR = "#3B82F6"
DEFAULT_SENT_LABEL_COLOR = "#F97316"


def dedupe_key(email_id: str, category_id: str, action: str) -> str:
    return f"{email_id}:{category_id}:{action}"


def reply_html(reply_body: str, profile: Dict[str, Any]) -> str:
    """Model output as an HTML body followed by the sender's signature."""
    body = html.escape(reply_body).replace("\n", "<br>")
    if profile.get("email_signature"):
        signature = f"\n\n{profile['email_signature']}"
    else:
        generated = build_signature_html(profile, profile.get("email"))
        signature = f"\n{generated}" if generated else ""
    return f"<div>{body}</div>{signature}"


class AIEmailProcessor:
    def __init__(self, config, store: SupabaseStore, security: Optional[SecurityManager],
                 drafter: EmailDrafter, session: Optional[requests.Session] = None):
        if security is None:
            raise ApiError("Server configuration error", 500)
        self.config = config
        self.store = store
        self.vault = TokenVault(store, security)
        self.drafter = drafter
        self.session = session

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def process_caller(self, user_id: str, category_id: Optional[str] = None) -> Dict[str, Any]:
        profile = self.store.get_profile(user_id, PROCESSING_PROFILE_COLUMNS)
        if not profile or not profile.get("organization_id"):
            raise ApiError("User profile not found", 400)

        results = self.process_user(user_id, profile["organization_id"], profile, category_id)
        logger.info(
            f"[AI] User run complete: {results['draftsCreated']} drafts, "
            f"{results['autoRepliesSent']} auto-replies"
        )
        return {
            "success": True,
            **results,
            "message": f"Created {results['draftsCreated']} drafts, sent {results['autoRepliesSent']} auto-replies",
        }

    def process_all(self, category_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Scheduled run over every organisation with an AI-enabled category.
        A user whose pass blows up counts as one error; the run carries on.
        """
        try:
            org_ids = self.store.list_ai_organization_ids()
        except StoreError:
            raise ApiError("Failed to fetch categories", 500)
        if not org_ids:
            logger.info("[AI] No organizations with AI-enabled categories")
            return {"message": "No AI-enabled categories", "processed": 0}

        logger.info(f"[AI] Scheduled run over {len(org_ids)} organization(s)")
        totals = {"draftsCreated": 0, "autoRepliesSent": 0, "errors": 0, "usersProcessed": 0}

        for org_id in org_ids:
            try:
                profiles = self.store.list_organization_profiles(org_id, PROCESSING_PROFILE_COLUMNS)
            except StoreError:
                totals["errors"] += 1
                continue

            for profile in profiles:
                user_id = profile.get("user_id")
                try:
                    if not self.store.has_vault_tokens(user_id):
                        logger.info(f"[AI] User {user_id} has no connected email providers")
                        continue
                    results = self.process_user(user_id, org_id, profile, category_id)
                except Exception:
                    logger.exception(f"[AI] Failed to process user {user_id}")
                    totals["errors"] += 1
                    continue
                totals["draftsCreated"] += results["draftsCreated"]
                totals["autoRepliesSent"] += results["autoRepliesSent"]
                totals["errors"] += results["errors"]
                totals["usersProcessed"] += 1

        logger.info(
            f"[AI] Scheduled run complete: {totals['usersProcessed']} users, "
            f"{totals['draftsCreated']} drafts, {totals['autoRepliesSent']} auto-replies"
        )
        return {
            "success": True,
            **totals,
            "message": (
                f"Processed {totals['usersProcessed']} users: {totals['draftsCreated']} drafts, "
                f"{totals['autoRepliesSent']} auto-replies"
            ),
        }

    # ------------------------------------------------------------------
    # One user
    # ------------------------------------------------------------------

    def process_user(self, user_id: str, organization_id: str, profile: Dict[str, Any],
                     category_id: Optional[str] = None) -> Dict[str, int]:
        results = {"draftsCreated": 0, "autoRepliesSent": 0, "errors": 0}

        categories = self.store.list_ai_categories(organization_id, category_id)
        if not categories:
            logger.info(f"[AI] No AI-enabled categories for user {user_id}")
            return results

        categories_by_id = {c["id"]: c for c in categories}
        rules = self.store.list_rules_for_categories(organization_id, list(categories_by_id))
        if not rules:
            logger.info(f"[AI] No rules found for AI categories for user {user_id}")
            return results

        settings = self.store.get_ai_settings(organization_id)
        label_colors = {
            AI_DRAFT_LABEL: settings.get("ai_draft_label_color") or DEFAULT_DRAFT_LABEL_COLOR,
            AI_SENT_LABEL: settings.get("ai_sent_label_color") or DEFAULT_SENT_LABEL_COLOR,
        }
        token_rows = self.vault.list_for_user(user_id)
        if not token_rows:
            logger.info(f"[AI] No connected email providers for user {user_id}")
            return results
        processed = self.store.processed_email_keys(user_id)

        for row in token_rows:
            provider_name = row.get("provider")
            try:
                provider = get_provider(provider_name, self.config, session=self.session)
            except UnsupportedProviderError as e:
                logger.warning(f"[AI] Skipping vault row: {e}")
                continue

            access_token = self.vault.get_valid_access_token(user_id, row, provider)
            if not access_token:
                logger.error(f"[AI] Could not get token for {provider_name} for user {user_id}")
                continue

            for rule in rules:
                category = categories_by_id.get(rule.get("category_id"))
                if not category:
                    continue
                category_label = label_name(category.get("sort_order") or 0, category["name"])
                message_ids = provider.search_unread(access_token, category_label, rule)
                logger.info(f"[AI] {len(message_ids)} unread email(s) for rule on \"{category_label}\"")

                for message_id in message_ids:
                    self._process_message(
                        provider, access_token, message_id, category, user_id, organization_id,
                        profile, processed, label_colors, results,
                    )

        return results

    def _process_message(self, provider: EmailProvider, access_token: str, message_id: str,
                         category: Dict[str, Any], user_id: str, organization_id: str,
                         profile: Dict[str, Any], processed: Set[str],
                         label_colors: Dict[str, str], results: Dict[str, int]) -> None:
        draft_key = dedupe_key(message_id, category["id"], ACTION_DRAFT)
        reply_key = dedupe_key(message_id, category["id"], ACTION_AUTO_REPLY)
        needs_draft = bool(category.get("ai_draft_enabled")) and draft_key not in processed
        needs_reply = bool(category.get("auto_reply_enabled")) and reply_key not in processed
        if not needs_draft and not needs_reply:
            return

        message = provider.get_message(access_token, message_id)
        if message is None:
            results["errors"] += 1
            return

        reply_body = self.drafter.reply(message, category["name"], category.get("writing_style"))
        if not reply_body:
            logger.error(f"[AI] Failed to generate a reply for {message_id}")
            results["errors"] += 1
            return
        content = reply_html(reply_body, profile)

        # the AI now owns this email
        provider.mark_read(access_token, message_id)

        if needs_draft:
            draft_id = provider.create_draft(access_token, message, content)
            if draft_id:
                self._record(provider, message, category, user_id, organization_id, ACTION_DRAFT,
                             {"draft_id": draft_id})
                results["draftsCreated"] += 1
                provider.tag_message(access_token, message_id, AI_DRAFT_LABEL, label_colors[AI_DRAFT_LABEL])
                processed.add(draft_key)

        if needs_reply:
            if provider.send_reply(access_token, message, content):
                self._record(provider, message, category, user_id, organization_id, ACTION_AUTO_REPLY,
                             {"sent_at": utc_now_iso()})
                results["autoRepliesSent"] += 1
                provider.tag_message(access_token, message_id, AI_SENT_LABEL, label_colors[AI_SENT_LABEL])
                processed.add(reply_key)

    def _record(self, provider: EmailProvider, message: MailMessage, category: Dict[str, Any],
                user_id: str, organization_id: str, action: str, extra: Dict[str, Any]) -> None:
        try:
            self.store.record_processed_email({
                "organization_id": organization_id,
                "user_id": user_id,
                "email_id": message.id,
                "category_id": category["id"],
                "provider": provider.name,
                "action_type": action,
                **extra,
            })
            self.store.log_ai_activity({
                "organization_id": organization_id,
                "user_id": user_id,
                "category_id": category["id"],
                "category_name": category["name"],
                "activity_type": action,
                "email_subject": message.subject,
                "email_from": message.sender,
            })
        except StoreError as e:
            # the mailbox side already happened; only the ledger is behind
            logger.error(f"[AI] Failed to record {action} for {message.id}: {e}")
