"""
Outlook Adapter - Implements EmailProvider for Microsoft identity platform
+ Microsoft Graph API

Categories become mail folders; rules become inbox message rules.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests

from .base import (
    EmailProvider,
    HTTP_TIMEOUT,
    MailMessage,
    PROVIDER_OUTLOOK,
    SEARCH_PAGE_SIZE,
    html_to_text,
)

logger = logging.getLogger(__name__)

AUTH_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/authorize"
TOKEN_URL = "https://login.microsoftonline.com/common/oauth2/v2.0/token"
GRAPH_URL = "https://graph.microsoft.com/v1.0"

# Graph categories only take preset colours
OUTLOOK_PRESETS = {
    "#3B82F6": "preset7",
    "#2563EB": "preset7",
    "#F97316": "preset1",
    "#EA580C": "preset1",
    "#22C55E": "preset4",
    "#16A34A": "preset4",
    "#EF4444": "preset0",
    "#DC2626": "preset0",
    "#8B5CF6": "preset8",
    "#7C3AED": "preset8",
}

SCOPES = [
    "openid",
    "email",
    "profile",
    "offline_access",
    "https://graph.microsoft.com/Mail.Read",
    "https://graph.microsoft.com/Mail.ReadWrite",
]


class MicrosoftProvider(EmailProvider):
    """
    Outlook/Office365 mailbox provider.
    Uses Microsoft Graph API for folders and message rules.
    """

    name = PROVIDER_OUTLOOK
    token_url = TOKEN_URL

    def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "response_mode": "query",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def fetch_email(self, access_token: str) -> Optional[str]:
        try:
            data = self._get_json(f"{GRAPH_URL}/me", access_token)
        except requests.RequestException as e:
            logger.warning(f"[OUTLOOK] Profile lookup failed: {type(e).__name__}")
            return None
        data = data or {}
        return data.get("mail") or data.get("userPrincipalName") or None

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def _list_folders(self, access_token: str) -> Optional[List[Dict[str, Any]]]:
        data = self._get_json(f"{GRAPH_URL}/me/mailFolders", access_token)
        if data is None:
            return None
        return data.get("value") or []

    def find_label_id(self, access_token: str, name: str) -> Optional[str]:
        try:
            folders = self._list_folders(access_token) or []
        except requests.RequestException:
            return None
        folder = next((f for f in folders if f.get("displayName") == name), None)
        return folder.get("id") if folder else None

    def ensure_label(self, access_token: str, name: str, hex_color: str) -> bool:
        # Graph mail folders have no colour
        try:
            folders = self._list_folders(access_token)
            if folders is None:
                return False

            if any(f.get("displayName") == name for f in folders):
                logger.info(f"[OUTLOOK] Folder \"{name}\" already exists")
                return True

            response = self.session.post(
                f"{GRAPH_URL}/me/mailFolders",
                headers=self._auth_headers(access_token),
                json={"displayName": name},
                timeout=HTTP_TIMEOUT,
            )
            if not response.ok:
                logger.error(f"[OUTLOOK] Failed to create folder \"{name}\": {response.text[:300]}")
                return False

            logger.info(f"[OUTLOOK] Created folder: {name}")
            return True
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Error creating folder \"{name}\": {e}")
            return False

    def delete_label(self, access_token: str, name: str) -> bool:
        try:
            folders = self._list_folders(access_token)
            if folders is None:
                return False

            folder = next((f for f in folders if f.get("displayName") == name), None)
            if not folder:
                logger.info(f"[OUTLOOK] Folder \"{name}\" doesn't exist, nothing to delete")
                return True

            response = self.session.delete(
                f"{GRAPH_URL}/me/mailFolders/{folder['id']}",
                headers=self._auth_headers(access_token),
                timeout=HTTP_TIMEOUT,
            )
            if not response.ok and response.status_code != 404:
                logger.error(f"[OUTLOOK] Failed to delete folder \"{name}\": {response.text[:300]}")
                return False

            logger.info(f"[OUTLOOK] Deleted folder: {name}")
            return True
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Error deleting folder \"{name}\": {e}")
            return False

    # ------------------------------------------------------------------
    # Message rules
    # ------------------------------------------------------------------

    def apply_rule(self, access_token: str, rule: Dict[str, Any],
                   label_id: str, rule_name: str) -> bool:
        rules_url = f"{GRAPH_URL}/me/mailFolders/inbox/messageRules"
        try:
            existing = self._get_json(rules_url, access_token)
            if existing is None:
                return False

            if any(r.get("displayName") == rule_name for r in existing.get("value") or []):
                logger.info(f"[OUTLOOK] Rule \"{rule_name}\" already exists")
                return True

            rule_type = rule.get("rule_type")
            value = rule.get("rule_value")
            conditions: Dict[str, List[str]] = {}
            if rule_type == "sender":
                conditions["senderContains"] = [value]
            elif rule_type == "domain":
                conditions["senderContains"] = [f"@{value}"]
            elif rule_type == "keyword":
                conditions["subjectOrBodyContains"] = [value]

            response = self.session.post(
                rules_url,
                headers=self._auth_headers(access_token),
                json={
                    "displayName": rule_name,
                    "sequence": 1,
                    "isEnabled": True,
                    "conditions": conditions,
                    "actions": {"moveToFolder": label_id},
                },
                timeout=HTTP_TIMEOUT,
            )
            if not response.ok:
                logger.error(f"[OUTLOOK] Failed to create rule \"{rule_name}\": {response.text[:300]}")
                return False

            logger.info(f"[OUTLOOK] Created rule: {rule_name}")
            return True
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Error creating rule \"{rule_name}\": {e}")
            return False

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _search(self, access_token: str, graph_filter: str) -> List[str]:
        response = self.session.get(
            f"{GRAPH_URL}/me/messages",
            headers=self._auth_headers(access_token),
            params={"$filter": graph_filter, "$top": SEARCH_PAGE_SIZE, "$select": "id"},
            timeout=HTTP_TIMEOUT,
        )
        if not response.ok:
            logger.error(f"[OUTLOOK] Search failed: {response.status_code} {response.text[:300]}")
            return []
        return [m["id"] for m in (response.json() or {}).get("value") or []]

    def search_unread(self, access_token: str, category_label: str,
                      rule: Dict[str, Any]) -> List[str]:
        try:
            ids = self._search(
                access_token,
                f"categories/any(c:c eq '{_quote(category_label)}') and isRead eq false",
            )
            if ids:
                logger.info(f"[OUTLOOK] Found {len(ids)} unread emails with category")
                return ids

            rule_filter = outlook_search_filter(rule)
            if not rule_filter:
                return []
            since = (datetime.now(timezone.utc) - timedelta(days=1)).strftime("%Y-%m-%dT%H:%M:%SZ")
            return self._search(
                access_token,
                f"{rule_filter} and receivedDateTime ge {since} and isRead eq false",
            )
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Search failed: {e}")
            return []

    def get_message(self, access_token: str, message_id: str) -> Optional[MailMessage]:
        try:
            response = self.session.get(
                f"{GRAPH_URL}/me/messages/{message_id}",
                headers=self._auth_headers(access_token),
                params={"$select": "subject,from,body,conversationId,replyTo"},
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Failed to fetch message {message_id}: {e}")
            return None
        if not response.ok:
            logger.error(f"[OUTLOOK] Failed to fetch message {message_id}: {response.status_code}")
            return None

        data = response.json() or {}
        sender = ((data.get("from") or {}).get("emailAddress") or {}).get("address", "")
        reply_to = next(
            (r.get("emailAddress", {}).get("address") for r in data.get("replyTo") or []),
            None,
        )
        body = data.get("body") or {}
        content = body.get("content") or ""
        if body.get("contentType", "").lower() == "html":
            content = html_to_text(content)
        return MailMessage(
            id=message_id,
            subject=data.get("subject") or "",
            sender=sender,
            body=content.strip(),
            thread_id=data.get("conversationId"),
            reply_to=reply_to or sender,
        )

    def mark_read(self, access_token: str, message_id: str) -> bool:
        try:
            response = self.session.patch(
                f"{GRAPH_URL}/me/messages/{message_id}",
                headers=self._auth_headers(access_token),
                json={"isRead": True},
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Failed to mark {message_id} read: {e}")
            return False
        return response.ok

    def _ensure_category(self, access_token: str, name: str, hex_color: str) -> None:
        url = f"{GRAPH_URL}/me/outlook/masterCategories"
        existing = self._get_json(url, access_token) or {}
        if any(c.get("displayName") == name for c in existing.get("value") or []):
            return
        response = self.session.post(
            url,
            headers=self._auth_headers(access_token),
            json={"displayName": name, "color": hex_to_outlook_preset(hex_color)},
            timeout=HTTP_TIMEOUT,
        )
        if not response.ok:
            # tagging still works with an uncoloured category
            logger.warning(f"[OUTLOOK] Could not create category \"{name}\": {response.status_code}")

    def tag_message(self, access_token: str, message_id: str, name: str, hex_color: str) -> bool:
        message_url = f"{GRAPH_URL}/me/messages/{message_id}"
        try:
            if (access_token, name) not in self._tag_cache:
                self._ensure_category(access_token, name, hex_color)
                self._tag_cache[(access_token, name)] = name

            current = self._get_json(f"{message_url}?$select=categories", access_token) or {}
            categories = list(current.get("categories") or [])
            if name in categories:
                return True
            categories.append(name)

            response = self.session.patch(
                message_url,
                headers=self._auth_headers(access_token),
                json={"categories": categories},
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Failed to tag {message_id} with \"{name}\": {e}")
            return False
        if not response.ok:
            logger.error(f"[OUTLOOK] Failed to tag {message_id} with \"{name}\": {response.text[:300]}")
            return False
        return True

    def create_draft(self, access_token: str, message: MailMessage, html_body: str) -> Optional[str]:
        # createReply keeps the draft in the original conversation
        try:
            response = self.session.post(
                f"{GRAPH_URL}/me/messages/{message.id}/createReply",
                headers=self._auth_headers(access_token),
                json={"message": {"body": {"contentType": "HTML", "content": html_body}}},
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Failed to create draft for {message.id}: {e}")
            return None
        if not response.ok:
            logger.error(f"[OUTLOOK] Failed to create draft for {message.id}: {response.text[:300]}")
            return None
        return (response.json() or {}).get("id")

    def send_reply(self, access_token: str, message: MailMessage, html_body: str) -> bool:
        try:
            response = self.session.post(
                f"{GRAPH_URL}/me/messages/{message.id}/reply",
                headers=self._auth_headers(access_token),
                json={"comment": html_body},
                timeout=HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            logger.error(f"[OUTLOOK] Failed to send reply to {message.id}: {e}")
            return False
        if not response.ok:
            logger.error(f"[OUTLOOK] Failed to send reply to {message.id}: {response.text[:300]}")
            return False
        return True


def _quote(value: Any) -> str:
    return str(value).replace("'", "''")


def hex_to_outlook_preset(hex_color: Optional[str]) -> str:
    return OUTLOOK_PRESETS.get((hex_color or "").upper(), "preset7")


def outlook_search_filter(rule: Dict[str, Any]) -> str:
    """OData $filter for the messages a rule describes."""
    filters: List[str] = []
    rule_type = rule.get("rule_type")
    value = _quote(rule.get("rule_value") or "")
    if rule_type == "sender":
        filters.append(f"contains(from/emailAddress/address, '{value}')")
    elif rule_type == "domain":
        filters.append(f"contains(from/emailAddress/address, '@{value}')")
    elif rule_type == "keyword":
        filters.append(f"(contains(subject, '{value}') or contains(body/content, '{value}'))")

    if rule.get("is_advanced"):
        advanced = []
        if rule.get("subject_contains"):
            advanced.append(f"contains(subject, '{_quote(rule['subject_contains'])}')")
        if rule.get("body_contains"):
            advanced.append(f"contains(body/content, '{_quote(rule['body_contains'])}')")
        if advanced:
            connector = " or " if rule.get("condition_logic") == "or" else " and "
            filters.append(f"({connector.join(advanced)})")

    return " and ".join(filters)
