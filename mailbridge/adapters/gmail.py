"""
Gmail Adapter - Implements EmailProvider for Google OAuth2 + Gmail API

Token endpoints stay on the shared requests session; everything mailbox side
(labels, filters, messages, drafts) goes through the Gmail discovery client.
Gmail only accepts label colours from its fixed palette, see
hex_to_gmail_color().
"""

import base64
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import requests
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .base import (
    EmailProvider,
    MailMessage,
    PROVIDER_GOOGLE,
    SEARCH_PAGE_SIZE,
    html_to_text,
    reply_subject,
)

logger = logging.getLogger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

SCOPES = [
    "openid",
    "email",
    "profile",
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.modify",
]

_WHITE = "#ffffff"
_BLACK = "#000000"

# App palette -> Gmail palette
GMAIL_COLOR_MAP = {
    # Reds
    "#EF4444": ("#cc3a21", _WHITE),
    "#DC2626": ("#cc3a21", _WHITE),
    "#B91C1C": ("#ac2b16", _WHITE),
    # Oranges
    "#F97316": ("#f2a600", _BLACK),
    "#EA580C": ("#cf8933", _BLACK),
    # Yellows
    "#EAB308": ("#f2c960", _BLACK),
    "#FACC15": ("#f2c960", _BLACK),
    # Greens
    "#22C55E": ("#149e60", _WHITE),
    "#16A34A": ("#0d804f", _WHITE),
    # Teals
    "#14B8A6": ("#2da2bb", _WHITE),
    "#06B6D4": ("#2da2bb", _WHITE),
    # Blues
    "#3B82F6": ("#285bac", _WHITE),
    "#2563EB": ("#1a73e8", _WHITE),
    # Purples
    "#8B5CF6": ("#653e9b", _WHITE),
    "#7C3AED": ("#653e9b", _WHITE),
    # Pinks
    "#EC4899": ("#c9649b", _WHITE),
    "#DB2777": ("#c9649b", _WHITE),
    # Greys
    "#6B7280": ("#666666", _WHITE),
    "#9CA3AF": ("#999999", _BLACK),
}

_GREY = ("#666666", _WHITE)


def _color(pair) -> Dict[str, str]:
    return {"backgroundColor": pair[0], "textColor": pair[1]}


def hex_to_gmail_color(hex_color: Optional[str]) -> Dict[str, str]:
    """
    Map an app colour (#RRGGBB) to a Gmail label colour.

    Known palette entries map exactly; anything else goes through a coarse
    channel heuristic and finally falls back to grey.
    """
    if not hex_color:
        return _color(_GREY)

    known = GMAIL_COLOR_MAP.get(hex_color.upper())
    if known:
        return _color(known)

    try:
        r = int(hex_color[1:3], 16)
        g = int(hex_color[3:5], 16)
        b = int(hex_color[5:7], 16)
    except ValueError:
        return _color(_GREY)

    if r > 180 and g < 100 and b < 100:
        return _color(("#cc3a21", _WHITE))
    if r > 180 and 100 < g < 180:
        return _color(("#f2a600", _BLACK))
    if r > 180 and g > 180:
        return _color(("#f2c960", _BLACK))
    if g > r and g > b:
        return _color(("#149e60", _WHITE))
    if b > r and b > 150:
        return _color(("#285bac", _WHITE))
    if r > 100 and b > 100 and g < 100:
        return _color(("#653e9b", _WHITE))
    return _color(_GREY)


def gmail_search_query(rule: Dict[str, Any]) -> str:
    """Gmail search expression equivalent to a rule's conditions."""
    parts: List[str] = []
    rule_type = rule.get("rule_type")
    value = rule.get("rule_value")
    if rule_type == "sender":
        parts.append(f"from:{value}")
    elif rule_type == "domain":
        parts.append(f"from:@{value}")
    elif rule_type == "keyword":
        parts.append(str(value))

    recipient = rule.get("recipient_filter")
    if recipient == "to_me":
        parts.append("to:me")
    elif recipient == "cc_me":
        parts.append("cc:me")
    elif recipient == "to_or_cc_me":
        parts.append("(to:me OR cc:me)")

    if rule.get("is_advanced"):
        advanced = []
        subject = rule.get("subject_contains")
        body = rule.get("body_contains")
        if subject:
            advanced.append(f'subject:"{subject}"' if " " in subject else f"subject:{subject}")
        if body:
            advanced.append(f'"{body}"' if " " in body else body)
        if advanced:
            connector = " OR " if rule.get("condition_logic") == "or" else " "
            parts.append(f"({connector.join(advanced)})")

    return " ".join(parts)


def _http_status(error: HttpError) -> Optional[int]:
    return getattr(error.resp, "status", None)


def _decode_part(data: str) -> str:
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8", errors="replace")


def extract_body(payload: Dict[str, Any]) -> str:
    """Plain-text body of a Gmail payload; HTML-only messages are converted."""
    def find(part: Dict[str, Any], mime_type: str) -> str:
        data = (part.get("body") or {}).get("data")
        if part.get("mimeType") == mime_type and data:
            return _decode_part(data)
        for sub in part.get("parts") or []:
            text = find(sub, mime_type)
            if text:
                return text
        return ""

    text = find(payload, "text/plain")
    if text:
        return text.strip()
    html = find(payload, "text/html")
    if html:
        return html_to_text(html)
    data = (payload.get("body") or {}).get("data")
    return _decode_part(data).strip() if data else ""


def encode_reply(to: str, subject: str, html_body: str) -> str:
    """RFC 2822 HTML message, base64url-encoded for the Gmail `raw` field."""
    message = "\r\n".join([
        f"To: {to}",
        f"Subject: {reply_subject(subject)}",
        "MIME-Version: 1.0",
        "Content-Type: text/html; charset=utf-8",
        "",
        html_body,
    ])
    return base64.urlsafe_b64encode(message.encode("utf-8")).decode("ascii").rstrip("=")


class GoogleProvider(EmailProvider):
    """Gmail mailbox provider."""

    name = PROVIDER_GOOGLE
    token_url = TOKEN_URL

    def __init__(self, client_id: str, client_secret: str,
                 session: Optional[requests.Session] = None):
        super().__init__(client_id, client_secret, session=session)
        self._services: Dict[str, Any] = {}

    def _gmail(self, access_token: str):
        service = self._services.get(access_token)
        if service is None:
            credentials = Credentials(token=access_token)
            service = build("gmail", "v1", credentials=credentials, cache_discovery=False)
            self._services[access_token] = service
        return service

    def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": " ".join(SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def fetch_email(self, access_token: str) -> Optional[str]:
        try:
            data = self._get_json(USERINFO_URL, access_token)
        except requests.RequestException as e:
            logger.warning(f"[GMAIL] Userinfo lookup failed: {type(e).__name__}")
            return None
        return (data or {}).get("email") or None

    # ------------------------------------------------------------------
    # Labels
    # ------------------------------------------------------------------

    def _list_labels(self, access_token: str) -> List[Dict[str, Any]]:
        result = self._gmail(access_token).users().labels().list(userId="me").execute()
        return result.get("labels") or []

    def _find_label(self, access_token: str, name: str) -> Optional[Dict[str, Any]]:
        return next((label for label in self._list_labels(access_token) if label.get("name") == name), None)

    def _create_label(self, access_token: str, name: str, hex_color: str) -> Dict[str, Any]:
        return self._gmail(access_token).users().labels().create(
            userId="me",
            body={
                "name": name,
                "labelListVisibility": "labelShow",
                "messageListVisibility": "show",
                "color": hex_to_gmail_color(hex_color),
            },
        ).execute()

    def find_label_id(self, access_token: str, name: str) -> Optional[str]:
        try:
            label = self._find_label(access_token, name)
        except HttpError as e:
            logger.error(f"[GMAIL] Failed to list labels: {e}")
            return None
        return label.get("id") if label else None

    def ensure_label(self, access_token: str, name: str, hex_color: str) -> bool:
        try:
            existing = self._find_label(access_token, name)
        except HttpError as e:
            logger.error(f"[GMAIL] Failed to list labels: {e}")
            return False

        if existing:
            logger.info(f"[GMAIL] Label \"{name}\" already exists, updating color...")
            try:
                self._gmail(access_token).users().labels().patch(
                    userId="me", id=existing["id"], body={"color": hex_to_gmail_color(hex_color)}
                ).execute()
            except HttpError as e:
                # existing label still counts as synced
                logger.error(f"[GMAIL] Failed to update label color: {e}")
            return True

        try:
            self._create_label(access_token, name, hex_color)
        except HttpError as e:
            if _http_status(e) == 409:
                logger.info(f"[GMAIL] Label \"{name}\" was created concurrently")
                return True
            logger.error(f"[GMAIL] Failed to create label \"{name}\": {e}")
            return False

        logger.info(f"[GMAIL] Created label with color: {name}")
        return True

    def delete_label(self, access_token: str, name: str) -> bool:
        try:
            label = self._find_label(access_token, name)
        except HttpError as e:
            logger.error(f"[GMAIL] Failed to list labels: {e}")
            return False

        if not label:
            logger.info(f"[GMAIL] Label \"{name}\" doesn't exist, nothing to delete")
            return True

        try:
            self._gmail(access_token).users().labels().delete(userId="me", id=label["id"]).execute()
        except HttpError as e:
            if _http_status(e) == 404:
                return True
            logger.error(f"[GMAIL] Failed to delete label \"{name}\": {e}")
            return False

        logger.info(f"[GMAIL] Deleted label: {name}")
        return True

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def apply_rule(self, access_token: str, rule: Dict[str, Any],
                   label_id: str, rule_name: str) -> bool:
        rule_type = rule.get("rule_type")
        value = rule.get("rule_value")

        criteria: Dict[str, str] = {}
        if rule_type == "sender":
            criteria["from"] = value
        elif rule_type == "domain":
            criteria["from"] = f"@{value}"
        elif rule_type == "keyword":
            criteria["query"] = value

        try:
            self._gmail(access_token).users().settings().filters().create(
                userId="me",
                body={
                    "criteria": criteria,
                    "action": {"addLabelIds": [label_id], "removeLabelIds": []},
                },
            ).execute()
        except HttpError as e:
            if _http_status(e) == 409:
                logger.info(f"[GMAIL] Filter for \"{value}\" already exists")
                return True
            logger.error(f"[GMAIL] Failed to create filter: {e}")
            return False

        logger.info(f"[GMAIL] Created filter for: {value}")
        return True

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def _search(self, access_token: str, query: str) -> List[str]:
        result = self._gmail(access_token).users().messages().list(
            userId="me", q=query, maxResults=SEARCH_PAGE_SIZE
        ).execute()
        return [m["id"] for m in result.get("messages") or []]

    def search_unread(self, access_token: str, category_label: str,
                      rule: Dict[str, Any]) -> List[str]:
        try:
            ids = self._search(access_token, f'label:"{category_label}" is:unread')
            if ids:
                logger.info(f"[GMAIL] Found {len(ids)} unread emails with category label")
                return ids
            return self._search(access_token, f"{gmail_search_query(rule)} is:unread newer_than:1d")
        except HttpError as e:
            logger.error(f"[GMAIL] Search failed: {e}")
            return []

    def get_message(self, access_token: str, message_id: str) -> Optional[MailMessage]:
        try:
            message = self._gmail(access_token).users().messages().get(
                userId="me", id=message_id, format="full"
            ).execute()
        except HttpError as e:
            logger.error(f"[GMAIL] Failed to fetch message {message_id}: {e}")
            return None

        payload = message.get("payload") or {}
        headers = {h["name"].lower(): h["value"] for h in payload.get("headers") or []}
        sender = headers.get("from", "")
        return MailMessage(
            id=message_id,
            subject=headers.get("subject", ""),
            sender=sender,
            body=extract_body(payload),
            thread_id=message.get("threadId"),
            reply_to=headers.get("reply-to") or sender,
        )

    def _modify(self, access_token: str, message_id: str, body: Dict[str, List[str]]) -> bool:
        try:
            self._gmail(access_token).users().messages().modify(
                userId="me", id=message_id, body=body
            ).execute()
        except HttpError as e:
            logger.error(f"[GMAIL] Failed to modify message {message_id}: {e}")
            return False
        return True

    def mark_read(self, access_token: str, message_id: str) -> bool:
        if not self._modify(access_token, message_id, {"removeLabelIds": ["UNREAD"]}):
            return False
        logger.info(f"[GMAIL] Marked message {message_id} as read")
        return True

    def tag_message(self, access_token: str, message_id: str, name: str, hex_color: str) -> bool:
        cache_key = (access_token, name)
        label_id = self._tag_cache.get(cache_key)
        if label_id is None:
            try:
                label = self._find_label(access_token, name) or self._create_label(access_token, name, hex_color)
            except HttpError as e:
                logger.error(f"[GMAIL] Failed to get or create label \"{name}\": {e}")
                return False
            label_id = label["id"]
            self._tag_cache[cache_key] = label_id
        return self._modify(access_token, message_id, {"addLabelIds": [label_id]})

    def create_draft(self, access_token: str, message: MailMessage, html_body: str) -> Optional[str]:
        try:
            draft = self._gmail(access_token).users().drafts().create(
                userId="me",
                body={"message": {
                    "raw": encode_reply(message.reply_to, message.subject, html_body),
                    "threadId": message.thread_id,
                }},
            ).execute()
        except HttpError as e:
            logger.error(f"[GMAIL] Failed to create draft: {e}")
            return None
        logger.info(f"[GMAIL] Created draft: {draft.get('id')}")
        return draft.get("id")

    def send_reply(self, access_token: str, message: MailMessage, html_body: str) -> bool:
        try:
            self._gmail(access_token).users().messages().send(
                userId="me",
                body={
                    "raw": encode_reply(message.reply_to, message.subject, html_body),
                    "threadId": message.thread_id,
                },
            ).execute()
        except HttpError as e:
            logger.error(f"[GMAIL] Failed to send auto-reply: {e}")
            return False
        logger.info("[GMAIL] Sent auto-reply")
        return True
