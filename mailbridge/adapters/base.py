"""
Universal Email Provider Pattern

This module defines the base interface for mailbox providers (Gmail, Outlook)
used by the connect flow and the label/rule sync functions, plus the
TokenSet format every token endpoint response is parsed into.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests
from bs4 import BeautifulSoup
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

HTTP_TIMEOUT = 10
SEARCH_PAGE_SIZE = 50

PROVIDER_GOOGLE = "google"
PROVIDER_OUTLOOK = "outlook"
PROVIDER_ALIASES = {
    "google": PROVIDER_GOOGLE,
    "gmail": PROVIDER_GOOGLE,
    "outlook": PROVIDER_OUTLOOK,
    "microsoft": PROVIDER_OUTLOOK,
}


class ProviderError(Exception):
    """A provider token endpoint or API call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class UnsupportedProviderError(ValueError):
    def __init__(self, provider: Any):
        super().__init__(f"Unsupported provider: {provider}")
        self.provider = provider


def normalize_provider(name: Any) -> Optional[str]:
    """Canonical provider key, or None when the name is unknown."""
    if not isinstance(name, str):
        return None
    return PROVIDER_ALIASES.get(name.strip().lower())


class TokenSet(BaseModel):
    """
    Parsed token endpoint response.
    Unknown fields (scope, token_type, ext_expires_in...) are kept but unused.
    """
    model_config = ConfigDict(extra="allow")

    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = Field(default=None, description="Lifetime in seconds")
    id_token: Optional[str] = None


class MailMessage(BaseModel):
    """Provider-neutral view of one incoming email, enough to reply to it."""

    id: str
    subject: str = ""
    sender: str = ""
    body: str = ""
    thread_id: Optional[str] = None
    reply_to: str = ""


def html_to_text(html: str) -> str:
    """Convert HTML to plain text."""
    soup = BeautifulSoup(html, "html.parser")
    return soup.get_text(separator="\n").strip()


def reply_subject(subject: str) -> str:
    return subject if subject.startswith("Re:") else f"Re: {subject}"


class EmailProvider(ABC):
    """
    Abstract base class for mailbox provider adapters.

    All providers must implement this interface so the connect flow and the
    sync functions never branch on the provider name.
    """

    name: str = ""
    token_url: str = ""

    def __init__(self, client_id: str, client_secret: str,
                 session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()
        self._tag_cache: Dict[Any, str] = {}

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id)

    @abstractmethod
    def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        """
        Build the consent-screen URL.

        Args:
            redirect_uri: Where the provider sends the authorization code
            state: Signed state document
            code_challenge: S256 PKCE challenge
        """
        pass

    @abstractmethod
    def fetch_email(self, access_token: str) -> Optional[str]:
        """Mailbox address of the connected account, or None."""
        pass

    @abstractmethod
    def ensure_label(self, access_token: str, name: str, hex_color: str) -> bool:
        """Create the label/folder if missing. Returns success."""
        pass

    @abstractmethod
    def delete_label(self, access_token: str, name: str) -> bool:
        """Delete the label/folder if present. Missing counts as success."""
        pass

    @abstractmethod
    def find_label_id(self, access_token: str, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def apply_rule(self, access_token: str, rule: Dict[str, Any],
                   label_id: str, rule_name: str) -> bool:
        """
        Route mail matching `rule` (rule_type sender|domain|keyword, rule_value)
        into the label/folder `label_id`. Returns success.
        """
        pass

    # ------------------------------------------------------------------
    # Inbox processing
    # ------------------------------------------------------------------

    @abstractmethod
    def search_unread(self, access_token: str, category_label: str,
                      rule: Dict[str, Any]) -> List[str]:
        """
        Ids of unread messages for a rule: those already carrying the
        category label, else recent unread mail matching the rule itself.
        """
        pass

    @abstractmethod
    def get_message(self, access_token: str, message_id: str) -> Optional[MailMessage]:
        pass

    @abstractmethod
    def mark_read(self, access_token: str, message_id: str) -> bool:
        pass

    @abstractmethod
    def tag_message(self, access_token: str, message_id: str, name: str, hex_color: str) -> bool:
        """Add the label (Gmail) or category (Outlook) `name`, creating it if missing."""
        pass

    @abstractmethod
    def create_draft(self, access_token: str, message: MailMessage, html_body: str) -> Optional[str]:
        """Save an HTML reply as a draft in the message's thread. Returns the draft id."""
        pass

    @abstractmethod
    def send_reply(self, access_token: str, message: MailMessage, html_body: str) -> bool:
        pass

    # ------------------------------------------------------------------
    # Token endpoint (shared: both providers speak plain OAuth2 form posts)
    # ------------------------------------------------------------------

    def exchange_code(self, code: str, redirect_uri: str,
                      code_verifier: Optional[str] = None) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Raises:
            ProviderError: on a non-2xx response or unreadable body
        """
        data = {
            "code": code,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": redirect_uri,
            "grant_type": "authorization_code",
        }
        if code_verifier:
            data["code_verifier"] = code_verifier

        logger.info(f"[OAUTH] Exchanging {self.name} authorization code, redirect_uri={redirect_uri}")
        return self._token_request(data)

    def refresh(self, refresh_token: str) -> TokenSet:
        """
        Trade a refresh token for a new access token.
        Microsoft may rotate the refresh token; Google never does.
        """
        data = {
            "refresh_token": refresh_token,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "refresh_token",
        }
        logger.info(f"[OAUTH] Refreshing {self.name} access token...")
        return self._token_request(data)

    def _token_request(self, data: Dict[str, str]) -> TokenSet:
        try:
            response = self.session.post(self.token_url, data=data, timeout=HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise ProviderError(f"{self.name} token endpoint unreachable: {type(e).__name__}") from e

        if not response.ok:
            logger.error(f"[OAUTH] {self.name} token endpoint returned {response.status_code}: {response.text[:300]}")
            raise ProviderError(f"{self.name} token request failed", response.status_code)

        try:
            tokens = TokenSet.model_validate(response.json())
        except ValueError as e:
            raise ProviderError(f"{self.name} token response unreadable") from e

        logger.info(
            f"[OAUTH] {self.name} tokens received "
            f"(refresh_token={'yes' if tokens.refresh_token else 'no'}, expires_in={tokens.expires_in})"
        )
        return tokens

    def _auth_headers(self, access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    def _get_json(self, url: str, access_token: str) -> Optional[Dict[str, Any]]:
        response = self.session.get(url, headers=self._auth_headers(access_token), timeout=HTTP_TIMEOUT)
        if not response.ok:
            logger.error(f"[{self.name.upper()}] GET {url} failed: {response.status_code} {response.text[:300]}")
            return None
        return response.json()


def get_provider(name: Any, config, session: Optional[requests.Session] = None) -> EmailProvider:
    """
    Factory: build the adapter for a provider name (aliases accepted).

    Raises:
        UnsupportedProviderError: unknown provider name
    """
    from mailbridge.adapters.gmail import GoogleProvider
    from mailbridge.adapters.outlook import MicrosoftProvider

    canonical = normalize_provider(name)
    if canonical == PROVIDER_GOOGLE:
        return GoogleProvider(config.GOOGLE_CLIENT_ID, config.GOOGLE_CLIENT_SECRET, session=session)
    if canonical == PROVIDER_OUTLOOK:
        return MicrosoftProvider(config.MICROSOFT_CLIENT_ID, config.MICROSOFT_CLIENT_SECRET, session=session)
    raise UnsupportedProviderError(name)
