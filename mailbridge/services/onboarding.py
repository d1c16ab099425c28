"""
Default rows created for a new mailbox connection or a new account.

Both bootstraps are best effort: a failed insert is logged and the caller's
flow (connect or sign-in) still succeeds.
"""

import logging
from typing import Any, Dict, List

from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore

logger = logging.getLogger(__name__)

CONNECTION_DEFAULT_CATEGORIES = [
    ("Urgent", "#EF4444"),
    ("Follow Up", "#F97316"),
    ("Approvals", "#EAB308"),
    ("Meetings", "#22C55E"),
    ("Customers", "#06B6D4"),
    ("Vendors", "#3B82F6"),
    ("Internal", "#8B5CF6"),
    ("Projects", "#EC4899"),
    ("Finance", "#14B8A6"),
    ("FYI", "#6B7280"),
]

ACCOUNT_DEFAULT_CATEGORIES = [
    ("Urgent", "#ef4444"),
    ("Follow Up", "#f97316"),
    ("Approvals", "#eab308"),
    ("Events", "#22c55e"),
    ("Customers", "#3b82f6"),
    ("Vendors", "#8b5cf6"),
    ("Internal", "#ec4899"),
    ("Projects", "#06b6d4"),
    ("Finance", "#84cc16"),
    ("FYI", "#6b7280"),
]

DEFAULT_WRITING_STYLE = "professional"


def connection_category_rows(organization_id: str, connection_id: str) -> List[Dict[str, Any]]:
    return [
        {
            "organization_id": organization_id,
            "connection_id": connection_id,
            "name": name,
            "color": color,
            "sort_order": index,
            "is_enabled": True,
            "ai_draft_enabled": False,
            "auto_reply_enabled": False,
            "writing_style": DEFAULT_WRITING_STYLE,
        }
        for index, (name, color) in enumerate(CONNECTION_DEFAULT_CATEGORIES)
    ]


def initialize_connection_defaults(store: SupabaseStore, user_id: str,
                                   organization_id: str, connection_id: str) -> None:
    """Categories, AI settings and an empty email profile for a new connection."""
    logger.info(f"[ONBOARDING] Initializing defaults for connection {connection_id}")

    try:
        store.insert_rows("categories", connection_category_rows(organization_id, connection_id))
        logger.info(f"[ONBOARDING] Created {len(CONNECTION_DEFAULT_CATEGORIES)} default categories")
    except StoreError as e:
        logger.error(f"[ONBOARDING] Failed to create categories: {e}")

    try:
        store.insert_row("ai_settings", {
            "organization_id": organization_id,
            "connection_id": connection_id,
            "writing_style": DEFAULT_WRITING_STYLE,
            "ai_draft_label_color": "#3B82F6",
            "ai_sent_label_color": "#F97316",
        })
    except StoreError as e:
        logger.error(f"[ONBOARDING] Failed to create AI settings: {e}")

    try:
        store.insert_row("email_profiles", {
            "user_id": user_id,
            "organization_id": organization_id,
            "connection_id": connection_id,
            "full_name": None,
            "title": None,
            "email_signature": None,
        })
    except StoreError as e:
        logger.error(f"[ONBOARDING] Failed to create email profile: {e}")


def bootstrap_new_user(store: SupabaseStore, user_id: str, email: str, full_name: str) -> None:
    """Workspace, profile, admin role, categories and AI settings for a first sign-in."""
    try:
        organization = store.insert_row("organizations", {"name": f"{full_name}'s Workspace"})
        if not organization:
            logger.error("[ONBOARDING] Organization insert returned no row")
            return
        organization_id = organization["id"]

        store.insert_row("user_profiles", {
            "user_id": user_id,
            "organization_id": organization_id,
            "email": email,
            "full_name": full_name,
        })
        store.insert_row("user_roles", {
            "user_id": user_id,
            "organization_id": organization_id,
            "role": "admin",
        })
        store.insert_rows("categories", [
            {"name": name, "color": color, "sort_order": index, "organization_id": organization_id}
            for index, (name, color) in enumerate(ACCOUNT_DEFAULT_CATEGORIES)
        ])
        store.insert_row("ai_settings", {
            "organization_id": organization_id,
            "writing_style": DEFAULT_WRITING_STYLE,
        })
        logger.info(f"[ONBOARDING] Bootstrapped new user: org={organization_id}")
    except StoreError as e:
        logger.error(f"[ONBOARDING] Error bootstrapping new user {user_id}: {e}")
