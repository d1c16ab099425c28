"""
Super-admin account management.

Deletes cascade child rows before their parents, user-scoped tables first,
then organisation-scoped ones, and the auth user last.
"""

import logging
from typing import Any, Callable, Dict, List

from mailbridge.api.errors import ApiError
from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore

logger = logging.getLogger(__name__)

# Rows owned by one user, deleted in this order (chat messages handled first)
USER_OWNED_TABLES = [
    "ai_chat_conversations",
    "ai_activity_logs",
    "availability_hours",
    "email_profiles",
]
USER_OWNED_TABLES_AFTER_ORG = [
    "jobs",
    "connect_attempts",
    "oauth_token_vault",
    "provider_connections",
    "user_plan_overrides",
    "white_label_configs",
    "subscriptions",
    "user_roles",
    "organization_members",
    "user_profiles",
]

# Rows keyed by connection_id
CONNECTION_OWNED_TABLES = [
    "availability_hours",
    "email_profiles",
    "ai_settings",
    "ai_activity_logs",
    "ai_chat_conversations",
    "rules",
    "categories",
]

# Per-member rows removed before an organisation goes
ORG_MEMBER_TABLES = [
    "ai_chat_conversations",
    "ai_activity_logs",
    "processed_emails",
    "jobs",
    "connect_attempts",
    "oauth_token_vault",
    "user_plan_overrides",
    "white_label_configs",
]
ORG_SCOPED_TABLES = [
    "availability_hours",
    "email_profiles",
    "ai_settings",
    "rules",
    "categories",
    "provider_connections",
    "subscriptions",
    "user_roles",
    "organization_members",
    "user_profiles",
]


class AdminService:
    def __init__(self, store: SupabaseStore, caller_id: str):
        self.store = store
        self.caller_id = caller_id
        self._actions: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
            "delete_account": self.delete_account,
            "delete_connection": self.delete_connection,
            "delete_organization": self.delete_organization,
            "update_organization": self.update_organization,
            "get_user_connections": self.get_user_connections,
            "get_organizations": self.get_organizations,
        }

    def handle(self, body: Dict[str, Any]) -> Dict[str, Any]:
        action = body.get("action")
        handler = self._actions.get(action)
        if handler is None:
            raise ApiError(f"Unknown action: {action}", 400)

        logger.info(f"[ADMIN] {action} requested by {self.caller_id}")
        try:
            return handler(body)
        except StoreError as e:
            raise ApiError(str(e), 500)

    def _delete_chat_messages(self, user_id: str) -> None:
        conversations = self.store.select_rows("ai_chat_conversations", "id", {"user_id": user_id})
        self.store.delete_in("ai_chat_messages", "conversation_id", [c["id"] for c in conversations])

    def _delete_auth_user(self, user_id: str) -> None:
        try:
            self.store.delete_auth_user(user_id)
        except Exception as e:
            raise ApiError(f"Failed to delete auth user: {e}", 500)

    def delete_account(self, body: Dict[str, Any]) -> Dict[str, Any]:
        target_user_id = body.get("target_user_id")
        if not target_user_id:
            raise ApiError("target_user_id required", 500)
        if target_user_id == self.caller_id:
            raise ApiError("Cannot delete your own account", 500)

        profile = self.store.get_profile(target_user_id, "organization_id") or {}
        organization_id = profile.get("organization_id")

        self._delete_chat_messages(target_user_id)
        for table in USER_OWNED_TABLES:
            self.store.delete_rows(table, {"user_id": target_user_id})
        if organization_id:
            self.store.delete_rows("ai_settings", {"organization_id": organization_id})
        self.store.delete_rows("processed_emails", {"user_id": target_user_id})
        if organization_id:
            self.store.delete_rows("rules", {"organization_id": organization_id})
            self.store.delete_rows("categories", {"organization_id": organization_id})
        for table in USER_OWNED_TABLES_AFTER_ORG:
            self.store.delete_rows(table, {"user_id": target_user_id})

        self._delete_auth_user(target_user_id)
        logger.info(f"[OK] [ADMIN] Deleted account {target_user_id}")
        return {"success": True}

    def delete_connection(self, body: Dict[str, Any]) -> Dict[str, Any]:
        connection_id = body.get("connection_id")
        if not connection_id:
            raise ApiError("connection_id required", 500)

        connection = self.store.select_one("provider_connections", "*", {"id": connection_id})
        if not connection:
            raise ApiError("Connection not found", 500)

        for table in CONNECTION_OWNED_TABLES:
            self.store.delete_rows(table, {"connection_id": connection_id})
        self.store.delete_vault_tokens(connection["user_id"], connection["provider"])
        self.store.delete_rows("provider_connections", {"id": connection_id})

        logger.info(f"[OK] [ADMIN] Deleted connection {connection_id}")
        return {"success": True}

    def delete_organization(self, body: Dict[str, Any]) -> Dict[str, Any]:
        organization_id = body.get("organization_id")
        if not organization_id:
            raise ApiError("organization_id required", 500)

        caller_profile = self.store.get_profile(self.caller_id, "organization_id") or {}
        if caller_profile.get("organization_id") == organization_id:
            raise ApiError("Cannot delete your own organization", 500)

        members = self.store.select_rows("user_profiles", "user_id", {"organization_id": organization_id})
        user_ids: List[str] = [m["user_id"] for m in members]

        for user_id in user_ids:
            self._delete_chat_messages(user_id)
            for table in ORG_MEMBER_TABLES:
                self.store.delete_rows(table, {"user_id": user_id})
        for table in ORG_SCOPED_TABLES:
            self.store.delete_rows(table, {"organization_id": organization_id})
        self.store.delete_rows("organizations", {"id": organization_id})

        for user_id in user_ids:
            self._delete_auth_user(user_id)

        logger.info(f"[OK] [ADMIN] Deleted organization {organization_id} ({len(user_ids)} members)")
        return {"success": True}

    def update_organization(self, body: Dict[str, Any]) -> Dict[str, Any]:
        organization_id = body.get("organization_id")
        name = body.get("name")
        if not organization_id or not name:
            raise ApiError("organization_id and name required", 500)
        self.store.update_rows("organizations", {"name": name}, {"id": organization_id})
        return {"success": True}

    def get_user_connections(self, body: Dict[str, Any]) -> Dict[str, Any]:
        target_user_id = body.get("target_user_id")
        if not target_user_id:
            raise ApiError("target_user_id required", 500)
        connections = self.store.select_rows(
            "provider_connections",
            "id, provider, connected_email, is_connected, connected_at",
            {"user_id": target_user_id},
        )
        return {"connections": connections}

    def get_organizations(self, body: Dict[str, Any]) -> Dict[str, Any]:
        organizations = self.store.select_rows("organizations", "id, name, created_at")
        return {
            "organizations": [
                {**org, "member_count": self.store.count_rows("user_profiles", {"organization_id": org["id"]})}
                for org in organizations
            ]
        }
