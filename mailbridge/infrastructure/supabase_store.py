"""
Supabase persistence for the functions service.

All writes go through the service-role client. Every query failure surfaces
as StoreError so services can map it to the right HTTP answer; nothing here
swallows an error except the auth lookups that answer "not found".
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from postgrest.exceptions import APIError
from supabase import Client, create_client

logger = logging.getLogger(__name__)

LIST_USERS_PAGE_SIZE = 1000


class StoreError(Exception):
    """A Supabase query failed."""


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _first(data) -> Optional[Dict[str, Any]]:
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class SupabaseStore:
    def __init__(self, client: Optional[Client] = None,
                 url: Optional[str] = None, key: Optional[str] = None):
        if client is None:
            if not url or not key:
                raise RuntimeError("Supabase environment variables missing")
            client = create_client(url, key)
        self.client = client

    def _execute(self, query, what: str):
        try:
            return query.execute()
        except APIError as e:
            logger.error(f"[DB] {what} failed: {e.message}")
            raise StoreError(f"{what} failed: {e.message}") from e

    # ------------------------------------------------------------------
    # Generic helpers
    # ------------------------------------------------------------------

    def select_rows(self, table: str, columns: str = "*",
                    filters: Optional[Dict[str, Any]] = None,
                    order: Optional[str] = None) -> List[Dict[str, Any]]:
        query = self.client.table(table).select(columns)
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        if order:
            query = query.order(order)
        result = self._execute(query, f"select {table}")
        return result.data or []

    def select_one(self, table: str, columns: str = "*",
                   filters: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        query = self.client.table(table).select(columns)
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        result = self._execute(query.limit(1), f"select {table}")
        return _first(result.data)

    def count_rows(self, table: str, filters: Optional[Dict[str, Any]] = None) -> int:
        query = self.client.table(table).select("id", count="exact")
        for column, value in (filters or {}).items():
            query = query.eq(column, value)
        result = self._execute(query, f"count {table}")
        if result.count is not None:
            return result.count
        return len(result.data or [])

    def insert_rows(self, table: str, rows) -> List[Dict[str, Any]]:
        result = self._execute(self.client.table(table).insert(rows), f"insert {table}")
        return result.data or []

    def insert_row(self, table: str, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return _first(self.insert_rows(table, row))

    def upsert_row(self, table: str, row: Dict[str, Any], on_conflict: str) -> Optional[Dict[str, Any]]:
        query = self.client.table(table).upsert(row, on_conflict=on_conflict)
        result = self._execute(query, f"upsert {table}")
        return _first(result.data)

    def update_rows(self, table: str, fields: Dict[str, Any],
                    filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        query = self.client.table(table).update(fields)
        for column, value in filters.items():
            query = query.eq(column, value)
        result = self._execute(query, f"update {table}")
        return result.data or []

    def delete_rows(self, table: str, filters: Dict[str, Any]) -> None:
        query = self.client.table(table).delete()
        for column, value in filters.items():
            query = query.eq(column, value)
        self._execute(query, f"delete {table}")

    def delete_in(self, table: str, column: str, values: Iterable[Any]) -> None:
        values = list(values)
        if not values:
            return
        self._execute(self.client.table(table).delete().in_(column, values), f"delete {table}")

    # ------------------------------------------------------------------
    # Auth (GoTrue admin API)
    # ------------------------------------------------------------------

    def get_auth_user(self, jwt: str):
        """User behind a platform access token, or None when it is invalid."""
        try:
            response = self.client.auth.get_user(jwt)
        except Exception as e:
            logger.warning(f"[AUTH] Token rejected: {type(e).__name__}")
            return None
        return getattr(response, "user", None)

    def find_auth_user_by_email(self, email: str):
        """Page through auth users until one matches `email` (case-insensitive)."""
        target = email.lower()
        page = 1
        while True:
            users = self.client.auth.admin.list_users(page=page, per_page=LIST_USERS_PAGE_SIZE)
            for user in users or []:
                if (getattr(user, "email", None) or "").lower() == target:
                    return user
            if not users or len(users) < LIST_USERS_PAGE_SIZE:
                return None
            page += 1

    def create_auth_user(self, email: str, metadata: Dict[str, Any]):
        response = self.client.auth.admin.create_user({
            "email": email,
            "email_confirm": True,
            "user_metadata": metadata,
        })
        return response.user

    def generate_magic_link_hash(self, email: str) -> Optional[str]:
        response = self.client.auth.admin.generate_link({"type": "magiclink", "email": email})
        properties = getattr(response, "properties", None)
        return getattr(properties, "hashed_token", None) if properties else None

    def delete_auth_user(self, user_id: str) -> None:
        self.client.auth.admin.delete_user(user_id)

    # ------------------------------------------------------------------
    # Profiles and roles
    # ------------------------------------------------------------------

    def get_profile(self, user_id: str, columns: str = "*") -> Optional[Dict[str, Any]]:
        return self.select_one("user_profiles", columns, {"user_id": user_id})

    def is_super_admin(self, user_id: str) -> bool:
        row = self.select_one("user_roles", "role", {"user_id": user_id, "role": "super_admin"})
        return row is not None

    # ------------------------------------------------------------------
    # Token vault
    # ------------------------------------------------------------------

    def upsert_vault_tokens(self, row: Dict[str, Any]) -> None:
        self.upsert_row("oauth_token_vault", row, on_conflict="user_id,provider")

    def list_vault_tokens(self, user_id: str) -> List[Dict[str, Any]]:
        return self.select_rows(
            "oauth_token_vault",
            "provider, encrypted_access_token, encrypted_refresh_token, expires_at",
            {"user_id": user_id},
        )

    def update_vault_tokens(self, user_id: str, provider: str, fields: Dict[str, Any]) -> None:
        self.update_rows("oauth_token_vault", fields, {"user_id": user_id, "provider": provider})

    def delete_vault_tokens(self, user_id: str, provider: str) -> None:
        self.delete_rows("oauth_token_vault", {"user_id": user_id, "provider": provider})

    # ------------------------------------------------------------------
    # Provider connections
    # ------------------------------------------------------------------

    def get_connection(self, user_id: str, provider: str) -> Optional[Dict[str, Any]]:
        return self.select_one("provider_connections", "id", {"user_id": user_id, "provider": provider})

    def upsert_connection(self, row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.upsert_row("provider_connections", row, on_conflict="user_id,provider")

    def list_connections(self, user_id: str) -> List[Dict[str, Any]]:
        return self.select_rows(
            "provider_connections",
            "id, provider, connected_email, is_connected, connected_at, calendar_connected, organization_id",
            {"user_id": user_id},
        )

    def log_connect_attempt(self, row: Dict[str, Any]) -> None:
        """Audit row for one stage of a connect flow; failures are logged only."""
        try:
            self.insert_row("connect_attempts", row)
        except StoreError as e:
            logger.warning(f"[OAUTH] Failed to log connect attempt: {e}")

    # ------------------------------------------------------------------
    # Categories and rules
    # ------------------------------------------------------------------

    def list_categories(self, organization_id: str,
                        columns: str = "id, name, color, is_enabled, sort_order") -> List[Dict[str, Any]]:
        return self.select_rows("categories", columns, {"organization_id": organization_id}, order="sort_order")

    def mark_categories_synced(self, category_ids: List[str]) -> None:
        if not category_ids:
            return
        query = self.client.table("categories").update({"last_synced_at": utc_now_iso()}).in_("id", category_ids)
        self._execute(query, "update categories")

    def list_enabled_rules(self, organization_id: str, rule_id: Optional[str] = None) -> List[Dict[str, Any]]:
        filters = {"organization_id": organization_id, "is_enabled": True}
        if rule_id:
            filters["id"] = rule_id
        return self.select_rows("rules", "id, rule_type, rule_value, is_enabled, category_id", filters)

    # ------------------------------------------------------------------
    # AI inbox processing
    # ------------------------------------------------------------------

    def list_ai_categories(self, organization_id: str,
                           category_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Enabled categories with AI drafting or auto-reply switched on."""
        filters = {"organization_id": organization_id, "is_enabled": True}
        if category_id:
            filters["id"] = category_id
        rows = self.select_rows(
            "categories",
            "id, name, writing_style, ai_draft_enabled, auto_reply_enabled, sort_order",
            filters,
        )
        return [c for c in rows if c.get("ai_draft_enabled") or c.get("auto_reply_enabled")]

    def list_ai_organization_ids(self) -> List[str]:
        rows = self.select_rows(
            "categories",
            "organization_id, ai_draft_enabled, auto_reply_enabled",
            {"is_enabled": True},
        )
        org_ids: List[str] = []
        for row in rows:
            if not (row.get("ai_draft_enabled") or row.get("auto_reply_enabled")):
                continue
            if row.get("organization_id") and row["organization_id"] not in org_ids:
                org_ids.append(row["organization_id"])
        return org_ids

    def list_rules_for_categories(self, organization_id: str,
                                  category_ids: List[str]) -> List[Dict[str, Any]]:
        if not category_ids:
            return []
        query = (
            self.client.table("rules").select("*")
            .eq("organization_id", organization_id)
            .eq("is_enabled", True)
            .in_("category_id", category_ids)
        )
        return self._execute(query, "select rules").data or []

    def get_ai_settings(self, organization_id: str) -> Dict[str, Any]:
        return self.select_one("ai_settings", "*", {"organization_id": organization_id}) or {}

    def processed_email_keys(self, user_id: str) -> Set[str]:
        """Dedupe keys (email_id:category_id:action_type) of mail already handled."""
        rows = self.select_rows("processed_emails", "email_id, action_type, category_id", {"user_id": user_id})
        return {f"{r.get('email_id')}:{r.get('category_id')}:{r.get('action_type')}" for r in rows}

    def record_processed_email(self, row: Dict[str, Any]) -> None:
        self.insert_row("processed_emails", row)

    def log_ai_activity(self, row: Dict[str, Any]) -> None:
        self.insert_row("ai_activity_logs", row)

    def list_organization_profiles(self, organization_id: str, columns: str) -> List[Dict[str, Any]]:
        return self.select_rows("user_profiles", columns, {"organization_id": organization_id})

    def has_vault_tokens(self, user_id: str) -> bool:
        return self.select_one("oauth_token_vault", "id", {"user_id": user_id}) is not None
