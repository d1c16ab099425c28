"""
Sync jobs and calendar activity logging.
"""

import logging
from typing import Any, Dict, Optional

import requests

from mailbridge.adapters.base import get_provider, UnsupportedProviderError
from mailbridge.api.errors import ApiError
from mailbridge.auth.credential_store import TokenVault
from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore, utc_now_iso
from mailbridge.security.security_manager import SecurityManager

logger = logging.getLogger(__name__)

JOB_TYPE_SYNC = "sync"
ACTIVITY_SCHEDULED_EVENT = "scheduled_event"


class SyncJobService:
    """
    Records a `jobs` row through pending -> running -> completed|failed.

    The work itself is a reachability pass over the caller's vault: every
    connected provider must yield a usable access token (refreshing it when
    expired). The job fails only when providers exist and none was reachable.
    """

    def __init__(self, config, store: SupabaseStore, security: Optional[SecurityManager],
                 session: Optional[requests.Session] = None):
        self.config = config
        self.store = store
        self.security = security
        self.session = session

    def _set_status(self, job_id: str, fields: Dict[str, Any]) -> None:
        try:
            self.store.update_rows("jobs", fields, {"id": job_id})
        except StoreError as e:
            logger.error(f"[JOBS] Failed to update job {job_id}: {e}")

    def _reachable_providers(self, user_id: str):
        vault = TokenVault(self.store, self.security)
        rows = vault.list_for_user(user_id)
        reachable = []
        for row in rows:
            try:
                provider = get_provider(row.get("provider"), self.config, session=self.session)
            except UnsupportedProviderError as e:
                logger.warning(f"[JOBS] {e}")
                continue
            if vault.get_valid_access_token(user_id, row, provider):
                reachable.append(row.get("provider"))
        return len(rows), reachable

    def process(self, user_id: str) -> Dict[str, Any]:
        profile = self.store.get_profile(user_id, "organization_id")
        if not profile:
            raise ApiError("User profile not found", 400)
        if self.security is None:
            raise ApiError("Server configuration error", 500)

        try:
            job = self.store.insert_row("jobs", {
                "organization_id": profile.get("organization_id"),
                "user_id": user_id,
                "job_type": JOB_TYPE_SYNC,
                "status": "pending",
            })
        except StoreError:
            job = None
        if not job:
            raise ApiError("Failed to create job", 500)

        job_id = job["id"]
        logger.info(f"[JOBS] Created job {job_id} for user {user_id}")
        self._set_status(job_id, {"status": "running", "started_at": utc_now_iso()})

        try:
            total, reachable = self._reachable_providers(user_id)
        except StoreError as e:
            total, reachable, error = None, [], str(e)
        else:
            error = None
            if total and not reachable:
                error = f"No connected provider could be reached ({total} checked)"

        if error:
            logger.error(f"[JOBS] Job {job_id} failed: {error}")
            self._set_status(job_id, {
                "status": "failed",
                "error_message": error,
                "completed_at": utc_now_iso(),
            })
            return {"success": False, "jobId": job_id, "message": error}

        self._set_status(job_id, {"status": "completed", "completed_at": utc_now_iso()})
        logger.info(f"[OK] [JOBS] Job {job_id} completed ({len(reachable)}/{total} providers reachable)")
        return {"success": True, "jobId": job_id, "message": "Sync completed successfully"}


def log_calendar_event(store: SupabaseStore, caller_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
    """Record a scheduled calendar event as an AI activity for the caller."""
    user_id = body.get("userId")
    if user_id != caller_id:
        logger.error("[CALENDAR] Request userId does not match authenticated user")
        raise ApiError("Forbidden", 403)

    organization_id = body.get("organizationId")
    category_name = body.get("categoryName")
    if not user_id or not organization_id or not category_name:
        raise ApiError("Missing required parameters: userId, organizationId, categoryName", 400)

    attendees = body.get("attendees") or []
    try:
        store.insert_row("ai_activity_logs", {
            "user_id": user_id,
            "organization_id": organization_id,
            "connection_id": body.get("connectionId") or None,
            "category_id": body.get("categoryId") or None,
            "category_name": category_name,
            "activity_type": ACTIVITY_SCHEDULED_EVENT,
            "email_subject": body.get("eventTitle") or "Calendar Event",
            "email_from": ", ".join(attendees) if attendees else None,
        })
    except StoreError as e:
        logger.error(f"[CALENDAR] Failed to log calendar event: {e}")
        raise ApiError("Failed to log calendar event", 500)

    logger.info(f"[OK] [CALENDAR] Logged calendar event for user {user_id}")
    return {"success": True}
