"""
Admin plan assignment through Stripe.

Replaces whatever the user's organisation is subscribed to with a fresh
subscription on the plan's configured price, then mirrors it into the
`subscriptions` table.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import stripe

from mailbridge.api.errors import ApiError
from mailbridge.infrastructure.supabase_store import StoreError, SupabaseStore, utc_now_iso

logger = logging.getLogger(__name__)

PLANS = ("starter", "pro", "enterprise")

DEFAULT_USAGE_PREFERENCES = {
    "usage_billing_enabled": False,
    "additional_drafts_limit": 0,
    "additional_messages_limit": 0,
    "monthly_spend_cap": 50.00,
}


def _timestamp_iso(value: Optional[int]) -> Optional[str]:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()


def _period(subscription, field: str) -> Optional[int]:
    """Billing period bound; newer API versions only carry it on the items."""
    value = subscription.get(field)
    if value:
        return value
    items = (subscription.get("items") or {}).get("data") or []
    return items[0].get(field) if items else None


class PlanAssignmentService:
    def __init__(self, config, store: SupabaseStore, admin_id: str):
        self.config = config
        self.store = store
        self.admin_id = admin_id

    def _find_or_create_customer(self, profile: Dict[str, Any], target_user_id: str) -> str:
        existing = stripe.Customer.list(email=profile["email"], limit=1)
        if existing.data:
            customer_id = existing.data[0].id
            logger.info(f"[BILLING] Found existing customer: {customer_id}")
            return customer_id

        customer = stripe.Customer.create(
            email=profile["email"],
            name=profile.get("full_name") or profile["email"],
            metadata={
                "user_id": target_user_id,
                "organization_id": profile.get("organization_id") or "",
                "assigned_by": self.admin_id,
            },
        )
        logger.info(f"[BILLING] Created customer: {customer.id}")
        return customer.id

    def assign(self, target_user_id: Optional[str], plan: Optional[str]) -> Dict[str, Any]:
        """
        Returns:
            {success, stripe_customer_id, stripe_subscription_id, plan}
        """
        if not self.config.STRIPE_SECRET_KEY:
            raise ApiError("STRIPE_SECRET_KEY not configured", 500)
        if not target_user_id or not plan:
            raise ApiError("target_user_id and plan required", 500)
        price_id = self.config.stripe_price_for(plan) if plan in PLANS else None
        if not price_id:
            raise ApiError(f"Invalid plan: {plan}. Must be starter, pro, or enterprise", 500)

        profile = self.store.get_profile(target_user_id, "email, full_name, organization_id")
        if not profile:
            raise ApiError("User profile not found", 500)

        stripe.api_key = self.config.STRIPE_SECRET_KEY
        try:
            customer_id = self._find_or_create_customer(profile, target_user_id)

            active = stripe.Subscription.list(customer=customer_id, status="active", limit=10)
            for subscription in active.data:
                stripe.Subscription.cancel(subscription.id)
                logger.info(f"[BILLING] Cancelled existing subscription: {subscription.id}")

            subscription = stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id}],
                metadata={
                    "user_id": target_user_id,
                    "organization_id": profile.get("organization_id") or "",
                    "assigned_by_admin": self.admin_id,
                },
            )
        except stripe.StripeError as e:
            logger.error(f"[BILLING] Stripe error: {e}")
            raise ApiError(str(e), 500)
        logger.info(f"[BILLING] Created subscription {subscription.id} ({plan})")

        try:
            self.store.upsert_row("subscriptions", {
                "user_id": target_user_id,
                "organization_id": profile.get("organization_id"),
                "plan": plan,
                "status": "active",
                "stripe_customer_id": customer_id,
                "stripe_subscription_id": subscription.id,
                "current_period_start": _timestamp_iso(_period(subscription, "current_period_start")),
                "current_period_end": _timestamp_iso(_period(subscription, "current_period_end")),
                "updated_at": utc_now_iso(),
            }, on_conflict="organization_id")
        except StoreError:
            raise ApiError("Failed to update subscription record", 500)

        try:
            self.store.delete_rows("user_plan_overrides", {"user_id": target_user_id})
            if not self.store.select_one("usage_preferences", "id", {"user_id": target_user_id}):
                self.store.insert_row("usage_preferences", {
                    "user_id": target_user_id,
                    "organization_id": profile.get("organization_id"),
                    **DEFAULT_USAGE_PREFERENCES,
                })
                logger.info(f"[BILLING] Created usage preferences for {target_user_id}")
        except StoreError as e:
            raise ApiError(str(e), 500)

        return {
            "success": True,
            "stripe_customer_id": customer_id,
            "stripe_subscription_id": subscription.id,
            "plan": plan,
        }
