from unittest.mock import MagicMock

import pytest
import stripe

from mailbridge.services import billing

MANAGE = "/functions/v1/admin-manage-users"
ASSIGN = "/functions/v1/admin-assign-stripe-plan"


class StripeObject(dict):
    """dict with attribute access, like stripe's own resource objects."""

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError:
            raise AttributeError(name)


@pytest.fixture
def admin(db):
    db.auth.login("admin-jwt", "admin-1", email="admin@example.com")
    db.seed("user_roles", {"user_id": "admin-1", "role": "super_admin"})
    db.seed("user_profiles", {"user_id": "admin-1", "organization_id": "org-admin"})
    return {"Authorization": "Bearer admin-jwt"}


@pytest.fixture
def fake_stripe(monkeypatch):
    mock = MagicMock()
    mock.StripeError = stripe.StripeError
    mock.Customer.list.return_value = StripeObject(data=[])
    mock.Customer.create.return_value = StripeObject(id="cus_new")
    mock.Subscription.list.return_value = StripeObject(data=[StripeObject(id="sub_old")])
    mock.Subscription.create.return_value = StripeObject(
        id="sub_new",
        items=StripeObject(data=[StripeObject(current_period_start=1700000000, current_period_end=1702592000)]),
    )
    monkeypatch.setattr(billing, "stripe", mock)
    return mock


@pytest.fixture
def target(db):
    db.seed("user_profiles", {"user_id": "user-9", "organization_id": "org-9",
                              "email": "target@example.com", "full_name": "Target User"})
    return "user-9"


def test_requires_super_admin(client, auth_headers):
    assert client.post(MANAGE, json={"action": "get_organizations"}).status_code == 401
    response = client.post(MANAGE, json={"action": "get_organizations"}, headers=auth_headers)
    assert response.status_code == 403
    assert response.json() == {"error": "Forbidden: super_admin only"}


def test_unknown_action(client, admin):
    response = client.post(MANAGE, json={"action": "explode"}, headers=admin)
    assert response.status_code == 400
    assert response.json() == {"error": "Unknown action: explode"}


def test_delete_account_cascades(client, db, admin, target):
    db.seed("ai_chat_conversations", {"id": "conv-1", "user_id": target})
    db.seed("ai_chat_messages", {"conversation_id": "conv-1"}, {"conversation_id": "conv-other"})
    db.seed("categories", {"organization_id": "org-9"}, {"organization_id": "org-admin"})
    db.seed("oauth_token_vault", {"user_id": target, "provider": "google"})

    response = client.post(MANAGE, json={"action": "delete_account", "target_user_id": target}, headers=admin)

    assert response.json() == {"success": True}
    assert [m["conversation_id"] for m in db.rows("ai_chat_messages")] == ["conv-other"]
    assert [c["organization_id"] for c in db.rows("categories")] == ["org-admin"]
    assert db.rows("oauth_token_vault") == []
    assert [p["user_id"] for p in db.rows("user_profiles")] == ["admin-1"]
    assert db.auth.admin.deleted == [target]


def test_cannot_delete_self_or_own_organization(client, admin):
    response = client.post(MANAGE, json={"action": "delete_account", "target_user_id": "admin-1"}, headers=admin)
    assert response.json() == {"error": "Cannot delete your own account"}
    response = client.post(MANAGE, json={"action": "delete_organization", "organization_id": "org-admin"},
                           headers=admin)
    assert response.json() == {"error": "Cannot delete your own organization"}


def test_delete_connection(client, db, admin):
    db.seed("provider_connections", {"id": "conn-1", "user_id": "user-9", "provider": "outlook"})
    db.seed("categories", {"connection_id": "conn-1"}, {"connection_id": "conn-2"})
    db.seed("oauth_token_vault", {"user_id": "user-9", "provider": "outlook"})

    response = client.post(MANAGE, json={"action": "delete_connection", "connection_id": "conn-1"}, headers=admin)

    assert response.json() == {"success": True}
    assert db.rows("provider_connections") == []
    assert [c["connection_id"] for c in db.rows("categories")] == ["conn-2"]
    assert db.rows("oauth_token_vault") == []

    response = client.post(MANAGE, json={"action": "delete_connection", "connection_id": "nope"}, headers=admin)
    assert response.json() == {"error": "Connection not found"}


def test_delete_organization_removes_members(client, db, admin, target):
    db.seed("organizations", {"id": "org-9", "name": "Nine"})
    db.seed("jobs", {"user_id": target})

    response = client.post(MANAGE, json={"action": "delete_organization", "organization_id": "org-9"},
                           headers=admin)

    assert response.json() == {"success": True}
    assert db.rows("organizations") == []
    assert db.rows("jobs") == []
    assert db.auth.admin.deleted == [target]


def test_organization_queries(client, db, admin, target):
    db.seed("organizations", {"id": "org-9", "name": "Nine"})
    db.seed("provider_connections", {"user_id": target, "provider": "google"})

    client.post(MANAGE, json={"action": "update_organization", "organization_id": "org-9", "name": "Renamed"},
                headers=admin)
    organizations = client.post(MANAGE, json={"action": "get_organizations"}, headers=admin).json()
    assert organizations["organizations"][0]["name"] == "Renamed"
    assert organizations["organizations"][0]["member_count"] == 1

    connections = client.post(MANAGE, json={"action": "get_user_connections", "target_user_id": target},
                              headers=admin).json()
    assert [c["provider"] for c in connections["connections"]] == ["google"]


def test_store_failure_is_reported(client, db, admin):
    db.fail("organizations", "select", "connection reset")
    response = client.post(MANAGE, json={"action": "get_organizations"}, headers=admin)
    assert response.status_code == 500
    assert "connection reset" in response.json()["error"]


def test_assign_plan(client, db, admin, target, fake_stripe):
    db.seed("user_plan_overrides", {"user_id": target, "plan": "free"})

    response = client.post(ASSIGN, json={"target_user_id": target, "plan": "pro"}, headers=admin)

    assert response.json() == {
        "success": True,
        "stripe_customer_id": "cus_new",
        "stripe_subscription_id": "sub_new",
        "plan": "pro",
    }
    assert fake_stripe.api_key == "sk_test_123"
    fake_stripe.Subscription.cancel.assert_called_once_with("sub_old")
    create_kwargs = fake_stripe.Subscription.create.call_args.kwargs
    assert create_kwargs["items"] == [{"price": "price_pro"}]
    assert create_kwargs["metadata"]["assigned_by_admin"] == "admin-1"

    subscription = db.rows("subscriptions")[0]
    assert subscription["organization_id"] == "org-9"
    assert subscription["current_period_start"].startswith("2023-11-14")
    assert db.rows("user_plan_overrides") == []
    assert db.rows("usage_preferences")[0]["monthly_spend_cap"] == 50.00


def test_assign_plan_reuses_customer(client, admin, target, fake_stripe):
    fake_stripe.Customer.list.return_value = StripeObject(data=[StripeObject(id="cus_existing")])
    body = client.post(ASSIGN, json={"target_user_id": target, "plan": "starter"}, headers=admin).json()
    assert body["stripe_customer_id"] == "cus_existing"
    fake_stripe.Customer.create.assert_not_called()


def test_assign_plan_validation(client, config, admin, target, fake_stripe):
    response = client.post(ASSIGN, json={"target_user_id": target, "plan": "gold"}, headers=admin)
    assert response.json() == {"error": "Invalid plan: gold. Must be starter, pro, or enterprise"}

    config.STRIPE_SECRET_KEY = ""
    response = client.post(ASSIGN, json={"target_user_id": target, "plan": "pro"}, headers=admin)
    assert response.json() == {"error": "STRIPE_SECRET_KEY not configured"}


def test_assign_plan_stripe_failure(client, db, admin, target, fake_stripe):
    fake_stripe.Subscription.create.side_effect = stripe.StripeError("Your card was declined.")
    response = client.post(ASSIGN, json={"target_user_id": target, "plan": "pro"}, headers=admin)
    assert response.status_code == 500
    assert response.json() == {"error": "Your card was declined."}
    assert db.rows("subscriptions") == []
