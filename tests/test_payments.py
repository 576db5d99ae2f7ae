import hashlib
import hmac
import json
import time
from types import SimpleNamespace

import pytest
import stripe

from koihire import models, payments
from koihire.models import EscrowStatus, TransactionType

WEBHOOK_SECRET = "whsec_test_secret"


def signed(payload: str, secret=WEBHOOK_SECRET):
    timestamp = int(time.time())
    signature = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}", "Content-Type": "application/json"}


def event(event_id, event_type, obj):
    return json.dumps({"id": event_id, "type": event_type, "data": {"object": obj}})


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(payments, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)


def test_fund_project_settles_internally(client_user, freelancer, assigned_project):
    response = client_user.post(f"/payments/projects/{assigned_project['id']}/fund")
    assert response.status_code == 200
    body = response.json()
    assert body["requires_confirmation"] is False
    assert body["client_secret"] is None
    escrow = body["escrow"]
    assert escrow["status"] == "FUNDED"
    assert escrow["amount"] == 820.0
    assert escrow["payment_reference"].startswith("internal-")
    assert escrow["transactions"][0]["type"] == "DEPOSIT"

    types = [n["type"] for n in freelancer.get("/notifications").json()["items"]]
    assert "ESCROW_FUNDED" in types
    assert client_user.get("/users/me/client-stats").json()["held_in_escrow"] == 820.0


def test_fund_twice_conflicts(client_user, funded_project):
    assert client_user.post(f"/payments/projects/{funded_project['id']}/fund").status_code == 409


def test_only_client_funds(freelancer, assigned_project):
    assert freelancer.post(f"/payments/projects/{assigned_project['id']}/fund").status_code == 403


def test_open_project_cannot_be_funded(client_user, open_project):
    assert client_user.post(f"/payments/projects/{open_project['id']}/fund").status_code == 400


def test_release_on_approval_splits_fees(client_user, freelancer, funded_project, db):
    project_id = funded_project["id"]
    freelancer.post(f"/projects/{project_id}/submit")
    assert client_user.post(f"/projects/{project_id}/approve").status_code == 200

    escrow = client_user.get(f"/escrow/project/{project_id}").json()
    assert escrow["status"] == "RELEASED"
    assert escrow["released_at"] is not None

    rows = db.query(models.Transaction).filter(models.Transaction.escrow_id == escrow["id"]).all()
    by_kind = {(t.type, t.user_id): t.amount for t in rows}
    client_id = client_user.user["id"]
    freelancer_id = freelancer.user["id"]
    assert by_kind[(TransactionType.DEPOSIT, client_id)] == 820.0
    assert by_kind[(TransactionType.FEE, client_id)] == 20.0
    assert by_kind[(TransactionType.FEE, freelancer_id)] == 100.0
    assert by_kind[(TransactionType.WITHDRAWAL, freelancer_id)] == 700.0

    assert freelancer.get("/auth/me").json()["total_earnings"] == 700.0
    assert client_user.get("/auth/me").json()["total_spent"] == 820.0

    payouts = freelancer.get("/payouts/mine").json()
    assert payouts["pending_total"] == 700.0
    assert payouts["items"][0]["payout_method"] == "PAYPAL"
    assert payouts["items"][0]["status"] == "PENDING"


def test_release_requires_completed_project(client_user, funded_project):
    response = client_user.post(f"/payments/projects/{funded_project['id']}/release")
    assert response.status_code == 400


def test_refund_funded_project(client_user, freelancer, funded_project):
    project_id = funded_project["id"]
    assert freelancer.post(f"/payments/projects/{project_id}/refund", json={}).status_code == 403

    response = client_user.post(f"/payments/projects/{project_id}/refund", json={"reason": "Freelancer unavailable"})
    assert response.status_code == 200
    assert response.json()["status"] == "REFUNDED"
    refunds = client_user.get("/payments/transactions", params={"type": "REFUND"}).json()["items"]
    assert refunds[0]["amount"] == 820.0
    assert refunds[0]["description"] == "Freelancer unavailable"

    again = client_user.post(f"/payments/projects/{project_id}/refund", json={})
    assert again.status_code == 400


def test_stripe_connect_payout_completes_immediately(client_user, freelancer, funded_project):
    freelancer.put("/users/me/payout-method", json={
        "payout_method": "STRIPE_CONNECT", "stripe_connect_account_id": "acct_123",
    })
    project_id = funded_project["id"]
    freelancer.post(f"/projects/{project_id}/submit")
    client_user.post(f"/projects/{project_id}/approve")

    payouts = freelancer.get("/payouts/mine").json()
    assert payouts["completed_total"] == 700.0
    assert payouts["items"][0]["status"] == "COMPLETED"


def test_payout_method_validation(freelancer):
    response = freelancer.put("/users/me/payout-method", json={"payout_method": "STRIPE_CONNECT"})
    assert response.status_code == 422
    response = freelancer.put("/users/me/payout-method", json={"payout_method": "PAYPAL"})
    assert response.status_code == 422


def test_webhook_requires_configured_secret(anon):
    payload = event("evt_1", "payment_intent.succeeded", {"id": "pi_1"})
    assert anon.post("/payments/webhook", content=payload, headers=signed(payload)).status_code == 503


def test_webhook_rejects_bad_signature(anon, webhook_secret):
    payload = event("evt_1", "payment_intent.succeeded", {"id": "pi_1"})
    response = anon.post("/payments/webhook", content=payload, headers=signed(payload, secret="whsec_other"))
    assert response.status_code == 400
    assert anon.post("/payments/webhook", content=payload).status_code == 400


def test_webhook_funds_pending_escrow_once(client_user, freelancer, order, db, webhook_secret):
    escrow = db.query(models.Escrow).filter(models.Escrow.service_order_id == order["id"]).first()
    assert escrow.status == EscrowStatus.PENDING
    escrow.payment_reference = "pi_test_123"
    db.commit()

    payload = event("evt_funded", "payment_intent.amount_capturable_updated", {"id": "pi_test_123"})
    response = client_user.post("/payments/webhook", content=payload, headers=signed(payload))
    assert response.status_code == 200
    assert response.json() == {"received": True, "duplicate": False}

    assert client_user.get(f"/service-orders/{order['id']}").json()["payment_status"] == "PAID"
    assert client_user.get(f"/escrow/service-order/{order['id']}").json()["status"] == "FUNDED"

    response = client_user.post("/payments/webhook", content=payload, headers=signed(payload))
    assert response.json()["duplicate"] is True
    deposits = client_user.get("/payments/transactions", params={"type": "DEPOSIT"}).json()["items"]
    assert len(deposits) == 1


def test_webhook_refund_event(client_user, paid_order, db, webhook_secret):
    escrow = db.query(models.Escrow).filter(models.Escrow.service_order_id == paid_order["id"]).first()
    reference = escrow.payment_reference

    payload = event("evt_refund", "charge.refunded", {"id": "ch_1", "payment_intent": reference})
    assert client_user.post("/payments/webhook", content=payload, headers=signed(payload)).status_code == 200
    assert client_user.get(f"/escrow/service-order/{paid_order['id']}").json()["status"] == "REFUNDED"


def test_webhook_unknown_reference_is_recorded(anon, db, webhook_secret):
    payload = event("evt_other", "payment_intent.succeeded", {"id": "pi_unknown"})
    assert anon.post("/payments/webhook", content=payload, headers=signed(payload)).json()["duplicate"] is False
    assert db.query(models.WebhookEvent).filter(models.WebhookEvent.event_id == "evt_other").count() == 1


@pytest.fixture
def stripe_gateway(monkeypatch):
    created = []

    def create_intent(**kwargs):
        created.append(kwargs)
        return SimpleNamespace(id=f"pi_upgrade_{len(created)}", client_secret="cs_upgrade")

    monkeypatch.setattr(stripe, "api_key", "sk_test_upgrade")
    monkeypatch.setattr(stripe.PaymentIntent, "create", create_intent)
    return created


def test_upgrade_waits_for_settled_charge(client_user, open_project, stripe_gateway, webhook_secret):
    project_id = open_project["id"]
    response = client_user.post(f"/projects/{project_id}/feature", json={"level": "PREMIUM"})
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "PENDING"
    assert body["client_secret"] == "cs_upgrade"
    assert body["project"]["featured_level"] == "NONE"
    assert stripe_gateway[0]["metadata"]["project_id"] == str(project_id)

    payload = event("evt_upgrade_paid", "payment_intent.succeeded", {"id": "pi_upgrade_1"})
    assert client_user.post("/payments/webhook", content=payload, headers=signed(payload)).status_code == 200
    assert client_user.get(f"/projects/{project_id}").json()["featured_level"] == "PREMIUM"
    fees = client_user.get("/payments/transactions", params={"type": "FEE"}).json()["items"]
    assert fees[0]["status"] == "COMPLETED"


def test_failed_upgrade_charge_grants_nothing(freelancer, service, stripe_gateway, webhook_secret):
    response = freelancer.post(f"/services/{service['id']}/feature", json={"level": "SPOTLIGHT"})
    assert response.json()["service"]["featured_level"] == "NONE"

    payload = event("evt_upgrade_failed", "payment_intent.payment_failed", {"id": "pi_upgrade_1"})
    assert freelancer.post("/payments/webhook", content=payload, headers=signed(payload)).status_code == 200
    assert freelancer.get(f"/services/{service['id']}").json()["featured_level"] == "NONE"
    fees = freelancer.get("/payments/transactions", params={"type": "FEE"}).json()["items"]
    assert fees[0]["status"] == "FAILED"
