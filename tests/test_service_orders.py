from koihire import models

from .conftest import SERVICE


def test_place_order_prices_and_escrow(client_user, freelancer, order):
    assert order["order_number"].startswith("SRV-")
    assert order["status"] == "PENDING"
    assert order["payment_status"] == "PENDING"
    assert order["package_price"] == 100
    assert order["buyer_fee"] == 2.5
    assert order["seller_commission"] == 12.5
    assert order["total_amount"] == 102.5
    assert order["delivery_date"] is not None
    assert order["revisions_remaining"] == 1

    escrow = client_user.get(f"/escrow/service-order/{order['id']}").json()
    assert escrow["status"] == "PENDING"
    assert escrow["amount"] == 102.5

    sales = freelancer.get("/service-orders").json()
    assert [o["id"] for o in sales["items"]] == [order["id"]]
    types = [n["type"] for n in freelancer.get("/notifications").json()["items"]]
    assert "SERVICE_ORDER_RECEIVED" in types


def test_package_must_belong_to_service(client_user, freelancer, service):
    other = freelancer.post("/services", json={**SERVICE, "title": "I will write your copy"}).json()
    response = client_user.post("/service-orders", json={
        "service_id": service["id"], "package_id": other["packages"][0]["id"],
    })
    assert response.status_code == 400


def test_inactive_service_cannot_be_ordered(client_user, freelancer, service):
    freelancer.post(f"/services/{service['id']}/toggle-active")
    response = client_user.post("/service-orders", json={
        "service_id": service["id"], "package_id": service["packages"][0]["id"],
    })
    assert response.status_code == 404


def test_outsider_cannot_view_order(register, order):
    outsider = register("bob")
    assert outsider.get(f"/service-orders/{order['id']}").status_code == 403


def test_seller_accepts_only_paid_orders(client_user, freelancer, order):
    assert freelancer.post(f"/service-orders/{order['id']}/accept").status_code == 400
    response = client_user.post(f"/payments/service-orders/{order['id']}/pay")
    assert response.json()["escrow"]["status"] == "FUNDED"
    assert client_user.post(f"/payments/service-orders/{order['id']}/pay").status_code == 400
    assert client_user.post(f"/service-orders/{order['id']}/accept").status_code == 403
    assert freelancer.post(f"/service-orders/{order['id']}/accept").json()["status"] == "ACCEPTED"


def test_full_order_cycle_with_revision(client_user, freelancer, service, paid_order):
    order_id = paid_order["id"]
    freelancer.post(f"/service-orders/{order_id}/accept")
    assert freelancer.post(f"/service-orders/{order_id}/start").json()["status"] == "IN_PROGRESS"

    delivered = freelancer.post(f"/service-orders/{order_id}/deliver", json={
        "title": "First draft", "files": ["/uploads/abc_draft.png"],
    }).json()
    assert delivered["status"] == "DELIVERED"
    assert delivered["deliverables"][0]["title"] == "First draft"

    revised = client_user.post(f"/service-orders/{order_id}/revision", json={"note": "Bigger logo please"}).json()
    assert revised["status"] == "REVISION_REQUESTED"
    assert revised["revisions_used"] == 1
    assert revised["revisions_remaining"] == 0
    assert revised["deliverables"][0]["revision_note"] == "Bigger logo please"

    freelancer.post(f"/service-orders/{order_id}/deliver", json={"title": "Second draft"})
    response = client_user.post(f"/service-orders/{order_id}/revision", json={"note": "One more change"})
    assert response.status_code == 400

    approved = client_user.post(f"/service-orders/{order_id}/approve").json()
    assert approved["status"] == "COMPLETED"
    assert approved["payment_status"] == "RELEASED"
    assert client_user.get(f"/services/{service['id']}").json()["orders_completed"] == 1

    payouts = freelancer.get("/payouts/mine").json()
    assert payouts["pending_total"] == 87.5


def test_review_completed_order(client_user, freelancer, service, paid_order):
    order_id = paid_order["id"]
    assert client_user.post(f"/service-orders/{order_id}/review", json={"rating": 5}).status_code == 400

    freelancer.post(f"/service-orders/{order_id}/accept")
    freelancer.post(f"/service-orders/{order_id}/start")
    freelancer.post(f"/service-orders/{order_id}/deliver", json={"title": "Final files"})
    client_user.post(f"/service-orders/{order_id}/approve")

    response = client_user.post(f"/service-orders/{order_id}/review", json={
        "rating": 4, "quality": 5, "comment": "Fast and friendly",
    })
    assert response.status_code == 201
    assert response.json()["rating"] == 4
    assert client_user.post(f"/service-orders/{order_id}/review", json={"rating": 5}).status_code == 409

    listed = client_user.get(f"/services/{service['id']}").json()
    assert listed["rating"] == 4.0
    assert listed["review_count"] == 1
    assert len(client_user.get(f"/services/{service['id']}/reviews").json()) == 1


def test_cancel_unpaid_order_drops_escrow(client_user, freelancer, order):
    response = client_user.post(f"/service-orders/{order['id']}/cancel", json={"reason": "Ordered by mistake"})
    assert response.json()["status"] == "CANCELLED"
    assert client_user.get(f"/escrow/service-order/{order['id']}").status_code == 404
    types = [n["type"] for n in freelancer.get("/notifications").json()["items"]]
    assert "SERVICE_ORDER_CANCELLED" in types


def test_cancel_paid_order_refunds(client_user, freelancer, paid_order):
    freelancer.post(f"/service-orders/{paid_order['id']}/accept")
    response = freelancer.post(f"/service-orders/{paid_order['id']}/cancel", json={})
    assert response.json()["payment_status"] == "REFUNDED"
    assert client_user.get(f"/escrow/service-order/{paid_order['id']}").json()["status"] == "REFUNDED"


def test_cannot_cancel_after_work_starts(client_user, freelancer, paid_order):
    freelancer.post(f"/service-orders/{paid_order['id']}/accept")
    freelancer.post(f"/service-orders/{paid_order['id']}/start")
    assert client_user.post(f"/service-orders/{paid_order['id']}/cancel", json={}).status_code == 400


def test_dispute_then_admin_release(client_user, freelancer, admin, paid_order):
    order_id = paid_order["id"]
    freelancer.post(f"/service-orders/{order_id}/accept")
    freelancer.post(f"/service-orders/{order_id}/start")
    response = client_user.post(f"/service-orders/{order_id}/dispute", json={"reason": "Nothing delivered after two weeks"})
    assert response.json()["status"] == "DISPUTED"

    released = admin.post(f"/admin/service-orders/{order_id}/release", json={"notes": "Work verified"}).json()
    assert released["status"] == "COMPLETED"
    assert released["payment_status"] == "RELEASED"


def _deliver_and_approve(client_user, freelancer, order_id):
    freelancer.post(f"/service-orders/{order_id}/accept")
    freelancer.post(f"/service-orders/{order_id}/start")
    freelancer.post(f"/service-orders/{order_id}/deliver", json={"title": "Final files"})
    response = client_user.post(f"/service-orders/{order_id}/approve")
    assert response.status_code == 200, response.text
    return response.json()


def test_buyer_refund_cancels_order(client_user, freelancer, paid_order):
    order_id = paid_order["id"]
    assert freelancer.post(f"/payments/service-orders/{order_id}/refund", json={}).status_code == 403

    response = client_user.post(f"/payments/service-orders/{order_id}/refund", json={"reason": "Changed my plans"})
    assert response.status_code == 200
    assert response.json()["status"] == "REFUNDED"

    order = client_user.get(f"/service-orders/{order_id}").json()
    assert order["status"] == "CANCELLED"
    assert order["payment_status"] == "REFUNDED"
    assert order["cancel_reason"] == "Changed my plans"
    types = [n["type"] for n in freelancer.get("/notifications").json()["items"]]
    assert "SERVICE_ORDER_CANCELLED" in types


def test_buyer_refund_refused_once_work_started(client_user, freelancer, paid_order):
    order_id = paid_order["id"]
    freelancer.post(f"/service-orders/{order_id}/accept")
    freelancer.post(f"/service-orders/{order_id}/start")

    response = client_user.post(f"/payments/service-orders/{order_id}/refund", json={"reason": "Too slow"})
    assert response.status_code == 400
    assert client_user.get(f"/escrow/service-order/{order_id}").json()["status"] == "FUNDED"
    assert client_user.get(f"/service-orders/{order_id}").json()["status"] == "IN_PROGRESS"


def test_small_earnings_are_held_below_minimum_payout(client_user, freelancer):
    service = freelancer.post("/services", json={
        **SERVICE,
        "title": "I will proofread one page",
        "packages": [{**SERVICE["packages"][0], "price": 10}],
    }).json()
    order = client_user.post("/service-orders", json={
        "service_id": service["id"], "package_id": service["packages"][0]["id"],
    }).json()
    client_user.post(f"/payments/service-orders/{order['id']}/pay")
    _deliver_and_approve(client_user, freelancer, order["id"])

    payout = freelancer.get("/payouts/mine").json()["items"][0]
    assert payout["amount"] == 8.75
    assert payout["status"] == "PENDING"
    assert "minimum" in payout["admin_notes"]


def test_payout_waits_for_payout_method(client_user, freelancer, paid_order, db):
    user = db.get(models.User, freelancer.user["id"])
    user.payout_method = None
    user.payout_email = None
    db.commit()

    _deliver_and_approve(client_user, freelancer, paid_order["id"])
    payout = freelancer.get("/payouts/mine").json()["items"][0]
    assert payout["amount"] == 87.5
    assert payout["status"] == "PENDING"
    assert payout["payout_method"] is None
    assert payout["admin_notes"] == "Waiting for the freelancer to add a payout method"


def test_disputed_order_refunded_by_admin_only(client_user, freelancer, admin, paid_order):
    order_id = paid_order["id"]
    freelancer.post(f"/service-orders/{order_id}/accept")
    freelancer.post(f"/service-orders/{order_id}/start")
    client_user.post(f"/service-orders/{order_id}/dispute", json={"reason": "Nothing delivered after two weeks"})

    assert client_user.post(f"/payments/service-orders/{order_id}/refund", json={}).status_code == 400
    response = admin.post(f"/payments/service-orders/{order_id}/refund", json={"reason": "Seller missed the deadline"})
    assert response.json()["status"] == "REFUNDED"
    assert client_user.get(f"/service-orders/{order_id}").json()["status"] == "CANCELLED"
