from .conftest import SERVICE


def test_create_service(freelancer, anon):
    response = freelancer.post("/services", json=SERVICE)
    assert response.status_code == 201
    service = response.json()
    assert [p["tier"] for p in service["packages"]] == ["BASIC", "PREMIUM"]
    assert service["starting_price"] == 100
    assert service["freelancer"]["username"] == "carol"

    page = anon.get("/services", params={"search": "landing"}).json()
    assert page["pagination"]["total"] == 1


def test_clients_cannot_create_services(client_user):
    assert client_user.post("/services", json=SERVICE).status_code == 403


def test_package_tiers_must_be_unique(freelancer):
    packages = [SERVICE["packages"][0], {**SERVICE["packages"][1], "tier": "BASIC"}]
    assert freelancer.post("/services", json={**SERVICE, "packages": packages}).status_code == 422


def test_package_price_floor(freelancer):
    packages = [{**SERVICE["packages"][0], "price": 2}]
    assert freelancer.post("/services", json={**SERVICE, "packages": packages}).status_code == 422


def test_price_filter_matches_any_package(service, anon):
    assert anon.get("/services", params={"min_price": 300}).json()["pagination"]["total"] == 1
    assert anon.get("/services", params={"max_price": 50}).json()["pagination"]["total"] == 0


def test_inactive_service_hidden_from_others(freelancer, anon, service):
    assert freelancer.post(f"/services/{service['id']}/toggle-active").json()["is_active"] is False
    assert anon.get(f"/services/{service['id']}").status_code == 404
    assert freelancer.get(f"/services/{service['id']}").status_code == 200
    assert anon.get("/services").json()["pagination"]["total"] == 0


def test_update_packages_by_tier(freelancer, service):
    packages = [
        {**SERVICE["packages"][0], "price": 120},
        {"tier": "STANDARD", "title": "Standard", "description": "Two sections", "price": 250,
         "delivery_days": 5, "revisions": 2},
    ]
    response = freelancer.put(f"/services/{service['id']}", json={"packages": packages})
    assert response.status_code == 200
    updated = {p["tier"]: p for p in response.json()["packages"]}
    assert set(updated) == {"BASIC", "STANDARD"}
    assert updated["BASIC"]["price"] == 120


def test_cannot_drop_ordered_package(freelancer, service, order):
    packages = [SERVICE["packages"][1]]
    response = freelancer.put(f"/services/{service['id']}", json={"packages": packages})
    assert response.status_code == 400


def test_only_owner_edits(register, service):
    other = register("dave", role="FREELANCER")
    assert other.put(f"/services/{service['id']}", json={"title": "Taken over service"}).status_code == 403


def test_feature_service(freelancer, anon, service):
    response = freelancer.post(f"/services/{service['id']}/feature", json={"level": "SPOTLIGHT"})
    assert response.status_code == 200
    assert response.json()["amount"] == 299.0
    featured = anon.get("/services/featured").json()
    assert [s["id"] for s in featured] == [service["id"]]


def test_delete_service_without_orders(freelancer, anon, service):
    assert freelancer.delete(f"/services/{service['id']}").json()["message"] == "Service deleted"
    assert anon.get(f"/services/{service['id']}").status_code == 404


def test_delete_blocked_by_active_order(freelancer, service, order):
    assert freelancer.delete(f"/services/{service['id']}").status_code == 400


def test_delete_archives_service_with_past_orders(client_user, freelancer, service, order):
    client_user.post(f"/service-orders/{order['id']}/cancel", json={"reason": "Changed my mind"})
    response = freelancer.delete(f"/services/{service['id']}")
    assert response.json()["message"] == "Service archived"
    assert freelancer.get(f"/services/{service['id']}").json()["is_active"] is False
