import pytest

PORTFOLIO = {
    "title": "Booking site for a dental clinic",
    "description": "Appointment booking with reminders and a staff calendar.",
    "category": "WEB_DEVELOPMENT",
    "technologies": ["FastAPI", "PostgreSQL"],
    "live_url": "https://clinic.example.com",
    "completed_at": "2026-03-01T00:00:00",
}


@pytest.fixture
def portfolio(freelancer):
    response = freelancer.post("/portfolios", json=PORTFOLIO)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_portfolio_item(freelancer, portfolio):
    assert portfolio["user"]["id"] == freelancer.user["id"]
    assert portfolio["technologies"] == ["FastAPI", "PostgreSQL"]
    assert portfolio["is_public"] is True
    assert portfolio["views"] == 0


def test_category_defaults_to_other(freelancer):
    body = {k: v for k, v in PORTFOLIO.items() if k != "category"}
    assert freelancer.post("/portfolios", json=body).json()["category"] == "OTHER"


def test_completion_date_required(freelancer):
    body = {k: v for k, v in PORTFOLIO.items() if k != "completed_at"}
    assert freelancer.post("/portfolios", json=body).status_code == 422


def test_clients_cannot_add_portfolio(client_user):
    assert client_user.post("/portfolios", json=PORTFOLIO).status_code == 403


def test_browse_filters_and_hides_private(freelancer, anon, portfolio):
    freelancer.post("/portfolios", json={
        **PORTFOLIO, "title": "Brand guide", "description": "Logo and colour system.", "category": "DESIGN",
    })
    freelancer.post("/portfolios", json={**PORTFOLIO, "title": "Internal tool", "is_public": False})

    listed = anon.get("/portfolios").json()
    assert listed["pagination"]["total"] == 2
    assert listed["pagination"]["limit"] == 12
    assert [p["title"] for p in anon.get("/portfolios", params={"category": "DESIGN"}).json()["items"]] == ["Brand guide"]
    assert [p["id"] for p in anon.get("/portfolios", params={"search": "dental"}).json()["items"]] == [portfolio["id"]]
    assert anon.get("/portfolios", params={"user_id": freelancer.user["id"] + 100}).json()["items"] == []

    assert len(freelancer.get("/portfolios/mine").json()) == 3


def test_viewing_counts_views(freelancer, anon, portfolio):
    anon.get(f"/portfolios/{portfolio['id']}")
    assert anon.get(f"/portfolios/{portfolio['id']}").json()["views"] == 2
    assert freelancer.get(f"/portfolios/{portfolio['id']}").json()["views"] == 2


def test_private_item_visible_to_owner_only(freelancer, anon, portfolio):
    freelancer.put(f"/portfolios/{portfolio['id']}", json={"is_public": False})
    assert anon.get(f"/portfolios/{portfolio['id']}").status_code == 404
    assert freelancer.get(f"/portfolios/{portfolio['id']}").status_code == 200


def test_only_owner_changes_item(freelancer, register, portfolio):
    other = register("dave", role="FREELANCER")
    assert other.put(f"/portfolios/{portfolio['id']}", json={"title": "Mine now"}).status_code == 403
    assert other.delete(f"/portfolios/{portfolio['id']}").status_code == 403

    updated = freelancer.put(f"/portfolios/{portfolio['id']}", json={"title": "Clinic booking platform"}).json()
    assert updated["title"] == "Clinic booking platform"
    assert freelancer.delete(f"/portfolios/{portfolio['id']}").json()["message"] == "Portfolio item deleted"
    assert freelancer.get(f"/portfolios/{portfolio['id']}").status_code == 404
