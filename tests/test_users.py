def test_update_profile(freelancer, anon):
    response = freelancer.put("/users/me", json={
        "bio": "Full-stack developer", "skills": ["python", "react"], "hourly_rate": 45,
    })
    assert response.status_code == 200
    assert response.json()["skills"] == ["python", "react"]

    public = anon.get(f"/users/{freelancer.user['id']}").json()
    assert public["bio"] == "Full-stack developer"
    assert "email" not in public


def test_availability_is_freelancer_only(client_user, freelancer):
    assert client_user.put("/users/me/availability", json={"is_available": False}).status_code == 403
    assert freelancer.put("/users/me/availability", json={"is_available": False}).json()["is_available"] is False


def test_freelancer_dashboard(client_user, freelancer, funded_project):
    stats = freelancer.get("/users/me/freelancer-stats").json()
    assert stats["active_projects"] == 1
    assert stats["total_earnings"] == 0

    project_id = funded_project["id"]
    freelancer.post(f"/projects/{project_id}/submit")
    client_user.post(f"/projects/{project_id}/approve")
    stats = freelancer.get("/users/me/freelancer-stats").json()
    assert stats["completed_projects"] == 1
    assert stats["total_earnings"] == 700.0
    assert stats["pending_payouts"] == 700.0


def test_client_dashboard(client_user, open_project):
    stats = client_user.get("/users/me/client-stats").json()
    assert stats["open_projects"] == 1
    assert stats["held_in_escrow"] == 0


def test_public_stats_and_missing_user(anon, freelancer):
    stats = anon.get(f"/users/{freelancer.user['id']}/stats").json()
    assert stats["completed_projects"] == 0
    assert anon.get("/users/9999").status_code == 404


def test_categories(anon, category):
    listing = anon.get("/categories").json()
    assert [c["slug"] for c in listing] == ["web-development"]
    assert anon.get("/categories/web-development").json()["name"] == "Web Development"
    assert anon.get("/categories/nope").status_code == 404
