import os

os.environ.setdefault("KOIHIRE_DATABASE_URL", "sqlite://")
os.environ["STRIPE_SECRET_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from koihire import models
from koihire.auth import hash_password
from koihire.database import Base, get_db
from koihire.main import app
from koihire.models import Role
from koihire.routers import uploads, ws

PASSWORD = "correct-horse-1"


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False, autocommit=False)
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(autouse=True)
def override_db(session_factory, tmp_path, monkeypatch):
    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    monkeypatch.setattr(uploads, "UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(ws, "SessionLocal", session_factory)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def anon():
    return TestClient(app)


@pytest.fixture
def register():
    def _register(username, role="CLIENT", **extra):
        client = TestClient(app)
        response = client.post("/auth/register", json={
            "username": username,
            "email": f"{username}@example.com",
            "password": PASSWORD,
            "role": role,
            "first_name": username.title(),
            **extra,
        })
        assert response.status_code == 201, response.text
        client.user = response.json()
        return client
    return _register


@pytest.fixture
def client_user(register):
    return register("alice")


@pytest.fixture
def freelancer(register):
    client = register("carol", role="FREELANCER")
    response = client.put("/users/me/payout-method", json={
        "payout_method": "PAYPAL", "payout_email": "carol@example.com",
    })
    assert response.status_code == 200, response.text
    return client


@pytest.fixture
def admin(db):
    user = models.User(
        username="root", email="root@example.com", role=Role.ADMIN,
        hashed_password=hash_password(PASSWORD),
    )
    db.add(user)
    db.commit()
    client = TestClient(app)
    response = client.post("/auth/login", json={"username": "root", "password": PASSWORD})
    assert response.status_code == 200, response.text
    client.user = response.json()
    return client


@pytest.fixture
def category(db):
    category = models.Category(name="Web Development", slug="web-development")
    db.add(category)
    db.commit()
    return category.id


PROJECT = {
    "title": "Build a booking site",
    "description": "A small booking website with a calendar and email reminders.",
    "timeline": "3 weeks",
    "min_budget": 500,
    "max_budget": 1000,
}

APPLICATION = {
    "cover_letter": "I have built several booking systems with calendars.",
    "timeline": "2 weeks",
}

SERVICE = {
    "title": "I will build a landing page",
    "description": "A responsive landing page with a contact form and analytics.",
    "packages": [
        {"tier": "BASIC", "title": "Basic", "description": "One section", "price": 100,
         "delivery_days": 3, "revisions": 1},
        {"tier": "PREMIUM", "title": "Premium", "description": "Full page", "price": 400,
         "delivery_days": 7, "revisions": 3},
    ],
}


@pytest.fixture
def open_project(client_user):
    response = client_user.post("/projects", json=PROJECT)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def assigned_project(client_user, freelancer, open_project):
    """A project with carol's 800.00 proposal accepted."""
    response = freelancer.post("/applications", json={
        **APPLICATION, "project_id": open_project["id"], "proposed_budget": 800,
    })
    assert response.status_code == 201, response.text
    response = client_user.post(f"/projects/{open_project['id']}/applications/{response.json()['id']}/accept")
    assert response.status_code == 200, response.text
    return response.json()


@pytest.fixture
def funded_project(client_user, assigned_project):
    response = client_user.post(f"/payments/projects/{assigned_project['id']}/fund")
    assert response.status_code == 200, response.text
    return assigned_project


@pytest.fixture
def service(freelancer):
    response = freelancer.post("/services", json=SERVICE)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def order(client_user, service):
    basic = next(p for p in service["packages"] if p["tier"] == "BASIC")
    response = client_user.post("/service-orders", json={
        "service_id": service["id"], "package_id": basic["id"], "requirements": "Blue and white colours",
    })
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def paid_order(client_user, order):
    response = client_user.post(f"/payments/service-orders/{order['id']}/pay")
    assert response.status_code == 200, response.text
    return order
