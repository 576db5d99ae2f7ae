import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool
from starlette.websockets import WebSocketDisconnect

from koihire import models
from koihire.database import Base, get_db
from koihire.main import app
from koihire.notifications import notify
from koihire.realtime import manager
from koihire.routers import ws as ws_router

from .conftest import APPLICATION


@pytest.fixture
def conversation(client_user, freelancer):
    response = client_user.post("/messages/conversations", json={
        "user_id": freelancer.user["id"], "message": "Hi Carol, are you free next week?",
    })
    assert response.status_code == 201, response.text
    return response.json()


def test_start_conversation(conversation, freelancer):
    assert conversation["last_message"]["content"] == "Hi Carol, are you free next week?"
    assert {p["username"] for p in conversation["participants"]} == {"alice", "carol"}
    assert freelancer.get("/messages/unread-count").json()["unread_count"] == 1


def test_direct_conversation_is_reused(client_user, freelancer, conversation):
    again = freelancer.post("/messages/conversations", json={"user_id": client_user.user["id"]}).json()
    assert again["id"] == conversation["id"]


def test_cannot_message_yourself(client_user):
    response = client_user.post("/messages/conversations", json={"user_id": client_user.user["id"]})
    assert response.status_code == 400


def test_project_thread_limited_to_assigned_pair(client_user, register, open_project):
    outsider = register("dave", role="FREELANCER")
    response = client_user.post("/messages/conversations", json={
        "user_id": outsider.user["id"], "project_id": open_project["id"],
    })
    assert response.status_code == 400


def test_reading_marks_messages_read(client_user, freelancer, conversation):
    conversation_id = conversation["id"]
    reply = freelancer.post(f"/messages/conversations/{conversation_id}/messages", json={"content": "Yes I am!"})
    assert reply.status_code == 201
    assert reply.json()["sender"]["username"] == "carol"

    page = freelancer.get(f"/messages/conversations/{conversation_id}/messages").json()
    assert [m["content"] for m in page["items"]] == ["Hi Carol, are you free next week?", "Yes I am!"]
    assert freelancer.get("/messages/unread-count").json()["unread_count"] == 0
    assert client_user.get("/messages/unread-count").json()["unread_count"] == 1

    unread = client_user.get("/messages/conversations", params={"filter": "unread"}).json()
    assert [c["id"] for c in unread] == [conversation_id]


def test_outsider_gets_404(register, conversation):
    outsider = register("bob")
    assert outsider.get(f"/messages/conversations/{conversation['id']}").status_code == 404
    response = outsider.post(f"/messages/conversations/{conversation['id']}/messages", json={"content": "hello"})
    assert response.status_code == 404


def test_archive_pin_and_filters(client_user, freelancer, conversation):
    conversation_id = conversation["id"]
    client_user.post(f"/messages/conversations/{conversation_id}/archive")
    assert client_user.get("/messages/conversations").json() == []
    archived = client_user.get("/messages/conversations", params={"filter": "archived"}).json()
    assert archived[0]["is_archived"] is True

    # a new message brings the thread back
    freelancer.post(f"/messages/conversations/{conversation_id}/messages", json={"content": "Ping"})
    assert len(client_user.get("/messages/conversations").json()) == 1

    client_user.post(f"/messages/conversations/{conversation_id}/pin")
    pinned = client_user.get("/messages/conversations", params={"filter": "pinned"}).json()
    assert pinned[0]["is_pinned"] is True
    assert client_user.get("/messages/conversations", params={"filter": "bogus"}).status_code == 400


def test_notifications_read_and_delete(client_user, freelancer, open_project):
    freelancer.post("/applications", json={**APPLICATION, "project_id": open_project["id"]})
    notification = client_user.get("/notifications").json()["items"][0]
    assert notification["priority"] == "NORMAL"
    assert "carol" in notification["message"].lower()

    read = client_user.post(f"/notifications/{notification['id']}/read").json()
    assert read["is_read"] is True
    assert client_user.get("/notifications/unread-count").json()["unread_count"] == 0
    assert freelancer.post(f"/notifications/{notification['id']}/read").status_code == 404

    assert client_user.delete(f"/notifications/{notification['id']}").status_code == 200
    assert client_user.get("/notifications").json()["pagination"]["total"] == 0


def test_read_all(client_user, freelancer, open_project):
    freelancer.post("/applications", json={**APPLICATION, "project_id": open_project["id"]})
    client_user.post(f"/projects/{open_project['id']}/cancel", json={})
    assert client_user.post("/notifications/read-all").json()["updated"] == 1
    assert client_user.get("/notifications", params={"unread_only": True}).json()["items"] == []


def test_socket_requires_login(anon):
    with pytest.raises(WebSocketDisconnect):
        with anon.websocket_connect("/ws") as ws:
            ws.receive_json()


def test_socket_ping_and_counts(client_user, freelancer, conversation):
    with freelancer.websocket_connect("/ws") as ws:
        hello = ws.receive_json()
        assert hello == {"event": "unread_count", "data": {"notifications": 0, "messages": 1}}

        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"

        ws.send_json({"event": "mark_messages_read", "data": {"conversation_id": conversation["id"]}})
        assert ws.receive_json() == {"event": "unread_count", "data": {"notifications": 0, "messages": 0}}

        ws.send_json({"event": "dance"})
        assert ws.receive_json()["event"] == "error"


def test_socket_receives_pushes(client_user, freelancer, open_project):
    with client_user.websocket_connect("/ws") as ws:
        ws.receive_json()
        freelancer.post("/applications", json={**APPLICATION, "project_id": open_project["id"]})
        pushed = ws.receive_json()
        assert pushed["event"] == "notification"
        assert pushed["data"]["type"] == "NEW_APPLICATION"


def test_typing_reaches_the_other_participant(client_user, freelancer, conversation):
    with freelancer.websocket_connect("/ws") as carol_ws:
        carol_ws.receive_json()
        with client_user.websocket_connect("/ws") as alice_ws:
            alice_ws.receive_json()

            alice_ws.send_json({"event": "typing_start", "data": {"conversation_id": conversation["id"]}})
            assert carol_ws.receive_json() == {"event": "user_typing", "data": {
                "conversation_id": conversation["id"], "user_id": client_user.user["id"], "is_typing": True,
            }}

            alice_ws.send_json({"event": "typing_stop", "data": {"conversation_id": conversation["id"]}})
            assert carol_ws.receive_json()["data"]["is_typing"] is False


def test_typing_in_foreign_conversation_is_an_error(register, conversation):
    outsider = register("bob")
    with outsider.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"event": "typing_start", "data": {"conversation_id": conversation["id"]}})
        assert ws.receive_json() == {"event": "error", "data": {"message": "Conversation not found"}}


def test_open_socket_holds_no_connection(register, tmp_path, monkeypatch):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'pool.db'}",
        connect_args={"check_same_thread": False},
        poolclass=QueuePool, pool_size=1, max_overflow=0, pool_timeout=1,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False)

    def _get_db():
        db = factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    monkeypatch.setattr(ws_router, "SessionLocal", factory)
    client = register("dora")

    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        assert client.get("/auth/me").status_code == 200
        ws.send_json({"event": "get_unread_count"})
        assert ws.receive_json()["event"] == "unread_count"
        assert client.get("/notifications").status_code == 200
    engine.dispose()


def test_rolled_back_notification_is_not_pushed(db, monkeypatch):
    sent = []
    monkeypatch.setattr(manager, "publish", lambda user_id, event, data: sent.append((user_id, event)))
    user = models.User(username="erin", email="erin@example.com", hashed_password="x")
    db.add(user)
    db.commit()

    notify(db, user.id, "ACCOUNT_STATUS", status="suspended")
    db.rollback()
    db.commit()
    assert sent == []

    notify(db, user.id, "ACCOUNT_STATUS", status="reactivated")
    assert sent == []
    db.commit()
    assert sent == [(user.id, "notification")]
