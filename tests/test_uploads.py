import io
import os

from koihire.routers import uploads


def test_upload_and_download(client_user):
    response = client_user.post("/uploads", files=[
        ("files", ("brief final.pdf", io.BytesIO(b"%PDF-1.4 brief"), "application/pdf")),
        ("files", ("mockup.png", io.BytesIO(b"\x89PNG fake"), "image/png")),
    ])
    assert response.status_code == 201
    saved = response.json()["files"]
    assert [f["filename"] for f in saved] == ["brief final.pdf", "mockup.png"]
    assert saved[0]["stored_name"].endswith("_brief_final.pdf")
    assert saved[0]["size"] == len(b"%PDF-1.4 brief")

    download = client_user.get(saved[0]["url"])
    assert download.status_code == 200
    assert download.content == b"%PDF-1.4 brief"


def test_upload_requires_login(anon):
    response = anon.post("/uploads", files=[("files", ("a.txt", io.BytesIO(b"hi"), "text/plain"))])
    assert response.status_code == 401


def test_rejects_disallowed_extension(client_user):
    response = client_user.post("/uploads", files=[
        ("files", ("run.exe", io.BytesIO(b"MZ"), "application/octet-stream")),
    ])
    assert response.status_code == 400


def test_rejects_oversized_file(client_user, monkeypatch):
    monkeypatch.setattr(uploads, "MAX_UPLOAD_MB", 0)
    response = client_user.post("/uploads", files=[("files", ("notes.txt", io.BytesIO(b"x" * 10), "text/plain"))])
    assert response.status_code == 413


def test_too_many_files(client_user):
    files = [("files", (f"f{i}.txt", io.BytesIO(b"x"), "text/plain")) for i in range(6)]
    assert client_user.post("/uploads", files=files).status_code == 400


def test_scope_checked_against_project(register, open_project):
    outsider = register("bob")
    response = outsider.post(
        "/uploads",
        data={"project_id": str(open_project["id"])},
        files=[("files", ("a.txt", io.BytesIO(b"hi"), "text/plain"))],
    )
    assert response.status_code == 403


def test_download_rejects_traversal(client_user):
    assert client_user.get("/uploads/..%2F..%2Fetc%2Fpasswd").status_code == 404
    assert client_user.get("/uploads/" + "0" * 32 + "_missing.txt").status_code == 404


def test_rejected_batch_leaves_no_files(client_user):
    response = client_user.post("/uploads", files=[
        ("files", ("a.txt", io.BytesIO(b"fine"), "text/plain")),
        ("files", ("b.exe", io.BytesIO(b"MZ"), "application/octet-stream")),
    ])
    assert response.status_code == 400
    assert not os.path.isdir(uploads.UPLOAD_DIR) or os.listdir(uploads.UPLOAD_DIR) == []


def test_oversized_file_removes_earlier_ones(client_user, monkeypatch):
    monkeypatch.setattr(uploads, "MAX_UPLOAD_MB", 1)
    response = client_user.post("/uploads", files=[
        ("files", ("small.txt", io.BytesIO(b"ok"), "text/plain")),
        ("files", ("large.txt", io.BytesIO(b"x" * (1024 * 1024 + 1)), "text/plain")),
    ])
    assert response.status_code == 413
    assert os.listdir(uploads.UPLOAD_DIR) == []


def test_outsider_cannot_download(client_user, register):
    stored = client_user.post("/uploads", files=[
        ("files", ("contract.pdf", io.BytesIO(b"%PDF secret"), "application/pdf")),
    ]).json()["files"][0]
    outsider = register("bob")
    assert outsider.get(stored["url"]).status_code == 403


def test_order_party_downloads_order_file(client_user, freelancer, register, order):
    stored = freelancer.post(
        "/uploads",
        data={"service_order_id": str(order["id"])},
        files=[("files", ("draft.png", io.BytesIO(b"\x89PNG draft"), "image/png"))],
    ).json()["files"][0]

    download = client_user.get(stored["url"])
    assert download.status_code == 200
    assert download.content == b"\x89PNG draft"
    assert register("bob").get(stored["url"]).status_code == 403


def test_conversation_files_shared_with_participants(client_user, freelancer):
    conversation = client_user.post("/messages/conversations", json={
        "user_id": freelancer.user["id"], "message": "Sending the brief now",
    }).json()
    stored = client_user.post(
        "/uploads",
        data={"conversation_id": str(conversation["id"])},
        files=[("files", ("brief.txt", io.BytesIO(b"the brief"), "text/plain"))],
    ).json()["files"][0]
    assert freelancer.get(stored["url"]).content == b"the brief"
