def test_note_on_assigned_project(freelancer, assigned_project):
    path = f"/work-notes/project/{assigned_project['id']}"
    assert freelancer.get(path).json() is None

    saved = freelancer.post(path, json={"note": "Calendar widget first"}).json()
    assert saved["project_id"] == assigned_project["id"]
    assert saved["note"] == "Calendar widget first"

    replaced = freelancer.post(path, json={"note": "Email reminders next"}).json()
    assert replaced["id"] == saved["id"]
    assert freelancer.get(path).json()["note"] == "Email reminders next"

    assert freelancer.delete(path).json()["message"] == "Note deleted"
    assert freelancer.delete(path).status_code == 404


def test_note_on_service_order(freelancer, order):
    path = f"/work-notes/service/{order['id']}"
    assert freelancer.post(path, json={"note": "Ask about the logo"}).json()["service_order_id"] == order["id"]
    assert freelancer.get(path).json()["note"] == "Ask about the logo"


def test_note_needs_assignment(register, freelancer, open_project):
    assert freelancer.post(f"/work-notes/project/{open_project['id']}", json={"note": "Not mine"}).status_code == 404
    other = register("dave", role="FREELANCER")
    assert other.post("/work-notes/project/9999", json={"note": "Missing"}).status_code == 404


def test_notes_are_private(register, freelancer, assigned_project):
    path = f"/work-notes/project/{assigned_project['id']}"
    freelancer.post(path, json={"note": "Private reminder"})
    assert register("dave", role="FREELANCER").get(path).json() is None


def test_note_validation(client_user, freelancer, assigned_project):
    path = f"/work-notes/project/{assigned_project['id']}"
    assert freelancer.post(path, json={"note": ""}).status_code == 422
    assert freelancer.post(f"/work-notes/invoice/{assigned_project['id']}", json={"note": "x"}).status_code == 422
    assert client_user.get(path).status_code == 403
