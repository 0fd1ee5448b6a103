from __future__ import annotations

import re

import pytest

from coaching_attendance.errors import ConfigurationError
from coaching_attendance.web import create_app

from conftest import STAFF_EMAIL, STAFF_PASSWORD, TEST_KEY


def view_token(html):
    match = re.search(r'const viewToken = "([A-Za-z0-9_-]+)";', html) or \
        re.search(r'name="view_token" value="([A-Za-z0-9_-]+)"', html)
    return match.group(1)


def components(app):
    return app.extensions["coaching_attendance"]


def add_batch(client, name="JEE 2025", start="2024-01-01", end="2030-12-31"):
    return client.post("/batches", data={
        "name": name, "course_type": "Engineering", "start_date": start, "end_date": end,
    }, follow_redirects=True)


def add_student(client, batch_id, roll_number, full_name="Asha Verma", view_token=""):
    return client.post(f"/batches/{batch_id}/students", data={
        "view_token": view_token, "roll_number": roll_number, "full_name": full_name, "grade": "XII",
        "phone": "9800000001", "email": "asha@example.com",
        "parent_name": "R. Verma", "parent_phone": "9800000002",
    }, follow_redirects=True)


@pytest.mark.parametrize("missing", ["DATA_SERVICE_URL", "DATA_SERVICE_KEY"])
def test_missing_configuration_is_fatal(db_url, missing):
    settings = {"DATA_SERVICE_URL": db_url, "DATA_SERVICE_KEY": TEST_KEY}
    settings[missing] = None

    with pytest.raises(ConfigurationError):
        create_app("testing", settings)


def test_protected_pages_redirect_to_login(client):
    for path in ("/", "/reports", "/batches/1/students", "/batches/1/attendance"):
        response = client.get(path)
        assert response.status_code == 302
        assert response.headers["Location"].endswith("/login")


def test_api_requires_session(client):
    response = client.post("/api/attendance/abc/save")

    assert response.status_code == 401
    assert response.get_json()["error_type"] == "auth"


def test_login_with_wrong_password(client):
    response = client.post("/login", data={"email": STAFF_EMAIL, "password": "nope"})

    assert response.status_code == 401
    assert b"Invalid email or password" in response.data


def test_login_redirects_to_dashboard(signed_in):
    response = signed_in.get("/login")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/")
    assert b"Batches" in signed_in.get("/").data


def test_remember_me_makes_cookie_persistent(client):
    client.post("/login", data={"email": STAFF_EMAIL, "password": STAFF_PASSWORD, "remember": "on"})
    with client.session_transaction() as session:
        assert session.permanent is True


def test_sign_out_then_protected_route_redirects(signed_in, app):
    with signed_in.session_transaction() as session:
        access_token = session["access_token"]

    response = signed_in.post("/logout", follow_redirects=True)
    assert b"You have been signed out." in response.data

    response = signed_in.get("/")
    assert response.status_code == 302
    assert response.headers["Location"].endswith("/login")
    assert components(app).session_manager.session_for(access_token) is None


def test_batch_lifecycle(signed_in, app):
    response = add_batch(signed_in)
    assert b"Batch created successfully" in response.data
    assert b"JEE 2025" in response.data

    invalid = add_batch(signed_in, name="Backwards", start="2024-06-01", end="2024-01-01")
    assert b"End date must be on or after the start date" in invalid.data

    batch_id = components(app).data_service.select("batches", single=True)["id"]

    confirm_page = signed_in.get(f"/batches/{batch_id}/delete")
    assert b"all of their attendance records" in confirm_page.data

    unconfirmed = signed_in.post(f"/batches/{batch_id}/delete", follow_redirects=True)
    assert b"Please confirm" in unconfirmed.data

    deleted = signed_in.post(f"/batches/{batch_id}/delete", data={"confirm": "yes"}, follow_redirects=True)
    assert b"Batch deleted successfully" in deleted.data
    assert components(app).data_service.select("batches") == []


def test_student_roster(signed_in, app):
    add_batch(signed_in)
    batch_id = components(app).data_service.select("batches", single=True)["id"]

    page = signed_in.get(f"/batches/{batch_id}/students")
    token = view_token(page.get_data(as_text=True))

    assert b"Student added successfully" in add_student(signed_in, batch_id, "01", view_token=token).data

    # Same roster view: rejected with the roster message
    page = signed_in.get(f"/batches/{batch_id}/students")
    token = view_token(page.get_data(as_text=True))
    response = add_student(signed_in, batch_id, "01", "Someone Else", view_token=token)
    assert b"This roll number is already in use" in response.data

    # Stale roster view: rejected by the store
    response = add_student(signed_in, batch_id, "01", "Someone Else", view_token="expired")
    assert b"A student with this roll number already exists in this batch" in response.data

    searched = signed_in.get(f"/batches/{batch_id}/students?q=asha")
    assert b"Asha Verma" in searched.data


def test_roster_keeps_student_names_out_of_inline_handlers(signed_in, app):
    add_batch(signed_in)
    batch_id = components(app).data_service.select("batches", single=True)["id"]
    add_student(signed_in, batch_id, "07", "Sean O'Brien")

    html = signed_in.get(f"/batches/{batch_id}/students").get_data(as_text=True)

    assert 'data-name="Sean O&#39;Brien"' in html
    assert "onsubmit=" not in html
    assert "confirm('Delete Sean" not in html


def test_student_changes_are_limited_to_the_batch_in_the_url(signed_in, app):
    add_batch(signed_in, name="JEE 2025")
    add_batch(signed_in, name="NEET 2025")
    service = components(app).data_service
    batches = {b["name"]: b["id"] for b in service.select("batches")}
    add_student(signed_in, batches["JEE 2025"], "01")
    student = service.select("students", single=True)

    other = batches["NEET 2025"]
    deleted = signed_in.post(f"/batches/{other}/students/{student['id']}/delete", follow_redirects=True)
    assert b"Student not found" in deleted.data

    edited = signed_in.post(f"/batches/{other}/students/{student['id']}/edit", data={
        "roll_number": "01", "full_name": "Renamed", "grade": "XII", "phone": "9800000001",
        "email": "asha@example.com", "parent_name": "R. Verma", "parent_phone": "9800000002",
    }, follow_redirects=True)
    assert b"Student not found" in edited.data

    assert service.select("students", single=True)["full_name"] == "Asha Verma"


def test_login_page_refreshes_an_expired_access_token(signed_in):
    with signed_in.session_transaction() as session:
        session["access_token"] = "expired-access-token"

    response = signed_in.get("/login")

    assert response.status_code == 302
    assert response.headers["Location"].endswith("/")
    with signed_in.session_transaction() as session:
        assert session["access_token"] != "expired-access-token"


def test_attendance_marking_flow(signed_in, app):
    add_batch(signed_in)
    service = components(app).data_service
    batch_id = service.select("batches", single=True)["id"]
    add_student(signed_in, batch_id, "01")
    student_id = service.select("students", single=True)["id"]

    page = signed_in.get(f"/batches/{batch_id}/attendance")
    token = view_token(page.get_data(as_text=True))

    response = signed_in.post(f"/api/attendance/{token}/mark", json={"student_id": student_id, "status": "present"})
    assert response.status_code == 200
    assert response.get_json()["marks"] == {str(student_id): "present"}

    signed_in.post(f"/api/attendance/{token}/mark", json={"student_id": student_id, "status": "absent"})
    assert len(service.select("attendance_records")) == 1

    saved = signed_in.post(f"/api/attendance/{token}/save")
    assert saved.get_json()["message"] == "Attendance saved successfully"

    bad = signed_in.post(f"/api/attendance/{token}/mark", json={"student_id": student_id, "status": "away"})
    assert bad.status_code == 400

    assert signed_in.post(f"/api/views/{token}/close").status_code == 204
    closed = signed_in.post(f"/api/attendance/{token}/mark", json={"student_id": student_id, "status": "late"})
    assert closed.status_code == 410
    assert service.select("attendance_records", single=True)["status"] == "absent"


def test_reports_and_exports(signed_in, app):
    add_batch(signed_in)
    batch_id = components(app).data_service.select("batches", single=True)["id"]
    add_student(signed_in, batch_id, "01")

    page = signed_in.get(f"/reports?batch_id={batch_id}&range=30days")
    assert page.status_code == 200
    assert b"Export CSV" in page.data

    data = signed_in.get(f"/api/reports/{batch_id}?range=month").get_json()
    assert data["success"] is True
    assert data["range"]["mode"] == "month"

    csv = signed_in.get(f"/reports/{batch_id}/export.csv")
    assert csv.status_code == 200
    assert csv.mimetype == "text/csv"
    assert "attachment" in csv.headers["Content-Disposition"]
    assert csv.data.decode("utf-8").startswith("Roll Number,Name")

    pdf = signed_in.get(f"/reports/{batch_id}/export.pdf")
    assert pdf.data.startswith(b"%PDF")

    unsupported = signed_in.get(f"/reports/{batch_id}/export.doc")
    assert unsupported.status_code == 302
