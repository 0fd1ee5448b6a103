from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from coaching_attendance.modules.data_service import DataService
from coaching_attendance.web import create_app

TEST_KEY = "test-project-key"
STAFF_EMAIL = "staff@example.com"
STAFF_PASSWORD = "secret123"


class FakeClock:
    """Settable clock for token and view expiry."""

    def __init__(self, now=datetime(2024, 1, 10, 9, 0, 0)):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


def student_data(roll_number, full_name="Asha Verma", email="asha@example.com"):
    return {
        "full_name": full_name,
        "roll_number": roll_number,
        "grade": "XII",
        "contact_info": {
            "phone": "9800000001",
            "email": email,
            "parent_name": "R. Verma",
            "parent_phone": "9800000002",
        },
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'attendance.db'}"


@pytest.fixture
def data_service(db_url, clock):
    service = DataService(db_url, TEST_KEY, clock=clock)
    service.db.initialize_database()
    yield service
    service.close()


@pytest.fixture
def user(data_service):
    return data_service.auth.create_user(STAFF_EMAIL, STAFF_PASSWORD, "Test Staff")


@pytest.fixture
def batch(data_service, user):
    return data_service.insert("batches", {
        "name": "JEE 2025",
        "course_type": "Engineering",
        "start_date": "2024-01-01",
        "end_date": "2024-12-31",
        "created_by": user["id"],
    })[0]


@pytest.fixture
def students(data_service, batch):
    return data_service.insert("students", [
        dict(student_data("01", "Asha Verma"), batch_id=batch["id"]),
        dict(student_data("02", "Rahul Singh", "rahul@example.com"), batch_id=batch["id"]),
        dict(student_data("03", "Meera Nair", "meera@example.com"), batch_id=batch["id"]),
    ])


@pytest.fixture
def app(db_url):
    app = create_app("testing", {
        "DATA_SERVICE_URL": db_url,
        "DATA_SERVICE_KEY": TEST_KEY,
        "ADMIN_EMAIL": STAFF_EMAIL,
        "ADMIN_PASSWORD": STAFF_PASSWORD,
        "ADMIN_NAME": "Test Staff",
    })
    yield app
    app.extensions["coaching_attendance"].session_manager.teardown()
    app.extensions["coaching_attendance"].data_service.close()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signed_in(client):
    response = client.post("/login", data={"email": STAFF_EMAIL, "password": STAFF_PASSWORD})
    assert response.status_code == 302
    return client
