from __future__ import annotations

from datetime import date

import pytest

from coaching_attendance.modules.attendance_manager import AttendanceManager
from coaching_attendance.modules.view_scope import ViewScopeRegistry

OWNER = "browser-1"


@pytest.fixture
def scopes():
    return ViewScopeRegistry()


@pytest.fixture
def manager(data_service, scopes):
    return AttendanceManager(data_service, scopes, clock=lambda: date(2024, 1, 10))


@pytest.fixture
def opened(manager, batch, students):
    result = manager.open_board(OWNER, batch["id"])
    assert result["success"] is True
    return result["scope"], result["board"]


def day_records(data_service, batch):
    return data_service.select("attendance_records", filters={"batch_id": batch["id"], "date": "2024-01-10"})


def test_open_board_starts_unmarked(opened, students):
    scope, board = opened

    assert board.date == "2024-01-10"
    assert [s.roll_number for s in board.students] == ["01", "02", "03"]
    assert board.stats() == {"total": 3, "present": 0, "absent": 0, "late": 0, "unmarked": 3}
    assert board.can_save() is False


def test_open_board_for_missing_batch(manager, user):
    assert manager.open_board(OWNER, 999)["error_type"] == "not_found"


def test_marking_twice_leaves_one_record(manager, opened, data_service, batch, students, user):
    scope, board = opened
    student_id = students[0]["id"]

    assert manager.mark_attendance(scope.token, student_id, "present", marked_by=user["id"])["success"]
    result = manager.mark_attendance(scope.token, student_id, "late", marked_by=user["id"])

    rows = day_records(data_service, batch)
    assert len(rows) == 1
    assert rows[0]["status"] == "late"
    assert rows[0]["marked_by"] == user["id"]
    assert result["marks"] == {str(student_id): "late"}
    assert result["stats"]["late"] == 1
    assert result["can_save"] is True


def test_invalid_status_and_unknown_student(manager, opened):
    scope, board = opened

    assert manager.mark_attendance(scope.token, board.students[0].id, "excused")["error_type"] == "validation"
    assert manager.mark_attendance(scope.token, 999, "present")["error_type"] == "not_found"


def test_marking_on_a_closed_view_is_refused(manager, opened, scopes, data_service, batch):
    scope, board = opened
    scopes.close(scope.token)

    result = manager.mark_attendance(scope.token, board.students[0].id, "present")

    assert result["error_type"] == "view_closed"
    assert day_records(data_service, batch) == []


def test_response_after_view_ended_is_discarded(data_service, batch, students, user):
    scopes = ViewScopeRegistry()

    class NavigatingAway:
        """Data service whose write finishes after the user left the page."""

        def __init__(self, inner):
            self.inner = inner
            self.token = None

        def upsert(self, *args, **kwargs):
            written = self.inner.upsert(*args, **kwargs)
            scopes.close(self.token)
            return written

        def __getattr__(self, name):
            return getattr(self.inner, name)

    service = NavigatingAway(data_service)
    manager = AttendanceManager(service, scopes, clock=lambda: date(2024, 1, 10))
    result = manager.open_board(OWNER, batch["id"])
    scope, board = result["scope"], result["board"]
    service.token = scope.token

    manager.mark_attendance(scope.token, students[0]["id"], "present", marked_by=user["id"])

    assert len(day_records(data_service, batch)) == 1
    assert board.records == []


def test_reconcile_keeps_unsaved_marks(manager, opened, data_service, batch, students, user):
    scope, board = opened
    board.marks[students[1]["id"]] = "absent"

    # Another staff member marks student 01 on a different device
    data_service.upsert("attendance_records", {
        "student_id": students[0]["id"], "batch_id": batch["id"], "date": "2024-01-10", "status": "present",
    }, on_conflict="student_id,date")

    manager.mark_attendance(scope.token, students[2]["id"], "late", marked_by=user["id"])

    assert board.marks == {
        students[0]["id"]: "present",
        students[1]["id"]: "absent",
        students[2]["id"]: "late",
    }


def test_save_all_writes_every_mark(manager, opened, data_service, batch, students, user):
    scope, board = opened
    board.marks[students[0]["id"]] = "present"
    board.marks[students[1]["id"]] = "absent"

    result = manager.save_all(scope.token, marked_by=user["id"])

    assert result["success"] is True
    assert result["message"] == "Attendance saved successfully"
    assert result["can_save"] is True
    statuses = {row["student_id"]: row["status"] for row in day_records(data_service, batch)}
    assert statuses == {students[0]["id"]: "present", students[1]["id"]: "absent"}
    assert result["stats"]["unmarked"] == 1


def test_save_all_guards(manager, opened, students, user):
    scope, board = opened

    assert manager.save_all(scope.token, marked_by=user["id"])["error"] == "No attendance has been marked yet"

    board.marks[students[0]["id"]] = "present"
    assert manager.save_all(scope.token, marked_by=None)["error"] == "User not authenticated"

    assert board.begin_save() is True
    in_progress = manager.save_all(scope.token, marked_by=user["id"])
    assert in_progress["error_type"] == "in_progress"
    assert in_progress["can_save"] is False
    board.end_save()

    assert manager.save_all("not-a-token", marked_by=user["id"])["error_type"] == "view_closed"


def test_view_belongs_to_its_owner(manager, opened, students):
    scope, board = opened

    result = manager.mark_attendance(scope.token, students[0]["id"], "present", owner="browser-2")

    assert result["error_type"] == "view_closed"
