from __future__ import annotations

from coaching_attendance.modules.batch_manager import COURSE_TYPES, BatchManager


def create(manager, name, start="2024-01-01", end="2024-06-30", course_type="Engineering", user_id=None):
    return manager.create_batch(name, course_type, start, end, created_by=user_id)


def test_create_batch_stamps_creator(data_service, user):
    manager = BatchManager(data_service)

    result = create(manager, "  JEE Morning  ", user_id=user["id"])

    assert result["success"] is True
    assert result["message"] == "Batch created successfully"
    assert result["batch"].name == "JEE Morning"
    assert result["batch"].created_by == user["id"]
    assert result["batch"].created_at


def test_create_batch_validation(data_service):
    manager = BatchManager(data_service)

    assert create(manager, "")["error"] == "Batch name is required"
    assert create(manager, "X", course_type="Medicine")["error_type"] == "validation"
    assert create(manager, "X", start="01/02/2024")["error_type"] == "validation"

    result = create(manager, "X", start="2024-06-30", end="2024-01-01")
    assert result["success"] is False
    assert result["error"] == "End date must be on or after the start date"
    assert data_service.select("batches") == []


def test_single_day_batch_is_allowed(data_service):
    assert create(BatchManager(data_service), "Crash course", start="2024-03-01", end="2024-03-01")["success"]


def test_list_batches_newest_first_or_by_name(data_service):
    manager = BatchManager(data_service)
    for name in ("Beta", "Alpha", "Gamma"):
        create(manager, name)

    newest = [b.name for b in manager.list_batches()["batches"]]
    by_name = [b.name for b in manager.list_batches(order="name")["batches"]]

    assert newest == ["Gamma", "Alpha", "Beta"]
    assert by_name == ["Alpha", "Beta", "Gamma"]


def test_update_batch(data_service):
    manager = BatchManager(data_service)
    batch = create(manager, "Old name")["batch"]

    result = manager.update_batch(batch.id, "New name", "Pharmacy", "2024-02-01", "2024-08-31")

    assert result["success"] is True
    assert result["batch"].name == "New name"
    assert result["batch"].course_type == "Pharmacy"
    assert manager.update_batch(999, "X", "Pharmacy", "2024-02-01", "2024-08-31")["error_type"] == "not_found"


def test_delete_requires_confirmation(data_service):
    manager = BatchManager(data_service)
    batch = create(manager, "Keep me")["batch"]

    result = manager.delete_batch(batch.id)

    assert result["error_type"] == "confirmation_required"
    assert manager.get_batch(batch.id)["success"] is True


def test_delete_cascades(data_service, batch, students):
    manager = BatchManager(data_service)
    data_service.upsert("attendance_records", {
        "student_id": students[0]["id"], "batch_id": batch["id"], "date": "2024-01-10", "status": "late",
    }, on_conflict="student_id,date")

    result = manager.delete_batch(batch["id"], confirmed=True)

    assert result["success"] is True
    assert data_service.select("students") == []
    assert data_service.select("attendance_records") == []
    assert manager.get_batch(batch["id"])["error_type"] == "not_found"


def test_course_types():
    assert BatchManager(None).get_course_types() == list(COURSE_TYPES)
