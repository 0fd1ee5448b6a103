from __future__ import annotations

from datetime import date

import pytest

from coaching_attendance.modules.report_generator import (
    CSV_COLUMNS,
    ReportGenerator,
    aggregate_daily,
    aggregate_overall,
    attendance_percentage,
    format_period_date,
    resolve_date_range,
    student_summary,
)


def record(student_id, day, status):
    return {"student_id": student_id, "date": day, "status": status}


@pytest.fixture
def history(data_service, batch, students):
    a, b, c = (s["id"] for s in students)
    rows = [
        {"student_id": a, "date": "2024-01-01", "status": "present"},
        {"student_id": b, "date": "2024-01-01", "status": "absent"},
        {"student_id": a, "date": "2024-01-03", "status": "late"},
        {"student_id": b, "date": "2024-01-03", "status": "present"},
        {"student_id": c, "date": "2024-01-03", "status": "present"},
        # Outside the 7 day window ending 2024-01-07
        {"student_id": a, "date": "2023-12-30", "status": "absent"},
    ]
    data_service.upsert("attendance_records", [dict(row, batch_id=batch["id"]) for row in rows],
                        on_conflict="student_id,date")
    return rows


@pytest.fixture
def generator(data_service):
    return ReportGenerator(data_service, clock=lambda: date(2024, 1, 7))


def test_seven_day_range_crosses_month_boundary():
    assert resolve_date_range("7days", date(2024, 3, 3)) == (date(2024, 2, 26), date(2024, 3, 3))


def test_thirty_day_and_month_ranges():
    assert resolve_date_range("30days", date(2024, 1, 15)) == (date(2023, 12, 17), date(2024, 1, 15))
    assert resolve_date_range("month", date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))


def test_unknown_range_is_rejected():
    with pytest.raises(ValueError):
        resolve_date_range("year", date(2024, 1, 1))


def test_daily_aggregation_omits_empty_days():
    daily = aggregate_daily([
        record(4, "2024-01-03", "late"),
        record(1, "2024-01-01", "present"),
        record(2, "2024-01-01", "present"),
        record(3, "2024-01-01", "absent"),
    ])

    assert daily == [
        {"date": "2024-01-01", "present": 2, "absent": 1, "late": 0},
        {"date": "2024-01-03", "present": 0, "absent": 0, "late": 1},
    ]
    assert "2024-01-02" not in [day["date"] for day in daily]


def test_overall_totals():
    assert aggregate_overall([]) == {"present": 0, "absent": 0, "late": 0}
    assert aggregate_overall([record(1, "2024-01-01", "absent")])["absent"] == 1


def test_attendance_percentage_counts_late_as_attended():
    assert attendance_percentage(0, 0, 0) == 0.0
    assert attendance_percentage(3, 1, 1) == 80.0
    assert attendance_percentage(1, 2, 0) == 33.33


def test_student_summary_formats_two_decimals():
    students = [
        {"id": 1, "roll_number": "01", "full_name": "Asha"},
        {"id": 2, "roll_number": "02", "full_name": "Rahul"},
    ]
    records = [record(1, f"2024-01-0{d}", s)
               for d, s in enumerate(["present", "present", "present", "absent", "late"], start=1)]

    rows = student_summary(students, records)

    assert rows[0]["Attendance %"] == "80.00"
    assert rows[0]["Late Days"] == 1
    assert rows[1]["Attendance %"] == "0.00"


def test_format_period_date():
    assert format_period_date(date(2024, 1, 1)) == "Jan 1, 2024"


def test_build_report(generator, history, batch):
    report = generator.build_report(batch["id"], "7days")

    assert report["success"] is True
    assert report["range"] == {"mode": "7days", "start": "2024-01-01", "end": "2024-01-07"}
    assert [day["date"] for day in report["daily"]] == ["2024-01-01", "2024-01-03"]
    assert report["overall"] == {"present": 3, "absent": 1, "late": 1}
    assert report["chart_data"]["daily"]["labels"] == ["2024-01-01", "2024-01-03"]
    assert report["chart_data"]["overall"]["data"] == [3, 1, 1]


def test_build_report_with_bad_range(generator, batch):
    result = generator.build_report(batch["id"], "forever")

    assert result["success"] is False
    assert result["error_type"] == "validation"


def test_export_csv(generator, history, batch):
    result = generator.export_csv(batch["id"], "7days")

    assert result["success"] is True
    assert result["filename"] == "attendance-JEE 2025-2024-01-07.csv"
    assert result["mimetype"] == "text/csv"
    lines = result["content"].decode("utf-8").splitlines()
    assert lines[0] == ",".join(CSV_COLUMNS)
    assert lines[1] == "01,Asha Verma,1,0,1,100.00"
    assert lines[2] == "02,Rahul Singh,1,1,0,50.00"
    assert lines[3] == "03,Meera Nair,1,0,0,100.00"


def test_export_excel(generator, history, batch):
    result = generator.export_excel(batch["id"], "7days")

    assert result["success"] is True
    assert result["filename"].endswith(".xlsx")
    assert result["content"][:2] == b"PK"


def test_export_pdf(generator, history, batch):
    result = generator.export_pdf(batch["id"], "month")

    assert result["success"] is True
    assert result["filename"] == "attendance-report-JEE 2025-2024-01-07.pdf"
    assert result["content"].startswith(b"%PDF")


def test_export_pdf_with_markup_characters_in_batch_name(generator, data_service, batch):
    data_service.update("batches", {"name": "XI <A> & B"}, {"id": batch["id"]})

    result = generator.export_pdf(batch["id"], "month")

    assert result["success"] is True
    assert result["content"].startswith(b"%PDF")


def test_export_for_missing_batch(generator, user):
    result = generator.export_csv(999, "7days")

    assert result["success"] is False
