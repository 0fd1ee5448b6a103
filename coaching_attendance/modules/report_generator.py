"""
Report Generator Module - Coaching Attendance System

This module handles attendance reporting for a batch over a date range:
per-day and overall aggregation for the report charts, and downloadable
exports.

Features:
- Trailing 7 day, trailing 30 day and current month ranges
- Per-day counts (days without records are omitted, not zero-filled)
- Overall present/absent/late totals
- Per-student CSV and Excel exports with attendance percentage
- PDF summary export (title, period and overall totals only)
"""

import calendar
import io
import logging
import re
from collections import OrderedDict
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Tuple
from xml.sax.saxutils import escape

import pandas as pd
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer

from coaching_attendance.errors import describe_error, error_type
from coaching_attendance.modules.attendance_manager import STATUSES

DATE_RANGE_MODES = ('7days', '30days', 'month')
DEFAULT_DATE_RANGE = '7days'

CHART_COLORS = {'present': '#22C55E', 'absent': '#EF4444', 'late': '#F59E0B'}

CSV_COLUMNS = ['Roll Number', 'Name', 'Present Days', 'Absent Days', 'Late Days', 'Attendance %']

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|\x00-\x1f]+')


def resolve_date_range(mode: str, today: date) -> Tuple[date, date]:
    """
    Inclusive (start, end) dates for a range mode anchored on today.

    Raises:
        ValueError: For an unknown mode
    """
    if mode == '7days':
        return today - timedelta(days=6), today
    if mode == '30days':
        return today - timedelta(days=29), today
    if mode == 'month':
        last_day = calendar.monthrange(today.year, today.month)[1]
        return today.replace(day=1), today.replace(day=last_day)
    raise ValueError(f"Unknown date range: {mode}")


def aggregate_daily(records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Count statuses per day, ascending by date. Days with no records are omitted.
    """
    days: Dict[str, Dict[str, Any]] = {}
    for record in records:
        day = days.setdefault(record['date'], {'date': record['date'], 'present': 0, 'absent': 0, 'late': 0})
        day[record['status']] += 1
    return [days[key] for key in sorted(days)]


def aggregate_overall(records: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    totals = OrderedDict((status, 0) for status in STATUSES)
    for record in records:
        totals[record['status']] += 1
    return dict(totals)


def attendance_percentage(present: int, absent: int, late: int) -> float:
    """
    (present + late) / marked days * 100, rounded to two places. No marked days gives 0.
    """
    total = present + absent + late
    if total == 0:
        return 0.0
    return round((present + late) / total * 100, 2)


def student_summary(students: Iterable[Dict[str, Any]],
                    records: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Per-student counts and percentage, one row per student in the batch.
    """
    counts: Dict[Any, Dict[str, int]] = {}
    for record in records:
        per_student = counts.setdefault(record['student_id'], {status: 0 for status in STATUSES})
        per_student[record['status']] += 1

    rows = []
    for student in students:
        c = counts.get(student['id'], {status: 0 for status in STATUSES})
        percentage = attendance_percentage(c['present'], c['absent'], c['late'])
        rows.append({
            'Roll Number': student['roll_number'],
            'Name': student['full_name'],
            'Present Days': c['present'],
            'Absent Days': c['absent'],
            'Late Days': c['late'],
            'Attendance %': f"{percentage:.2f}"
        })
    return rows


def format_period_date(value: date) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def safe_filename_part(value: str) -> str:
    return _UNSAFE_FILENAME_CHARS.sub('-', value).strip() or 'batch'


class ReportGenerator:
    """
    Attendance report aggregation and export for one batch at a time.
    """

    def __init__(self, data_service, clock: Callable[[], date] = date.today):
        """
        Initialize the report generator.

        Args:
            data_service: Data service instance
            clock: Source of today's date
        """
        self.data = data_service
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def _load(self, batch_id: int, mode: str):
        start, end = resolve_date_range(mode, self.clock())
        batch = self.data.select('batches', filters={'id': batch_id}, single=True)
        records = self.data.select(
            'attendance_records',
            columns=['student_id', 'date', 'status'],
            filters={'batch_id': batch_id},
            gte={'date': start.isoformat()},
            lte={'date': end.isoformat()}
        )
        return batch, start, end, records

    def _failure(self, e: Exception, fallback: str) -> Dict[str, Any]:
        if isinstance(e, ValueError):
            return {'success': False, 'error': str(e), 'error_type': 'validation'}
        return {'success': False, 'error': describe_error(e, fallback), 'error_type': error_type(e)}

    def build_report(self, batch_id: int, mode: str = DEFAULT_DATE_RANGE) -> Dict[str, Any]:
        """
        Aggregate a batch's attendance over a date range.

        Returns:
            Dict[str, Any]: range, daily series, overall totals and chart data
        """
        try:
            batch, start, end, records = self._load(batch_id, mode)
            daily = aggregate_daily(records)
            overall = aggregate_overall(records)

            return {
                'success': True,
                'batch': {'id': batch['id'], 'name': batch['name']},
                'range': {'mode': mode, 'start': start.isoformat(), 'end': end.isoformat()},
                'daily': daily,
                'overall': overall,
                'chart_data': self.chart_data(daily, overall)
            }

        except Exception as e:
            self.logger.error(f"Failed to fetch attendance statistics for batch {batch_id}: {str(e)}")
            return self._failure(e, 'Failed to fetch attendance statistics')

    def chart_data(self, daily: List[Dict[str, Any]], overall: Dict[str, int]) -> Dict[str, Any]:
        """Bar (per day) and pie (overall) series for the report charts."""
        return {
            'daily': {
                'labels': [day['date'] for day in daily],
                'datasets': [
                    {
                        'label': status.capitalize(),
                        'data': [day[status] for day in daily],
                        'backgroundColor': CHART_COLORS[status]
                    }
                    for status in STATUSES
                ]
            },
            'overall': {
                'labels': [status.capitalize() for status in STATUSES],
                'data': [overall[status] for status in STATUSES],
                'colors': [CHART_COLORS[status] for status in STATUSES]
            }
        }

    def _student_frame(self, batch_id: int, mode: str):
        batch, start, end, records = self._load(batch_id, mode)
        students = self.data.select('students', columns=['id', 'full_name', 'roll_number'],
                                    filters={'batch_id': batch_id}, order_by='roll_number')
        frame = pd.DataFrame(student_summary(students, records), columns=CSV_COLUMNS)
        return batch, frame

    def export_csv(self, batch_id: int, mode: str = DEFAULT_DATE_RANGE) -> Dict[str, Any]:
        """
        Per-student attendance as CSV.

        Returns:
            Dict[str, Any]: filename, mimetype and content bytes
        """
        try:
            batch, frame = self._student_frame(batch_id, mode)
            content = frame.to_csv(index=False).encode('utf-8')
            filename = f"attendance-{safe_filename_part(batch['name'])}-{self.clock().isoformat()}.csv"

            self.logger.info(f"CSV exported: {filename} ({len(frame)} students)")
            return {
                'success': True,
                'filename': filename,
                'mimetype': 'text/csv',
                'content': content,
                'message': 'CSV exported successfully'
            }

        except Exception as e:
            self.logger.error(f"CSV export failed for batch {batch_id}: {str(e)}")
            return self._failure(e, 'Failed to export CSV')

    def export_excel(self, batch_id: int, mode: str = DEFAULT_DATE_RANGE) -> Dict[str, Any]:
        """Per-student attendance as an Excel workbook."""
        try:
            batch, frame = self._student_frame(batch_id, mode)
            buffer = io.BytesIO()
            with pd.ExcelWriter(buffer, engine='openpyxl') as writer:
                frame.to_excel(writer, sheet_name='Attendance', index=False)

            filename = f"attendance-{safe_filename_part(batch['name'])}-{self.clock().isoformat()}.xlsx"
            self.logger.info(f"Excel exported: {filename} ({len(frame)} students)")
            return {
                'success': True,
                'filename': filename,
                'mimetype': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
                'content': buffer.getvalue(),
                'message': 'Excel file exported successfully'
            }

        except Exception as e:
            self.logger.error(f"Excel export failed for batch {batch_id}: {str(e)}")
            return self._failure(e, 'Failed to export Excel file')

    def export_pdf(self, batch_id: int, mode: str = DEFAULT_DATE_RANGE) -> Dict[str, Any]:
        """
        Summary PDF: title, period and overall totals. No per-student table.
        """
        try:
            batch, start, end, records = self._load(batch_id, mode)
            overall = aggregate_overall(records)

            buffer = io.BytesIO()
            doc = SimpleDocTemplate(buffer, pagesize=A4, title=f"Attendance Report - {batch['name']}")
            styles = getSampleStyleSheet()
            title_style = ParagraphStyle('ReportTitle', parent=styles['Heading1'], fontSize=20, spaceAfter=12)

            elements = [
                Paragraph(f"Attendance Report - {escape(batch['name'])}", title_style),
                Paragraph(f"Period: {format_period_date(start)} to {format_period_date(end)}",
                          styles['Normal']),
                Spacer(1, 16),
                Paragraph('Overall Statistics', styles['Heading2'])
            ]
            for status in STATUSES:
                elements.append(Paragraph(f"{status.capitalize()}: {overall[status]}", styles['Normal']))

            doc.build(elements)

            filename = f"attendance-report-{safe_filename_part(batch['name'])}-{self.clock().isoformat()}.pdf"
            self.logger.info(f"PDF exported: {filename}")
            return {
                'success': True,
                'filename': filename,
                'mimetype': 'application/pdf',
                'content': buffer.getvalue(),
                'message': 'Report exported successfully'
            }

        except Exception as e:
            self.logger.error(f"PDF export failed for batch {batch_id}: {str(e)}")
            return self._failure(e, 'Failed to export report')
