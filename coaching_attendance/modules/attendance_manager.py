"""
Attendance Manager Module - Coaching Attendance System

This module handles daily attendance marking for a batch.

Each student moves from unmarked to present, absent or late and may move
freely between those three. There are two write paths:
- a single mark, written immediately as one upsert keyed on
  (student_id, date) and followed by a re-fetch of the day's records;
- a bulk save that upserts every entry of the view's marking state in one
  call.

The marking state lives on a MarkingBoard owned by a view scope. Re-fetched
records are applied to the board only while its view is still open.
"""

from datetime import date, datetime
from typing import Callable, Dict, List, Any, Optional
import logging
import threading
from dataclasses import dataclass, field

from coaching_attendance.errors import describe_error, error_type
from coaching_attendance.modules.batch_manager import Batch
from coaching_attendance.modules.student_manager import Student

STATUS_PRESENT = 'present'
STATUS_ABSENT = 'absent'
STATUS_LATE = 'late'
STATUSES = (STATUS_PRESENT, STATUS_ABSENT, STATUS_LATE)

CONFLICT_KEY = 'student_id,date'
VIEW_KIND = 'attendance'


@dataclass
class AttendanceRecord:
    """Data class for attendance record structure."""
    id: int
    student_id: int
    batch_id: int
    date: str
    status: str
    marked_by: Optional[int]
    updated_at: Optional[str]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'AttendanceRecord':
        return cls(
            id=row['id'],
            student_id=row['student_id'],
            batch_id=row['batch_id'],
            date=row['date'],
            status=row['status'],
            marked_by=row.get('marked_by'),
            updated_at=row.get('updated_at')
        )


@dataclass
class MarkingBoard:
    """View state of the attendance marking page."""
    batch: Batch
    date: str
    students: List[Student]
    records: List[AttendanceRecord] = field(default_factory=list)
    marks: Dict[int, str] = field(default_factory=dict)
    saving: bool = False
    _lock: Any = field(default_factory=threading.Lock, repr=False, compare=False)

    def has_student(self, student_id: int) -> bool:
        return any(student.id == student_id for student in self.students)

    def reconcile(self, records: List[AttendanceRecord]):
        """Replace server-known marks with the fetched records; unsaved marks stay."""
        self.records = records
        known = {record.student_id for record in records}
        unsaved = {sid: status for sid, status in self.marks.items() if sid not in known}
        self.marks = {record.student_id: record.status for record in records}
        self.marks.update(unsaved)

    def stats(self) -> Dict[str, int]:
        values = list(self.marks.values())
        total = len(self.students)
        present = values.count(STATUS_PRESENT)
        absent = values.count(STATUS_ABSENT)
        late = values.count(STATUS_LATE)
        return {
            'total': total,
            'present': present,
            'absent': absent,
            'late': late,
            'unmarked': total - (present + absent + late)
        }

    def can_save(self) -> bool:
        return bool(self.marks) and not self.saving

    def begin_save(self) -> bool:
        with self._lock:
            if self.saving:
                return False
            self.saving = True
            return True

    def end_save(self):
        with self._lock:
            self.saving = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'date': self.date,
            'marks': {str(sid): status for sid, status in self.marks.items()},
            'stats': self.stats(),
            'can_save': self.can_save()
        }


class AttendanceManager:
    """
    Attendance marking for a batch on the current day.
    """

    def __init__(self, data_service, scopes, clock: Callable[[], date] = date.today):
        """
        Initialize the attendance manager.

        Args:
            data_service: Data service instance
            scopes: ViewScopeRegistry owning the marking boards
            clock: Source of today's date
        """
        self.data = data_service
        self.scopes = scopes
        self.clock = clock
        self.logger = logging.getLogger(__name__)

    def today(self) -> str:
        return self.clock().isoformat()

    def fetch_day_records(self, batch_id: int, day: str) -> List[AttendanceRecord]:
        rows = self.data.select('attendance_records', filters={'batch_id': batch_id, 'date': day})
        return [AttendanceRecord.from_row(row) for row in rows]

    def open_board(self, owner: str, batch_id: int) -> Dict[str, Any]:
        """
        Load the marking view for a batch and open a view scope for it.

        Args:
            owner (str): Browser session the view belongs to
            batch_id (int): Batch ID

        Returns:
            Dict[str, Any]: {'success': True, 'scope': ViewScope, 'board': MarkingBoard}
        """
        try:
            batch_rows = self.data.select('batches', filters={'id': batch_id})
            if not batch_rows:
                return {'success': False, 'error': 'Batch not found', 'error_type': 'not_found'}

            student_rows = self.data.select('students', filters={'batch_id': batch_id},
                                            order_by='roll_number')
            day = self.today()
            board = MarkingBoard(
                batch=Batch.from_row(batch_rows[0]),
                date=day,
                students=[Student.from_row(row) for row in student_rows]
            )
            board.reconcile(self.fetch_day_records(batch_id, day))

            scope = self.scopes.open(owner, VIEW_KIND, board)
            return {'success': True, 'scope': scope, 'board': board}

        except Exception as e:
            self.logger.error(f"Failed to load attendance for batch {batch_id}: {str(e)}")
            return {
                'success': False,
                'error': describe_error(e, "Failed to fetch today's attendance"),
                'error_type': error_type(e)
            }

    def _board(self, token: str, owner: Optional[str]) -> Optional[MarkingBoard]:
        scope = self.scopes.get(token, owner)
        if scope is None or scope.kind != VIEW_KIND:
            return None
        return scope.state

    def _reconcile(self, token: str, board: MarkingBoard):
        records = self.fetch_day_records(board.batch.id, board.date)
        self.scopes.apply(token, lambda state: state.reconcile(records))

    def mark_attendance(self, token: str, student_id: int, status: str,
                        marked_by: Optional[int] = None, owner: Optional[str] = None) -> Dict[str, Any]:
        """
        Mark one student and write it straight away.

        The board is updated before the write; on success the day's records
        are re-fetched and reconciled into the board if its view is still open.

        Args:
            token (str): View scope token of the marking page
            student_id (int): Student ID
            status (str): present, absent or late
            marked_by (int): ID of the signed-in user
            owner (str): Browser session the view must belong to

        Returns:
            Dict[str, Any]: Result with the board's current state
        """
        if status not in STATUSES:
            return {'success': False, 'error': f'Invalid attendance status: {status}',
                    'error_type': 'validation'}

        board = self._board(token, owner)
        if board is None:
            return {'success': False, 'error': 'This page has expired. Please reload it.',
                    'error_type': 'view_closed'}
        if not board.has_student(student_id):
            return {'success': False, 'error': 'Student not found in this batch',
                    'error_type': 'not_found'}

        board.marks[student_id] = status

        try:
            self.data.upsert('attendance_records', {
                'student_id': student_id,
                'batch_id': board.batch.id,
                'date': board.date,
                'status': status,
                'marked_by': marked_by,
                'updated_at': datetime.now().isoformat(sep=' ', timespec='seconds')
            }, on_conflict=CONFLICT_KEY)

            self._reconcile(token, board)
            return dict(board.to_dict(), success=True)

        except Exception as e:
            self.logger.error(f"Failed to mark attendance for student {student_id}: {str(e)}")
            return dict(
                board.to_dict(),
                success=False,
                error=describe_error(e, 'Failed to mark attendance'),
                error_type=error_type(e)
            )

    def save_all(self, token: str, marked_by: Optional[int] = None,
                 owner: Optional[str] = None) -> Dict[str, Any]:
        """
        Upsert every entry of the board's marking state in one call.

        Unmarked students have no entry and are not written.

        Returns:
            Dict[str, Any]: Save result with the board's current state
        """
        board = self._board(token, owner)
        if board is None:
            return {'success': False, 'error': 'This page has expired. Please reload it.',
                    'error_type': 'view_closed'}
        if marked_by is None:
            return {'success': False, 'error': 'User not authenticated', 'error_type': 'auth'}
        if not board.marks:
            return dict(board.to_dict(), success=False, error='No attendance has been marked yet',
                        error_type='validation')
        if not board.begin_save():
            return dict(board.to_dict(), success=False, error='Save already in progress',
                        error_type='in_progress')

        try:
            updated_at = datetime.now().isoformat(sep=' ', timespec='seconds')
            rows = [
                {
                    'student_id': student_id,
                    'batch_id': board.batch.id,
                    'date': board.date,
                    'status': status,
                    'marked_by': marked_by,
                    'updated_at': updated_at
                }
                for student_id, status in board.marks.items()
            ]
            self.data.upsert('attendance_records', rows, on_conflict=CONFLICT_KEY)

            self.logger.info(f"Saved {len(rows)} attendance records for batch {board.batch.id} on {board.date}")
            self._reconcile(token, board)
            result = {'success': True, 'message': 'Attendance saved successfully'}

        except Exception as e:
            self.logger.error(f"Failed to save attendance for batch {board.batch.id}: {str(e)}")
            result = {
                'success': False,
                'error': describe_error(e, 'Failed to save attendance'),
                'error_type': error_type(e)
            }

        finally:
            board.end_save()

        return dict(board.to_dict(), **result)
