"""
Student Manager Module - Coaching Attendance System

This module handles the student roster of a batch: listing, searching,
creating, editing and deleting students.

Roll numbers are unique within a batch. The check against the roster the
user already has loaded only saves a round trip; the data service's unique
constraint is authoritative and its rejection is reported with the same
duplicate-specific message.
"""

from typing import Dict, List, Any, Iterable, Optional
import logging
import re
from dataclasses import dataclass, field, asdict

from coaching_attendance.errors import (
    UNIQUE_VIOLATION,
    ValidationError,
    describe_error,
    error_type,
)

DUPLICATE_ROLL_NUMBER_MESSAGE = 'A student with this roll number already exists in this batch'
ROLL_NUMBER_IN_USE_MESSAGE = 'This roll number is already in use'
ROLL_NUMBER_REQUIRED_MESSAGE = 'Roll number is required'

CONTACT_FIELDS = ('phone', 'email', 'parent_name', 'parent_phone')

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')


@dataclass
class ContactInfo:
    """Contact details stored with each student."""
    phone: str = ''
    email: str = ''
    parent_name: str = ''
    parent_phone: str = ''


@dataclass
class Student:
    """Data structure for student information."""
    id: int
    batch_id: int
    full_name: str
    roll_number: str
    grade: str
    contact_info: ContactInfo = field(default_factory=ContactInfo)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Student':
        contact = row.get('contact_info') or {}
        return cls(
            id=row['id'],
            batch_id=row['batch_id'],
            full_name=row['full_name'],
            roll_number=row['roll_number'],
            grade=row.get('grade') or '',
            contact_info=ContactInfo(**{k: contact.get(k) or '' for k in CONTACT_FIELDS})
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def filter_students(roster: Iterable[Student], query: str) -> List[Student]:
    """
    Case-insensitive substring match over name and roll number.

    Works on an already loaded roster; an empty query returns everything.
    """
    needle = (query or '').strip().lower()
    if not needle:
        return list(roster)
    return [
        student for student in roster
        if needle in student.full_name.lower() or needle in student.roll_number.lower()
    ]


def is_duplicate_roll_number_error(error: BaseException) -> bool:
    """Server-side rejection of a (batch_id, roll_number) pair."""
    return getattr(error, 'code', None) == UNIQUE_VIOLATION


class StudentManager:
    """
    Student roster management for a batch.
    """

    def __init__(self, data_service):
        """
        Initialize the student manager.

        Args:
            data_service: Data service instance
        """
        self.data = data_service
        self.logger = logging.getLogger(__name__)

    def _clean(self, student_data: Dict[str, Any]) -> Dict[str, Any]:
        full_name = (student_data.get('full_name') or '').strip()
        roll_number = (student_data.get('roll_number') or '').strip()
        grade = (student_data.get('grade') or '').strip()
        contact = student_data.get('contact_info') or {}
        contact = {key: (contact.get(key) or '').strip() for key in CONTACT_FIELDS}

        if not roll_number:
            raise ValidationError(ROLL_NUMBER_REQUIRED_MESSAGE)
        if not full_name:
            raise ValidationError('Full name is required')
        if not grade:
            raise ValidationError('Grade is required')
        for key in CONTACT_FIELDS:
            if not contact[key]:
                raise ValidationError(f"{key.replace('_', ' ').capitalize()} is required")
        if not EMAIL_PATTERN.match(contact['email']):
            raise ValidationError('Please enter a valid email address')

        return {
            'full_name': full_name,
            'roll_number': roll_number,
            'grade': grade,
            'contact_info': contact
        }

    def check_roll_number(self, roll_number: str, existing_roll_numbers: Iterable[str],
                          current_roll_number: Optional[str] = None) -> Optional[str]:
        """
        Check a roll number against the loaded roster without a network call.

        Args:
            roll_number (str): Roll number entered in the form
            existing_roll_numbers: Roll numbers of the loaded roster
            current_roll_number (str): The student's own roll number when editing

        Returns:
            str: Error message, or None if the roll number may be submitted
        """
        roll_number = (roll_number or '').strip()
        if not roll_number:
            return ROLL_NUMBER_REQUIRED_MESSAGE
        if roll_number in set(existing_roll_numbers) and roll_number != current_roll_number:
            return ROLL_NUMBER_IN_USE_MESSAGE
        return None

    def _failure(self, e: Exception, fallback: str) -> Dict[str, Any]:
        if is_duplicate_roll_number_error(e):
            return {
                'success': False,
                'error': DUPLICATE_ROLL_NUMBER_MESSAGE,
                'error_type': 'duplicate_roll_number'
            }
        return {
            'success': False,
            'error': describe_error(e, fallback),
            'error_type': error_type(e)
        }

    def list_students(self, batch_id: int) -> Dict[str, Any]:
        """
        List a batch's students ordered by roll number.

        Returns:
            Dict[str, Any]: {'success': True, 'students': [Student, ...]} or an error result
        """
        try:
            rows = self.data.select('students', filters={'batch_id': batch_id},
                                    order_by='roll_number')
            return {'success': True, 'students': [Student.from_row(row) for row in rows]}

        except Exception as e:
            self.logger.error(f"Failed to fetch students for batch {batch_id}: {str(e)}")
            result = self._failure(e, 'Failed to fetch students')
            result['students'] = []
            return result

    def get_student(self, student_id: int) -> Dict[str, Any]:
        try:
            rows = self.data.select('students', filters={'id': student_id})
            if not rows:
                return {'success': False, 'error': 'Student not found', 'error_type': 'not_found'}
            return {'success': True, 'student': Student.from_row(rows[0])}

        except Exception as e:
            self.logger.error(f"Failed to fetch student {student_id}: {str(e)}")
            return self._failure(e, 'Failed to fetch student')

    def create_student(self, batch_id: int, student_data: Dict[str, Any],
                       existing_roll_numbers: Iterable[str] = ()) -> Dict[str, Any]:
        """
        Add a student to a batch.

        Args:
            batch_id (int): Batch ID
            student_data (Dict[str, Any]): full_name, roll_number, grade, contact_info
            existing_roll_numbers: Roll numbers of the roster loaded in the view

        Returns:
            Dict[str, Any]: Creation result
        """
        roll_error = self.check_roll_number(student_data.get('roll_number'), existing_roll_numbers)
        if roll_error:
            return {'success': False, 'error': roll_error, 'error_type': 'validation'}

        try:
            values = self._clean(student_data)
            values['batch_id'] = batch_id

            rows = self.data.insert('students', values)
            student = Student.from_row(rows[0])

            self.logger.info(f"Student created: {student.roll_number} in batch {batch_id} (ID: {student.id})")
            return {
                'success': True,
                'student': student,
                'message': 'Student added successfully'
            }

        except Exception as e:
            self.logger.error(f"Student creation failed for roll number "
                              f"{student_data.get('roll_number', 'unknown')}: {str(e)}")
            return self._failure(e, 'Failed to add student')

    def update_student(self, student_id: int, student_data: Dict[str, Any],
                       existing_roll_numbers: Iterable[str] = (),
                       current_roll_number: Optional[str] = None) -> Dict[str, Any]:
        """
        Replace a student's details.

        Args:
            student_id (int): Student ID
            student_data (Dict[str, Any]): Updated details
            existing_roll_numbers: Roll numbers of the roster loaded in the view
            current_roll_number (str): The roll number the student had when loaded

        Returns:
            Dict[str, Any]: Update result
        """
        roll_error = self.check_roll_number(student_data.get('roll_number'),
                                            existing_roll_numbers, current_roll_number)
        if roll_error:
            return {'success': False, 'error': roll_error, 'error_type': 'validation'}

        try:
            values = self._clean(student_data)
            rows = self.data.update('students', values, {'id': student_id})

            if not rows:
                return {'success': False, 'error': 'Student not found', 'error_type': 'not_found'}

            self.logger.info(f"Student {student_id} updated")
            return {
                'success': True,
                'student': Student.from_row(rows[0]),
                'message': 'Student updated successfully'
            }

        except Exception as e:
            self.logger.error(f"Student update failed for ID {student_id}: {str(e)}")
            return self._failure(e, 'Failed to update student')

    def delete_student(self, student_id: int) -> Dict[str, Any]:
        """
        Delete a student and, through the cascade, their attendance records.
        """
        try:
            deleted = self.data.delete('students', {'id': student_id})
            if not deleted:
                return {'success': False, 'error': 'Student not found', 'error_type': 'not_found'}

            self.logger.info(f"Student {student_id} deleted")
            return {'success': True, 'message': 'Student deleted successfully'}

        except Exception as e:
            self.logger.error(f"Error deleting student {student_id}: {str(e)}")
            return self._failure(e, 'Failed to delete student')
