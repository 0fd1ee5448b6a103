"""
Batch Manager Module - Coaching Attendance System

This module handles batch administration: listing, creating, editing and
deleting the student cohorts that everything else hangs off. Deleting a
batch cascades to its students and their attendance records in the data
service, so the caller must confirm it explicitly.

Concurrent edits are last-writer-wins.
"""

from datetime import date
from typing import Dict, List, Any, Optional
import logging
from dataclasses import dataclass

from coaching_attendance.errors import ValidationError, describe_error, error_type

COURSE_TYPES = ('Engineering', 'Pharmacy', 'Entrance', 'XI Coaching', 'XII Coaching')


@dataclass
class Batch:
    """Data structure for batch information."""
    id: int
    name: str
    course_type: str
    start_date: str
    end_date: str
    created_at: Optional[str]
    created_by: Optional[int]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> 'Batch':
        return cls(
            id=row['id'],
            name=row['name'],
            course_type=row['course_type'],
            start_date=row['start_date'],
            end_date=row['end_date'],
            created_at=row.get('created_at'),
            created_by=row.get('created_by')
        )


class BatchManager:
    """
    Batch CRUD on top of the data service.
    """

    def __init__(self, data_service):
        """
        Initialize the batch manager.

        Args:
            data_service: Data service instance
        """
        self.data = data_service
        self.logger = logging.getLogger(__name__)

    def _validate(self, name: str, course_type: str, start_date: str, end_date: str) -> Dict[str, str]:
        name = (name or '').strip()
        if not name:
            raise ValidationError('Batch name is required')

        if course_type not in COURSE_TYPES:
            raise ValidationError('Please select a valid course type')

        try:
            start = date.fromisoformat(start_date or '')
            end = date.fromisoformat(end_date or '')
        except ValueError:
            raise ValidationError('Start and end dates must be valid dates (YYYY-MM-DD)') from None

        if start > end:
            raise ValidationError('End date must be on or after the start date')

        return {
            'name': name,
            'course_type': course_type,
            'start_date': start.isoformat(),
            'end_date': end.isoformat()
        }

    def list_batches(self, order: str = 'created_at') -> Dict[str, Any]:
        """
        List all batches.

        Args:
            order (str): 'created_at' for newest first, 'name' for alphabetical

        Returns:
            Dict[str, Any]: {'success': True, 'batches': [Batch, ...]} or an error result
        """
        try:
            if order == 'name':
                rows = self.data.select('batches', order_by=['name', 'id'])
            else:
                rows = self.data.select('batches', order_by=['created_at', 'id'], descending=True)

            return {'success': True, 'batches': [Batch.from_row(row) for row in rows]}

        except Exception as e:
            self.logger.error(f"Failed to fetch batches: {str(e)}")
            return {
                'success': False,
                'batches': [],
                'error': describe_error(e, 'Failed to fetch batches'),
                'error_type': error_type(e)
            }

    def get_batch(self, batch_id: int) -> Dict[str, Any]:
        """
        Fetch one batch by ID.

        Returns:
            Dict[str, Any]: {'success': True, 'batch': Batch} or an error result
        """
        try:
            rows = self.data.select('batches', filters={'id': batch_id})
            if not rows:
                return {
                    'success': False,
                    'error': 'Batch not found',
                    'error_type': 'not_found'
                }
            return {'success': True, 'batch': Batch.from_row(rows[0])}

        except Exception as e:
            self.logger.error(f"Failed to fetch batch {batch_id}: {str(e)}")
            return {
                'success': False,
                'error': describe_error(e, 'Failed to fetch batch details'),
                'error_type': error_type(e)
            }

    def create_batch(self, name: str, course_type: str, start_date: str, end_date: str,
                     created_by: Optional[int] = None) -> Dict[str, Any]:
        """
        Create a batch stamped with the acting user.

        Args:
            name (str): Batch name
            course_type (str): One of COURSE_TYPES
            start_date (str): ISO start date
            end_date (str): ISO end date, not before start_date
            created_by (int): ID of the signed-in user

        Returns:
            Dict[str, Any]: Creation result
        """
        try:
            values = self._validate(name, course_type, start_date, end_date)
            values['created_by'] = created_by

            rows = self.data.insert('batches', values)
            batch = Batch.from_row(rows[0])

            self.logger.info(f"Batch created: {batch.name} (ID: {batch.id})")
            return {
                'success': True,
                'batch': batch,
                'message': 'Batch created successfully'
            }

        except Exception as e:
            self.logger.error(f"Batch creation failed for {name}: {str(e)}")
            return {
                'success': False,
                'error': describe_error(e, 'Failed to create batch'),
                'error_type': error_type(e)
            }

    def update_batch(self, batch_id: int, name: str, course_type: str,
                     start_date: str, end_date: str) -> Dict[str, Any]:
        """
        Replace a batch's editable fields.

        Returns:
            Dict[str, Any]: Update result
        """
        try:
            values = self._validate(name, course_type, start_date, end_date)
            rows = self.data.update('batches', values, {'id': batch_id})

            if not rows:
                return {
                    'success': False,
                    'error': 'Batch not found',
                    'error_type': 'not_found'
                }

            self.logger.info(f"Batch {batch_id} updated")
            return {
                'success': True,
                'batch': Batch.from_row(rows[0]),
                'message': 'Batch updated successfully'
            }

        except Exception as e:
            self.logger.error(f"Batch update failed for ID {batch_id}: {str(e)}")
            return {
                'success': False,
                'error': describe_error(e, 'Failed to update batch'),
                'error_type': error_type(e)
            }

    def delete_batch(self, batch_id: int, confirmed: bool = False) -> Dict[str, Any]:
        """
        Delete a batch together with its students and attendance records.

        Args:
            batch_id (int): Batch ID
            confirmed (bool): Must be True; the UI asks before sending it

        Returns:
            Dict[str, Any]: Deletion result
        """
        if not confirmed:
            return {
                'success': False,
                'error': 'Please confirm that you want to delete this batch',
                'error_type': 'confirmation_required'
            }

        try:
            deleted = self.data.delete('batches', {'id': batch_id})
            if not deleted:
                return {
                    'success': False,
                    'error': 'Batch not found',
                    'error_type': 'not_found'
                }

            self.logger.info(f"Batch {batch_id} deleted")
            return {'success': True, 'message': 'Batch deleted successfully'}

        except Exception as e:
            self.logger.error(f"Batch deletion failed for ID {batch_id}: {str(e)}")
            return {
                'success': False,
                'error': describe_error(e, 'Failed to delete batch'),
                'error_type': error_type(e)
            }

    def get_course_types(self) -> List[str]:
        return list(COURSE_TYPES)
