"""
Notification System Module - Coaching Attendance System

Transient user-facing notifications ("toasts"). Manager results and caught
errors are turned into flash messages for the next rendered page, and the
most recent notifications are kept in memory for the JSON endpoints and
for diagnostics.
"""

from collections import deque
from datetime import datetime
from typing import Dict, List, Any, Optional
import itertools
import logging
import threading
from dataclasses import dataclass, asdict

from flask import flash, has_request_context

SEVERITY_SUCCESS = 'success'
SEVERITY_INFO = 'info'
SEVERITY_ERROR = 'error'


@dataclass
class NotificationData:
    """Data structure for notification information."""
    id: int
    severity: str
    message: str
    error_type: Optional[str]
    created_at: str


class NotificationSystem:
    """
    Turns outcomes into toasts and remembers the latest ones.
    """

    def __init__(self, max_recent: int = 100):
        self.logger = logging.getLogger(__name__)
        self._recent = deque(maxlen=max_recent)
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def toast(self, message: str, severity: str = SEVERITY_INFO,
              error_type: Optional[str] = None) -> NotificationData:
        """
        Show a transient message to the user.

        Args:
            message (str): Text to show
            severity (str): success, info or error
            error_type (str): Error kind for failures
        """
        with self._lock:
            notification = NotificationData(
                id=next(self._ids),
                severity=severity,
                message=message,
                error_type=error_type,
                created_at=datetime.now().isoformat()
            )
            self._recent.append(notification)

        if has_request_context():
            flash(message, severity)

        if severity == SEVERITY_ERROR:
            self.logger.info(f"Error toast ({error_type}): {message}")
        return notification

    def success(self, message: str) -> NotificationData:
        return self.toast(message, SEVERITY_SUCCESS)

    def error(self, message: str, error_type: Optional[str] = None) -> NotificationData:
        return self.toast(message, SEVERITY_ERROR, error_type)

    def from_result(self, result: Dict[str, Any], success_message: Optional[str] = None) -> bool:
        """
        Toast a manager result.

        Returns:
            bool: The result's success flag
        """
        if result.get('success'):
            message = success_message or result.get('message')
            if message:
                self.success(message)
            return True

        self.error(result.get('error') or 'An unexpected error occurred', result.get('error_type'))
        return False

    def get_recent_notifications(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent notifications, newest first."""
        with self._lock:
            recent = list(self._recent)
        return [asdict(n) for n in reversed(recent)][:limit]
