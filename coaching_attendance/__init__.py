# Coaching Attendance System - App Package
"""
Main application package for the coaching institute attendance system.
The Flask application factory lives in coaching_attendance.web.
"""

__version__ = "1.0.0"
__description__ = "Batch, student and daily attendance management for coaching institutes"

# Import core components for easy access
from .modules.data_service import DataService
from .modules.session_manager import SessionManager
from .modules.view_scope import ViewScopeRegistry
from .modules.batch_manager import BatchManager
from .modules.student_manager import StudentManager
from .modules.attendance_manager import AttendanceManager
from .modules.report_generator import ReportGenerator
from .modules.notification_system import NotificationSystem

__all__ = [
    'DataService',
    'SessionManager',
    'ViewScopeRegistry',
    'BatchManager',
    'StudentManager',
    'AttendanceManager',
    'ReportGenerator',
    'NotificationSystem'
]
