# Coaching Attendance System - Modules Package
"""
Core business logic modules for the coaching attendance system.
"""

# Module descriptions
MODULES = {
    'database_manager': 'SQLite connections, schema and error translation',
    'data_service': 'Table operations over the attendance store',
    'identity_provider': 'Password sign-in and session tokens',
    'session_manager': 'Process-wide session state and sign-in/sign-out commands',
    'view_scope': 'Lifetimes of rendered views',
    'batch_manager': 'Batch administration',
    'student_manager': 'Student roster management',
    'attendance_manager': 'Daily attendance marking',
    'report_generator': 'Attendance reports and data export',
    'notification_system': 'User-facing toasts'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
