"""
Coaching Attendance System - Main Application

This module serves as the main entry point for the coaching institute
attendance system. It configures logging and builds the Flask application.

Features:
- Email/password sign-in with "remember me"
- Batch and student roster management
- Daily attendance marking (present / absent / late)
- Attendance reports with charts
- Data export to CSV/Excel/PDF
"""

import logging
import os

from coaching_attendance.web import create_app

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
)
logger = logging.getLogger(__name__)

# Missing DATA_SERVICE_URL / DATA_SERVICE_KEY stops the process here
app = create_app()

if __name__ == '__main__':
    # Run the application
    app.run(debug=app.config['DEBUG'], host='0.0.0.0', port=int(os.environ.get('PORT', 5000)))
