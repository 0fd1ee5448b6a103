"""
Web Application - Coaching Attendance System

Builds the Flask application: configuration, the data service, the session
manager and the feature managers, plus every page and JSON route.

Pages:
- Login / logout
- Dashboard with batch administration
- Student roster per batch
- Attendance marking for today
- Reports with charts and CSV / Excel / PDF export
"""

import atexit
import io
import logging
import secrets
from dataclasses import dataclass
from functools import wraps

from flask import (
    Flask, current_app, g, jsonify, redirect, render_template, request, send_file, session, url_for
)

from config import init_config
from coaching_attendance.modules.attendance_manager import STATUSES, AttendanceManager
from coaching_attendance.modules.batch_manager import BatchManager
from coaching_attendance.modules.data_service import DataService
from coaching_attendance.modules.notification_system import NotificationSystem
from coaching_attendance.modules.report_generator import DATE_RANGE_MODES, ReportGenerator
from coaching_attendance.modules.session_manager import SessionManager
from coaching_attendance.modules.student_manager import CONTACT_FIELDS, StudentManager, filter_students
from coaching_attendance.modules.view_scope import ViewScopeRegistry

logger = logging.getLogger(__name__)

ROSTER_VIEW = 'roster'

EXPORT_FORMATS = ('csv', 'xlsx', 'pdf')

# HTTP status for failed JSON results by error type
STATUS_CODES = {
    'validation': 400,
    'duplicate_roll_number': 409,
    'in_progress': 409,
    'auth': 401,
    'not_found': 404,
    'view_closed': 410,
    'connectivity': 503,
    'constraint': 409,
    'remote': 502
}


@dataclass
class Components:
    """Application-wide services, stored in app.extensions."""
    data_service: DataService
    session_manager: SessionManager
    scopes: ViewScopeRegistry
    batch_manager: BatchManager
    student_manager: StudentManager
    attendance_manager: AttendanceManager
    report_generator: ReportGenerator
    notifications: NotificationSystem


def components() -> Components:
    return current_app.extensions['coaching_attendance']


def view_owner() -> str:
    """Stable ID of the browser session, used to own view scopes."""
    if 'view_owner' not in session:
        session['view_owner'] = secrets.token_urlsafe(16)
    return session['view_owner']


def current_session():
    """
    Session of the signed-in user, refreshing an expired access token once.

    Returns None when nobody is signed in or the refresh failed.
    """
    c = components()
    access_token = session.get('access_token')
    if not access_token:
        return None

    auth_session = c.session_manager.session_for(access_token)
    if auth_session is not None:
        return auth_session

    refresh_token = session.get('refresh_token')
    if refresh_token:
        result = c.session_manager.refresh(refresh_token)
        if result['success']:
            store_session(result['session'])
            return result['session']

    c.scopes.close_owner(view_owner())
    session.clear()
    c.notifications.error('Session expired. Please sign in again.', 'auth')
    return None


def store_session(auth_session):
    session['access_token'] = auth_session.access_token
    session['refresh_token'] = auth_session.refresh_token
    session['user_id'] = auth_session.user_id
    session['email'] = auth_session.email
    session['full_name'] = auth_session.full_name
    session.permanent = auth_session.persistent


def login_required(f):
    """Decorator to require a live session for pages"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.auth_session = current_session()
        if g.auth_session is None:
            return redirect(url_for('login'))
        return f(*args, **kwargs)
    return decorated_function


def api_login_required(f):
    """Decorator to require a live session for JSON endpoints"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.auth_session = current_session()
        if g.auth_session is None:
            return jsonify({
                'success': False,
                'message': 'Session expired. Please sign in again.',
                'error_type': 'auth'
            }), 401
        return f(*args, **kwargs)
    return decorated_function


def json_result(result, status=200):
    """Serialize a manager result, mapping failures to an HTTP status."""
    body = {key: value for key, value in result.items() if key not in ('scope', 'board')}
    if result.get('success'):
        body.setdefault('message', None)
        return jsonify(body), status

    body['message'] = result.get('error')
    return jsonify(body), STATUS_CODES.get(result.get('error_type'), 500)


def roster_roll_numbers(token, owner):
    """Roll numbers of the roster the form was rendered from, plus an ID lookup."""
    scope = components().scopes.get(token, owner) if token else None
    if scope is None or scope.kind != ROSTER_VIEW:
        return [], {}
    return [s.roll_number for s in scope.state], {s.id: s.roll_number for s in scope.state}


def student_in_batch(student_id, batch_id):
    """Toast and return False unless the student belongs to the batch in the URL."""
    c = components()
    result = c.student_manager.get_student(student_id)
    if result['success'] and result['student'].batch_id != batch_id:
        result = {'success': False, 'error': 'Student not found', 'error_type': 'not_found'}
    if not result['success']:
        c.notifications.error(result['error'], result['error_type'])
        return False
    return True


def student_form_data(form):
    return {
        'full_name': form.get('full_name', ''),
        'roll_number': form.get('roll_number', ''),
        'grade': form.get('grade', ''),
        'contact_info': {key: form.get(key, '') for key in CONTACT_FIELDS}
    }


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name (str): Key of the configuration class, defaults to FLASK_ENV
        overrides (dict): Settings applied on top of the configuration class

    Raises:
        ConfigurationError: When DATA_SERVICE_URL or DATA_SERVICE_KEY is missing
    """
    app = Flask(__name__, template_folder='templates', static_folder='static')
    init_config(app, config_name, overrides)

    data_service = DataService(
        app.config['DATA_SERVICE_URL'],
        app.config['DATA_SERVICE_KEY'],
        access_token_lifetime=app.config['ACCESS_TOKEN_LIFETIME'],
        session_lifetime=app.config['SESSION_LIFETIME'],
        remember_me_lifetime=app.config['REMEMBER_ME_LIFETIME']
    )
    data_service.db.initialize_database()

    if app.config.get('ADMIN_EMAIL') and app.config.get('ADMIN_PASSWORD'):
        data_service.auth.ensure_user(app.config['ADMIN_EMAIL'], app.config['ADMIN_PASSWORD'],
                                      app.config.get('ADMIN_NAME') or 'Administrator')

    session_manager = SessionManager(data_service)
    session_manager.init()
    atexit.register(session_manager.teardown)

    scopes = ViewScopeRegistry(ttl=app.config['VIEW_SCOPE_TTL'])
    app.extensions['coaching_attendance'] = Components(
        data_service=data_service,
        session_manager=session_manager,
        scopes=scopes,
        batch_manager=BatchManager(data_service),
        student_manager=StudentManager(data_service),
        attendance_manager=AttendanceManager(data_service, scopes),
        report_generator=ReportGenerator(data_service),
        notifications=NotificationSystem()
    )

    register_routes(app)
    logger.info("Coaching attendance application created")
    return app


def register_routes(app):

    @app.context_processor
    def inject_user():
        return {
            'current_user': {
                'email': session.get('email'),
                'full_name': session.get('full_name')
            } if session.get('access_token') else None
        }

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    @app.route('/login', methods=['GET', 'POST'])
    def login():
        """Sign-in page"""
        c = components()
        if request.method == 'GET':
            if current_session() is not None:
                return redirect(url_for('dashboard'))
            return render_template('login.html')

        email = request.form.get('email', '').strip()
        password = request.form.get('password', '')
        remember = request.form.get('remember') in ('on', 'true', '1')

        if not email or not password:
            c.notifications.error('Please provide both email and password.', 'validation')
            return render_template('login.html', email=email), 400

        result = c.session_manager.sign_in(email, password, remember=remember)
        if not result['success']:
            c.notifications.error(result['error'], result['error_type'])
            return render_template('login.html', email=email), 401

        session.clear()
        store_session(result['session'])
        logger.info(f"User {email} signed in")
        return redirect(url_for('dashboard'))

    @app.route('/logout', methods=['POST'])
    def logout():
        """Sign out and return to the login page"""
        c = components()
        if session.get('access_token'):
            result = c.session_manager.sign_out(session['access_token'])
            if not result['success']:
                logger.warning(f"Sign-out failed remotely: {result['error']}")
        if 'view_owner' in session:
            c.scopes.close_owner(session['view_owner'])
        session.clear()
        c.notifications.success('You have been signed out.')
        return redirect(url_for('login'))

    # ------------------------------------------------------------------
    # Dashboard and batches
    # ------------------------------------------------------------------

    @app.route('/')
    @login_required
    def dashboard():
        """Batch list and administration"""
        c = components()
        result = c.batch_manager.list_batches()
        if not result['success']:
            c.notifications.error(result['error'], result['error_type'])
        return render_template('dashboard.html',
                               batches=result['batches'],
                               course_types=c.batch_manager.get_course_types())

    @app.route('/batches', methods=['POST'])
    @login_required
    def create_batch():
        c = components()
        result = c.batch_manager.create_batch(
            request.form.get('name', ''),
            request.form.get('course_type', ''),
            request.form.get('start_date', ''),
            request.form.get('end_date', ''),
            created_by=g.auth_session.user_id
        )
        c.notifications.from_result(result)
        return redirect(url_for('dashboard'))

    @app.route('/batches/<int:batch_id>/edit', methods=['POST'])
    @login_required
    def edit_batch(batch_id):
        c = components()
        result = c.batch_manager.update_batch(
            batch_id,
            request.form.get('name', ''),
            request.form.get('course_type', ''),
            request.form.get('start_date', ''),
            request.form.get('end_date', '')
        )
        c.notifications.from_result(result)
        return redirect(url_for('dashboard'))

    @app.route('/batches/<int:batch_id>/delete', methods=['GET', 'POST'])
    @login_required
    def delete_batch(batch_id):
        """Confirmation page and deletion of a batch"""
        c = components()
        if request.method == 'GET':
            result = c.batch_manager.get_batch(batch_id)
            if not result['success']:
                c.notifications.error(result['error'], result['error_type'])
                return redirect(url_for('dashboard'))
            return render_template('confirm_delete.html', batch=result['batch'])

        result = c.batch_manager.delete_batch(batch_id, confirmed=request.form.get('confirm') == 'yes')
        c.notifications.from_result(result)
        return redirect(url_for('dashboard'))

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    @app.route('/batches/<int:batch_id>/students', methods=['GET', 'POST'])
    @login_required
    def students(batch_id):
        """Roster page and student creation"""
        c = components()

        if request.method == 'POST':
            existing, _ = roster_roll_numbers(request.form.get('view_token'), view_owner())
            result = c.student_manager.create_student(batch_id, student_form_data(request.form), existing)
            c.notifications.from_result(result)
            return redirect(url_for('students', batch_id=batch_id))

        batch_result = c.batch_manager.get_batch(batch_id)
        if not batch_result['success']:
            c.notifications.error(batch_result['error'], batch_result['error_type'])
            return redirect(url_for('dashboard'))

        result = c.student_manager.list_students(batch_id)
        if not result['success']:
            c.notifications.error(result['error'], result['error_type'])

        roster = result['students']
        scope = c.scopes.open(view_owner(), ROSTER_VIEW, roster)
        query = request.args.get('q', '')

        return render_template('students.html',
                               batch=batch_result['batch'],
                               students=filter_students(roster, query),
                               roster_size=len(roster),
                               roll_numbers=[s.roll_number for s in roster],
                               query=query,
                               view_token=scope.token)

    @app.route('/batches/<int:batch_id>/students/<int:student_id>/edit', methods=['POST'])
    @login_required
    def edit_student(batch_id, student_id):
        c = components()
        if not student_in_batch(student_id, batch_id):
            return redirect(url_for('students', batch_id=batch_id))
        existing, by_id = roster_roll_numbers(request.form.get('view_token'), view_owner())
        result = c.student_manager.update_student(
            student_id,
            student_form_data(request.form),
            existing,
            current_roll_number=by_id.get(student_id)
        )
        c.notifications.from_result(result)
        return redirect(url_for('students', batch_id=batch_id))

    @app.route('/batches/<int:batch_id>/students/<int:student_id>/delete', methods=['POST'])
    @login_required
    def delete_student(batch_id, student_id):
        c = components()
        if not student_in_batch(student_id, batch_id):
            return redirect(url_for('students', batch_id=batch_id))
        result = c.student_manager.delete_student(student_id)
        c.notifications.from_result(result)
        return redirect(url_for('students', batch_id=batch_id))

    # ------------------------------------------------------------------
    # Attendance
    # ------------------------------------------------------------------

    @app.route('/batches/<int:batch_id>/attendance')
    @login_required
    def attendance(batch_id):
        """Attendance marking page for today"""
        c = components()
        result = c.attendance_manager.open_board(view_owner(), batch_id)
        if not result['success']:
            c.notifications.error(result['error'], result['error_type'])
            return redirect(url_for('dashboard'))

        board = result['board']
        return render_template('attendance.html',
                               batch=board.batch,
                               board=board,
                               state=board.to_dict(),
                               statuses=STATUSES,
                               view_token=result['scope'].token)

    @app.route('/api/attendance/<token>/mark', methods=['POST'])
    @api_login_required
    def api_mark_attendance(token):
        c = components()
        data = request.get_json(silent=True) or {}
        try:
            student_id = int(data.get('student_id'))
        except (TypeError, ValueError):
            return jsonify({'success': False, 'message': 'Student ID is required',
                            'error_type': 'validation'}), 400

        result = c.attendance_manager.mark_attendance(
            token, student_id, data.get('status', ''),
            marked_by=g.auth_session.user_id, owner=view_owner()
        )
        return json_result(result)

    @app.route('/api/attendance/<token>/save', methods=['POST'])
    @api_login_required
    def api_save_attendance(token):
        c = components()
        result = c.attendance_manager.save_all(token, marked_by=g.auth_session.user_id, owner=view_owner())
        return json_result(result)

    @app.route('/api/views/<token>/close', methods=['POST'])
    def api_close_view(token):
        """Called when the browser leaves a page"""
        components().scopes.close(token, session.get('view_owner'))
        return '', 204

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    @app.route('/reports')
    @login_required
    def reports():
        """Reports page with charts"""
        c = components()
        batches = c.batch_manager.list_batches(order='name')
        if not batches['success']:
            c.notifications.error(batches['error'], batches['error_type'])

        batch_id = request.args.get('batch_id', type=int)
        mode = request.args.get('range', current_app.config['REPORTS_DEFAULT_RANGE'])
        if mode not in DATE_RANGE_MODES:
            mode = current_app.config['REPORTS_DEFAULT_RANGE']

        report = None
        if batch_id is not None:
            report = c.report_generator.build_report(batch_id, mode)
            if not report['success']:
                c.notifications.error(report['error'], report['error_type'])
                report = None

        return render_template('reports.html',
                               batches=batches['batches'],
                               selected_batch_id=batch_id,
                               mode=mode,
                               modes=DATE_RANGE_MODES,
                               report=report)

    @app.route('/api/reports/<int:batch_id>')
    @api_login_required
    def api_report(batch_id):
        mode = request.args.get('range', current_app.config['REPORTS_DEFAULT_RANGE'])
        return json_result(components().report_generator.build_report(batch_id, mode))

    @app.route('/reports/<int:batch_id>/export.<fmt>')
    @login_required
    def export_report(batch_id, fmt):
        """Download a report as CSV, Excel or PDF"""
        c = components()
        mode = request.args.get('range', current_app.config['REPORTS_DEFAULT_RANGE'])

        if fmt not in EXPORT_FORMATS:
            c.notifications.error(f"Unsupported export format: {fmt}", 'validation')
            return redirect(url_for('reports', batch_id=batch_id, range=mode))

        exporters = {
            'csv': c.report_generator.export_csv,
            'xlsx': c.report_generator.export_excel,
            'pdf': c.report_generator.export_pdf
        }
        result = exporters[fmt](batch_id, mode)

        if not result['success']:
            c.notifications.error(result['error'], result['error_type'])
            return redirect(url_for('reports', batch_id=batch_id, range=mode))

        return send_file(io.BytesIO(result['content']),
                         mimetype=result['mimetype'],
                         as_attachment=True,
                         download_name=result['filename'])

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    @app.errorhandler(404)
    def not_found(e):
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'message': 'Not found', 'error_type': 'not_found'}), 404
        return render_template('error.html', message='Page not found'), 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error(f"Unhandled error on {request.path}: {str(e)}")
        if request.path.startswith('/api/'):
            return jsonify({'success': False, 'message': 'An error occurred. Please try again.',
                            'error_type': 'remote'}), 500
        return render_template('error.html', message='An error occurred. Please try again.'), 500
