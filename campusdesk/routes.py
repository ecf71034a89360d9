from flask import render_template, url_for, flash, redirect, request, jsonify, session, g, copy_current_request_context
from campusdesk import app
import logging
logger = logging.getLogger(__name__)
logging.basicConfig(level=logging.INFO)
from campusdesk.attendance import (
    AttendanceError, AttendanceWorkflow, PeriodLockedError, daily_grid, fetch_report_rows,
    low_attendance, report_window, same_abbreviation, summarize_attendance,
)
from campusdesk.gate import GateDecision, RoleGate
from campusdesk.issuer import AuthError, AuthIssuer
from campusdesk.navigation import Navigator
from campusdesk.notify import FlashNotifier
from campusdesk.records import RecordStore
from campusdesk.roles import Role, parse_roles
from campusdesk.session_manager import SessionManager
from campusdesk.storage import ClientStorage, CookieSessionStorage, MemoryStorage, ResponseCookieJar
from functools import wraps
from datetime import date
from urllib.parse import urlencode
import re
import threading


# --- per-request client wiring ---

def _request_timer(interval, function):
    return threading.Timer(interval, copy_current_request_context(function))


def get_client_storage():
    if 'client_storage' not in g:
        g.client_storage = ClientStorage(
            local=CookieSessionStorage(session._get_current_object()),
            short_lived=MemoryStorage(),
            cookies=ResponseCookieJar(exclude=(app.config['SESSION_COOKIE_NAME'],)),
        )
    return g.client_storage


def get_session_manager():
    """The page's session manager; initialised once however often it is asked for."""
    manager = g.get('session_manager')
    if manager is None:
        storage = get_client_storage()
        issuer = AuthIssuer(storage.local, app.config['SECRET_KEY'],
                            ttl_seconds=app.config['ACCESS_TOKEN_TTL_SECONDS'])
        manager = SessionManager(
            issuer, RecordStore(), storage, FlashNotifier(), Navigator(request.path),
            login_url=app.config['LOGIN_URL'],
            public_paths=app.config['PUBLIC_PATHS'],
            namespaces=app.config['AUTH_STORAGE_NAMESPACES'],
            stale_hours=app.config['SESSION_STALE_HOURS'],
            init_timeout=app.config['AUTH_INIT_TIMEOUT_SECONDS'],
            timer_factory=_request_timer,
        )
        g.session_manager = manager
        manager.initialize()
    return manager


def get_role_gate():
    manager = get_session_manager()
    return RoleGate(manager, manager.notifier, manager.navigator,
                    login_url=app.config['LOGIN_URL'],
                    unauthorized_url=app.config['UNAUTHORIZED_URL'])


@app.after_request
def _expire_auth_cookies(response):
    storage = g.get('client_storage')
    if storage is not None:
        storage.cookies.apply(response)
    return response


@app.teardown_request
def _close_session_manager(exc):
    manager = g.pop('session_manager', None)
    if manager is not None:
        manager.close()
    # g outlives the request when an outer app context is pushed
    g.pop('client_storage', None)


@app.context_processor
def _inject_user():
    manager = g.get('session_manager')
    return {'current_user': manager.user if manager else None}


def _safe_next(target):
    if target and target.startswith('/') and not target.startswith('//'):
        return target
    return None


def roles_required(*roles):
    required = parse_roles(roles) if roles else None

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            gate = get_role_gate()
            decision = gate.check(required)
            if decision is GateDecision.LOADING:
                return render_template('loading.html', title='Loading'), 202
            if decision is GateDecision.LOGIN:
                target = gate.navigator.consume().location
                return redirect(f"{target}?{urlencode({'next': request.path})}")
            if decision is GateDecision.UNAUTHORIZED:
                return redirect(gate.navigator.consume().location)
            return fn(*args, **kwargs)
        return wrapper
    return decorator


login_required = roles_required()

ALL_STAFF = (Role.ADMIN, Role.FACULTY, Role.STAFF)


# --- auth pages ---

@app.route("/login", methods=['GET', 'POST'])
def login():
    manager = get_session_manager()
    if request.method == 'GET' and manager.user is not None:
        return redirect(url_for('dashboard'))
    if request.method == 'POST':
        email = request.form.get('email', '').strip()
        password = request.form.get('password', '')
        remember_me = request.form.get('remember_me') in ('1', 'on', 'true', 'yes')
        if not email or not password:
            flash('Email and password are required.', 'danger')
            return render_template('login.html', title='Login', email=email), 400
        try:
            manager.sign_in(email, password, remember_me=remember_me)
        except AuthError:
            return render_template('login.html', title='Login', email=email), 401
        return redirect(_safe_next(request.args.get('next')) or url_for('dashboard'))
    return render_template('login.html', title='Login')


@app.route("/logout", methods=['GET', 'POST'])
def logout():
    manager = get_session_manager()
    manager.sign_out()
    return redirect(manager.navigator.consume().location)


@app.route("/unauthorized")
def unauthorized():
    return render_template('unauthorized.html', title='Access Denied'), 403


@app.route("/api/auth/state")
def api_auth_state():
    state = get_session_manager().get_state()
    return jsonify({
        'user': state.user.to_dict() if state.user else None,
        'session': {'expires_at': state.session.expires_at.isoformat()} if state.session else None,
        'loading': state.loading,
    })


# --- dashboard & profile ---

@app.route("/")
@login_required
def dashboard():
    user = get_session_manager().user
    records = RecordStore()
    stats = {}
    if user.role in (Role.ADMIN, Role.STAFF):
        for collection in ('students', 'faculty'):
            result = records.select(collection, columns=['id'])
            stats[collection] = len(result.data) if not result.error else None
    elif user.role == Role.FACULTY and user.abbreviation:
        result = records.select('attendance', {'date': date.today()}, columns=['period', 'faculty_abbreviation'])
        stats['periods_today'] = []
        if not result.error:
            stats['periods_today'] = sorted({r['period'] for r in result.data
                                             if same_abbreviation(r['faculty_abbreviation'], user.abbreviation)})
    elif user.role == Role.STUDENT and user.student_id:
        result = records.select('attendance', {'student_id': user.student_id}, columns=['student_id', 'status'])
        if not result.error:
            summaries = summarize_attendance(result.data, {user.student_id: user.to_dict()})
            stats['attendance'] = summaries[0] if summaries else None
    return render_template('dashboard.html', title='Dashboard', user=user, stats=stats)


def _valid_phone(phone):
    return bool(phone and re.match(r"^[0-9\-\+\s]{7,20}$", phone))


@app.route("/profile", methods=['GET', 'POST'])
@login_required
def profile():
    manager = get_session_manager()
    user = manager.user
    if request.method == 'POST':
        name = request.form.get('name', '').strip()
        phone = request.form.get('phone', '').strip()
        if not name:
            flash('Name is required.', 'danger')
            return render_template('profile.html', title='Profile', user=user), 400
        if phone and not _valid_phone(phone):
            flash('Invalid phone number.', 'danger')
            return render_template('profile.html', title='Profile', user=user), 400
        records = RecordStore()
        result = records.update('profiles', user.id, {'name': name})
        if result.error:
            flash('Failed to update profile.', 'danger')
            return render_template('profile.html', title='Profile', user=user), 500
        detail_id = user.student_id or user.faculty_id
        if phone and detail_id:
            collection = 'students' if user.role == Role.STUDENT else 'faculty'
            result = records.update(collection, detail_id, {'phone': phone})
            if result.error:
                flash('Profile saved, but the phone number could not be updated.', 'warning')
        manager.refresh_user()
        flash('Profile updated successfully.', 'success')
        return redirect(url_for('profile'))
    return render_template('profile.html', title='Profile', user=user)


# --- attendance ---

def _build_workflow(source):
    user = get_session_manager().user
    workflow = AttendanceWorkflow(RecordStore(), FlashNotifier(), periods=app.config['ATTENDANCE_PERIODS'])
    workflow.set_operator(user.abbreviation)
    workflow.select_date(source.get('date') or date.today())
    workflow.select_semester(source.get('semester'))
    workflow.select_period(source.get('period'))
    return workflow


@app.route("/attendance", methods=['GET'])
@roles_required(*ALL_STAFF)
def attendance():
    try:
        workflow = _build_workflow(request.args)
    except (ValueError, AttendanceError) as e:
        flash(f'Invalid selection: {e}', 'danger')
        return redirect(url_for('attendance'))
    if request.args.get('mark_all') in ('present', 'absent'):
        workflow.mark_all(request.args['mark_all'] == 'present')
    user = get_session_manager().user
    return render_template('attendance.html', title='Attendance', workflow=workflow,
                           semesters=range(1, app.config['SEMESTERS'] + 1),
                           missing_abbreviation=user.role == Role.FACULTY and not user.abbreviation)


@app.route("/attendance", methods=['POST'])
@roles_required(*ALL_STAFF)
def submit_attendance():
    try:
        workflow = _build_workflow(request.form)
    except (ValueError, AttendanceError) as e:
        flash(f'Invalid selection: {e}', 'danger')
        return redirect(url_for('attendance'))
    for student in workflow.roster:
        workflow.toggle_one(student['id'], request.form.get(f"present_{student['id']}") is not None)
    try:
        workflow.submit()
    except PeriodLockedError as e:
        logger.warning("Rejected submit for locked period %s by %s (owner %s)", e.period, workflow.operator, e.abbreviation)
        flash(str(e), 'danger')
    except AttendanceError as e:
        flash(str(e), 'danger')
    return redirect(url_for('attendance', date=workflow.date.isoformat(),
                            semester=workflow.semester, period=workflow.period))


@app.route("/attendance/reports")
@roles_required(*ALL_STAFF)
def attendance_reports():
    today = date.today()
    year = request.args.get('year', today.year, type=int)
    month = request.args.get('month', type=int)
    semester = request.args.get('semester', type=int)
    student_id = request.args.get('student_id') or None
    threshold = request.args.get('threshold', app.config['ATTENDANCE_LOW_THRESHOLD'], type=float)
    try:
        start, end = report_window(year, month)
    except ValueError:
        flash('Invalid report period.', 'danger')
        return redirect(url_for('attendance_reports'))
    rows, students, error = fetch_report_rows(RecordStore(), start, end, semester, student_id)
    if error:
        logger.warning("Attendance report failed: %s", error)
        flash('Failed to load attendance reports.', 'danger')
        rows, students = [], {}
    summaries = summarize_attendance(rows, students)
    grid = daily_grid(rows, app.config['ATTENDANCE_PERIODS']) if student_id else []
    return render_template('attendance_reports.html', title='Attendance Reports',
                           summaries=summaries, low=low_attendance(summaries, threshold),
                           grid=grid, start=start, end=end, year=year, month=month,
                           semester=semester, student_id=student_id, threshold=threshold,
                           students=sorted(students.values(), key=lambda s: s['roll_number']),
                           periods=range(1, app.config['ATTENDANCE_PERIODS'] + 1))
