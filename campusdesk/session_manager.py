"""Client session lifecycle: restore, validate, refresh and tear down.

``SessionManager`` is the only writer of the ``AuthState`` snapshot. Views
read it through ``get_state()`` or ``subscribe()`` and change it only through
the manager's methods; issuer events reach it through a single subscription.
"""
import logging
import threading
from collections import namedtuple
from datetime import timedelta

from campusdesk.issuer import AuthError, SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED, utcnow
from campusdesk.records import maybe_single
from campusdesk.roles import Role, normalize_role
from campusdesk.storage import (
    LAST_VALID_AUTH_KEY,
    USER_EMAIL_KEY,
    USER_ROLE_KEY,
    clear_all_auth_data,
)

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACES = ('auth', 'session', 'token', 'sb-', 'user_', 'last_valid_auth')
DEFAULT_PUBLIC_PATHS = ('/login', '/forgot-password', '/update-password', '/unauthorized')

STUDENT_FIELDS = ('roll_number', 'semester', 'status', 'phone', 'address')
FACULTY_FIELDS = ('branch', 'abbreviation', 'phone', 'status')

AuthState = namedtuple('AuthState', ['user', 'session', 'loading'])


class ResolvedUser:
    """Auth principal plus its profile and role-specific details.

    Role detail fields (``abbreviation``, ``roll_number``...) are readable as
    attributes and are ``None`` when the role has no such field.
    """

    def __init__(self, id, email, role=Role.STUDENT, name=None, avatar_url=None, details=None):
        self.id = id
        self.email = email
        self.role = normalize_role(role)
        self.name = name or email
        self.avatar_url = avatar_url
        self.details = dict(details or {})

    def __getattr__(self, name):
        if name.startswith('_') or name == 'details':
            raise AttributeError(name)
        return self.details.get(name)

    def to_dict(self):
        data = {
            'id': self.id,
            'email': self.email,
            'role': self.role.value,
            'name': self.name,
            'avatar_url': self.avatar_url,
        }
        data.update(self.details)
        return data

    def __repr__(self):
        return f"ResolvedUser('{self.email}', role='{self.role.value}')"


def is_session_stale(session, now=None, stale_hours=24):
    now = now or utcnow()
    return now - session.expires_at > timedelta(hours=stale_hours)


class SessionManager:

    def __init__(self, issuer, records, storage, notifier, navigator,
                 login_url='/login', public_paths=DEFAULT_PUBLIC_PATHS,
                 namespaces=DEFAULT_NAMESPACES, stale_hours=24, init_timeout=5.0,
                 clock=utcnow, timer_factory=threading.Timer):
        self.issuer = issuer
        self.records = records
        self.storage = storage
        self.notifier = notifier
        self.navigator = navigator
        self.login_url = login_url
        self.public_paths = tuple(public_paths)
        self.namespaces = tuple(namespaces)
        self.stale_hours = stale_hours
        self.init_timeout = init_timeout
        self.clock = clock
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self._state = AuthState(None, None, True)
        self._listeners = []
        self._init_attempted = False
        self._init_settled = False
        self._timer = None
        self._subscription = None

    # --- state ---

    def get_state(self):
        with self._lock:
            return self._state

    @property
    def user(self):
        return self.get_state().user

    @property
    def session(self):
        return self.get_state().session

    @property
    def loading(self):
        return self.get_state().loading

    def subscribe(self, listener):
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)
        return unsubscribe

    def _set_state(self, **changes):
        with self._lock:
            self._state = self._state._replace(**changes)
            snapshot = self._state
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Auth state listener failed")
        return snapshot

    def _reset(self):
        self._set_state(user=None, session=None, loading=False)

    # --- initialisation ---

    def initialize(self):
        """Restore and validate the persisted session; runs once per load."""
        with self._lock:
            if self._init_attempted:
                return self._state
            self._init_attempted = True
        self._subscription = self.issuer.on_auth_state_change(self._on_auth_event)
        self._start_timer()
        try:
            self._restore_session()
        except Exception:
            logger.exception("Auth initialization crashed")
            if self._claim_init():
                self.force_clear_stale_session("initialization crashed")
        return self.get_state()

    def _start_timer(self):
        if not self.init_timeout or self.init_timeout <= 0:
            return
        self._timer = self._timer_factory(self.init_timeout, self._on_init_timeout)
        self._timer.daemon = True
        self._timer.start()

    def _claim_init(self):
        """First caller settles initialisation; everyone after is ignored."""
        with self._lock:
            if self._init_settled:
                return False
            self._init_settled = True
        if self._timer is not None:
            self._timer.cancel()
        return True

    def _on_init_timeout(self):
        with self._lock:
            if self._init_settled or not self._state.loading:
                return
            self._init_settled = True
        self.force_clear_stale_session(
            "initialization did not finish within %ss" % self.init_timeout)

    def _clear_during_init(self, reason):
        if self._claim_init():
            self.force_clear_stale_session(reason)
        else:
            logger.info("Ignoring late initialization result: %s", reason)

    def _restore_session(self):
        session, error = self.issuer.get_current_session()
        if error:
            return self._clear_during_init(f"persisted session could not be read ({error.message})")
        if session is None:
            if self._claim_init():
                self._reset()
            return
        if is_session_stale(session, self.clock(), self.stale_hours):
            return self._clear_during_init(
                f"session expired at {session.expires_at.isoformat()}, over {self.stale_hours}h ago")

        auth_user, error = self.issuer.get_current_user()
        if error or auth_user is None:
            message = error.message if error else "no user returned"
            return self._clear_during_init(f"issuer rejected the session ({message})")

        # get_current_user may have rotated the tokens on the way
        current, _ = self.issuer.get_current_session()
        session = current or session
        resolved = self._resolve_user(auth_user.to_dict())
        if not self._claim_init():
            logger.info("Ignoring late initialization result for %s", auth_user.email)
            return
        self._set_state(user=resolved, session=session, loading=False)
        self._remember_valid_auth(resolved)
        logger.info("Restored session for %s (%s)", resolved.email, resolved.role.value)

    # --- issuer events ---

    def _on_auth_event(self, event):
        if event.event == SIGNED_OUT or event.session is None:
            clear_all_auth_data(self.storage, self.namespaces)
            self._reset()
            logger.info("Signed out (%s)", event.event)
            return
        if event.event == TOKEN_REFRESHED:
            self._set_state(session=event.session)
            self._remember_valid_auth(self.get_state().user)
            logger.info("Token refreshed for %s", event.session.user.get('email'))
            return
        if event.event == SIGNED_IN:
            self._adopt(event.session)

    def _adopt(self, session):
        self._set_state(session=session, loading=True)
        resolved = self._resolve_user(session.user)
        self._set_state(user=resolved, loading=False)
        self._remember_valid_auth(resolved)

    # --- actions ---

    def sign_in(self, email, password, remember_me=True):
        # Token lifetime is set by the issuer; remember_me is only a UI hint
        logger.debug("sign_in remember_me=%s", remember_me)
        self._set_state(loading=True)
        try:
            session = self.issuer.sign_in_with_password(email, password)
        except AuthError as exc:
            logger.warning("Sign-in failed for %s: %s", email, exc.message)
            self.notifier.notify_error(exc.message)
            clear_all_auth_data(self.storage, self.namespaces)
            self._reset()
            raise
        if self.get_state().session is not session:
            # Nobody relayed SIGNED_IN (manager was never initialised)
            self._adopt(session)
        self.notifier.notify_success("Logged in successfully")

    def sign_out(self):
        self._set_state(loading=True)
        try:
            self.issuer.sign_out()
        except Exception:
            logger.exception("Remote sign-out failed; clearing local session anyway")
        clear_all_auth_data(self.storage, self.namespaces)
        self._reset()
        self.notifier.notify_success("Logged out successfully")
        self.navigator.go(self.login_url, replace=True, hard=True)

    def refresh_user(self):
        session = self.get_state().session
        if session is None:
            return
        self._set_state(loading=True)
        resolved = self._resolve_user(session.user)
        self._set_state(user=resolved, loading=False)
        self._remember_valid_auth(resolved)

    def force_clear_stale_session(self, reason="stale session"):
        logger.warning("Forcing logout: %s", reason)
        clear_all_auth_data(self.storage, self.namespaces)
        self._reset()
        if not self._is_public(self.navigator.current_path):
            self.navigator.go(self.login_url, replace=True, hard=True)

    def close(self):
        if self._timer is not None:
            self._timer.cancel()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        with self._lock:
            self._listeners = []

    # --- helpers ---

    def _is_public(self, path):
        path = path or '/'
        return any(path == p or path.startswith(p.rstrip('/') + '/') for p in self.public_paths)

    def _remember_valid_auth(self, user):
        now_ms = int(self.clock().timestamp() * 1000)
        self.storage.local.set(LAST_VALID_AUTH_KEY, str(now_ms))
        if user is not None:
            self.storage.local.set(USER_ROLE_KEY, user.role.value)
            if user.email:
                self.storage.local.set(USER_EMAIL_KEY, user.email)

    def _resolve_user(self, auth_user):
        user_id = auth_user.get('id')
        email = auth_user.get('email')
        try:
            result = self.records.select('profiles', {'id': user_id},
                                         columns=['role', 'name', 'avatar_url'])
            if result.error:
                logger.warning("Profile lookup failed for %s: %s", user_id, result.error)
                return ResolvedUser(user_id, email, Role.STUDENT, name=email)
            profile = maybe_single(result) or {}
            resolved = ResolvedUser(
                user_id, email,
                role=normalize_role(profile.get('role')),
                name=profile.get('name') or email,
                avatar_url=profile.get('avatar_url'),
            )
            resolved.details = self._role_details(resolved)
            return resolved
        except Exception:
            logger.exception("Enrichment crashed for %s; defaulting to student", user_id)
            return ResolvedUser(user_id, email, Role.STUDENT, name=email)

    def _role_details(self, user):
        if user.role == Role.STUDENT:
            collection, fields, key = 'students', STUDENT_FIELDS, 'student_id'
        elif user.role == Role.FACULTY:
            collection, fields, key = 'faculty', FACULTY_FIELDS, 'faculty_id'
        else:
            return {}
        result = self.records.select(collection, {'user_id': user.id})
        if result.error:
            logger.warning("%s lookup failed for %s: %s", collection, user.id, result.error)
            return {}
        row = maybe_single(result)
        if row is None:
            return {}
        details = {field: row.get(field) for field in fields}
        details[key] = row.get('id')
        return details
