"""Password-based auth issuer backed by the account and token tables.

Sessions are bearer-token pairs. The access token is signed with
itsdangerous and tracked in ``AuthToken`` so it can be revoked; the refresh
token is an opaque random string that is rotated on every refresh. The
client's copy of the session lives in its local storage under
``SESSION_STORAGE_KEY`` and is owned by the issuer.
"""
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from itsdangerous import BadSignature, URLSafeSerializer
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.security import check_password_hash, generate_password_hash

from campusdesk import db
from campusdesk.models import AuthAccount, AuthToken, Profile

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = 'campusdesk-auth-token'

SIGNED_IN = 'SIGNED_IN'
SIGNED_OUT = 'SIGNED_OUT'
TOKEN_REFRESHED = 'TOKEN_REFRESHED'


def utcnow():
    return datetime.now(timezone.utc)


def _as_utc(value):
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuthError(Exception):

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


class AuthUser:

    def __init__(self, id, email, created_at=None):
        self.id = id
        self.email = email
        self.created_at = created_at

    def to_dict(self):
        return {'id': self.id, 'email': self.email, 'created_at': self.created_at}

    def __repr__(self):
        return f"AuthUser('{self.email}')"


class Session:

    def __init__(self, access_token, refresh_token, expires_at, user):
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.expires_at = _as_utc(expires_at)
        self.user = dict(user)

    @property
    def user_id(self):
        return self.user.get('id')

    def to_dict(self):
        return {
            'access_token': self.access_token,
            'refresh_token': self.refresh_token,
            'expires_at': int(self.expires_at.timestamp()),
            'user': self.user,
        }

    @classmethod
    def from_dict(cls, data):
        expires_at = datetime.fromtimestamp(int(data['expires_at']), tz=timezone.utc)
        return cls(data['access_token'], data['refresh_token'], expires_at, data['user'])

    def __repr__(self):
        return f"Session(user_id='{self.user_id}', expires_at='{self.expires_at.isoformat()}')"


class AuthEvent:

    def __init__(self, event, session=None):
        self.event = event
        self.session = session

    def __repr__(self):
        return f"AuthEvent({self.event})"


class Subscription:

    def __init__(self, issuer, callback):
        self._issuer = issuer
        self._callback = callback

    def unsubscribe(self):
        self._issuer._remove_listener(self._callback)


class AuthIssuer:

    def __init__(self, storage, secret_key, ttl_seconds=3600, clock=utcnow):
        self.storage = storage
        self.ttl = timedelta(seconds=int(ttl_seconds))
        self.clock = clock
        self._serializer = URLSafeSerializer(secret_key, salt='access-token')
        self._listeners = []

    # --- events ---

    def on_auth_state_change(self, callback):
        self._listeners.append(callback)
        return Subscription(self, callback)

    def _remove_listener(self, callback):
        if callback in self._listeners:
            self._listeners.remove(callback)

    def _emit(self, event, session=None):
        for callback in list(self._listeners):
            try:
                callback(AuthEvent(event, session))
            except Exception:
                logger.exception("Auth listener failed for %s", event)

    # --- persisted client copy ---

    def _persist(self, session):
        self.storage.set(SESSION_STORAGE_KEY, session.to_dict())

    def _forget(self):
        self.storage.remove(SESSION_STORAGE_KEY)

    def get_current_session(self):
        """Return ``(session, error)`` for the locally persisted session."""
        blob = self.storage.get(SESSION_STORAGE_KEY)
        if not blob:
            return None, None
        try:
            return Session.from_dict(blob), None
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            logger.warning("Persisted session is unreadable: %s", exc)
            return None, AuthError("Persisted session is corrupt", code='session_corrupt')

    def get_current_user(self):
        """Validate the persisted session against the token table.

        An access token that has expired but still has a live refresh token is
        refreshed transparently, which emits TOKEN_REFRESHED.
        """
        session, error = self.get_current_session()
        if error:
            return None, error
        if session is None:
            return None, AuthError("Auth session missing", code='session_missing')
        try:
            self._serializer.loads(session.access_token)
        except BadSignature:
            return None, AuthError("Invalid access token", code='bad_jwt')
        token = AuthToken.query.filter_by(access_token=session.access_token).first()
        if token is None or token.revoked:
            return None, AuthError("Session has been revoked", code='session_revoked')
        account = db.session.get(AuthAccount, token.account_id)
        if account is None or not account.is_active:
            return None, AuthError("User not found", code='user_not_found')
        if _as_utc(token.expires_at) <= self.clock():
            try:
                self.refresh_session()
            except AuthError as exc:
                return None, exc
        return AuthUser(account.id, account.email, _iso(account.created_at)), None

    # --- mutations ---

    def _issue(self, account):
        now = self.clock()
        access_token = self._serializer.dumps({'sub': account.id, 'jti': uuid.uuid4().hex})
        token = AuthToken(
            account_id=account.id,
            access_token=access_token,
            refresh_token=secrets.token_urlsafe(32),
            expires_at=(now + self.ttl).replace(tzinfo=None),
        )
        db.session.add(token)
        return Session(
            access_token,
            token.refresh_token,
            now + self.ttl,
            AuthUser(account.id, account.email, _iso(account.created_at)).to_dict(),
        )

    def sign_in_with_password(self, email, password):
        email = (email or '').strip().lower()
        account = AuthAccount.query.filter_by(email=email).first()
        if account is None or not check_password_hash(account.password_hash, password or ''):
            raise AuthError("Invalid login credentials", code='invalid_credentials')
        if not account.is_active:
            raise AuthError("User is disabled", code='user_disabled')
        try:
            session = self._issue(account)
            account.last_sign_in_at = self.clock().replace(tzinfo=None)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Failed to issue session for %s", email)
            raise AuthError("Could not create session", code='server_error') from exc
        self._persist(session)
        logger.info("Issued session for %s", email)
        self._emit(SIGNED_IN, session)
        return session

    def refresh_session(self):
        session, error = self.get_current_session()
        if error:
            raise error
        if session is None:
            raise AuthError("Auth session missing", code='session_missing')
        token = AuthToken.query.filter_by(refresh_token=session.refresh_token).first()
        if token is None or token.revoked:
            raise AuthError("Invalid refresh token", code='refresh_token_not_found')
        account = db.session.get(AuthAccount, token.account_id)
        if account is None or not account.is_active:
            raise AuthError("User not found", code='user_not_found')
        try:
            token.revoked = True
            new_session = self._issue(account)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Failed to refresh session for %s", account.email)
            raise AuthError("Could not refresh session", code='server_error') from exc
        self._persist(new_session)
        logger.info("Refreshed session for %s", account.email)
        self._emit(TOKEN_REFRESHED, new_session)
        return new_session

    def sign_out(self):
        session, _ = self.get_current_session()
        self._forget()
        try:
            if session is not None:
                AuthToken.query.filter_by(access_token=session.access_token).update({'revoked': True})
                db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise AuthError("Could not revoke session", code='server_error') from exc
        finally:
            self._emit(SIGNED_OUT, None)

    def revoke_all(self, account_id):
        """Revoke every token of an account, e.g. after a password reset."""
        count = AuthToken.query.filter_by(account_id=account_id, revoked=False).update({'revoked': True})
        db.session.commit()
        return count

    def create_account(self, email, password, role='student', name=None):
        account = AuthAccount(email=email.strip().lower(), password_hash=generate_password_hash(password))
        db.session.add(account)
        db.session.flush()
        db.session.add(Profile(id=account.id, role=role, name=name or account.email))
        db.session.commit()
        return account


def _iso(value):
    return value.isoformat() if value else None
