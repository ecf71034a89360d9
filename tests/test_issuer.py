import unittest
import sys
import os
import werkzeug
from datetime import datetime, timedelta, timezone

# Monkeypatch werkzeug.__version__ if missing (Werkzeug 3.0+ compatibility)
if not hasattr(werkzeug, "__version__"):
    werkzeug.__version__ = "3.0.0"

# Set environment to testing before importing app
os.environ['FLASK_ENV'] = 'testing'

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from campusdesk import app, db
from campusdesk.issuer import (
    AuthError, AuthIssuer, SESSION_STORAGE_KEY, SIGNED_IN, SIGNED_OUT, TOKEN_REFRESHED,
)
from campusdesk.models import AuthToken, Profile
from campusdesk.storage import MemoryStorage


class AuthIssuerTests(unittest.TestCase):

    def setUp(self):
        self.app_context = app.app_context()
        self.app_context.push()
        db.create_all()
        self.now = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)
        self.storage = MemoryStorage()
        self.issuer = AuthIssuer(self.storage, 'test-secret', ttl_seconds=3600, clock=lambda: self.now)
        self.events = []
        self.issuer.on_auth_state_change(self.events.append)
        self.account = self.issuer.create_account('Jane@Example.com', 'password123', role='faculty', name='Jane')

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def test_create_account_adds_profile(self):
        self.assertEqual(self.account.email, 'jane@example.com')
        profile = db.session.get(Profile, self.account.id)
        self.assertEqual((profile.role, profile.name), ('faculty', 'Jane'))

    def test_sign_in_persists_session_and_emits(self):
        session = self.issuer.sign_in_with_password(' jane@example.com ', 'password123')
        self.assertEqual(session.user_id, self.account.id)
        self.assertEqual(session.expires_at, self.now + timedelta(hours=1))
        self.assertEqual(self.storage.get(SESSION_STORAGE_KEY)['access_token'], session.access_token)
        self.assertEqual([e.event for e in self.events], [SIGNED_IN])

        restored, error = self.issuer.get_current_session()
        self.assertIsNone(error)
        self.assertEqual(restored.access_token, session.access_token)
        self.assertEqual(restored.expires_at, session.expires_at)

    def test_sign_in_with_wrong_password(self):
        with self.assertRaises(AuthError) as ctx:
            self.issuer.sign_in_with_password('jane@example.com', 'nope')
        self.assertEqual(ctx.exception.message, 'Invalid login credentials')
        self.assertIsNone(self.storage.get(SESSION_STORAGE_KEY))
        self.assertEqual(self.events, [])

    def test_disabled_account_cannot_sign_in(self):
        self.account.is_active = False
        db.session.commit()
        with self.assertRaises(AuthError) as ctx:
            self.issuer.sign_in_with_password('jane@example.com', 'password123')
        self.assertEqual(ctx.exception.code, 'user_disabled')

    def test_get_current_user(self):
        self.issuer.sign_in_with_password('jane@example.com', 'password123')
        user, error = self.issuer.get_current_user()
        self.assertIsNone(error)
        self.assertEqual(user.email, 'jane@example.com')

    def test_get_current_user_without_session(self):
        user, error = self.issuer.get_current_user()
        self.assertIsNone(user)
        self.assertEqual(error.code, 'session_missing')

    def test_tampered_token_is_rejected(self):
        self.issuer.sign_in_with_password('jane@example.com', 'password123')
        blob = dict(self.storage.get(SESSION_STORAGE_KEY))
        blob['access_token'] = blob['access_token'][:-2] + 'xx'
        self.storage.set(SESSION_STORAGE_KEY, blob)
        user, error = self.issuer.get_current_user()
        self.assertIsNone(user)
        self.assertEqual(error.code, 'bad_jwt')

    def test_corrupt_blob(self):
        self.storage.set(SESSION_STORAGE_KEY, {'access_token': 'x'})
        session, error = self.issuer.get_current_session()
        self.assertIsNone(session)
        self.assertEqual(error.code, 'session_corrupt')

    def test_expired_access_token_is_refreshed(self):
        first = self.issuer.sign_in_with_password('jane@example.com', 'password123')
        self.now += timedelta(hours=2)
        user, error = self.issuer.get_current_user()
        self.assertIsNone(error)
        self.assertEqual(user.id, self.account.id)
        current, _ = self.issuer.get_current_session()
        self.assertNotEqual(current.access_token, first.access_token)
        self.assertEqual(current.expires_at, self.now + timedelta(hours=1))
        self.assertEqual([e.event for e in self.events], [SIGNED_IN, TOKEN_REFRESHED])
        old = AuthToken.query.filter_by(access_token=first.access_token).first()
        self.assertTrue(old.revoked)

    def test_refresh_with_revoked_token_fails(self):
        self.issuer.sign_in_with_password('jane@example.com', 'password123')
        self.issuer.revoke_all(self.account.id)
        with self.assertRaises(AuthError) as ctx:
            self.issuer.refresh_session()
        self.assertEqual(ctx.exception.code, 'refresh_token_not_found')

    def test_sign_out_revokes_and_emits(self):
        session = self.issuer.sign_in_with_password('jane@example.com', 'password123')
        self.issuer.sign_out()
        self.assertIsNone(self.storage.get(SESSION_STORAGE_KEY))
        self.assertTrue(AuthToken.query.filter_by(access_token=session.access_token).first().revoked)
        self.assertEqual(self.events[-1].event, SIGNED_OUT)
        self.assertIsNone(self.events[-1].session)

    def test_revoked_session_is_rejected(self):
        self.issuer.sign_in_with_password('jane@example.com', 'password123')
        self.assertEqual(self.issuer.revoke_all(self.account.id), 1)
        user, error = self.issuer.get_current_user()
        self.assertIsNone(user)
        self.assertEqual(error.code, 'session_revoked')

    def test_unsubscribe(self):
        late = []
        subscription = self.issuer.on_auth_state_change(late.append)
        subscription.unsubscribe()
        self.issuer.sign_in_with_password('jane@example.com', 'password123')
        self.assertEqual(late, [])
        self.assertEqual(len(self.events), 1)

if __name__ == "__main__":
    unittest.main()
