import unittest
import sys
import os
import threading

# Set environment to testing before importing app
os.environ['FLASK_ENV'] = 'testing'

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from campusdesk import app
from campusdesk.session_manager import DEFAULT_NAMESPACES
from campusdesk.storage import (
    ClientStorage, MemoryCookieJar, MemoryStorage, ResponseCookieJar, clear_all_auth_data,
)


class ClearAuthDataTests(unittest.TestCase):

    def setUp(self):
        self.storage = ClientStorage(
            local=MemoryStorage({
                'campusdesk-auth-token': {'access_token': 'a'},
                'sb-project-auth-token': 'x',
                'last_valid_auth': '1700000000000',
                'user_role': 'faculty',
                'user_email': 'jdo@example.com',
                'SessionHint': '1',
                'theme': 'dark',
                'language': 'en',
            }),
            short_lived=MemoryStorage({'draft': 'x', 'scroll': '10'}),
            cookies=MemoryCookieJar(['sb-access-token', 'auth_refresh', 'csrftoken', 'locale']),
        )

    def test_sweeps_auth_keys_only(self):
        swept = clear_all_auth_data(self.storage, DEFAULT_NAMESPACES)
        self.assertEqual(sorted(self.storage.local.keys()), ['language', 'theme'])
        self.assertEqual(len(swept), 6)

    def test_clears_short_lived_storage(self):
        clear_all_auth_data(self.storage, DEFAULT_NAMESPACES)
        self.assertEqual(self.storage.short_lived.keys(), [])

    def test_expires_auth_cookies(self):
        clear_all_auth_data(self.storage, DEFAULT_NAMESPACES)
        self.assertEqual(sorted(self.storage.cookies.expired), ['auth_refresh', 'csrftoken', 'sb-access-token'])
        self.assertEqual(self.storage.cookies.names(), ['locale'])

    def test_is_idempotent(self):
        clear_all_auth_data(self.storage, DEFAULT_NAMESPACES)
        self.assertEqual(clear_all_auth_data(self.storage, DEFAULT_NAMESPACES), [])


class ResponseCookieJarTests(unittest.TestCase):

    def test_expiry_from_another_thread_reaches_the_response(self):
        with app.test_request_context('/', headers={'Cookie': 'sb-access-token=abc; locale=en; session=x'}):
            jar = ResponseCookieJar(exclude=('session',))
            self.assertEqual(sorted(jar.names()), ['locale', 'sb-access-token'])
            storage = ClientStorage(cookies=jar)
            worker = threading.Thread(target=clear_all_auth_data, args=(storage, DEFAULT_NAMESPACES))
            worker.start()
            worker.join()
            self.assertEqual(jar.names(), ['locale'])

            response = jar.apply(app.response_class())
        headers = response.headers.getlist('Set-Cookie')
        self.assertEqual(len(headers), 1)
        self.assertTrue(headers[0].startswith('sb-access-token=;'))
        self.assertIn('Path=/', headers[0])

if __name__ == "__main__":
    unittest.main()
