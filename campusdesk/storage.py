"""Client-side storage used by the session manager.

The browser's durable storage is the signed Flask session cookie, its
short-lived storage is request scoped, and auth cookies are expired on the
outgoing response. In-memory variants back the tests and scripts.
"""
import logging
import threading

from flask import request

logger = logging.getLogger(__name__)

LAST_VALID_AUTH_KEY = 'last_valid_auth'
USER_ROLE_KEY = 'user_role'
USER_EMAIL_KEY = 'user_email'


class LocalStorage:
    """Synchronous key/value store that survives a reload."""

    def get(self, key, default=None):
        raise NotImplementedError

    def set(self, key, value):
        raise NotImplementedError

    def remove(self, key):
        raise NotImplementedError

    def keys(self):
        raise NotImplementedError

    def clear(self):
        for key in list(self.keys()):
            self.remove(key)


class MemoryStorage(LocalStorage):

    def __init__(self, initial=None):
        self._data = dict(initial or {})

    def get(self, key, default=None):
        return self._data.get(key, default)

    def set(self, key, value):
        self._data[key] = value

    def remove(self, key):
        self._data.pop(key, None)

    def keys(self):
        return list(self._data.keys())

    def __contains__(self, key):
        return key in self._data


class CookieSessionStorage(LocalStorage):
    """Adapter over the Flask session mapping.

    Takes the concrete session object, not the ``flask.session`` proxy, so it
    stays usable from a timer thread for the rest of the request.
    """

    def __init__(self, session_obj):
        self._session = session_obj

    def get(self, key, default=None):
        return self._session.get(key, default)

    def set(self, key, value):
        self._session[key] = value
        self._session.permanent = True
        self._session.modified = True

    def remove(self, key):
        if key in self._session:
            self._session.pop(key, None)
            self._session.modified = True

    def keys(self):
        return list(self._session.keys())


class CookieJar:

    def names(self):
        raise NotImplementedError

    def expire(self, name):
        raise NotImplementedError


class MemoryCookieJar(CookieJar):

    def __init__(self, names=()):
        self.cookies = {name: 'x' for name in names}
        self.expired = []

    def names(self):
        return list(self.cookies)

    def expire(self, name):
        self.cookies.pop(name, None)
        self.expired.append(name)


class ResponseCookieJar(CookieJar):
    """Request cookies; expired names are written out by ``apply``.

    ``expire`` may be called from the init timer thread, so it only records
    the name and the request's own ``after_request`` hook sets the cookies.
    """

    def __init__(self, exclude=()):
        self._names = list(request.cookies.keys())
        self._exclude = set(exclude)
        self._lock = threading.Lock()
        self.expired = []

    def names(self):
        with self._lock:
            return [name for name in self._names
                    if name not in self._exclude and name not in self.expired]

    def expire(self, name):
        with self._lock:
            if name not in self.expired:
                self.expired.append(name)

    def apply(self, response):
        with self._lock:
            expired = list(self.expired)
        for name in expired:
            response.set_cookie(name, '', expires=0, path='/')
        return response


class ClientStorage:

    def __init__(self, local=None, short_lived=None, cookies=None):
        self.local = local if local is not None else MemoryStorage()
        self.short_lived = short_lived if short_lived is not None else MemoryStorage()
        self.cookies = cookies if cookies is not None else MemoryCookieJar()


def _matches(name, namespaces):
    low = name.lower()
    return any(low.startswith(ns) or ns in low for ns in namespaces)


def clear_all_auth_data(storage, namespaces):
    """Sweep every auth-looking key, all short-lived storage and auth cookies."""
    namespaces = [ns.lower() for ns in namespaces]
    swept = [key for key in storage.local.keys() if _matches(key, namespaces)]
    for key in swept:
        storage.local.remove(key)
    storage.short_lived.clear()
    expired = [name for name in storage.cookies.names() if _matches(name, namespaces)]
    for name in expired:
        storage.cookies.expire(name)
    logger.info("Cleared auth data: %d local keys, %d cookies", len(swept), len(expired))
    return swept
