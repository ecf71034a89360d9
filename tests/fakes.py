"""In-memory doubles shared by the test modules."""
from campusdesk.records import CONFLICT, Between, StoreError, StoreResult


class FakeTimer:

    def __init__(self, interval, function):
        self.interval = interval
        self.function = function
        self.daemon = False
        self.started = False
        self.cancelled = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        if not self.cancelled:
            self.function()


class TimerFactory:

    def __init__(self):
        self.timers = []

    def __call__(self, interval, function):
        timer = FakeTimer(interval, function)
        self.timers.append(timer)
        return timer


class RecordingNotifier:

    def __init__(self):
        self.messages = []

    def notify_success(self, message):
        self.messages.append(('success', message))

    def notify_error(self, message):
        self.messages.append(('danger', message))

    def notify_warning(self, message):
        self.messages.append(('warning', message))

    def errors(self):
        return [m for category, m in self.messages if category == 'danger']

    def successes(self):
        return [m for category, m in self.messages if category == 'success']


def _matches(row, filter):
    for name, value in (filter or {}).items():
        field = row.get(name)
        if isinstance(value, Between):
            if field is None or not value.low <= field <= value.high:
                return False
        elif isinstance(value, (list, tuple, set, frozenset)):
            if field not in value:
                return False
        elif field != value:
            return False
    return True


class FakeRecords:
    """Dict-backed stand-in for RecordStore.

    ``select_errors`` makes every select on a collection fail,
    ``fail_writes_for`` makes writes for those student ids fail.
    ``on_select`` and ``on_insert`` run before a call is answered, which lets
    a test move the selection on or run a second submit while one is in
    flight. Attendance marks are unique per (date, period, student_id) like
    the real table.
    """

    def __init__(self, **collections):
        self.tables = {name: [dict(row) for row in rows] for name, rows in collections.items()}
        self.select_errors = {}
        self.fail_writes_for = set()
        self.on_select = None
        self.on_insert = None
        self.calls = []
        self._next_id = 1

    def select(self, collection, filter=None, columns=None, order_by=None):
        self.calls.append(('select', collection, dict(filter or {})))
        if self.on_select is not None:
            self.on_select(collection, filter or {})
        error = self.select_errors.get(collection)
        if error is not None:
            return StoreResult(None, error)
        rows = [row for row in self.tables.get(collection, []) if _matches(row, filter)]
        names = [order_by] if isinstance(order_by, str) else list(order_by or [])
        for name in reversed(names):
            rows.sort(key=lambda row: row.get(name))
        if columns:
            rows = [{c: row.get(c) for c in columns} for row in rows]
        else:
            rows = [dict(row) for row in rows]
        return StoreResult(rows)

    def insert(self, collection, row):
        self.calls.append(('insert', collection, dict(row)))
        if self.on_insert is not None:
            self.on_insert(collection, row)
        if row.get('student_id') in self.fail_writes_for:
            return StoreResult(None, StoreError('insert failed', 'db_error'))
        if collection == 'attendance' and self.rows(
                collection, date=row.get('date'), period=row.get('period'), student_id=row.get('student_id')):
            return StoreResult(None, StoreError('duplicate attendance mark', CONFLICT))
        row = dict(row)
        row.setdefault('id', f"row{self._next_id}")
        self._next_id += 1
        self.tables.setdefault(collection, []).append(row)
        return StoreResult(dict(row))

    def update(self, collection, id, patch):
        self.calls.append(('update', collection, id, dict(patch)))
        for row in self.tables.get(collection, []):
            if row.get('id') == id:
                if row.get('student_id') in self.fail_writes_for:
                    return StoreResult(None, StoreError('update failed', 'db_error'))
                row.update(patch)
                return StoreResult(dict(row))
        return StoreResult(None, StoreError(f"No {collection} row with id {id}", 'not_found'))

    def rows(self, collection, **filter):
        return [row for row in self.tables.get(collection, []) if _matches(row, filter)]

    def writes(self):
        return [call for call in self.calls if call[0] in ('insert', 'update')]
