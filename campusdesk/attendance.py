"""Period attendance taking and reporting.

A period session is every attendance row sharing a ``(date, period)``; the
faculty abbreviation stamped on those rows owns the slot. Only the owner may
edit it, everyone else sees it locked.

The workflow keeps one selection (date, semester, period, operator) and
refetches whatever depends on an input whenever that input changes. A fetch
result is applied only if the selection that started it is still current.
"""
import calendar
import logging
from datetime import date, datetime
from enum import Enum

from campusdesk.records import CONFLICT, Between, StoreError, StoreResult, maybe_single

logger = logging.getLogger(__name__)

DEFAULT_PERIODS = 6
UNKNOWN_AUTHOR = 'unknown'


class AttendanceStatus(str, Enum):
    PRESENT = 'present'
    ABSENT = 'absent'
    LATE = 'late'


def is_present_status(status):
    # Late students were in class; the toggle only knows present/absent
    return status in (AttendanceStatus.PRESENT.value, AttendanceStatus.LATE.value)


def same_abbreviation(a, b):
    if a is None or b is None:
        return False
    return a.strip().casefold() == b.strip().casefold()


def as_date(value):
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value).strip())


class WorkflowState(Enum):
    NO_SELECTION = 'no_selection'
    ROSTER_LOADING = 'roster_loading'
    PERIODS_LOADING = 'periods_loading'
    READY_NEW = 'ready_new'
    READY_EDIT = 'ready_edit'
    LOCKED = 'locked'


class AttendanceError(Exception):
    pass


class PeriodLockedError(AttendanceError):

    def __init__(self, period, abbreviation):
        self.period = period
        self.abbreviation = abbreviation
        super().__init__(f"Period {period} is already taken by {abbreviation}.")


class SubmitResult:

    def __init__(self, inserted=0, updated=0, failed=0, editing=False, message=''):
        self.inserted = inserted
        self.updated = updated
        self.failed = failed
        self.editing = editing
        self.message = message

    @property
    def ok(self):
        return self.failed == 0

    def __repr__(self):
        return (f"SubmitResult(inserted={self.inserted}, updated={self.updated}, "
                f"failed={self.failed})")


class PeriodOption:

    def __init__(self, number, taken_by=None, disabled=False):
        self.number = number
        self.taken_by = taken_by
        self.disabled = disabled

    @property
    def label(self):
        if self.taken_by is None:
            return f"Period {self.number}"
        return f"Period {self.number} (Taken by {self.taken_by})"


class AttendanceWorkflow:

    def __init__(self, records, notifier, periods=DEFAULT_PERIODS):
        self.records = records
        self.notifier = notifier
        self.periods = periods

        self.date = None
        self.semester = None
        self.period = None
        self.operator = None

        self.roster = []
        self.taken_periods = {}
        self.pending = {}
        self.is_editing_existing = False
        self.error = None

        self.loading_roster = False
        self.loading_periods = False
        self.loading_marks = False
        self.submitting = False

        self._roster_semester = None
        self._periods_date = None

    # --- inputs ---

    def select_date(self, value):
        self.date = as_date(value)
        self._load_taken_periods()
        self._populate()

    def select_semester(self, value):
        self.semester = int(value) if value not in (None, '') else None
        self._load_roster()
        self._populate()

    def select_period(self, value):
        if value in (None, ''):
            self.period = None
        else:
            period = int(value)
            if not 1 <= period <= self.periods:
                raise AttendanceError(f"Period must be between 1 and {self.periods}.")
            self.period = period
        self._populate()

    def set_operator(self, abbreviation):
        self.operator = abbreviation.strip() if abbreviation and abbreviation.strip() else None
        self._populate()

    def _selection(self):
        return (self.date, self.semester, self.period,
                self.operator.casefold() if self.operator else None)

    # --- derived state ---

    @property
    def state(self):
        if self.date is None or self.semester is None:
            return WorkflowState.NO_SELECTION
        if self.loading_roster:
            return WorkflowState.ROSTER_LOADING
        if self.loading_periods:
            return WorkflowState.PERIODS_LOADING
        if self.period is None:
            return WorkflowState.NO_SELECTION
        taken_by = self.taken_periods.get(self.period)
        if taken_by is None:
            return WorkflowState.READY_NEW
        if same_abbreviation(taken_by, self.operator):
            return WorkflowState.READY_EDIT
        return WorkflowState.LOCKED

    @property
    def loading(self):
        return self.loading_roster or self.loading_periods or self.loading_marks

    def period_options(self):
        options = []
        for number in range(1, self.periods + 1):
            taken_by = self.taken_periods.get(number)
            locked = taken_by is not None and not same_abbreviation(taken_by, self.operator)
            options.append(PeriodOption(number, taken_by, disabled=locked))
        return options

    def lock_message(self):
        if self.state is not WorkflowState.LOCKED:
            return None
        return f"Period {self.period} is already taken by {self.taken_periods[self.period]}."

    def can_submit(self):
        return (self.state in (WorkflowState.READY_NEW, WorkflowState.READY_EDIT)
                and bool(self.roster) and self.operator is not None
                and not self.loading and not self.submitting)

    # --- fetches ---

    def _load_roster(self):
        semester = self.semester
        if semester is None:
            self.loading_roster = False
            self.roster = []
            self._roster_semester = None
            return
        self.loading_roster = True
        result = self.records.select('students', {'semester': semester}, order_by='roll_number')
        if self.semester != semester:
            logger.debug("Dropping roster for semester %s; selection moved on", semester)
            return
        self.loading_roster = False
        if result.error:
            logger.warning("Roster fetch for semester %s failed: %s", semester, result.error)
            self.error = "Failed to load students."
            self.notifier.notify_error(self.error)
            if self._roster_semester != semester:
                self.roster = []
            return
        self.error = None
        self.roster = result.data
        self._roster_semester = semester

    def _load_taken_periods(self):
        day = self.date
        if day is None:
            self.loading_periods = False
            self.taken_periods = {}
            self._periods_date = None
            return
        self.loading_periods = True
        result = self.records.select('attendance', {'date': day},
                                    columns=['period', 'faculty_abbreviation'])
        if self.date != day:
            logger.debug("Dropping taken periods for %s; selection moved on", day)
            return
        self.loading_periods = False
        if result.error:
            logger.warning("Taken-period fetch for %s failed: %s", day, result.error)
            self.error = "Failed to load taken periods."
            self.notifier.notify_error(self.error)
            if self._periods_date != day:
                self.taken_periods = {}
            return
        self.error = None
        self.taken_periods = {row['period']: row['faculty_abbreviation'] or UNKNOWN_AUTHOR
                              for row in result.data}
        self._periods_date = day

    def _populate(self):
        if self.state is WorkflowState.READY_EDIT and self.roster:
            self._load_existing_marks()
            return
        self.pending = {student['id']: False for student in self.roster}
        self.is_editing_existing = False
        self.loading_marks = False

    def _load_existing_marks(self):
        selection = self._selection()
        self.is_editing_existing = True
        self.loading_marks = True
        result = self.records.select(
            'attendance',
            {'date': self.date, 'period': self.period,
             'student_id': [student['id'] for student in self.roster]},
            columns=['student_id', 'status'],
        )
        if self._selection() != selection:
            logger.debug("Dropping existing marks for %s; selection moved on", selection)
            return
        self.loading_marks = False
        if result.error:
            logger.warning("Existing marks fetch failed: %s", result.error)
            self.error = "Failed to load existing attendance."
            self.notifier.notify_error(self.error)
            return
        existing = {row['student_id']: row['status'] for row in result.data}
        self.pending = {student['id']: is_present_status(existing.get(student['id']))
                        for student in self.roster}

    # --- edits ---

    def toggle_one(self, student_id, is_present):
        if student_id not in self.pending:
            raise AttendanceError(f"Student {student_id} is not on the roster.")
        self.pending[student_id] = bool(is_present)

    def mark_all(self, is_present):
        self.pending = {student['id']: bool(is_present) for student in self.roster}

    # --- submit ---

    def _check_selection(self, day, semester, period):
        if day is not None and as_date(day) != self.date:
            raise AttendanceError("The selected date changed; reload before submitting.")
        if semester is not None and int(semester) != self.semester:
            raise AttendanceError("The selected semester changed; reload before submitting.")
        if period is not None and int(period) != self.period:
            raise AttendanceError("The selected period changed; reload before submitting.")

    def _check_not_locked(self):
        result = self.records.select('attendance', {'date': self.date, 'period': self.period},
                                     columns=['faculty_abbreviation'])
        if result.error:
            logger.warning("Lock re-check failed: %s", result.error)
            raise AttendanceError("Failed to check existing records.")
        for row in result.data:
            author = row['faculty_abbreviation'] or UNKNOWN_AUTHOR
            if not same_abbreviation(author, self.operator):
                self.taken_periods[self.period] = author
                raise PeriodLockedError(self.period, author)

    def _update_conflicting(self, student_id, status):
        """Another submit stored this mark after our lookup; overwrite it only if it is ours."""
        found = self.records.select(
            'attendance',
            {'date': self.date, 'period': self.period, 'student_id': student_id},
            columns=['id', 'faculty_abbreviation'],
        )
        row = maybe_single(found)
        if row is None:
            return StoreResult(None, found.error or StoreError("Conflicting mark not found", CONFLICT)), None
        author = row['faculty_abbreviation'] or UNKNOWN_AUTHOR
        if not same_abbreviation(author, self.operator):
            logger.warning("Mark for %s on %s P%s was taken by %s during submit",
                           student_id, self.date, self.period, author)
            return StoreResult(None, StoreError(f"Period {self.period} is already taken by {author}.",
                                                'locked')), None
        return self.records.update('attendance', row['id'], {'status': status}), row['id']

    def submit(self, day=None, semester=None, period=None):
        self._check_selection(day, semester, period)
        if self.operator is None:
            raise AttendanceError("Faculty abbreviation not set.")
        if self.date is None or self.semester is None or self.period is None:
            raise AttendanceError("Select a date, semester and period first.")
        if not self.roster:
            raise AttendanceError("No students found for the selected semester.")
        if self.submitting:
            raise AttendanceError("Attendance is already being submitted.")

        self._check_not_locked()

        self.submitting = True
        try:
            return self._write_marks()
        finally:
            self.submitting = False

    def _write_marks(self):
        student_ids = [student['id'] for student in self.roster]
        existing = self.records.select(
            'attendance',
            {'date': self.date, 'period': self.period, 'student_id': student_ids},
            columns=['id', 'student_id'],
        )
        if existing.error:
            logger.warning("Existing-row lookup failed: %s", existing.error)
            raise AttendanceError("Failed to check existing records.")
        existing_ids = {row['student_id']: row['id'] for row in existing.data}

        result = SubmitResult(editing=self.is_editing_existing)
        for student_id in student_ids:
            status = (AttendanceStatus.PRESENT if self.pending.get(student_id)
                      else AttendanceStatus.ABSENT).value
            row_id = existing_ids.get(student_id)
            if row_id is not None:
                write = self.records.update('attendance', row_id, {'status': status})
            else:
                write = self.records.insert('attendance', {
                    'date': self.date,
                    'period': self.period,
                    'student_id': student_id,
                    'status': status,
                    'faculty_abbreviation': self.operator,
                })
                if write.error and write.error.code == CONFLICT:
                    write, row_id = self._update_conflicting(student_id, status)
            if write.error:
                result.failed += 1
                logger.error("Attendance write for %s on %s P%s failed: %s",
                             student_id, self.date, self.period, write.error)
            elif row_id is not None:
                result.updated += 1
            else:
                result.inserted += 1

        if result.failed:
            result.message = "Some records failed."
            self.notifier.notify_error(result.message)
        else:
            result.message = "Attendance updated!" if result.editing else "Attendance submitted!"
            self.notifier.notify_success(result.message)
        logger.info("Attendance %s %s P%s by %s: %r", self.date, self.semester, self.period,
                    self.operator, result)

        # Optimistic: the slot is ours now; the next date/period change refetches
        self.taken_periods[self.period] = self.operator
        self.is_editing_existing = True
        return result


# --- reporting ---

class AttendanceSummary:

    def __init__(self, student_id, name=None, roll_number=None, semester=None):
        self.student_id = student_id
        self.name = name
        self.roll_number = roll_number
        self.semester = semester
        self.total_periods = 0
        self.present_count = 0
        self.absent_count = 0
        self.late_count = 0

    @property
    def rate(self):
        if not self.total_periods:
            return 0.0
        return (self.present_count + self.late_count) / self.total_periods * 100

    @property
    def percentage(self):
        return f"{self.rate:.2f}%"

    def to_dict(self):
        return {
            'student_id': self.student_id,
            'name': self.name,
            'roll_number': self.roll_number,
            'semester': self.semester,
            'total_periods': self.total_periods,
            'present_count': self.present_count,
            'absent_count': self.absent_count,
            'late_count': self.late_count,
            'percentage': self.percentage,
        }


def summarize_attendance(rows, students):
    """Per-student totals; ``students`` maps id to a student row."""
    summaries = {}
    for row in rows:
        student = students.get(row['student_id'])
        if student is None:
            continue
        summary = summaries.get(row['student_id'])
        if summary is None:
            summary = summaries[row['student_id']] = AttendanceSummary(
                row['student_id'], student.get('name'), student.get('roll_number'),
                student.get('semester'))
        summary.total_periods += 1
        if row['status'] == AttendanceStatus.PRESENT.value:
            summary.present_count += 1
        elif row['status'] == AttendanceStatus.ABSENT.value:
            summary.absent_count += 1
        elif row['status'] == AttendanceStatus.LATE.value:
            summary.late_count += 1
    return sorted(summaries.values(), key=lambda s: (s.roll_number or '', s.student_id))


def low_attendance(summaries, threshold):
    return [s for s in summaries if s.total_periods and s.rate < threshold]


def daily_grid(rows, periods=DEFAULT_PERIODS):
    """One student's rows as ``[(date, {period: 'P'|'A'|''})]`` sorted by date."""
    days = {}
    for row in rows:
        marks = days.setdefault(as_date(row['date']), {n: '' for n in range(1, periods + 1)})
        if row['period'] in marks:
            marks[row['period']] = 'P' if is_present_status(row['status']) else 'A'
    return sorted(days.items())


def report_window(year, month=None):
    """First and last day of a month (1-12), or of the whole year."""
    year = int(year)
    if month is None:
        return date(year, 1, 1), date(year, 12, 31)
    month = int(month)
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def fetch_report_rows(records, start, end, semester=None, student_id=None):
    """Attendance rows in a window joined with the student rows they belong to."""
    filters = {'date': Between(start, end)}
    if student_id:
        filters['student_id'] = student_id
    rows = records.select('attendance', filters, order_by=['date', 'period'])
    if rows.error:
        return None, None, rows.error
    student_filter = {'semester': int(semester)} if semester else None
    students = records.select('students', student_filter)
    if students.error:
        return None, None, students.error
    by_id = {s['id']: s for s in students.data}
    return [r for r in rows.data if r['student_id'] in by_id], by_id, None
