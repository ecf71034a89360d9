import unittest
import sys
import os
from datetime import date

# Set environment to testing before importing app
os.environ['FLASK_ENV'] = 'testing'

# Add project root to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from campusdesk import app, db
from campusdesk.models import Student
from campusdesk.records import CONFLICT, Between, RecordStore, maybe_single


class RecordStoreTests(unittest.TestCase):

    def setUp(self):
        self.app_context = app.app_context()
        self.app_context.push()
        db.create_all()
        self.records = RecordStore()
        for i, semester in enumerate((1, 1, 2), start=1):
            db.session.add(Student(id=f"s{i}", name=f"Student {i}", roll_number=f"R{i:03d}", semester=semester))
        db.session.commit()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.app_context.pop()

    def test_select_with_filter_and_order(self):
        data, error = self.records.select('students', {'semester': 1}, order_by='roll_number')
        self.assertIsNone(error)
        self.assertEqual([row['id'] for row in data], ['s1', 's2'])

    def test_select_columns(self):
        result = self.records.select('students', {'id': 's3'}, columns=['id', 'semester'])
        self.assertEqual(result.data, [{'id': 's3', 'semester': 2}])

    def test_select_in_and_null(self):
        result = self.records.select('students', {'id': ['s1', 's3']}, order_by='id')
        self.assertEqual([row['id'] for row in result.data], ['s1', 's3'])
        result = self.records.select('students', {'user_id': None})
        self.assertEqual(len(result.data), 3)

    def test_insert_coerces_iso_dates_and_filters_between(self):
        result = self.records.insert('attendance', {
            'date': '2024-03-04', 'period': 1, 'student_id': 's1', 'status': 'present',
            'faculty_abbreviation': 'JDO',
        })
        self.assertIsNone(result.error)
        self.assertEqual(result.data['date'], date(2024, 3, 4))
        inside = self.records.select('attendance', {'date': Between('2024-03-01', '2024-03-31')})
        outside = self.records.select('attendance', {'date': Between(date(2024, 4, 1), date(2024, 4, 30))})
        self.assertEqual(len(inside.data), 1)
        self.assertEqual(outside.data, [])

    def test_update(self):
        result = self.records.update('students', 's1', {'phone': '555-0101'})
        self.assertIsNone(result.error)
        self.assertEqual(db.session.get(Student, 's1').phone, '555-0101')

    def test_update_missing_row(self):
        result = self.records.update('students', 'nope', {'phone': '1'})
        self.assertIsNone(result.data)
        self.assertEqual(result.error.code, 'not_found')

    def test_unknown_collection_or_column(self):
        self.assertEqual(self.records.select('grades').error.code, 'bad_request')
        self.assertEqual(self.records.select('students', {'gpa': 4}).error.code, 'bad_request')

    def test_failed_insert_is_reported_not_raised(self):
        result = self.records.insert('students', {'id': 's4', 'name': 'Dup', 'roll_number': 'R001', 'semester': 1})
        self.assertEqual(result.error.code, CONFLICT)
        # The session is usable after the rollback
        self.assertEqual(len(self.records.select('students').data), 3)

    def test_duplicate_attendance_mark_is_a_conflict(self):
        mark = {'date': date(2024, 3, 4), 'period': 2, 'student_id': 's1', 'status': 'present',
                'faculty_abbreviation': 'JDO'}
        self.assertIsNone(self.records.insert('attendance', mark).error)
        result = self.records.insert('attendance', dict(mark, status='absent'))
        self.assertEqual(result.error.code, CONFLICT)
        rows = self.records.select('attendance', {'student_id': 's1'}).data
        self.assertEqual([row['status'] for row in rows], ['present'])
        # Same student in another period is a separate mark
        self.assertIsNone(self.records.insert('attendance', dict(mark, period=3)).error)

    def test_maybe_single(self):
        self.assertEqual(maybe_single(self.records.select('students', {'id': 's2'}))['name'], 'Student 2')
        self.assertIsNone(maybe_single(self.records.select('students', {'id': 'zz'})))

if __name__ == "__main__":
    unittest.main()
