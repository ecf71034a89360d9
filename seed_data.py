from campusdesk import app, db
from campusdesk.issuer import AuthIssuer
from campusdesk.models import AuthAccount, Attendance, Faculty, Student
from campusdesk.storage import MemoryStorage
from datetime import date, timedelta
import random

FACULTY = [
    ('Jane Doe', 'JDO', 'Computer Science'),
    ('Xavier Young', 'XYZ', 'Mathematics'),
    ('Priya Nair', 'PNR', 'Physics'),
]


def seed():
    with app.app_context():
        print("Seeding database...")
        issuer = AuthIssuer(MemoryStorage(), app.config['SECRET_KEY'])

        if not AuthAccount.query.filter_by(email='admin@campusdesk.local').first():
            issuer.create_account('admin@campusdesk.local', 'admin12345', role='admin', name='Administrator')
            print("Created admin user.")
        if not AuthAccount.query.filter_by(email='staff@campusdesk.local').first():
            issuer.create_account('staff@campusdesk.local', 'staff12345', role='staff', name='Office Staff')
            print("Created staff user.")

        for name, abbreviation, branch in FACULTY:
            email = f"{abbreviation.lower()}@campusdesk.local"
            if AuthAccount.query.filter_by(email=email).first():
                continue
            account = issuer.create_account(email, 'faculty12345', role='faculty', name=name)
            db.session.add(Faculty(user_id=account.id, name=name, email=email, branch=branch,
                                   abbreviation=abbreviation, phone='555-0100'))
        db.session.commit()
        print(f"Faculty: {Faculty.query.count()}")

        for i in range(1, 21):
            email = f"student{i}@campusdesk.local"
            if Student.query.filter_by(email=email).first():
                continue
            account = issuer.create_account(email, 'student12345', role='student', name=f"Student {i}")
            db.session.add(Student(
                user_id=account.id,
                name=f"Student {i}",
                email=email,
                roll_number=f"R{i:03d}",
                semester=(i % 4) + 1,
                phone=f"555-02{i:02d}",
            ))
        db.session.commit()
        print(f"Students: {Student.query.count()}")

        # A week of period 1 for semester 1, taken by JDO
        if not Attendance.query.first():
            roster = Student.query.filter_by(semester=1).all()
            for offset in range(1, 8):
                day = date.today() - timedelta(days=offset)
                for student in roster:
                    db.session.add(Attendance(date=day, period=1, student_id=student.id,
                                              status=random.choice(['present', 'present', 'absent', 'late']),
                                              faculty_abbreviation='JDO'))
            db.session.commit()
        print(f"Attendance rows: {Attendance.query.count()}")
        print("Seeding complete.")


if __name__ == "__main__":
    seed()
