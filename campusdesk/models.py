from campusdesk import db
from datetime import datetime
import uuid


def _uuid():
    return uuid.uuid4().hex


class AuthAccount(db.Model):
    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    email = db.Column(db.String(120), unique=True, nullable=False)
    password_hash = db.Column(db.String(256), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    last_sign_in_at = db.Column(db.DateTime)

    tokens = db.relationship('AuthToken', backref='account', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"AuthAccount('{self.email}')"


class AuthToken(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    account_id = db.Column(db.String(32), db.ForeignKey('auth_account.id'), nullable=False)
    access_token = db.Column(db.String(512), unique=True, nullable=False)
    refresh_token = db.Column(db.String(128), unique=True, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)  # naive UTC
    revoked = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"AuthToken(account_id='{self.account_id}', revoked={self.revoked})"


class Profile(db.Model):
    __tablename__ = 'profiles'
    id = db.Column(db.String(32), db.ForeignKey('auth_account.id'), primary_key=True)
    role = db.Column(db.String(20))
    name = db.Column(db.String(100))
    avatar_url = db.Column(db.String(255))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"Profile('{self.id}', role='{self.role}')"


class Student(db.Model):
    __tablename__ = 'students'
    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(32), db.ForeignKey('auth_account.id'), unique=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True)
    roll_number = db.Column(db.String(50), unique=True, nullable=False)
    semester = db.Column(db.Integer, nullable=False)
    status = db.Column(db.String(20), default='active')  # active, passed-out, on-leave
    phone = db.Column(db.String(20))
    address = db.Column(db.Text)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    attendances = db.relationship('Attendance', backref='student', lazy=True, cascade="all, delete-orphan")

    def __repr__(self):
        return f"Student('{self.roll_number}', semester={self.semester})"


class Faculty(db.Model):
    __tablename__ = 'faculty'
    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    user_id = db.Column(db.String(32), db.ForeignKey('auth_account.id'), unique=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(120), unique=True)
    branch = db.Column(db.String(100))
    abbreviation = db.Column(db.String(20))
    phone = db.Column(db.String(20))
    status = db.Column(db.String(20), default='active')
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"Faculty('{self.abbreviation}')"


class Attendance(db.Model):
    __tablename__ = 'attendance'
    __table_args__ = (db.UniqueConstraint('date', 'period', 'student_id', name='uq_attendance_mark'),)
    id = db.Column(db.String(32), primary_key=True, default=_uuid)
    date = db.Column(db.Date, nullable=False)
    period = db.Column(db.Integer, nullable=False)
    student_id = db.Column(db.String(32), db.ForeignKey('students.id'), nullable=False)
    status = db.Column(db.String(20), nullable=False)  # present, absent, late
    faculty_abbreviation = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"Attendance(date='{self.date}', period={self.period}, student_id='{self.student_id}', status='{self.status}')"
