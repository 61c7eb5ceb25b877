from datetime import datetime, timezone
from . import db

def utc_now():
    return datetime.now(timezone.utc)

from flask_login import UserMixin

# ==========================================
# BACK OFFICE
# ==========================================

class User(UserMixin, db.Model):
    __tablename__ = "users"
    user_id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(128), unique=True, nullable=False)
    email = db.Column(db.String(128))
    password_hash = db.Column(db.String(256))
    role = db.Column(db.String(32), default="admin")  # admin, viewer
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=utc_now)

    def get_id(self):
        return str(self.user_id)


class ActivityLog(db.Model):
    __tablename__ = "activity_logs"
    log_id = db.Column(db.Integer, primary_key=True)
    user_id_fk = db.Column(db.Integer, db.ForeignKey("users.user_id"))
    action = db.Column(db.String(64), nullable=False)  # e.g. ranks_computed, exam_deployed
    details = db.Column(db.Text)  # JSON
    created_at = db.Column(db.DateTime, default=utc_now)


# ==========================================
# STUDENTS & SUBJECTS
# ==========================================

class Student(db.Model):
    __tablename__ = "students"
    student_id = db.Column(db.Integer, primary_key=True)
    # Public identifier printed on admit cards
    student_code = db.Column(db.String(32), unique=True, nullable=False)
    student_name = db.Column(db.String(128), nullable=False)
    class_number = db.Column(db.Integer, nullable=False)
    roll_number = db.Column(db.Integer)
    section = db.Column(db.String(8))
    date_of_birth = db.Column(db.Date)
    father_name = db.Column(db.String(128))
    mother_name = db.Column(db.String(128))
    created_at = db.Column(db.DateTime, default=utc_now)


class Subject(db.Model):
    __tablename__ = "subjects"
    subject_id = db.Column(db.Integer, primary_key=True)
    subject_name = db.Column(db.String(128), nullable=False)
    class_number = db.Column(db.Integer, nullable=False)
    # Full marks for summatives I, II, III
    full_marks_1 = db.Column(db.Float, default=0)
    full_marks_2 = db.Column(db.Float, default=0)
    full_marks_3 = db.Column(db.Float, default=0)
    display_order = db.Column(db.Integer)
    created_at = db.Column(db.DateTime, default=utc_now)

    def full_marks_for(self, slot):
        return getattr(self, f"full_marks_{slot}") or 0


# ==========================================
# EXAMS & RESULTS
# ==========================================

class Exam(db.Model):
    __tablename__ = "exams"
    exam_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    academic_year = db.Column(db.String(16), nullable=False)
    # Public visibility flag; only the deployment state machine sets it
    is_deployed = db.Column(db.Boolean, nullable=False, default=False)
    deployed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, onupdate=utc_now)


class Mark(db.Model):
    __tablename__ = "marks"
    mark_id = db.Column(db.Integer, primary_key=True)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    subject_id_fk = db.Column(db.Integer, db.ForeignKey("subjects.subject_id"), nullable=False)
    exam_id_fk = db.Column(db.Integer, db.ForeignKey("exams.exam_id"), nullable=False)
    # Raw entries: number, "AB", "EX" or NULL
    marks_1 = db.Column(db.String(16))
    marks_2 = db.Column(db.String(16))
    marks_3 = db.Column(db.String(16))
    is_locked = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, onupdate=utc_now)

    __table_args__ = (
        db.UniqueConstraint("student_id_fk", "subject_id_fk", "exam_id_fk", name="uq_mark_student_subject_exam"),
    )

    def raw_for(self, slot):
        return getattr(self, f"marks_{slot}")


class Rank(db.Model):
    __tablename__ = "ranks"
    rank_id = db.Column(db.Integer, primary_key=True)
    student_id_fk = db.Column(db.Integer, db.ForeignKey("students.student_id"), nullable=False)
    exam_id_fk = db.Column(db.Integer, db.ForeignKey("exams.exam_id"), nullable=False)
    total_marks = db.Column(db.Float, nullable=False, default=0)
    percentage = db.Column(db.Float, nullable=False, default=0)
    grade = db.Column(db.String(16), nullable=False, default="D")
    rank = db.Column(db.Integer)
    is_passed = db.Column(db.Boolean, nullable=False, default=False)
    has_conflict = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, default=utc_now)
    updated_at = db.Column(db.DateTime, onupdate=utc_now)

    student = db.relationship("Student", lazy="joined")

    __table_args__ = (
        db.UniqueConstraint("student_id_fk", "exam_id_fk", name="uq_rank_student_exam"),
    )

    def to_dict(self):
        return {
            "student_id": self.student_id_fk,
            "exam_id": self.exam_id_fk,
            "total_marks": self.total_marks,
            "percentage": self.percentage,
            "grade": self.grade,
            "rank": self.rank,
            "is_passed": self.is_passed,
            "has_conflict": self.has_conflict,
        }
