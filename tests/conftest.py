from contextlib import nullcontext
from datetime import date

import pytest
from flask import has_app_context

from results_app import create_app, db
from results_app.main.accounts import ensure_user
from results_app.models import Exam, Mark, Student, Subject


@pytest.fixture
def app(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite://")
    monkeypatch.setenv("RATELIMIT_ENABLED", "false")
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    for var in ("REDIS_URL", "PASS_PERCENTAGE", "GRADE_BANDS_JSON"):
        monkeypatch.delenv(var, raising=False)
    app = create_app()
    app.config["TESTING"] = True
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Pushes an app context for tests that call services directly."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def _create_user(app, username, role):
    with app.app_context():
        user, _ = ensure_user(username, "secret", role)
        return user.user_id


def _login(client, username):
    resp = client.post("/login", json={"username": username, "password": "secret"})
    assert resp.status_code == 200
    client.environ_base["HTTP_X_CSRF_TOKEN"] = resp.get_json()["data"]["csrf_token"]
    return client


@pytest.fixture
def admin_client(app, client):
    _create_user(app, "admin", "admin")
    return _login(client, "admin")


@pytest.fixture
def viewer_client(app, client):
    _create_user(app, "viewer", "viewer")
    return _login(client, "viewer")


class Seeder:
    """Small factory for exams, students, subjects and marks."""

    def __init__(self, app):
        self.app = app

    def _ctx(self):
        return nullcontext() if has_app_context() else self.app.app_context()

    def _add(self, obj, pk):
        with self._ctx():
            db.session.add(obj)
            db.session.commit()
            return getattr(obj, pk)

    def exam(self, name="Annual Examination", academic_year="2026-27"):
        return self._add(Exam(name=name, academic_year=academic_year), "exam_id")

    def student(self, code, class_number=5, roll_number=None, name=None, date_of_birth=date(2015, 4, 12)):
        return self._add(
            Student(
                student_code=code,
                student_name=name or f"Student {code}",
                class_number=class_number,
                roll_number=roll_number,
                section="A",
                date_of_birth=date_of_birth,
            ),
            "student_id",
        )

    def subject(self, name, class_number=5, full_marks=(20, 30, 50), display_order=None):
        fm1, fm2, fm3 = full_marks
        return self._add(
            Subject(
                subject_name=name,
                class_number=class_number,
                full_marks_1=fm1,
                full_marks_2=fm2,
                full_marks_3=fm3,
                display_order=display_order,
            ),
            "subject_id",
        )

    def mark(self, student_id, subject_id, exam_id, marks=(None, None, None), locked=False):
        m1, m2, m3 = marks
        return self._add(
            Mark(
                student_id_fk=student_id,
                subject_id_fk=subject_id,
                exam_id_fk=exam_id,
                marks_1=m1,
                marks_2=m2,
                marks_3=m3,
                is_locked=locked,
            ),
            "mark_id",
        )


@pytest.fixture
def seed(app):
    return Seeder(app)
