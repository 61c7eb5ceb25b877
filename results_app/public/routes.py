from datetime import date
from flask import request, current_app
from sqlalchemy import select
from . import public_bp
from .. import db, limiter
from ..api_utils import api_success, api_error
from ..models import Exam, Mark, Rank, Student, Subject
from ..results.deployment import exam_summary, get_live_exam, get_live_exam_summary
from ..results.marks import SLOTS, MarkValidationError, parse_mark


def _lookup_limit():
    return current_app.config.get("PUBLIC_LOOKUP_RATE_LIMIT", "30 per minute")


def _text(value):
    """Stripped string, or None when the JSON value is not a string."""
    if value is None:
        return ""
    if not isinstance(value, str):
        return None
    return value.strip()


def _marksheet(student, exam_id):
    """
    Per-subject rows for a published result. Sentinels are shown as AB/EX,
    never as 0.
    """
    rows = db.session.execute(
        select(Mark, Subject)
        .join(Subject, Mark.subject_id_fk == Subject.subject_id)
        .filter(
            Mark.student_id_fk == student.student_id,
            Mark.exam_id_fk == exam_id,
            Subject.class_number == student.class_number,
        )
        .order_by(Subject.display_order, Subject.subject_name)
    ).all()

    sheet = []
    for m, sub in rows:
        entry = {"subject": sub.subject_name, "total": 0.0, "full_marks": 0.0}
        for slot in SLOTS:
            ceiling = float(sub.full_marks_for(slot))
            raw = m.raw_for(slot)
            try:
                value = parse_mark(raw, ceiling)
                entry[f"marks_{slot}"] = value.display()
                entry["total"] += value.contribution
            except MarkValidationError:
                entry[f"marks_{slot}"] = raw
            entry[f"full_marks_{slot}"] = ceiling
            entry["full_marks"] += ceiling
        sheet.append(entry)
    return sheet


def _rank_for(student_id, exam_id):
    return db.session.execute(
        select(Rank).filter_by(student_id_fk=student_id, exam_id_fk=exam_id)
    ).scalars().first()


@public_bp.route("/deployment", methods=["GET"])
def deployment():
    live = get_live_exam_summary()
    return api_success({"has_deployed_exam": live is not None, "exam": live})


@public_bp.route("/results/lookup", methods=["POST"])
@limiter.limit(_lookup_limit)
def lookup_result():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    student_code = _text(data.get("student_code"))
    dob_raw = _text(data.get("date_of_birth"))
    class_raw = data.get("class_number")
    invalid = api_error("invalid_request", "student_code, class_number and date_of_birth (YYYY-MM-DD) are required.", 400)
    if student_code is None or dob_raw is None or isinstance(class_raw, bool):
        return invalid
    try:
        class_number = int(class_raw)
        dob = date.fromisoformat(dob_raw)
    except (TypeError, ValueError):
        return invalid
    if not student_code:
        return api_error("invalid_request", "student_code is required.", 400)

    # Read the flag itself; the cached banner summary can lag another worker's rollback
    exam = get_live_exam()
    if not exam:
        return api_error("not_published", "Results have not been published yet.", 404)
    live = exam_summary(exam)

    student = db.session.execute(
        select(Student).filter_by(student_code=student_code, class_number=class_number, date_of_birth=dob)
    ).scalars().first()
    if not student:
        return api_error("not_found", "No student found with the provided details.", 404)

    rank = _rank_for(student.student_id, live["exam_id"])
    if not rank:
        return api_error("not_found", "No result found for this student.", 404)

    return api_success({
        "exam": live,
        "student": {
            "student_code": student.student_code,
            "name": student.student_name,
            "class_number": student.class_number,
            "section": student.section,
            "roll_number": student.roll_number,
            "father_name": student.father_name,
            "mother_name": student.mother_name,
        },
        "result": rank.to_dict(),
        "subjects": _marksheet(student, live["exam_id"]),
    })


@public_bp.route("/results/verify/<int:exam_id>/<student_code>", methods=["GET"])
@limiter.limit(_lookup_limit)
def verify_result(exam_id, student_code):
    exam = db.session.get(Exam, exam_id)
    # Draft results are indistinguishable from missing ones
    if not exam or not exam.is_deployed:
        return api_error("not_found", "Result not found or not published.", 404)

    student = db.session.execute(select(Student).filter_by(student_code=student_code)).scalars().first()
    rank = _rank_for(student.student_id, exam_id) if student else None
    if not rank:
        return api_error("not_found", "Result not found or not published.", 404)

    return api_success({
        "verified": True,
        "exam": {"exam_id": exam.exam_id, "name": exam.name, "academic_year": exam.academic_year},
        "student": {"student_code": student.student_code, "name": student.student_name,
                    "class_number": student.class_number},
        "result": {
            "total_marks": rank.total_marks,
            "percentage": rank.percentage,
            "grade": rank.grade,
            "rank": rank.rank,
            "is_passed": rank.is_passed,
        },
    })
