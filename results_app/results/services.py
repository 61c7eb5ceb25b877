import json
import logging
import math
from collections import Counter, defaultdict
from sqlalchemy import select
from .. import db
from ..models import ActivityLog, Exam, Mark, Rank, Student, Subject
from .aggregation import aggregate_totals
from .errors import ExamDeployedError, ExamNotFound, PreconditionError, RankSaveError
from .grading import DEFAULT_PASS_PERCENTAGE, GRADE_ORDER
from .marks import SLOTS, MarkValidationError, parse_mark
from .ranking import assign_ranks, duplicate_rank_values

logger = logging.getLogger(__name__)


def get_exam(exam_id, for_update=False):
    q = select(Exam).filter_by(exam_id=exam_id)
    if for_update:
        q = q.with_for_update().execution_options(populate_existing=True)
    exam = db.session.execute(q).scalars().first()
    if not exam:
        raise ExamNotFound(f"Exam {exam_id} not found.")
    return exam


def ensure_draft(exam):
    if exam.is_deployed:
        raise ExamDeployedError(
            f"Results for '{exam.name}' are live. Roll back the deployment before making changes.",
            invariant="exam_not_deployed",
        )


def log_activity(action, details=None, user_id=None):
    """Queues an activity log row on the current session (caller commits)."""
    db.session.add(
        ActivityLog(
            action=action,
            details=json.dumps(details or {}, default=str),
            user_id_fk=user_id,
        )
    )


def class_roster(class_number):
    return db.session.execute(
        select(Student.student_id)
        .filter_by(class_number=class_number)
        .order_by(Student.roll_number, Student.student_id)
    ).scalars().all()


def compute_class_totals(exam_id, class_number):
    """
    Reads the mark snapshot of one class + exam and aggregates it.
    Returns: {student_id: StudentTotal}, keyed in roll-number order.
    """
    student_ids = class_roster(class_number)
    subjects = db.session.execute(
        select(Subject).filter_by(class_number=class_number)
    ).scalars().all()
    subject_map = {s.subject_id: s for s in subjects}

    marks = []
    if student_ids:
        marks = db.session.execute(
            select(Mark)
            .filter(Mark.exam_id_fk == exam_id, Mark.student_id_fk.in_(student_ids))
            .order_by(Mark.mark_id)
        ).scalars().all()

    return aggregate_totals(marks, subject_map, class_number, student_ids=student_ids)


def compute_ranks(exam_id, class_number, pass_percentage=DEFAULT_PASS_PERCENTAGE, grade_bands=None, user_id=None):
    """
    Recomputes totals, grades and ranks for a class and overwrites its Rank rows.
    Returns: list of Rank rows ordered by rank.
    """
    exam = get_exam(exam_id, for_update=True)
    ensure_draft(exam)

    try:
        totals = compute_class_totals(exam_id, class_number)
        rank_rows = assign_ranks(totals.values(), pass_percentage=pass_percentage, grade_bands=grade_bands)

        existing = {}
        if totals:
            existing = {
                r.student_id_fk: r
                for r in db.session.execute(
                    select(Rank).filter(Rank.exam_id_fk == exam_id, Rank.student_id_fk.in_(list(totals)))
                ).scalars().all()
            }

        saved = []
        for row in rank_rows:
            rank = existing.get(row.student_id)
            if not rank:
                rank = Rank(student_id_fk=row.student_id, exam_id_fk=exam_id)
                db.session.add(rank)
            rank.total_marks = row.total_marks
            rank.percentage = row.percentage
            rank.grade = row.grade
            rank.rank = row.rank
            rank.is_passed = row.is_passed
            rank.has_conflict = row.has_conflict
            saved.append(rank)

        conflicts = sum(1 for r in rank_rows if r.has_conflict)
        log_activity(
            "ranks_computed",
            {"exam_id": exam_id, "class_number": class_number, "students": len(rank_rows), "conflicts": conflicts},
            user_id=user_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Ranks computed for exam %s class %s: %d students, %d conflicts",
                exam_id, class_number, len(saved), conflicts)
    return saved


def list_ranks(exam_id, class_number):
    rows = db.session.execute(
        select(Rank)
        .join(Student, Rank.student_id_fk == Student.student_id)
        .filter(Rank.exam_id_fk == exam_id, Student.class_number == class_number)
    ).scalars().all()
    # Unranked rows last
    return sorted(rows, key=lambda r: (r.rank is None, r.rank or 0, -r.total_marks))


def save_manual_ranks(exam_id, class_number, edits, user_id=None):
    """
    Applies admin-assigned ranks {student_id: rank} within a class.

    Every edited row has its conflict flag cleared. The save is refused when
    any rank is not a positive integer or when two students of the class
    would end up sharing a rank number.
    """
    exam = get_exam(exam_id, for_update=True)
    ensure_draft(exam)

    scope = {r.student_id_fk: r for r in list_ranks(exam_id, class_number)}
    if not scope:
        raise RankSaveError("Ranks have not been calculated for this class yet.", invariant="ranks_calculated")

    cleaned = {}
    for student_id, value in edits.items():
        if student_id not in scope:
            raise RankSaveError(f"Student {student_id} has no rank row in class {class_number}.",
                                invariant="rank_row_exists")
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise RankSaveError(f"Rank for student {student_id} must be a positive whole number.",
                                invariant="rank_positive_integer")
        cleaned[student_id] = value

    merged = {sid: r.rank for sid, r in scope.items()}
    merged.update(cleaned)
    duplicates = duplicate_rank_values(merged.values())
    if duplicates:
        raise RankSaveError(
            "Duplicate ranks detected. Each student must have a unique rank.",
            invariant="ranks_unique",
            details={"duplicate_ranks": duplicates},
        )

    try:
        for student_id, value in cleaned.items():
            row = scope[student_id]
            row.rank = value
            # Manually resolved
            row.has_conflict = False
        log_activity(
            "ranks_edited",
            {"exam_id": exam_id, "class_number": class_number, "edited": len(cleaned)},
            user_id=user_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return len(cleaned)


def save_marks(exam_id, subject_id, rows, user_id=None):
    """
    Saves raw mark entries for one subject of an exam.

    Each cell is validated on its own: a bad cell is reported and left
    unchanged while the other cells are still written. Locked rows are
    skipped. The whole call is refused while the exam is live.
    Returns: dict with inserted/updated counts, skipped locked students and cell errors.
    """
    exam = get_exam(exam_id, for_update=True)
    ensure_draft(exam)

    subject = db.session.get(Subject, subject_id)
    if not subject:
        raise PreconditionError(f"Subject {subject_id} not found.", invariant="subject_exists")

    roster = set(class_roster(subject.class_number))
    existing = {
        m.student_id_fk: m
        for m in db.session.execute(
            select(Mark).filter_by(exam_id_fk=exam_id, subject_id_fk=subject_id)
        ).scalars().all()
    }

    inserts = 0
    updates = 0
    locked = []
    errors = []

    try:
        for entry in rows:
            if not isinstance(entry, dict):
                errors.append({
                    "student_id": None,
                    "field": None,
                    "reason": "invalid_row",
                    "message": "Each row must be an object with student_id and marks fields.",
                })
                continue
            student_id = entry.get("student_id")
            if student_id not in roster:
                errors.append({
                    "student_id": student_id,
                    "field": None,
                    "reason": "unknown_student",
                    "message": f"Student {student_id} is not in class {subject.class_number}.",
                })
                continue

            mark = existing.get(student_id)
            if mark and mark.is_locked:
                locked.append(student_id)
                continue

            accepted = {}
            for slot in SLOTS:
                field = f"marks_{slot}"
                if field not in entry:
                    continue
                try:
                    accepted[field] = parse_mark(entry.get(field), subject.full_marks_for(slot))
                except MarkValidationError as e:
                    errors.append({
                        "student_id": student_id,
                        "field": field,
                        "reason": e.reason,
                        "message": e.message,
                    })

            if not mark:
                # Only create if there is some data to save
                if not any(v.has_marks for v in accepted.values()):
                    continue
                mark = Mark(student_id_fk=student_id, subject_id_fk=subject_id, exam_id_fk=exam_id)
                db.session.add(mark)
                existing[student_id] = mark
                inserts += 1
            else:
                updates += 1

            for field, value in accepted.items():
                setattr(mark, field, value.to_storage())

        log_activity(
            "marks_saved",
            {"exam_id": exam_id, "subject_id": subject_id, "inserted": inserts, "updated": updates,
             "errors": len(errors)},
            user_id=user_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    return {"inserted": inserts, "updated": updates, "locked": locked, "errors": errors}


def set_marks_locked(exam_id, subject_id, locked, user_id=None):
    """Locks or unlocks every mark row of a subject for an exam. Returns the row count."""
    exam = get_exam(exam_id, for_update=True)
    ensure_draft(exam)

    marks = db.session.execute(
        select(Mark).filter_by(exam_id_fk=exam_id, subject_id_fk=subject_id)
    ).scalars().all()
    try:
        for m in marks:
            m.is_locked = bool(locked)
        log_activity(
            "marks_locked" if locked else "marks_unlocked",
            {"exam_id": exam_id, "subject_id": subject_id, "rows": len(marks)},
            user_id=user_id,
        )
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return len(marks)


# (label, inclusive lower bound), best first
SCORE_RANGES = (
    ("90-100%", 90.0),
    ("70-89%", 70.0),
    ("45-69%", 45.0),
    ("25-44%", 25.0),
    ("0-24%", 0.0),
)


def _share(count, total):
    return round(count / total * 100, 1) if total else 0.0


def _mean(values):
    return round(math.fsum(values) / len(values), 1) if values else 0.0


def result_analytics(exam_id, class_number=None):
    """
    Summary of the stored Rank rows of an exam, optionally for one class.
    Read-only; works on Draft and Live exams alike.

    Returns: dict with students, passed, failed, pass_rate, average_percentage,
    grade_distribution, class_averages and score_ranges.
    """
    get_exam(exam_id)

    q = (
        select(Rank.grade, Rank.percentage, Rank.is_passed, Student.class_number)
        .join(Student, Rank.student_id_fk == Student.student_id)
        .filter(Rank.exam_id_fk == exam_id)
    )
    if class_number is not None:
        q = q.filter(Student.class_number == class_number)
    rows = db.session.execute(q).all()

    count = len(rows)
    passed = sum(1 for r in rows if r.is_passed)

    grades = Counter(r.grade for r in rows)
    # Configured band names outside the default scale go last
    ordered = sorted(grades, key=lambda g: (GRADE_ORDER.index(g) if g in GRADE_ORDER else len(GRADE_ORDER), g))
    grade_distribution = [
        {"grade": g, "count": grades[g], "percentage": _share(grades[g], count)} for g in ordered
    ]

    by_class = defaultdict(list)
    for r in rows:
        by_class[r.class_number].append(r.percentage)
    class_averages = [
        {"class_number": cn, "students": len(pcts), "average": _mean(pcts)}
        for cn, pcts in sorted(by_class.items())
    ]

    range_counts = Counter()
    for r in rows:
        for label, lower in SCORE_RANGES:
            if r.percentage >= lower:
                range_counts[label] += 1
                break
    score_ranges = [{"range": label, "count": range_counts[label]} for label, _ in SCORE_RANGES]

    return {
        "exam_id": exam_id,
        "class_number": class_number,
        "students": count,
        "passed": passed,
        "failed": count - passed,
        "pass_rate": _share(passed, count),
        "average_percentage": _mean([r.percentage for r in rows]),
        "grade_distribution": grade_distribution,
        "class_averages": class_averages,
        "score_ranges": score_ranges,
    }
