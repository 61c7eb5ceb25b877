import json
from flask import request, current_app
from flask_login import login_required, current_user
from sqlalchemy import select
from . import results_bp
from .. import db, csrf_required
from ..api_utils import api_success, api_error
from ..decorators import role_required
from ..models import ActivityLog
from .deployment import DeploymentState, deploy_exam, evaluate_gate, rollback_exam
from .errors import DeploymentBlocked, PreconditionError
from .services import (
    compute_ranks,
    get_exam,
    list_ranks,
    result_analytics,
    save_manual_ranks,
    save_marks,
    set_marks_locked,
)


def _precondition_error(e):
    db.session.rollback()
    details = {"invariant": e.invariant}
    if e.details:
        details.update(e.details)
    return api_error(e.code, e.message, e.status, details=details)


def _int_param(raw):
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _exam_dict(exam):
    return {
        "exam_id": exam.exam_id,
        "name": exam.name,
        "academic_year": exam.academic_year,
        "state": DeploymentState.of(exam).value,
        "is_deployed": exam.is_deployed,
        "deployed_at": exam.deployed_at.isoformat() if exam.deployed_at else None,
    }


def _rank_dict(r):
    d = r.to_dict()
    if r.student is not None:
        d["student_code"] = r.student.student_code
        d["student_name"] = r.student.student_name
        d["roll_number"] = r.student.roll_number
    return d


# --- MARK ENTRY ---

@results_bp.route("/exams/<int:exam_id>/marks", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def save_marks_view(exam_id):
    payload = request.get_json(silent=True) or {}
    subject_id = _int_param(payload.get("subject_id"))
    rows = payload.get("rows")
    if not subject_id or not isinstance(rows, list):
        return api_error("invalid_request", "subject_id and rows are required.", 400)

    try:
        result = save_marks(exam_id, subject_id, rows, user_id=current_user.user_id)
    except PreconditionError as e:
        return _precondition_error(e)
    except Exception as e:
        db.session.rollback()
        current_app.logger.exception("Failed to save marks for exam %s subject %s", exam_id, subject_id)
        return api_error("save_failed", f"Error saving marks: {e}", 500)

    return api_success(result, meta={"message": f"Marks saved. ({result['inserted']} added, {result['updated']} updated)"})


@results_bp.route("/exams/<int:exam_id>/marks/lock", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def toggle_marks_lock(exam_id):
    payload = request.get_json(silent=True) or {}
    subject_id = _int_param(payload.get("subject_id"))
    if not subject_id or "locked" not in payload:
        return api_error("invalid_request", "subject_id and locked are required.", 400)
    locked = bool(payload.get("locked"))

    try:
        count = set_marks_locked(exam_id, subject_id, locked, user_id=current_user.user_id)
    except PreconditionError as e:
        return _precondition_error(e)

    return api_success({"subject_id": subject_id, "locked": locked, "rows": count})


# --- RANKS ---

@results_bp.route("/exams/<int:exam_id>/ranks/compute", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def compute_ranks_view(exam_id):
    payload = request.get_json(silent=True) or {}
    class_number = _int_param(payload.get("class_number"))
    if class_number is None:
        return api_error("invalid_request", "class_number is required.", 400)

    try:
        rows = compute_ranks(
            exam_id,
            class_number,
            pass_percentage=current_app.config.get("PASS_PERCENTAGE", 25.0),
            grade_bands=current_app.config.get("GRADE_BANDS"),
            user_id=current_user.user_id,
        )
    except PreconditionError as e:
        return _precondition_error(e)

    conflicts = sum(1 for r in rows if r.has_conflict)
    return api_success(
        [_rank_dict(r) for r in rows],
        meta={"count": len(rows), "conflicts": conflicts},
    )


@results_bp.route("/exams/<int:exam_id>/ranks", methods=["GET"])
@login_required
@role_required("admin")
def ranks_view(exam_id):
    class_number = _int_param(request.args.get("class_number"))
    if class_number is None:
        return api_error("invalid_request", "class_number is required.", 400)
    try:
        get_exam(exam_id)
    except PreconditionError as e:
        return _precondition_error(e)

    rows = list_ranks(exam_id, class_number)
    return api_success(
        [_rank_dict(r) for r in rows],
        meta={"count": len(rows), "has_conflicts": any(r.has_conflict for r in rows)},
    )


@results_bp.route("/exams/<int:exam_id>/ranks", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def save_ranks_view(exam_id):
    payload = request.get_json(silent=True) or {}
    class_number = _int_param(payload.get("class_number"))
    ranks = payload.get("ranks")
    if class_number is None or not isinstance(ranks, dict):
        return api_error("invalid_request", "class_number and ranks are required.", 400)

    edits = {}
    for student_id, value in ranks.items():
        sid = _int_param(student_id)
        if sid is None:
            return api_error("invalid_request", f"Invalid student id '{student_id}'.", 400)
        edits[sid] = value

    try:
        saved = save_manual_ranks(exam_id, class_number, edits, user_id=current_user.user_id)
    except PreconditionError as e:
        return _precondition_error(e)

    rows = list_ranks(exam_id, class_number)
    return api_success([_rank_dict(r) for r in rows], meta={"saved": saved})


# --- ANALYTICS ---

@results_bp.route("/exams/<int:exam_id>/analytics", methods=["GET"])
@login_required
@role_required("admin")
def analytics_view(exam_id):
    class_number = None
    raw = (request.args.get("class_number") or "").strip()
    if raw and raw.lower() != "all":
        class_number = _int_param(raw)
        if class_number is None:
            return api_error("invalid_request", f"Invalid class_number '{raw}'.", 400)

    try:
        data = result_analytics(exam_id, class_number)
    except PreconditionError as e:
        return _precondition_error(e)
    return api_success(data)


# --- DEPLOYMENT ---

@results_bp.route("/exams/<int:exam_id>/deployment", methods=["GET"])
@login_required
@role_required("admin")
def deployment_status(exam_id):
    try:
        exam = get_exam(exam_id)
    except PreconditionError as e:
        return _precondition_error(e)
    return api_success(_exam_dict(exam))


@results_bp.route("/exams/<int:exam_id>/deployment/checks", methods=["GET"])
@login_required
@role_required("admin")
def deployment_checks(exam_id):
    try:
        get_exam(exam_id)
    except PreconditionError as e:
        return _precondition_error(e)
    return api_success(evaluate_gate(exam_id).to_dict())


@results_bp.route("/exams/<int:exam_id>/deploy", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def deploy(exam_id):
    try:
        exam, report = deploy_exam(exam_id, user_id=current_user.user_id)
    except DeploymentBlocked as e:
        current_app.logger.info("Deployment of exam %s blocked: %s", exam_id, e.message)
        return _precondition_error(e)
    except PreconditionError as e:
        return _precondition_error(e)

    current_app.logger.info("Exam %s deployed by user %s", exam_id, current_user.user_id)
    return api_success(_exam_dict(exam), meta={"checks": report.to_dict()["checks"],
                                                "message": "Results are now visible to students"})


@results_bp.route("/exams/<int:exam_id>/rollback", methods=["POST"])
@login_required
@role_required("admin")
@csrf_required
def rollback(exam_id):
    try:
        exam = rollback_exam(exam_id, user_id=current_user.user_id)
    except PreconditionError as e:
        return _precondition_error(e)

    current_app.logger.info("Exam %s rolled back by user %s", exam_id, current_user.user_id)
    return api_success(_exam_dict(exam), meta={"message": "Results are now hidden from students"})


# --- ACTIVITY LOG ---

@results_bp.route("/activity", methods=["GET"])
@login_required
@role_required("admin")
def activity_log():
    limit = _int_param(request.args.get("limit")) or 50
    limit = max(1, min(limit, 200))
    action = (request.args.get("action") or "").strip()

    q = select(ActivityLog).order_by(ActivityLog.created_at.desc(), ActivityLog.log_id.desc())
    if action:
        q = q.filter(ActivityLog.action.ilike(f"%{action}%"))
    logs = db.session.execute(q.limit(limit)).scalars().all()

    data = []
    for log in logs:
        try:
            details = json.loads(log.details) if log.details else {}
        except ValueError:
            details = {"raw": log.details}
        data.append({
            "action": log.action,
            "details": details,
            "user_id": log.user_id_fk,
            "created_at": log.created_at.isoformat() if log.created_at else None,
        })
    return api_success(data, meta={"count": len(data)})
