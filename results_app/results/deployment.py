"""
Deployment gate and the Draft/Live lifecycle of an exam's results.

Exam.is_deployed is the flag the public lookup reads; nothing but
DeploymentStateMachine flips it to True.
"""
import enum
import logging
from dataclasses import dataclass
from flask import current_app
from sqlalchemy import func, select
from .. import cache, db
from ..models import Exam, Mark, Rank, Student, Subject, utc_now
from .errors import DeploymentBlocked, InvalidTransition
from .services import get_exam, log_activity

logger = logging.getLogger(__name__)

LIVE_EXAM_CACHE_KEY = "results:live_exam"


@dataclass(frozen=True)
class GateCheck:
    name: str
    passed: bool
    message: str

    def to_dict(self):
        return {"name": self.name, "passed": self.passed, "message": self.message}


@dataclass(frozen=True)
class GateReport:
    exam_id: int
    checks: tuple

    @property
    def can_deploy(self):
        return bool(self.checks) and all(c.passed for c in self.checks)

    def failed(self):
        return [c for c in self.checks if not c.passed]

    def to_dict(self):
        return {
            "exam_id": self.exam_id,
            "can_deploy": self.can_deploy,
            "checks": [c.to_dict() for c in self.checks],
        }


def _count(q):
    return db.session.execute(q).scalar() or 0


def evaluate_gate(exam_id):
    """
    Runs the pre-deployment checklist for an exam. Read-only.
    Returns: GateReport with the checks in a fixed order.
    """
    student_count = _count(select(func.count()).select_from(Student))
    subject_count = _count(select(func.count()).select_from(Subject))
    mark_count = _count(select(func.count()).select_from(Mark).filter(Mark.exam_id_fk == exam_id))
    unlocked_count = _count(
        select(func.count()).select_from(Mark).filter(Mark.exam_id_fk == exam_id, Mark.is_locked == False)  # noqa: E712
    )
    rank_count = _count(select(func.count()).select_from(Rank).filter(Rank.exam_id_fk == exam_id))
    conflict_count = _count(
        select(func.count()).select_from(Rank).filter(Rank.exam_id_fk == exam_id, Rank.has_conflict == True)  # noqa: E712
    )

    if unlocked_count:
        locked_message = f"{unlocked_count} entries still unlocked"
    elif mark_count:
        locked_message = "All marks are locked"
    else:
        locked_message = "No marks to lock"

    checks = (
        GateCheck(
            "Students Added",
            student_count > 0,
            f"{student_count} students found" if student_count else "No students found",
        ),
        GateCheck(
            "Subjects Configured",
            subject_count > 0,
            f"{subject_count} subjects found" if subject_count else "No subjects configured",
        ),
        GateCheck(
            "Marks Entered",
            mark_count > 0,
            f"{mark_count} mark entries found" if mark_count else "No marks entered",
        ),
        GateCheck("Marks Locked", mark_count > 0 and unlocked_count == 0, locked_message),
        GateCheck(
            "Ranks Calculated",
            rank_count > 0,
            f"{rank_count} ranks assigned" if rank_count else "Ranks not calculated",
        ),
        GateCheck(
            "No Rank Conflicts",
            conflict_count == 0,
            f"{conflict_count} unresolved conflicts" if conflict_count else "All conflicts resolved",
        ),
    )
    return GateReport(exam_id=exam_id, checks=checks)


class DeploymentState(enum.Enum):
    DRAFT = "draft"
    LIVE = "live"

    @classmethod
    def of(cls, exam):
        return cls.LIVE if exam.is_deployed else cls.DRAFT


# (event, from_state) -> to_state
TRANSITIONS = {
    ("deploy", DeploymentState.DRAFT): DeploymentState.LIVE,
    ("rollback", DeploymentState.LIVE): DeploymentState.DRAFT,
}


class DeploymentStateMachine:
    """Wraps one Exam row and moves it between Draft and Live."""

    def __init__(self, exam, gate=evaluate_gate):
        self.exam = exam
        self.gate = gate

    @property
    def state(self):
        return DeploymentState.of(self.exam)

    def _target(self, event):
        target = TRANSITIONS.get((event, self.state))
        if target is None:
            raise InvalidTransition(
                f"Cannot {event} exam '{self.exam.name}' while it is {self.state.value}.",
                invariant=f"{event}_from_{self.state.value}",
            )
        return target

    def deploy(self, now=None):
        """
        Draft -> Live. The gate is always evaluated here; an earlier
        passing report is never trusted.
        Returns: the GateReport that allowed the transition.
        """
        self._target("deploy")
        report = self.gate(self.exam.exam_id)
        if not report.can_deploy:
            raise DeploymentBlocked(report)
        self.exam.is_deployed = True
        self.exam.deployed_at = now or utc_now()
        return report

    def rollback(self):
        """Live -> Draft. No checks; marks, ranks and students are left untouched."""
        self._target("rollback")
        self.exam.is_deployed = False
        self.exam.deployed_at = None


def deploy_exam(exam_id, user_id=None):
    """Locks the exam row, re-runs the gate and publishes in one transaction."""
    try:
        exam = get_exam(exam_id, for_update=True)
        report = DeploymentStateMachine(exam).deploy()
        log_activity("exam_deployed", {"exam_id": exam_id, "name": exam.name}, user_id=user_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    cache.delete(LIVE_EXAM_CACHE_KEY)
    logger.info("Exam %s deployed at %s", exam_id, exam.deployed_at)
    return exam, report


def rollback_exam(exam_id, user_id=None):
    try:
        exam = get_exam(exam_id, for_update=True)
        DeploymentStateMachine(exam).rollback()
        log_activity("exam_rolled_back", {"exam_id": exam_id, "name": exam.name}, user_id=user_id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    cache.delete(LIVE_EXAM_CACHE_KEY)
    logger.info("Exam %s rolled back to draft", exam_id)
    return exam


def get_live_exam():
    """Most recently deployed exam, or None."""
    return db.session.execute(
        select(Exam)
        .filter(Exam.is_deployed == True)  # noqa: E712
        .order_by(Exam.deployed_at.desc())
        .limit(1)
    ).scalars().first()


def exam_summary(exam):
    return {
        "exam_id": exam.exam_id,
        "name": exam.name,
        "academic_year": exam.academic_year,
        "deployed_at": exam.deployed_at.isoformat() if exam.deployed_at else None,
    }


def get_live_exam_summary():
    """
    Cached {exam_id, name, academic_year, deployed_at} of the live exam (None when nothing is live).

    With SimpleCache the entry is per process and only the process that
    deploys or rolls back clears it, so this feeds the status banner only. Anything that serves a
    result reads Exam.is_deployed through get_live_exam() instead.
    """
    summary = cache.get(LIVE_EXAM_CACHE_KEY)
    if summary is not None:
        return summary or None
    exam = get_live_exam()
    summary = exam_summary(exam) if exam else {}
    # Empty dict marks "nothing live" so the miss is cached too
    cache.set(LIVE_EXAM_CACHE_KEY, summary, timeout=current_app.config.get("DEPLOYMENT_CACHE_TIMEOUT", 60))
    return summary or None
