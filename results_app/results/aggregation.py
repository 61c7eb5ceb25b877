import logging
import math
from dataclasses import dataclass, field

from .grading import percentage_of
from .marks import SLOTS, MarkValidationError, parse_mark

logger = logging.getLogger(__name__)


@dataclass
class StudentTotal:
    student_id: int
    total_marks: float = 0.0
    full_marks: float = 0.0
    # Cells that were entered (numeric or sentinel)
    entered_cells: int = 0

    @property
    def percentage(self):
        return percentage_of(self.total_marks, self.full_marks)


@dataclass
class _Accumulator:
    scores: list = field(default_factory=list)
    ceilings: list = field(default_factory=list)
    entered_cells: int = 0


def aggregate_totals(marks, subjects, class_number, student_ids=None):
    """
    Sums normalized marks and full marks per student for one class + exam.

    marks: rows exposing student_id_fk, subject_id_fk, marks_1..marks_3
    subjects: {subject_id: subject} exposing class_number, full_marks_1..3
    student_ids: the class roster. When given, every listed student gets a
        record (0/0 when nothing applies) and rows for anyone else are ignored.

    Returns: {student_id: StudentTotal}
    """
    acc = {}
    if student_ids is not None:
        for sid in student_ids:
            acc[sid] = _Accumulator()

    for m in marks:
        subject = subjects.get(m.subject_id_fk)
        # Stray rows from shared tables
        if subject is None or subject.class_number != class_number:
            logger.debug("Skipping mark row for subject %s outside class %s", m.subject_id_fk, class_number)
            continue
        if student_ids is not None and m.student_id_fk not in acc:
            logger.debug("Skipping mark row for student %s outside class %s", m.student_id_fk, class_number)
            continue

        bucket = acc.setdefault(m.student_id_fk, _Accumulator())
        for slot in SLOTS:
            ceiling = float(getattr(subject, f"full_marks_{slot}") or 0)
            raw = getattr(m, f"marks_{slot}")
            try:
                value = parse_mark(raw, ceiling)
            except MarkValidationError as e:
                logger.warning(
                    "Ignoring stored mark %r (student %s, subject %s, slot %s): %s",
                    raw, m.student_id_fk, m.subject_id_fk, slot, e.message,
                )
                value = None
            if value is not None:
                bucket.scores.append(value.contribution)
                if value.has_marks:
                    bucket.entered_cells += 1
            bucket.ceilings.append(ceiling)

    # fsum is exactly rounded, so row order cannot change a total
    return {
        sid: StudentTotal(
            student_id=sid,
            total_marks=math.fsum(a.scores),
            full_marks=math.fsum(a.ceilings),
            entered_cells=a.entered_cells,
        )
        for sid, a in acc.items()
    }
