from collections import Counter
from dataclasses import dataclass, asdict

from .grading import DEFAULT_PASS_PERCENTAGE, classify_grade, is_passed


@dataclass(frozen=True)
class RankRow:
    student_id: int
    total_marks: float
    percentage: float
    grade: str
    rank: int
    is_passed: bool
    has_conflict: bool

    def to_dict(self):
        return asdict(self)


def find_conflicting_totals(totals):
    """Totals shared by two or more students."""
    counts = Counter(t.total_marks for t in totals)
    return {total for total, n in counts.items() if n > 1}


def assign_ranks(totals, pass_percentage=DEFAULT_PASS_PERCENTAGE, grade_bands=None):
    """
    Orders StudentTotals by total marks (descending) and numbers them 1..n.

    Exact ties keep the order they arrived in; which of the tied students
    gets the better rank is left to a manual override, and every tied row
    is flagged has_conflict.
    """
    totals = list(totals)
    conflicting = find_conflicting_totals(totals)
    ordered = sorted(totals, key=lambda t: t.total_marks, reverse=True)

    rows = []
    for position, t in enumerate(ordered, start=1):
        pct = t.percentage
        rows.append(
            RankRow(
                student_id=t.student_id,
                total_marks=t.total_marks,
                percentage=round(pct, 2),
                grade=classify_grade(pct, grade_bands),
                rank=position,
                is_passed=is_passed(pct, pass_percentage),
                has_conflict=t.total_marks in conflicting,
            )
        )
    return rows


def duplicate_rank_values(ranks):
    """Rank numbers used more than once (None ignored)."""
    counts = Counter(r for r in ranks if r is not None)
    return sorted(r for r, n in counts.items() if n > 1)
