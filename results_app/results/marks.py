"""
Mark cell parsing.

A raw entry is turned into a MarkValue as soon as it is read, so the rest
of the pipeline never looks at "AB"/"EX" strings again.
"""
import enum
import math
from dataclasses import dataclass

SLOTS = (1, 2, 3)

ABSENT_CODE = "AB"
EXEMPT_CODE = "EX"


class MarkKind(enum.Enum):
    UNSET = "unset"
    ABSENT = "absent"
    EXEMPT = "exempt"
    NUMERIC = "numeric"


@dataclass(frozen=True)
class MarkValue:
    kind: MarkKind
    value: float = 0.0

    @property
    def contribution(self):
        """Points this cell adds to a total. Sentinels and unset cells add 0."""
        if self.kind is MarkKind.NUMERIC:
            return self.value
        return 0.0

    @property
    def has_marks(self):
        return self.kind is not MarkKind.UNSET

    @property
    def is_sentinel(self):
        return self.kind in (MarkKind.ABSENT, MarkKind.EXEMPT)

    def display(self):
        if self.kind is MarkKind.ABSENT:
            return ABSENT_CODE
        if self.kind is MarkKind.EXEMPT:
            return EXEMPT_CODE
        if self.kind is MarkKind.UNSET:
            return ""
        if self.value == int(self.value):
            return str(int(self.value))
        return str(self.value)

    def to_storage(self):
        """Value written back to a marks_N column (None for unset)."""
        return self.display() or None


UNSET = MarkValue(MarkKind.UNSET)
ABSENT = MarkValue(MarkKind.ABSENT)
EXEMPT = MarkValue(MarkKind.EXEMPT)


class MarkValidationError(ValueError):
    NOT_A_NUMBER = "not_a_number"
    NEGATIVE = "negative"
    EXCEEDS_FULL_MARKS = "exceeds_full_marks"

    def __init__(self, reason, message, full_marks=None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.full_marks = full_marks


def parse_mark(raw, full_marks):
    """
    Parses one raw cell against its full-mark ceiling.
    Raises MarkValidationError naming the failed condition.
    """
    text = "" if raw is None else str(raw).strip()
    if not text:
        return UNSET

    upper = text.upper()
    if upper == ABSENT_CODE:
        return ABSENT
    if upper == EXEMPT_CODE:
        return EXEMPT

    try:
        value = float(text)
    except ValueError:
        raise MarkValidationError(
            MarkValidationError.NOT_A_NUMBER,
            f"'{text}' is not a number. Enter marks, AB or EX.",
        )
    if not math.isfinite(value):
        raise MarkValidationError(
            MarkValidationError.NOT_A_NUMBER,
            f"'{text}' is not a number. Enter marks, AB or EX.",
        )
    if value < 0:
        raise MarkValidationError(MarkValidationError.NEGATIVE, "Marks cannot be negative.")
    if value > full_marks:
        raise MarkValidationError(
            MarkValidationError.EXCEEDS_FULL_MARKS,
            f"Marks cannot exceed full marks ({full_marks:g}).",
            full_marks=full_marks,
        )
    return MarkValue(MarkKind.NUMERIC, value)


def validate_mark(raw, full_marks):
    """
    Non-raising variant of parse_mark.
    Returns: (MarkValue, None) when accepted, (None, MarkValidationError) when rejected.
    """
    try:
        return parse_mark(raw, full_marks), None
    except MarkValidationError as e:
        return None, e


def normalize(mark):
    return mark.contribution
