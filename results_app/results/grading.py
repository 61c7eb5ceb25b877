"""Letter grades and the pass rule."""

# Inclusive lower bounds, evaluated top-down
DEFAULT_GRADE_BANDS = (
    (90.0, "A+"),
    (80.0, "A"),
    (70.0, "B+"),
    (60.0, "B"),
    (45.0, "C+"),
    (25.0, "C"),
)
FALLBACK_GRADE = "D"

# Minimum C grade
DEFAULT_PASS_PERCENTAGE = 25.0

# Best first
GRADE_ORDER = tuple(g for _, g in DEFAULT_GRADE_BANDS) + (FALLBACK_GRADE,)


def classify_grade(percentage, bands=None):
    for lower, grade in (bands or DEFAULT_GRADE_BANDS):
        if percentage >= lower:
            return grade
    return FALLBACK_GRADE


def is_passed(percentage, pass_percentage=DEFAULT_PASS_PERCENTAGE):
    return percentage >= pass_percentage


def percentage_of(total, full_marks):
    if full_marks <= 0:
        return 0.0
    return (total / full_marks) * 100
