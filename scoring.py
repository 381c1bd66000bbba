"""
Score normalization and grading for midterm and terminal marks.

Raw sub-scores arrive as whatever the marks-entry screen sends: numbers,
numeric strings, blanks or garbage. Everything here is garbage-in,
clamped-out: the functions never raise and always produce a storable row.
"""
import math
from dataclasses import dataclass
from typing import Any, Optional

from models import MarkType

# (ca1 max, ca2 max, exam max) per exam type
SCORE_LIMITS = {
    MarkType.MIDTERM: (10.0, 10.0, 20.0),
    MarkType.TERMINAL: (20.0, 20.0, 60.0),
}

GRADE_BOUNDARIES = [
    (80, "A"),
    (70, "B"),
    (60, "C"),
    (50, "D"),
    (40, "E"),
]

PASS_MARK = 50


@dataclass(frozen=True)
class NormalizedScore:
    ca1: float
    ca2: float
    exam: float
    total: float
    percentage: int
    grade: str


def to_number(value: Any) -> float:
    """Parse a raw sub-score; anything that is not a finite number becomes 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        try:
            number = float(str(value).strip())
        except ValueError:
            return 0.0
    return number if math.isfinite(number) else 0.0


def clamp(value: float, upper: float, lower: float = 0.0) -> float:
    return max(lower, min(upper, value))


def classify_grade(percentage: float) -> str:
    for boundary, grade in GRADE_BOUNDARIES:
        if percentage >= boundary:
            return grade
    return "F"


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def max_total(mark_type: MarkType) -> float:
    return sum(SCORE_LIMITS[MarkType(mark_type)])


def normalize_scores(ca1: Any, ca2: Any, exam: Any, mark_type: MarkType) -> NormalizedScore:
    mark_type = MarkType(mark_type)
    ca1_max, ca2_max, exam_max = SCORE_LIMITS[mark_type]

    ca1_value = clamp(to_number(ca1), ca1_max)
    ca2_value = clamp(to_number(ca2), ca2_max)
    exam_value = clamp(to_number(exam), exam_max)
    total = ca1_value + ca2_value + exam_value

    percentage = total / max_total(mark_type) * 100

    # Grade is taken from the unrounded percentage
    return NormalizedScore(
        ca1=ca1_value,
        ca2=ca2_value,
        exam=exam_value,
        total=total,
        percentage=round_half_up(percentage),
        grade=classify_grade(percentage),
    )


def should_carry_forward(ca1: Any, ca2: Any, requested: Optional[bool] = None) -> bool:
    """Decide whether terminal CA scores come from the midterm row.

    An explicit request wins. Without one, both CA fields still at zero
    means nothing was entered by hand.
    """
    if requested is not None:
        return requested
    return to_number(ca1) == 0 and to_number(ca2) == 0


def apply_carry_forward(ca1: Any, ca2: Any, midterm, requested: Optional[bool] = None):
    """Return the (ca1, ca2) pair to normalize for a terminal entry.

    midterm is the student's midterm row for the same subject, class, year
    and term, or None. Terminal CA1 becomes midterm CA1 + CA2 and terminal
    CA2 becomes the midterm exam score; clamping happens afterwards.
    """
    if midterm is None or not should_carry_forward(ca1, ca2, requested):
        return ca1, ca2
    carried_ca1 = to_number(midterm.ca1_score) + to_number(midterm.ca2_score)
    carried_ca2 = to_number(midterm.exam_score)
    return carried_ca1, carried_ca2
