"""
Grading and ranking helpers for the gradebook app.

Both are pure: grade() maps component scores to total/percentage/grade and
rank() assigns positions inside one (class, subject, session, term) group.
Persistence is handled by the callers in services.py and compilation.py.
"""
import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from django.core.exceptions import ValidationError

from . import config

logger = logging.getLogger(__name__)


DIRECT = 'direct'
WEIGHTED = 'weighted'

# Component caps per entry convention
SCORE_MAXIMUMS = {
    DIRECT: {'test1': Decimal('20'), 'test2': Decimal('20'), 'exam': Decimal('60')},
    WEIGHTED: {'test1': Decimal('100'), 'test2': Decimal('100'), 'exam': Decimal('100')},
}

COMPONENT_WEIGHTS = {
    'test1': Decimal('0.2'),
    'test2': Decimal('0.2'),
    'exam': Decimal('0.6'),
}

# (minimum percentage, grade, remark), descending
GRADE_BANDS = [
    (80, 'A', 'Excellent'),
    (70, 'B', 'Very Good'),
    (60, 'C', 'Good'),
    (50, 'D', 'Credit'),
    (40, 'E', 'Pass'),
    (0, 'F', 'Fail'),
]

COMPONENTS = ('test1', 'test2', 'exam')


def get_convention(convention=None):
    """Return the active score entry convention, validating its name."""
    convention = convention or config.SCORE_ENTRY_CONVENTION
    if convention not in SCORE_MAXIMUMS:
        raise ValueError(f"Unknown score entry convention: {convention!r}")
    return convention


def _to_decimal(value):
    if value is None or value == '':
        return Decimal('0')
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value):
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(value).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def grade_for_percentage(percentage):
    """
    Look up the letter grade and remark for a percentage.

    Bands are closed at the bottom, so exactly 80 is an A and exactly 40 an E.
    """
    for minimum, letter, remark in GRADE_BANDS:
        if percentage >= minimum:
            return letter, remark
    return GRADE_BANDS[-1][1], GRADE_BANDS[-1][2]


def grade(test1, test2, exam, convention=None):
    """
    Compute total, percentage and grade from component scores.

    Args:
        test1, test2, exam: component scores (None counts as 0)
        convention: 'direct' (20/20/60 caps, summed) or 'weighted'
            (each out of 100, weighted 0.2/0.2/0.6); defaults to
            GRADEBOOK_SCORE_ENTRY_CONVENTION

    Returns:
        dict: {'total': Decimal, 'percentage': int, 'grade': str,
               'grade_remark': str}

    Components are clamped to the convention's range; range errors are
    reported by validate_scores() at entry time, not here.
    """
    convention = get_convention(convention)
    maximums = SCORE_MAXIMUMS[convention]
    raw = {'test1': test1, 'test2': test2, 'exam': exam}

    clamped = {}
    for name in COMPONENTS:
        value = _to_decimal(raw[name])
        clamped[name] = min(max(value, Decimal('0')), maximums[name])

    if convention == WEIGHTED:
        total = sum(clamped[name] * COMPONENT_WEIGHTS[name] for name in COMPONENTS)
    else:
        total = sum(clamped.values())

    total = Decimal(total).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    percentage = round_half_up(total)
    letter, remark = grade_for_percentage(percentage)

    return {
        'total': total,
        'percentage': percentage,
        'grade': letter,
        'grade_remark': remark,
    }


def validate_scores(test1, test2, exam, convention=None):
    """
    Validate raw score input at the entry boundary.

    Returns the scores as Decimals (None kept for blanks) or raises
    ValidationError keyed by component name.
    """
    convention = get_convention(convention)
    maximums = SCORE_MAXIMUMS[convention]
    raw = {'test1': test1, 'test2': test2, 'exam': exam}

    cleaned = {}
    errors = {}
    for name in COMPONENTS:
        value = raw[name]
        if value is None or value == '':
            cleaned[name] = None
            continue
        try:
            value = _to_decimal(value)
        except (InvalidOperation, TypeError, ValueError):
            errors[name] = f"{name} must be a number."
            continue
        if not value.is_finite():
            errors[name] = f"{name} must be a number."
        elif value < 0:
            errors[name] = f"{name} cannot be negative."
        elif value > maximums[name]:
            errors[name] = f"{name} cannot exceed {maximums[name]}."
        else:
            cleaned[name] = value

    if errors:
        raise ValidationError(errors)
    return cleaned


def _group_key_of(record):
    return (record.class_assigned_id, record.subject_id, record.academic_year_id, record.term_id)


def rank(records):
    """
    Assign sequential 1-based positions by descending percentage.

    All records must share (class, subject, session, term). Equal
    percentages are ordered by student id so ranking is reproducible;
    positions never repeat and have no gaps. Only ``position`` is changed.

    Returns the records in rank order.
    """
    records = list(records)
    if not records:
        return records

    keys = {_group_key_of(r) for r in records}
    if len(keys) > 1:
        raise ValueError("rank() expects records from a single class/subject/session/term group")

    ordered = sorted(records, key=lambda r: (-(r.percentage or 0), r.student_id))
    for position, record in enumerate(ordered, 1):
        record.position = position

    logger.debug(f"Ranked {len(ordered)} results for group {keys.pop()}")
    return ordered
