"""
Fee-payment access gate for published results.

Parents and students only see a published result when the student has paid
at least ``ResultSettings.access_threshold`` of the fees required for that
session/term. No configured fee structure means no restriction.
"""
import logging
from collections import namedtuple
from decimal import Decimal, ROUND_HALF_UP

from finance.models import FeeStructure, Payment

logger = logging.getLogger(__name__)


FeeProgress = namedtuple('FeeProgress', ['paid', 'required', 'ratio', 'percentage'])


def fee_progress(student, academic_year, term, class_assigned=None):
    """
    Approved payments against required fees for a student.

    Required fees are looked up for ``class_assigned``, the class the
    results were recorded under, falling back to the student's current class.

    Returns:
        FeeProgress: ratio is None when no fees are required
    """
    if class_assigned is None:
        class_assigned = student.current_class
    paid = Payment.approved_total(student, academic_year, term)
    required = FeeStructure.required_total(class_assigned, academic_year, term)

    if not required:
        return FeeProgress(paid, Decimal('0.00'), None, 100)

    ratio = paid / required
    percentage = int((ratio * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))
    return FeeProgress(paid, required, ratio, percentage)


def can_view_results(student, academic_year, term, threshold=None, class_assigned=None):
    """True when the student's fee payments unlock results for the term."""
    if threshold is None:
        from .models import ResultSettings
        threshold = ResultSettings.load().access_threshold

    progress = fee_progress(student, academic_year, term, class_assigned)
    if progress.ratio is None:
        return True

    allowed = progress.ratio >= Decimal(str(threshold))
    if not allowed:
        logger.debug(
            f"Results locked for {student}: paid {progress.paid} of {progress.required} "
            f"({progress.percentage}%), threshold {threshold}"
        )
    return allowed


def is_result_visible(result, threshold=None):
    """Both gates: the result is published and the student's fees unlock it."""
    from .models import Result

    if result.status != Result.Status.PUBLISHED:
        return False
    return can_view_results(
        result.student, result.academic_year, result.term, threshold, result.class_assigned
    )
