"""
Seat ledger.

``Course.seats_available`` is a cache. Its authoritative value is derived from
the requests and enrollments that hold seats in the course::

    capacity_max
      - open requests targeting the course
      - open requests whose promotion bundles the course (and target another course)
      - active enrollments in the course

Every operation that changes one of those sets calls ``reconcile_seats`` for the
affected courses inside its own transaction.
"""
import logging

from django.db import transaction
from django.db.models import F

from courses.models import Course
from .exceptions import NotFoundError
from .models import Enrollment, EnrollmentRequest

logger = logging.getLogger(__name__)


def count_reservations(course_id):
    """Return the three deduction terms for a course."""
    open_statuses = EnrollmentRequest.OPEN_STATUSES
    primary = EnrollmentRequest.objects.filter(
        course_id=course_id,
        status__in=open_statuses,
    ).count()
    promotional = EnrollmentRequest.objects.filter(
        promotion__promotional_course_id=course_id,
        status__in=open_statuses,
    ).exclude(course_id=course_id).count()
    enrolled = Enrollment.objects.filter(
        course_id=course_id,
        status=Enrollment.Status.ACTIVE,
    ).count()
    return {
        'primary': primary,
        'promotional': promotional,
        'enrolled': enrolled,
    }


@transaction.atomic
def reconcile_seats(course_id):
    """
    Recompute and store the available seats of a course.

    Returns the new value. Raises NotFoundError for an unknown course.
    """
    capacity = Course.objects.filter(pk=course_id).values_list('capacity_max', flat=True).first()
    if capacity is None:
        raise NotFoundError(f"Course {course_id} not found.")

    counts = count_reservations(course_id)
    available = max(capacity - sum(counts.values()), 0)
    Course.objects.filter(pk=course_id).update(seats_available=available)

    logger.debug(f"Reconciled course {course_id}: {available}/{capacity} available {counts}")
    return available


def take_seat(course_id):
    """
    Conditionally decrement the available seats of a course.

    The affected-row count is the concurrency witness: False means another
    transaction took the last seat first.
    """
    updated = Course.objects.filter(pk=course_id, seats_available__gt=0).update(
        seats_available=F('seats_available') - 1
    )
    return updated == 1
