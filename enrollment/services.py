"""
Enrollment request lifecycle: intake, reviewer decisions and promotion swaps.

Each public function runs in a single transaction. Seats are taken with a
guarded decrement (see seats.take_seat) and every course whose reservations
changed is reconciled before commit. Any error rolls the whole operation back.
"""
import logging

from django.conf import settings
from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone
from django.utils.module_loading import import_string

from courses.models import Course, Promotion
from .exceptions import (
    ConflictError, InvalidTransitionError, NoSeatsError, NotFoundError, ValidationError,
)
from .models import Enrollment, EnrollmentRequest
from .seats import reconcile_seats, take_seat
from .tasks import broadcast_seat_change, notify_request_decision

logger = logging.getLogger(__name__)

PRIMARY = 'primary'
PROMOTIONAL = 'promotional'
RESERVE = 'reserve'
RELEASE = 'release'

DECISIONS = (
    EnrollmentRequest.Status.APPROVED,
    EnrollmentRequest.Status.REJECTED,
    EnrollmentRequest.Status.OBSERVATIONS,
)

APPLICANT_FIELDS = (
    'applicant_identification',
    'applicant_first_name',
    'applicant_last_name',
    'applicant_email',
    'applicant_phone',
    'preferred_schedule',
)


def seat_change_event(course_id, category, action, cause):
    return {
        'course_id': course_id,
        'category': category,
        'action': action,
        'cause': cause,
        'timestamp': timezone.now().isoformat(),
    }


def _emit_on_commit(events):
    for event in events:
        transaction.on_commit(lambda event=event: broadcast_seat_change.delay(event), robust=True)


def _get_eligible_promotion(promotion_id, target_course, held_course_ids=()):
    """
    Load a promotion and check that a request for target_course may attach it.

    A seat check is skipped for promotional courses in held_course_ids, where
    the request already holds its seat.
    """
    try:
        promotion = Promotion.objects.select_related('promotional_course').get(pk=promotion_id)
    except Promotion.DoesNotExist:
        raise NotFoundError(f"Promotion {promotion_id} not found.")

    if not promotion.active:
        raise ValidationError(f"Promotion '{promotion.name}' is not active.")
    if promotion.primary_course_id is not None and promotion.primary_course_id != target_course.pk:
        raise ValidationError(f"Promotion '{promotion.name}' is not offered with {target_course.code}.")
    if promotion.quota_exhausted:
        raise ValidationError(f"Promotion '{promotion.name}' has no quota left.")

    promotional_course = promotion.promotional_course
    if not promotional_course.is_open:
        raise ValidationError(f"Promotional course {promotional_course.code} is not open for enrollment.")
    if promotional_course.pk not in held_course_ids and promotional_course.seats_available <= 0:
        raise NoSeatsError(f"No seats available in promotional course {promotional_course.code}.")

    return promotion


def create_request(student, course_id, promotion_id=None, **details):
    """
    Create a pending enrollment request holding one seat, or two with a promotion.

    Args:
        student: The applicant user.
        course_id (int): Target course.
        promotion_id (int, optional): Promotion to bundle with the request.
        **details: Applicant and payment fields stored on the request.

    Returns:
        EnrollmentRequest: The new request. ``request.course.seats_available``
        holds the reconciled availability of the target course.

    Raises:
        NotFoundError, ValidationError, NoSeatsError, ConflictError
    """
    with transaction.atomic():
        try:
            course = Course.objects.get(pk=course_id)
        except Course.DoesNotExist:
            raise NotFoundError(f"Course {course_id} not found.")

        if not course.is_open:
            raise NoSeatsError(f"Course {course.code} is not open for enrollment.")
        if course.seats_available <= 0:
            raise NoSeatsError(f"No seats available in {course.code}.")

        if not take_seat(course.pk):
            logger.warning(f"Lost seat race on course {course.code}")
            raise ConflictError(f"The last seat in {course.code} was just taken.")

        events = [seat_change_event(course.pk, PRIMARY, RESERVE, 'request_created')]

        promotion = None
        if promotion_id is not None:
            promotion = _get_eligible_promotion(promotion_id, course, held_course_ids=(course.pk,))

        enrollment_request = EnrollmentRequest.objects.create(
            student=student,
            course=course,
            promotion=promotion,
            **details,
        )

        if promotion is not None and promotion.promotional_course_id != course.pk:
            if not take_seat(promotion.promotional_course_id):
                logger.warning(f"Lost seat race on promotional course {promotion.promotional_course.code}")
                raise ConflictError(
                    f"The last seat in promotional course {promotion.promotional_course.code} was just taken."
                )
            events.append(seat_change_event(promotion.promotional_course_id, PROMOTIONAL, RESERVE, 'request_created'))

        course.seats_available = reconcile_seats(course.pk)
        if promotion is not None and promotion.promotional_course_id != course.pk:
            reconcile_seats(promotion.promotional_course_id)

        _emit_on_commit(events)

    logger.info(
        f"Created request {enrollment_request.code} for {course.code}"
        f"{f' with promotion {promotion.pk}' if promotion else ''}; {course.seats_available} seats left"
    )
    return enrollment_request


def _consume_promotion(enrollment_request, promotion, reviewed_by):
    """
    Use one unit of the promotion's quota and enroll the student in the promotional course.

    Returns the secondary (promotional) request, or None when the promotional
    course is the request's own course.
    """
    consumed = Promotion.objects.filter(pk=promotion.pk).filter(
        Q(quota_configured__isnull=True) | Q(quota_used__lt=F('quota_configured'))
    ).update(quota_used=F('quota_used') + 1)
    if not consumed:
        logger.warning(f"Promotion {promotion.pk} quota exhausted while approving {enrollment_request.code}")
        raise ConflictError(f"Promotion '{promotion.name}' has no quota left.")

    if promotion.promotional_course_id == enrollment_request.course_id:
        return None

    secondary = EnrollmentRequest.objects.create(
        student_id=enrollment_request.student_id,
        course_id=promotion.promotional_course_id,
        parent_request=enrollment_request,
        status=EnrollmentRequest.Status.APPROVED,
        enrollment_fee=0,
        payment_method=EnrollmentRequest.PaymentMethod.PROMOTION,
        notes=f"Promotion: {promotion.name}",
        reviewed_by=reviewed_by,
        reviewed_at=enrollment_request.reviewed_at,
        **{field: getattr(enrollment_request, field) for field in APPLICANT_FIELDS},
    )
    Enrollment.objects.create(
        student_id=enrollment_request.student_id,
        course_id=promotion.promotional_course_id,
        request=secondary,
    )
    return secondary


def decide(request_id, new_status, notes='', reviewed_by=None):
    """
    Apply a reviewer decision to an open request.

    Rejection releases the request's seats, approval converts them into active
    enrollments (and consumes promotion quota), observations keeps them held.

    Raises:
        ValidationError: new_status is not a decision.
        NotFoundError: unknown request.
        InvalidTransitionError: the request is already approved or rejected.
        ConflictError: the attached promotion ran out of quota.
    """
    if new_status not in DECISIONS:
        raise ValidationError(f"Invalid decision '{new_status}'.")

    with transaction.atomic():
        try:
            enrollment_request = EnrollmentRequest.objects.select_for_update().get(pk=request_id)
        except EnrollmentRequest.DoesNotExist:
            raise NotFoundError(f"Request {request_id} not found.")

        if not enrollment_request.can_transition_to(new_status):
            raise InvalidTransitionError(
                f"Request {enrollment_request.code} is {enrollment_request.status} and cannot become {new_status}."
            )

        enrollment_request.status = new_status
        enrollment_request.notes = notes or ''
        enrollment_request.reviewed_by = reviewed_by
        enrollment_request.reviewed_at = timezone.now()
        enrollment_request.save(update_fields=['status', 'notes', 'reviewed_by', 'reviewed_at'])

        touched = {enrollment_request.course_id: PRIMARY}
        promotion = None
        if enrollment_request.promotion_id is not None:
            promotion = Promotion.objects.get(pk=enrollment_request.promotion_id)
            touched.setdefault(promotion.promotional_course_id, PROMOTIONAL)

        if new_status == EnrollmentRequest.Status.APPROVED:
            create_primary_enrollment = import_string(settings.PRIMARY_ENROLLMENT_HANDLER)
            create_primary_enrollment(enrollment_request)
            if promotion is not None:
                _consume_promotion(enrollment_request, promotion, reviewed_by)

        # Observations stays in the reserved set; reconciling is a no-op there
        for course_id in touched:
            reconcile_seats(course_id)

        # Approval and observations leave seat counts as they were: no event
        if new_status == EnrollmentRequest.Status.REJECTED:
            _emit_on_commit([
                seat_change_event(course_id, category, RELEASE, 'request_rejected')
                for course_id, category in touched.items()
            ])
        transaction.on_commit(lambda: notify_request_decision.delay(enrollment_request.pk), robust=True)

    logger.info(f"Request {enrollment_request.code} marked {new_status} by {reviewed_by}")
    return enrollment_request


def reassign_promotion(request_id, new_promotion_id):
    """
    Swap the promotion attached to an open request.

    The new promotional seat is acquired before the old one is released, so a
    failed acquisition leaves the current reservation untouched.

    Raises:
        NotFoundError, InvalidTransitionError, ValidationError, NoSeatsError, ConflictError
    """
    with transaction.atomic():
        try:
            enrollment_request = (
                EnrollmentRequest.objects.select_for_update().get(pk=request_id)
            )
        except EnrollmentRequest.DoesNotExist:
            raise NotFoundError(f"Request {request_id} not found.")

        if not enrollment_request.is_open:
            raise InvalidTransitionError(
                f"Request {enrollment_request.code} is {enrollment_request.status}; its promotion can no longer change."
            )
        if enrollment_request.promotion_id == new_promotion_id:
            raise ValidationError("This promotion is already selected for the request.")

        course = Course.objects.get(pk=enrollment_request.course_id)
        old_course_id = None
        if enrollment_request.promotion_id is not None:
            old_course_id = Promotion.objects.filter(
                pk=enrollment_request.promotion_id
            ).values_list('promotional_course_id', flat=True).first()

        # Courses where this request already holds a seat
        held = {course.pk, old_course_id} - {None}

        new_promotion = _get_eligible_promotion(new_promotion_id, course, held_course_ids=held)
        new_course_id = new_promotion.promotional_course_id

        events = []
        if new_course_id not in held:
            if not take_seat(new_course_id):
                logger.warning(f"Lost seat race on promotional course {new_course_id} for {enrollment_request.code}")
                raise ConflictError(
                    f"The last seat in promotional course {new_promotion.promotional_course.code} was just taken."
                )
            events.append(seat_change_event(new_course_id, PROMOTIONAL, RESERVE, 'promotion_reassigned'))

        enrollment_request.promotion = new_promotion
        enrollment_request.save(update_fields=['promotion'])

        # The old promotional seat is released by reconciliation: the request no longer counts there
        if old_course_id is not None and old_course_id not in (course.pk, new_course_id):
            events.append(seat_change_event(old_course_id, PROMOTIONAL, RELEASE, 'promotion_reassigned'))

        for course_id in {new_course_id, old_course_id} - {None}:
            reconcile_seats(course_id)

        _emit_on_commit(events)

    logger.info(f"Request {enrollment_request.code} promotion set to {new_promotion.pk}")
    return enrollment_request
