from celery import shared_task
from django.core.mail import send_mail
from django.conf import settings
import json
import logging

import redis

logger = logging.getLogger(__name__)


@shared_task
def broadcast_seat_change(event):
    """
    Publish a seat-change event for live dashboards.

    Consumers treat the event as a cache-invalidation hint and re-fetch the
    course availability, so a lost event only delays a refresh.

    Args:
        event (dict): {course_id, category, action, cause, timestamp}

    Returns:
        int: Number of subscribers that received the event.
    """
    try:
        r = redis.from_url(settings.CELERY_BROKER_URL)
        receivers = r.publish(settings.SEAT_EVENTS_CHANNEL, json.dumps(event))
    except redis.RedisError as e:
        logger.warning(f"Could not publish seat change for course {event.get('course_id')}: {str(e)}")
        return 0

    logger.debug(f"Published seat change {event} to {receivers} subscribers")
    return receivers


@shared_task
def notify_request_decision(request_id):
    """
    Email the applicant about the decision taken on their enrollment request.

    Args:
        request_id (int): The ID of the decided request.

    Returns:
        str: Status message indicating the result of the operation.
    """
    from .models import EnrollmentRequest

    try:
        enrollment_request = EnrollmentRequest.objects.select_related('course', 'student').get(id=request_id)
    except EnrollmentRequest.DoesNotExist:
        return f"Request {request_id} not found."

    recipient = enrollment_request.applicant_email or enrollment_request.student.email
    if not recipient:
        return f"Request {enrollment_request.code} has no contact email."

    course = enrollment_request.course
    name = (
        f"{enrollment_request.applicant_first_name} {enrollment_request.applicant_last_name}".strip()
        or enrollment_request.student.get_full_name()
        or enrollment_request.student.username
    )
    message = (
        f'Dear {name},\n\n'
        f'Your enrollment request {enrollment_request.code} for {course.code} - {course.name} '
        f'is now: {enrollment_request.get_status_display()}.\n\n'
    )
    if enrollment_request.notes:
        message += f'Reviewer notes:\n{enrollment_request.notes}\n\n'
    message += 'Best regards,\nRegistrar Office'

    send_mail(
        subject=f'Enrollment Request {enrollment_request.get_status_display()}: {course.code}',
        message=message,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[recipient],
        fail_silently=True,
    )

    logger.info(f"Notified {recipient} about decision on request {enrollment_request.code}")
    return f"Notified {recipient} about request {enrollment_request.code}."
