import secrets
import string

from django.db import models
from django.conf import settings
from django.utils import timezone


def generate_request_code():
    """Human-friendly request code, e.g. REQ-20261019-K3P9Q."""
    suffix = ''.join(secrets.choice(string.ascii_uppercase + string.digits) for _ in range(5))
    return f"REQ-{timezone.now():%Y%m%d}-{suffix}"


class EnrollmentRequest(models.Model):
    """
    An applicant's request for a seat in a course, optionally bundled with a promotion.

    While the request is pending or under observations it holds one seat in its
    target course and, if a promotion is attached, one seat in the promotion's
    promotional course.
    """
    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        OBSERVATIONS = 'observations', 'Observations'
        APPROVED = 'approved', 'Approved'
        REJECTED = 'rejected', 'Rejected'

    class PaymentMethod(models.TextChoices):
        TRANSFER = 'transfer', 'Bank transfer'
        CASH = 'cash', 'Cash'
        CARD = 'card', 'Card'
        PROMOTION = 'promotion', 'Promotion'

    # Statuses that hold a seat reservation
    OPEN_STATUSES = (Status.PENDING, Status.OBSERVATIONS)

    # Allowed decisions from each status; approved and rejected are terminal
    TRANSITIONS = {
        Status.PENDING: (Status.APPROVED, Status.REJECTED, Status.OBSERVATIONS),
        Status.OBSERVATIONS: (Status.APPROVED, Status.REJECTED, Status.OBSERVATIONS),
        Status.APPROVED: (),
        Status.REJECTED: (),
    }

    code = models.CharField(max_length=30, unique=True, default=generate_request_code)
    student = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='enrollment_requests'
    )
    course = models.ForeignKey(
        'courses.Course',
        on_delete=models.PROTECT,
        related_name='requests'
    )
    promotion = models.ForeignKey(
        'courses.Promotion',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='requests'
    )
    parent_request = models.ForeignKey(
        'self',
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='promotional_requests',
        help_text="Primary request this promotional request was created for"
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PENDING)

    # Applicant identity, stored as submitted
    applicant_identification = models.CharField(max_length=30, blank=True)
    applicant_first_name = models.CharField(max_length=100, blank=True)
    applicant_last_name = models.CharField(max_length=100, blank=True)
    applicant_email = models.EmailField(blank=True)
    applicant_phone = models.CharField(max_length=20, blank=True)
    preferred_schedule = models.CharField(max_length=100, blank=True)

    enrollment_fee = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    payment_method = models.CharField(max_length=20, choices=PaymentMethod.choices, default=PaymentMethod.TRANSFER)

    notes = models.TextField(blank=True)
    reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='reviewed_requests'
    )
    reviewed_at = models.DateTimeField(blank=True, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['course', 'status'], name='request_course_status_idx'),
            models.Index(fields=['promotion', 'status'], name='request_promotion_status_idx'),
        ]

    def __str__(self):
        return f"{self.code} ({self.status}) -> {self.course.code}"

    @property
    def is_open(self):
        return self.status in self.OPEN_STATUSES

    def can_transition_to(self, new_status):
        return new_status in self.TRANSITIONS.get(self.status, ())


class Enrollment(models.Model):
    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        SUSPENDED = 'suspended', 'Suspended'
        FINISHED = 'finished', 'Finished'

    student = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='enrollments'
    )
    course = models.ForeignKey(
        'courses.Course',
        on_delete=models.CASCADE,
        related_name='enrollments'
    )
    request = models.ForeignKey(
        EnrollmentRequest,
        on_delete=models.PROTECT,
        related_name='enrollments'
    )
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.ACTIVE)
    enrolled_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        indexes = [
            models.Index(fields=['course', 'status'], name='enrollment_course_status_idx'),
        ]

    def __str__(self):
        return f"{self.student.username} -> {self.course}"
