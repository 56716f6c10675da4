from django.db import models


class Course(models.Model):
    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        PLANNED = 'planned', 'Planned'
        CANCELLED = 'cancelled', 'Cancelled'
        FINISHED = 'finished', 'Finished'

    code = models.CharField(max_length=20, unique=True)
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    schedule = models.CharField(max_length=100, blank=True, help_text="e.g., Mon/Wed 10:00-11:30")
    start_date = models.DateField(blank=True, null=True)
    end_date = models.DateField(blank=True, null=True)
    capacity_max = models.PositiveIntegerField()

    # Derived cache, recomputed by enrollment.seats.reconcile_seats
    seats_available = models.PositiveIntegerField(default=0, editable=False)

    status = models.CharField(max_length=20, choices=Status.choices, default=Status.PLANNED)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['code']
        indexes = [
            models.Index(fields=['status'], name='course_status_idx'),
        ]

    def __str__(self):
        return f"{self.code} - {self.name}"

    def save(self, *args, **kwargs):
        # A brand new course has no reservations yet
        if self._state.adding:
            self.seats_available = self.capacity_max
        super().save(*args, **kwargs)

    @property
    def is_open(self):
        return self.status == self.Status.ACTIVE


class Promotion(models.Model):
    """
    A promotional course bundled with a primary enrollment.

    The quota caps how many approvals may use the promotion; it is independent
    of the promotional course's own seat capacity.
    """
    name = models.CharField(max_length=200)
    description = models.TextField(blank=True)
    primary_course = models.ForeignKey(
        Course,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='offered_promotions',
        help_text="Course the promotion is offered with; empty means any course",
    )
    promotional_course = models.ForeignKey(
        Course,
        on_delete=models.PROTECT,
        related_name='promotions',
    )
    free_months = models.PositiveIntegerField(default=1)
    start_date = models.DateField(blank=True, null=True)
    end_date = models.DateField(blank=True, null=True)
    active = models.BooleanField(default=True)
    quota_configured = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Maximum number of approvals; empty means unlimited",
    )
    quota_used = models.PositiveIntegerField(default=0, editable=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.name} -> {self.promotional_course.code}"

    @property
    def quota_exhausted(self):
        return self.quota_configured is not None and self.quota_used >= self.quota_configured

    @property
    def quota_remaining(self):
        if self.quota_configured is None:
            return None
        return max(self.quota_configured - self.quota_used, 0)
