from django.contrib.auth.models import AbstractUser
from django.db import models

class User(AbstractUser):
    class Role(models.TextChoices):
        STUDENT = 'STUDENT', 'Student'
        INSTRUCTOR = 'INSTRUCTOR', 'Instructor'
        ADMIN = 'ADMIN', 'Admin'

    role = models.CharField(max_length=50, choices=Role.choices, default=Role.STUDENT)

    @property
    def is_reviewer(self):
        """Reviewers decide on enrollment requests."""
        return self.is_staff or self.role == self.Role.ADMIN

    def __str__(self):
        return f"{self.username} ({self.role})"
