from django.contrib import admin
from .models import Enrollment, EnrollmentRequest


@admin.register(EnrollmentRequest)
class EnrollmentRequestAdmin(admin.ModelAdmin):
    list_display = ['code', 'student', 'course', 'promotion', 'status', 'created_at']
    list_filter = ['status', 'created_at', 'payment_method']
    search_fields = ['code', 'student__username', 'applicant_email', 'applicant_identification', 'course__code']
    raw_id_fields = ['student', 'course', 'promotion', 'parent_request', 'reviewed_by']
    # Status changes must go through the decision API so seats stay reconciled
    readonly_fields = ['status', 'promotion', 'reviewed_by', 'reviewed_at']


@admin.register(Enrollment)
class EnrollmentAdmin(admin.ModelAdmin):
    list_display = ['student', 'course', 'status', 'enrolled_at']
    list_filter = ['status', 'enrolled_at']
    search_fields = ['student__username', 'student__email', 'course__code']
    raw_id_fields = ['student', 'course', 'request']
