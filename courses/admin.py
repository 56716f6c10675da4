from django.contrib import admin
from .models import Course, Promotion


@admin.register(Course)
class CourseAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'status', 'capacity_max', 'seats_available']
    list_filter = ['status']
    search_fields = ['code', 'name']
    readonly_fields = ['seats_available']


@admin.register(Promotion)
class PromotionAdmin(admin.ModelAdmin):
    list_display = ['name', 'primary_course', 'promotional_course', 'active', 'quota_configured', 'quota_used']
    list_filter = ['active']
    search_fields = ['name', 'promotional_course__code']
    raw_id_fields = ['primary_course', 'promotional_course']
    readonly_fields = ['quota_used']
