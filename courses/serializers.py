from rest_framework import serializers
from .models import Course, Promotion


class CourseSerializer(serializers.ModelSerializer):
    class Meta:
        model = Course
        fields = ['id', 'code', 'name', 'description', 'schedule', 'start_date', 'end_date',
                  'capacity_max', 'seats_available', 'status', 'created_at']
        read_only_fields = ['seats_available', 'created_at']

    def validate_capacity_max(self, value):
        if value < 1:
            raise serializers.ValidationError("Capacity must be a positive number.")
        # Capacity is fixed once requests may hold seats against it
        if self.instance is not None and value != self.instance.capacity_max:
            raise serializers.ValidationError("Capacity cannot be changed after creation.")
        return value


class CourseAvailabilitySerializer(serializers.ModelSerializer):
    course = serializers.CharField(source='code', read_only=True)

    class Meta:
        model = Course
        fields = ['id', 'course', 'capacity_max', 'seats_available', 'status']
        read_only_fields = fields


class PromotionSerializer(serializers.ModelSerializer):
    promotional_course_code = serializers.CharField(source='promotional_course.code', read_only=True)
    promotional_course_seats = serializers.IntegerField(source='promotional_course.seats_available', read_only=True)
    quota_remaining = serializers.IntegerField(read_only=True)

    class Meta:
        model = Promotion
        fields = ['id', 'name', 'description', 'primary_course', 'promotional_course',
                  'promotional_course_code', 'promotional_course_seats', 'free_months',
                  'start_date', 'end_date', 'active', 'quota_configured', 'quota_used',
                  'quota_remaining', 'created_at']
        read_only_fields = ['quota_used', 'created_at']

    def validate(self, attrs):
        primary = attrs.get('primary_course', getattr(self.instance, 'primary_course', None))
        promotional = attrs.get('promotional_course', getattr(self.instance, 'promotional_course', None))
        if primary is not None and primary == promotional:
            raise serializers.ValidationError("The promotional course must differ from the primary course.")

        # Open requests hold their promotional seat in the current course
        if self.instance is not None and promotional != self.instance.promotional_course:
            from enrollment.models import EnrollmentRequest

            if self.instance.requests.filter(status__in=EnrollmentRequest.OPEN_STATUSES).exists():
                raise serializers.ValidationError({
                    'promotional_course': "Cannot change the promotional course while open requests use this promotion."
                })
        return attrs
