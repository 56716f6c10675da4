from rest_framework import serializers
from .models import Enrollment, EnrollmentRequest
from .services import DECISIONS


class EnrollmentSerializer(serializers.ModelSerializer):
    course_code = serializers.CharField(source='course.code', read_only=True)
    course_name = serializers.CharField(source='course.name', read_only=True)
    student_name = serializers.CharField(source='student.get_full_name', read_only=True)

    class Meta:
        model = Enrollment
        fields = ['id', 'student', 'student_name', 'course', 'course_code', 'course_name', 'request', 'status', 'enrolled_at']
        read_only_fields = fields


class EnrollmentRequestSerializer(serializers.ModelSerializer):
    course_code = serializers.CharField(source='course.code', read_only=True)
    promotion_name = serializers.CharField(source='promotion.name', read_only=True, default=None)

    class Meta:
        model = EnrollmentRequest
        fields = [
            'id', 'code', 'student', 'course', 'course_code', 'promotion', 'promotion_name',
            'parent_request', 'status', 'applicant_identification', 'applicant_first_name',
            'applicant_last_name', 'applicant_email', 'applicant_phone', 'preferred_schedule',
            'enrollment_fee', 'payment_method', 'notes', 'reviewed_by', 'reviewed_at', 'created_at',
        ]
        read_only_fields = fields


class CreateEnrollmentRequestSerializer(serializers.Serializer):
    """Input of a new enrollment request; ids are resolved by the service."""
    course_id = serializers.IntegerField(min_value=1)
    promotion_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    applicant_identification = serializers.CharField(max_length=30)
    applicant_first_name = serializers.CharField(max_length=100)
    applicant_last_name = serializers.CharField(max_length=100)
    applicant_email = serializers.EmailField()
    applicant_phone = serializers.CharField(max_length=20, required=False, allow_blank=True)
    preferred_schedule = serializers.CharField(max_length=100, required=False, allow_blank=True)
    enrollment_fee = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=0, required=False)
    payment_method = serializers.ChoiceField(choices=EnrollmentRequest.PaymentMethod.choices, required=False)


class DecisionSerializer(serializers.Serializer):
    decision = serializers.ChoiceField(choices=[(value, value) for value in DECISIONS])
    notes = serializers.CharField(required=False, allow_blank=True, default='')


class PromotionReassignmentSerializer(serializers.Serializer):
    promotion_id = serializers.IntegerField(min_value=1)
