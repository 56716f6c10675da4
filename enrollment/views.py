from rest_framework import viewsets, permissions, status, views
from rest_framework.decorators import action
from rest_framework.exceptions import PermissionDenied
from rest_framework.response import Response
from django.db.models import Count
from drf_spectacular.utils import extend_schema

from courses.views import id_query_param

from .exceptions import NotFoundError
from .models import Enrollment, EnrollmentRequest
from .permissions import IsReviewer
from .serializers import (
    CreateEnrollmentRequestSerializer, DecisionSerializer, EnrollmentRequestSerializer,
    EnrollmentSerializer, PromotionReassignmentSerializer,
)
from .services import create_request, decide, reassign_promotion


class EnrollmentViewSet(viewsets.ReadOnlyModelViewSet):
    serializer_class = EnrollmentSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        queryset = Enrollment.objects.select_related('course', 'student').order_by('-enrolled_at')
        if user.is_reviewer:
            return queryset
        return queryset.filter(student=user)


class EnrollmentRequestViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Enrollment requests, newest first.

    Reviewers see every request and may filter by ``status`` and ``course``;
    applicants only see their own.
    """
    serializer_class = EnrollmentRequestSerializer
    permission_classes = [permissions.IsAuthenticated]

    def get_queryset(self):
        user = self.request.user
        queryset = EnrollmentRequest.objects.select_related('course', 'promotion')
        if not user.is_reviewer:
            queryset = queryset.filter(student=user)

        request_status = self.request.query_params.get('status')
        if request_status:
            queryset = queryset.filter(status=request_status)
        course_id = id_query_param(self.request, 'course')
        if course_id is not None:
            queryset = queryset.filter(course_id=course_id)
        return queryset

    @action(detail=False, methods=['get'], permission_classes=[IsReviewer])
    def counts(self, request):
        """Number of requests per status; every status is always present."""
        queryset = EnrollmentRequest.objects.all()
        course_id = id_query_param(request, 'course')
        if course_id is not None:
            queryset = queryset.filter(course_id=course_id)

        result = {value: 0 for value in EnrollmentRequest.Status.values}
        for row in queryset.values('status').annotate(total=Count('id')):
            result[row['status']] = row['total']
        return Response(result)


class CreateEnrollmentRequestView(views.APIView):
    """
    Submit an enrollment request for a course, optionally with a promotion.

    The request holds a seat in the course (and in the promotional course)
    until a reviewer decides on it.
    """
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(request=CreateEnrollmentRequestSerializer, responses={201: None})
    def post(self, request):
        serializer = CreateEnrollmentRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = dict(serializer.validated_data)

        enrollment_request = create_request(
            request.user,
            data.pop('course_id'),
            promotion_id=data.pop('promotion_id', None),
            **data,
        )

        return Response({
            'request_id': enrollment_request.id,
            'code': enrollment_request.code,
            'course': enrollment_request.course.code,
            'seats_remaining': enrollment_request.course.seats_available,
        }, status=status.HTTP_201_CREATED)


class RequestDecisionView(views.APIView):
    """Approve, reject or put observations on an open enrollment request."""
    permission_classes = [IsReviewer]

    @extend_schema(request=DecisionSerializer, responses={200: None})
    def put(self, request, request_id):
        serializer = DecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        decide(
            request_id,
            serializer.validated_data['decision'],
            notes=serializer.validated_data.get('notes', ''),
            reviewed_by=request.user,
        )
        return Response({'ok': True}, status=status.HTTP_200_OK)


class PromotionReassignmentView(views.APIView):
    """Replace the promotion attached to an open enrollment request."""
    permission_classes = [permissions.IsAuthenticated]

    @extend_schema(request=PromotionReassignmentSerializer, responses={200: None})
    def put(self, request, request_id):
        serializer = PromotionReassignmentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        owner_id = EnrollmentRequest.objects.filter(pk=request_id).values_list('student_id', flat=True).first()
        if owner_id is None:
            raise NotFoundError(f"Request {request_id} not found.")
        if owner_id != request.user.pk and not request.user.is_reviewer:
            raise PermissionDenied("You can only change your own requests.")

        reassign_promotion(request_id, serializer.validated_data['promotion_id'])
        return Response({'ok': True}, status=status.HTTP_200_OK)
