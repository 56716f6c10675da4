from rest_framework import viewsets, permissions, status
from rest_framework.decorators import action
from rest_framework.response import Response
from django.db.models import Count, F, Q
from django.shortcuts import get_object_or_404
import logging

from enrollment.exceptions import ValidationError
from .models import Course, Promotion
from .serializers import CourseSerializer, CourseAvailabilitySerializer, PromotionSerializer

logger = logging.getLogger(__name__)


def id_query_param(request, name):
    """Integer id from the query string, None when absent."""
    value = request.query_params.get(name)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(f"Query parameter '{name}' must be an integer id.")


class IsAdminOrReadOnly(permissions.BasePermission):
    def has_permission(self, request, view):
        if request.method in permissions.SAFE_METHODS:
            return True
        return bool(request.user and request.user.is_authenticated and request.user.is_reviewer)


class CourseViewSet(viewsets.ModelViewSet):
    queryset = Course.objects.all()
    serializer_class = CourseSerializer
    permission_classes = [IsAdminOrReadOnly]

    def get_queryset(self):
        queryset = Course.objects.all()
        course_status = self.request.query_params.get('status')
        if course_status:
            queryset = queryset.filter(status=course_status)
        return queryset

    @action(detail=True, methods=['get'])
    def availability(self, request, pk=None):
        """Seats currently available in the course, as of the last reconciliation."""
        course = self.get_object()
        return Response(CourseAvailabilitySerializer(course).data)


class PromotionViewSet(viewsets.ModelViewSet):
    queryset = Promotion.objects.select_related('promotional_course')
    serializer_class = PromotionSerializer
    permission_classes = [IsAdminOrReadOnly]

    @action(detail=False, methods=['get'])
    def active(self, request):
        """Active promotions with quota left, optionally for one primary course."""
        queryset = self.get_queryset().filter(active=True).filter(
            Q(quota_configured__isnull=True) | Q(quota_used__lt=F('quota_configured'))
        )
        course_id = id_query_param(request, 'course')
        if course_id is not None:
            queryset = queryset.filter(Q(primary_course_id=course_id) | Q(primary_course__isnull=True))
        return Response(self.get_serializer(queryset, many=True).data)

    @action(detail=True, methods=['get'])
    def stats(self, request, pk=None):
        from enrollment.models import EnrollmentRequest

        promotion = self.get_object()
        counts = EnrollmentRequest.objects.filter(promotion=promotion).aggregate(
            open_requests=Count('id', filter=Q(status__in=EnrollmentRequest.OPEN_STATUSES)),
            approved_requests=Count('id', filter=Q(status=EnrollmentRequest.Status.APPROVED)),
        )
        return Response({
            'promotion': promotion.id,
            'quota_configured': promotion.quota_configured,
            'quota_used': promotion.quota_used,
            'quota_remaining': promotion.quota_remaining,
            **counts,
        })

    @action(detail=True, methods=['patch'])
    def toggle(self, request, pk=None):
        """Activate or deactivate a promotion."""
        promotion = get_object_or_404(Promotion, pk=pk)
        promotion.active = not promotion.active
        promotion.save(update_fields=['active'])
        logger.info(f"Promotion {promotion.id} {'activated' if promotion.active else 'deactivated'} by {request.user}")
        return Response({'id': promotion.id, 'active': promotion.active}, status=status.HTTP_200_OK)
