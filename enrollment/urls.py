from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import (
    EnrollmentViewSet, EnrollmentRequestViewSet,
    CreateEnrollmentRequestView, RequestDecisionView, PromotionReassignmentView,
)

router = DefaultRouter()
router.register(r'enrollments', EnrollmentViewSet, basename='enrollment')
router.register(r'requests', EnrollmentRequestViewSet, basename='enrollment-request')

urlpatterns = [
    path('enroll/', CreateEnrollmentRequestView.as_view(), name='create-request'),
    path('requests/<int:request_id>/decision/', RequestDecisionView.as_view(), name='request-decision'),
    path('requests/<int:request_id>/promotion/', PromotionReassignmentView.as_view(), name='request-promotion'),
    path('', include(router.urls)),
]
