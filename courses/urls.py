from django.urls import path, include
from rest_framework.routers import DefaultRouter
from .views import CourseViewSet, PromotionViewSet

router = DefaultRouter()
router.register(r'courses', CourseViewSet)
router.register(r'promotions', PromotionViewSet)

urlpatterns = [
    path('', include(router.urls)),
]
