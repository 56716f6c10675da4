from rest_framework import permissions


class IsReviewer(permissions.BasePermission):
    """Admins and staff review enrollment requests."""

    def has_permission(self, request, view):
        return bool(request.user and request.user.is_authenticated and request.user.is_reviewer)
