import logging

from rest_framework.permissions import BasePermission

logger = logging.getLogger("security.authorization")


def user_is_approved(user):
    if not user or not user.is_authenticated:
        return False
    if user.is_superuser:
        return True
    return bool(getattr(user, "is_approved", False))


class IsApprovedUser(BasePermission):
    """Admits authenticated accounts that an administrator has approved; logs denied attempts."""

    message = "Your account is pending approval."

    def has_permission(self, request, view):
        if not request.user or not request.user.is_authenticated:
            return False

        allowed = user_is_approved(request.user)
        if not allowed:
            logger.warning(
                "permission_denied reason=pending_approval user=%s method=%s path=%s view=%s",
                getattr(request.user, "username", "anonymous"),
                request.method,
                request.path,
                view.__class__.__name__,
            )
        return allowed


class IsStaffUser(BasePermission):
    message = "You do not have permission to perform this action."

    def has_permission(self, request, view):
        user = request.user
        allowed = bool(user and user.is_authenticated and (user.is_staff or user.is_superuser))
        if not allowed:
            logger.warning(
                "permission_denied reason=staff_only user=%s method=%s path=%s view=%s",
                getattr(user, "username", "anonymous"),
                request.method,
                request.path,
                view.__class__.__name__,
            )
        return allowed
