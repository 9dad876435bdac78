"""
Custom permission classes for role, tenant and subscription based access control.
"""
from rest_framework.permissions import BasePermission

from .exceptions import SubscriptionInactive

ADMIN_ROLES = {"admin", "super_admin"}
CLINICAL_ROLES = {"admin", "doctor", "super_admin"}


def is_super_admin(user) -> bool:
    return bool(user and user.is_authenticated and getattr(user, "role", None) == "super_admin")


class IsClinicAdmin(BasePermission):
    """Allow access only to clinic administrators (or the platform operator)."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) in ADMIN_ROLES)


class IsClinician(BasePermission):
    """Doctors and administrators."""
    def has_permission(self, request, view) -> bool:  # type: ignore[override]
        user = getattr(request, "user", None)
        return bool(user and user.is_authenticated and getattr(user, "role", None) in CLINICAL_ROLES)


class IsTenantMember(BasePermission):
    """User must be bound to a clinic; the platform operator passes."""
    message = "user is not bound to a clinic"

    def has_permission(self, request, view) -> bool:
        user = getattr(request, "user", None)
        if not (user and user.is_authenticated):
            return False
        return is_super_admin(user) or bool(getattr(user, "tenant_id", None))


class HasActiveSubscription(BasePermission):
    """Deny (HTTP 402) when the user's clinic has no usable subscription."""
    def has_permission(self, request, view) -> bool:
        from .services.subscription import evaluate_access

        user = getattr(request, "user", None)
        if not (user and user.is_authenticated):
            return False
        decision = evaluate_access(user)
        if not decision.has_access:
            raise SubscriptionInactive()
        return True


# Default stack for clinic endpoints.
CLINIC_ACCESS = [IsTenantMember, HasActiveSubscription]
