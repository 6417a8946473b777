"""
Role based access control for billing staff.

Roles form a ladder: cashier < accountant < admin < super.  Each class
admits its own role and everything above it.
"""
from rest_framework.permissions import BasePermission

CASHIER_ROLES = {"cashier", "accountant", "admin", "super"}
FINANCE_ROLES = {"accountant", "admin", "super"}
ADMIN_ROLES = {"admin", "super"}


def _has_role(request, roles) -> bool:
    user = getattr(request, "user", None)
    return bool(user and user.is_authenticated and getattr(user, "role", None) in roles)


class IsCashierOrAbove(BasePermission):
    """Take payments and read invoices."""
    def has_permission(self, request, view) -> bool:
        return _has_role(request, CASHIER_ROLES)


class CanRefund(BasePermission):
    """Refunds and commission approval are finance operations."""
    def has_permission(self, request, view) -> bool:
        return _has_role(request, FINANCE_ROLES)


class IsAdminRole(BasePermission):
    def has_permission(self, request, view) -> bool:
        return _has_role(request, ADMIN_ROLES)
