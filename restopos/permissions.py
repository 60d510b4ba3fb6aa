from rest_framework.permissions import BasePermission


class IsActiveStaff(BasePermission):
    """
    Any authenticated staff member
    """

    def has_permission(self, request, view):
        # StaffTokenAuthentication returns (staff, api_key) on success
        return request.user is not None and request.auth is not None


def require_role(*roles):
    """Build a permission class that admits only the given staff roles"""

    class HasRole(IsActiveStaff):
        message = 'Insufficient permissions'

        def has_permission(self, request, view):
            if not super().has_permission(request, view):
                return False
            return request.user.role in roles

    HasRole.__name__ = f"HasRole_{'_'.join(roles)}"
    return HasRole


class MethodRolesMixin:
    """
    Restrict individual HTTP methods of a view to staff roles

    method_roles maps a method name to the roles allowed to call it;
    unlisted methods fall back to the view's permission_classes.
    """
    method_roles = {}

    def get_permissions(self):
        roles = self.method_roles.get(self.request.method)
        if roles:
            return [require_role(*roles)()]
        return super().get_permissions()
