from rest_framework.permissions import BasePermission, SAFE_METHODS


def is_administrator(user):
    return bool(user and user.is_authenticated and getattr(user, 'role', None) == 'admin')


class IsAdministrator(BasePermission):
    """Allows access only to accounts holding the admin role"""
    message = 'Access denied: Admins only'

    def has_permission(self, request, view):
        return is_administrator(request.user)


class IsAdministratorOrReadOnly(BasePermission):
    """Anyone may read; only administrators may write"""
    message = 'Access denied: Admins only'

    def has_permission(self, request, view):
        if request.method in SAFE_METHODS:
            return True
        return is_administrator(request.user)
