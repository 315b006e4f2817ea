from rest_framework import permissions


class HasRole(permissions.BasePermission):
    allowed_roles = ()
    message = "Your role is not authorized to access this route"

    def has_permission(self, request, view):
        user = request.user
        return bool(user and user.is_authenticated and user.role in self.allowed_roles)


class IsAdmin(HasRole):
    allowed_roles = ("admin",)


class IsDriver(HasRole):
    allowed_roles = ("driver",)


class IsAdminOrCustomer(HasRole):
    allowed_roles = ("admin", "customer")


class IsAdminOrDriver(HasRole):
    allowed_roles = ("admin", "driver")
