from rest_framework import permissions


class IsOwner(permissions.BasePermission):
    """
    Object access (read or write) only for the object's owner as defined by `.user`.
    """
    message = "You must be the owner to perform this action."

    def has_object_permission(self, request, view, obj):
        owner_id = getattr(obj, "user_id", None)
        return owner_id is not None and owner_id == request.user.pk
