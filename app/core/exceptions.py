"""Exception taxonomy for the access-control service.

Every rejection raised by the resolution engine, the hierarchy guard or the
override store derives from ``AccessControlError``. The HTTP layer maps each
class to its ``status_code`` and reports ``code`` alongside the message in
``app.main``.
"""


class AccessControlError(Exception):
    """Base exception for the access-control service."""

    status_code = 400
    code = "access_control_error"

    def __init__(self, message: str = "An error occurred"):
        self.message = message
        super().__init__(self.message)


class UnauthenticatedError(AccessControlError):
    """Raised when no valid principal accompanies the request."""
    status_code = 401
    code = "unauthenticated"


class ForbiddenError(AccessControlError):
    """Raised when the actor lacks the required level or permission."""
    status_code = 403
    code = "forbidden"


class SelfActionError(ForbiddenError):
    """Raised when an actor targets themself on a forbidden operation."""
    code = "self_action"


class InvalidReferenceError(AccessControlError):
    """Raised when a role, permission or user id does not exist."""
    code = "invalid_reference"


class UserNotFoundError(InvalidReferenceError):
    """Raised when the target user does not exist."""
    status_code = 404
    code = "user_not_found"


class InvalidInputError(AccessControlError):
    """Raised when a request is well-formed but semantically invalid."""
    code = "invalid_input"


class CatalogError(AccessControlError):
    """Raised when role/permission configuration is inconsistent."""
    status_code = 500
    code = "catalog_error"


class StorageError(AccessControlError):
    """Raised when the datastore fails during an operation."""
    status_code = 500
    code = "storage_error"
