"""Exception hierarchy shared by the state container, AI service and routes."""


class LmsError(Exception):
    """Base exception for all application errors."""
    pass


class ValidationError(LmsError):
    """A user-supplied value was rejected. Shown inline, never fatal."""
    pass


class AuthenticationError(ValidationError):
    pass


class DuplicateUsernameError(ValidationError):

    def __init__(self, username: str):
        self.username = username
        super().__init__("Username already exists.")


class CourseNotFoundError(ValidationError):

    def __init__(self, course_id: str):
        self.course_id = course_id
        super().__init__("Course not found for this submission")


class AccessDenied(LmsError):
    """Raised when a role asks for a view it has no navigation entry for."""

    def __init__(self, view_id: str, message: str = "You do not have permission to view this page."):
        self.view_id = view_id
        super().__init__(message)


class AIServiceError(LmsError):
    """Raised once at the AI boundary with a generic per-operation message."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(message)
