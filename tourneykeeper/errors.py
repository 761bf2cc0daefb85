"""Custom exception classes for the application."""


class AppError(Exception):
    """Base application error class."""

    def __init__(self, message, status_code=400):
        """Initialize the error."""
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class ValidationError(AppError):
    """Raised when user input fails validation."""

    def __init__(self, message="Validation failed."):
        """Initialize the error."""
        super().__init__(message, 400)


class AuthenticationRequiredError(AppError):
    """Raised when an operation needs a signed-in identity."""

    def __init__(self, message="Authentication required."):
        """Initialize the error."""
        super().__init__(message, 401)


class ForbiddenError(AppError):
    """Raised when the actor's current role does not allow the operation."""

    def __init__(self, message="You are not allowed to do that."):
        """Initialize the error."""
        super().__init__(message, 403)


class QuotaExceededError(AppError):
    """Raised when a guest has used up their tournament allowance."""

    def __init__(self, message="Guest tournament limit reached."):
        """Initialize the error."""
        super().__init__(message, 403)


class NotFoundError(AppError):
    """Raised when a resource is not found."""

    def __init__(self, message="Resource not found."):
        """Initialize the error."""
        super().__init__(message, 404)


class DuplicateResourceError(AppError):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, message="Resource already exists."):
        """Initialize the error."""
        super().__init__(message, 409)


class AlreadyConsumedError(AppError):
    """Raised when a one-time code or token has already been used."""

    def __init__(self, message="This link has already been used."):
        """Initialize the error."""
        super().__init__(message, 409)


class ExpiredError(AppError):
    """Raised when a link, code or invitation is past its expiry."""

    def __init__(self, message="This link has expired. Please request a new one."):
        """Initialize the error."""
        super().__init__(message, 410)


class PartialUpdateError(AppError):
    """Raised when a multi-row update left the store inconsistent."""

    def __init__(self, message="The update could not be completed."):
        """Initialize the error."""
        super().__init__(message, 500)


class TransientAbortError(AppError):
    """Raised when a provider call was interrupted and may be retried."""

    def __init__(self, message="The request was interrupted."):
        """Initialize the error."""
        super().__init__(message, 503)


class AuthTimeoutError(AppError):
    """Raised when the identity provider did not answer in time."""

    def __init__(self, message="The sign-in service did not respond in time."):
        """Initialize the error."""
        super().__init__(message, 504)


class ProviderResponseError(AppError):
    """Raised when the identity provider answered with unusable data."""

    def __init__(self, message="The sign-in service returned no account."):
        """Initialize the error."""
        super().__init__(message, 502)
