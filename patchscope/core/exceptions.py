"""Custom exceptions for the application."""

class ApplicationError(Exception):
    """Base application error."""
    pass

class ConfigError(ApplicationError):
    """Configuration-related errors."""
    pass

class ValidationError(ApplicationError):
    """Data validation errors."""
    pass

class GridError(ApplicationError):
    """Base exception for patch grid errors."""
    pass

class InvalidGridError(GridError):
    """Patch count cannot be arranged as a square grid."""

    def __init__(self, patch_count, message=None):
        self.patch_count = patch_count
        super().__init__(message or f"Patch count {patch_count} is not a positive perfect square")

class OutOfRangeError(GridError):
    """Row, column or patch index outside the grid."""
    pass

class MalformedResponseError(ApplicationError):
    """Backend payload is missing fields or has the wrong shape."""
    pass

class ServiceError(ApplicationError):
    """Service operation errors."""
    pass

class RequestError(ServiceError):
    """Base exception for backend request failures."""
    pass

class RequestTimeoutError(RequestError):
    """No response arrived before the configured deadline."""
    pass

class NetworkError(RequestError):
    """Transport failure or non-success HTTP status."""

    def __init__(self, message, status_code=None):
        self.status_code = status_code
        super().__init__(message)

class ImageLoadFailure(ServiceError):
    """Remote image could not be fetched or decoded."""
    pass
