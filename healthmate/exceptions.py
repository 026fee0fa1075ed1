"""Domain exceptions for HealthMate, each carrying the HTTP status it maps to."""


class HealthMateError(Exception):
    """Base exception for all HealthMate errors."""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(HealthMateError):
    """Bad input: missing file, empty message, unsupported type or size."""
    status_code = 400


class ConflictError(HealthMateError):
    """Request clashes with existing state (e.g. email already registered)."""
    status_code = 400


class AnalysisInProgressError(ConflictError):
    """Retry requested while the report is still being analyzed."""

    def __init__(self, message: str = "Analysis already in progress"):
        super().__init__(message)


class NotFoundError(HealthMateError):
    status_code = 404


class AuthenticationError(HealthMateError):
    status_code = 401


class StorageError(HealthMateError):
    """File storage provider failed to store or release a file."""
    status_code = 500
