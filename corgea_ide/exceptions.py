"""Custom exceptions for corgea-ide."""


class CorgeaError(Exception):
    """Base exception for all corgea-ide errors."""


class PreconditionError(CorgeaError):
    """Raised when a required runtime, tool or credential is missing."""


class BootstrapError(CorgeaError):
    """Raised when preparing the scan environment fails (extraction, directories)."""


class ProcessError(CorgeaError):
    """Raised when a scanner process exits unsuccessfully without a cancel request."""

    def __init__(self, message: str, output: str = "", exit_code: int | None = None):
        self.output = output
        self.exit_code = exit_code
        super().__init__(message)


class ApiError(CorgeaError):
    """Raised when the Corgea API answers with an unexpected status or payload."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class AuthenticationError(ApiError):
    """The API rejected the token (HTTP 401) or the token failed verification."""


class UnsupportedVersionError(ApiError):
    """The API no longer supports this client version (HTTP 410)."""
