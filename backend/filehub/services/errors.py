"""Error taxonomy shared by the storage, catalog and access layers.

Each error carries the HTTP status the API layer should answer with, so routes
never need to inspect messages to pick a response code.
"""


class FileHubError(Exception):
    """Base class for all domain errors."""

    status_code = 500
    kind = "error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.kind)
        self.message = str(self.args[0])


class UnsupportedType(FileHubError):
    """File type not allowed."""
    status_code = 400
    kind = "unsupported_type"


class PayloadTooLarge(FileHubError):
    """File too large."""
    status_code = 413
    kind = "payload_too_large"


class NotFound(FileHubError):
    """File not found."""
    status_code = 404
    kind = "not_found"


class Forbidden(FileHubError):
    """Unauthorized access to file."""
    status_code = 403
    kind = "forbidden"


class AuthenticationRequired(FileHubError):
    """Login required."""
    status_code = 401
    kind = "authentication_required"


class InvalidTag(FileHubError):
    """Invalid tags."""
    status_code = 400
    kind = "invalid_tag"

    def __init__(self, invalid_tags):
        self.invalid_tags = list(invalid_tags)
        super().__init__(f"Invalid tags: {', '.join(self.invalid_tags)}")


class StorageIOFailure(FileHubError):
    """Content store I/O failed."""
    status_code = 500
    kind = "storage_io_failure"
