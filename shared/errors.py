"""Error taxonomy shared by clients, services and routers.

Transient errors may be retried by the component that owns the call,
everything else must surface unchanged.
"""


class ClientError(Exception):
    """Base exception for failures of an external collaborator."""
    pass


class TransientClientError(ClientError):
    """Timeout, dropped connection or a 429/5xx answer. Safe to retry."""
    pass


class ClientRequestError(ClientError):
    """The backend rejected the request (4xx). Retrying will not help."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConfigurationError(ClientError):
    """Deployment defect, e.g. a vector size that does not match the collection."""
    pass


class ExtractionError(Exception):
    """Raised when text cannot be extracted from an uploaded file."""
    pass


class UploadValidationError(Exception):
    """Raised when an upload is rejected before a document row is created."""
    pass
