"""Synchronous validation of uploads, applied before any document row exists."""

import mimetypes
from pathlib import PurePath

from shared.errors import UploadValidationError
from shared.helper.HelperConfig import HelperConfig

DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024
DEFAULT_ALLOWED_CONTENT_TYPES = [
    "application/pdf",
    "text/plain",
    "text/markdown",
    "text/csv",
    "application/json",
]


class UploadPolicy:
    """Decides whether an upload is accepted and which content type it is processed as."""

    def __init__(self, helper_config: HelperConfig) -> None:
        self.max_upload_bytes = int(helper_config.get_number_val("INGEST_MAX_UPLOAD_BYTES", default=DEFAULT_MAX_UPLOAD_BYTES))
        self.allowed_content_types = [
            content_type.lower()
            for content_type in helper_config.get_list_val("INGEST_ALLOWED_CONTENT_TYPES", default=DEFAULT_ALLOWED_CONTENT_TYPES)
        ]

    def clean_filename(self, filename: str | None) -> str:
        """Return the bare filename without any directory part.

        Raises:
            UploadValidationError: If no usable filename was given.
        """
        name = PurePath((filename or "").replace("\\", "/")).name.strip()
        if not name or name in (".", ".."):
            raise UploadValidationError("No file provided: a filename is required.")
        return name

    def resolve_content_type(self, filename: str, declared_type: str | None) -> str:
        """Normalize the declared type, falling back to a guess from the filename.

        Raises:
            UploadValidationError: If the type is unknown or not accepted.
        """
        content_type = (declared_type or "").split(";")[0].strip().lower()
        if not content_type or content_type == "application/octet-stream":
            content_type = (mimetypes.guess_type(filename)[0] or "").lower()
            if not content_type and filename.lower().endswith(".md"):
                content_type = "text/markdown"
        if not content_type:
            raise UploadValidationError(f"Cannot determine the content type of '{filename}'.")
        if content_type not in self.allowed_content_types:
            raise UploadValidationError(f"Unsupported file type '{content_type}'.")
        return content_type

    def check_size(self, size: int) -> None:
        """
        Empty files are accepted; they simply produce no chunks.

        Raises:
            UploadValidationError: If the upload is larger than the cap.
        """
        if size > self.max_upload_bytes:
            raise UploadValidationError(
                f"File too large (max {self.max_upload_bytes // (1024 * 1024)}MB)."
            )
