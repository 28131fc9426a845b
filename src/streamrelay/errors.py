"""Upload error definitions for streamrelay."""


class UploadError(Exception):
    """A fatal upload error with code, message, and HTTP status.

    Attributes:
        code: Machine-readable error code (e.g. "SessionStartFailure").
        message: Human-readable error description.
        http_status: The HTTP status code the service layer responds with.
        extra_fields: Additional key-value pairs included in the error body.
    """

    def __init__(
        self,
        code: str,
        message: str,
        http_status: int = 500,
        extra_fields: dict[str, object] | None = None,
    ) -> None:
        """Initialize the upload error.

        Args:
            code: Error code.
            message: Error description.
            http_status: HTTP status code (default 500).
            extra_fields: Optional extra body fields.
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra_fields = extra_fields or {}


class SessionStartFailure(UploadError):
    """The storage backend refused to begin a multipart session."""

    def __init__(self, key: str = "") -> None:
        super().__init__(
            code="SessionStartFailure",
            message="The storage backend could not begin the upload session.",
            http_status=502,
            extra_fields={"Key": key} if key else {},
        )


class PartUploadFailure(UploadError):
    """One or more parts failed to upload; the session was aborted.

    Attributes:
        failures: Part number -> the exception that part raised.
    """

    def __init__(self, failures: dict[int, BaseException], upload_id: str = "") -> None:
        self.failures = dict(sorted(failures.items()))
        numbers = ", ".join(str(n) for n in self.failures)
        extra: dict[str, object] = {"FailedParts": list(self.failures)}
        if upload_id:
            extra["UploadId"] = upload_id
        super().__init__(
            code="PartUploadFailure",
            message=f"Upload of part(s) {numbers} failed; the upload was aborted.",
            http_status=502,
            extra_fields=extra,
        )


class FinalizeFailure(UploadError):
    """The storage backend refused to complete the multipart session."""

    def __init__(self, upload_id: str = "") -> None:
        super().__init__(
            code="FinalizeFailure",
            message="The storage backend could not complete the upload session.",
            http_status=502,
            extra_fields={"UploadId": upload_id} if upload_id else {},
        )


class StreamReadFailure(UploadError):
    """The incoming byte stream failed before end of stream."""

    def __init__(self, message: str = "The incoming file stream could not be read.") -> None:
        super().__init__(code="StreamReadFailure", message=message, http_status=400)


class UploadStateError(UploadError):
    """An operation was invoked in a session state that does not allow it."""

    def __init__(self, operation: str, state: str) -> None:
        super().__init__(
            code="UploadStateError",
            message=f"Cannot {operation} while the upload is {state}.",
            http_status=500,
            extra_fields={"State": state},
        )


class InvalidUploadRequest(UploadError):
    """The request did not carry an uploadable file."""

    def __init__(self, message: str = "No file was supplied.") -> None:
        super().__init__(code="InvalidUploadRequest", message=message, http_status=400)


class InternalError(UploadError):
    """An internal error occurred."""

    def __init__(self, message: str = "Internal Error") -> None:
        super().__init__(code="InternalError", message=message, http_status=500)
