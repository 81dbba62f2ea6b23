"""Custom exception hierarchy for the transcription ingestion service.

All exceptions inherit from IngestError, enabling targeted handling
at invocation boundaries while preserving specific failure context.
"""


class IngestError(Exception):
    """Base exception for all ingestion errors."""

    def __init__(self, message: str, file_name: str | None = None) -> None:
        self.file_name = file_name
        super().__init__(message)

    def __str__(self) -> str:
        if self.file_name:
            return f"[file={self.file_name}] {super().__str__()}"
        return super().__str__()


class ConfigurationError(IngestError):
    """Raised when process configuration is missing or inconsistent."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        self.setting = setting
        super().__init__(message)


class NotificationValidationError(IngestError):
    """Raised when a queued notification body cannot be accepted."""


class ReconciliationFormatError(IngestError):
    """Raised when a result artifact has an unrecognized shape."""

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        container: str | None = None,
    ) -> None:
        self.container = container
        super().__init__(message, file_name)


class StorageError(IngestError):
    """Raised when object storage operations fail."""

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, file_name)


class QueueError(IngestError):
    """Raised when queue substrate operations fail."""

    def __init__(self, message: str, operation: str | None = None) -> None:
        self.operation = operation
        super().__init__(message)
