from __future__ import annotations


class FinksError(Exception):
    """Base class for every error surfaced to the operator."""


class RuntimeUnavailable(FinksError):
    pass


class NotFound(FinksError):
    pass


class AlreadyExists(FinksError):
    pass


class ImagePullFailure(FinksError):
    pass


class CreateOrStartFailure(FinksError):
    """Container creation or start failed; any partial container was rolled back.

    ``cleanup_error`` holds the rollback failure, if the rollback itself failed.
    """

    def __init__(self, message: str, cleanup_error: BaseException | None = None):
        if cleanup_error is not None:
            message = f"{message} (cleanup also failed: {cleanup_error})"
        super().__init__(message)
        self.cleanup_error = cleanup_error


class ValidationFailure(FinksError):
    pass


class AppRunning(ValidationFailure):
    pass


class DeadlineExceeded(FinksError):
    pass


class RuntimeOperationError(FinksError):
    pass


class RegistryCorrupt(FinksError):
    pass
