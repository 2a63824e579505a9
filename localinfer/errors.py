from typing import Any, Optional


class LocalInferError(Exception):
    """Base class for errors raised by localinfer."""


class OrcClientError(LocalInferError):
    def __init__(self, message: str, status_code: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class ModelValidationError(LocalInferError):
    pass


class DownloadCancelled(LocalInferError):
    pass


class InvalidStepTransition(LocalInferError):
    pass
