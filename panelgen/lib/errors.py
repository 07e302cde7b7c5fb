# panelgen/lib/errors.py
from __future__ import annotations


class PanelPipelineError(Exception):
    """Base class for pipeline failures. `retryable` hints whether a caller may try again."""
    retryable: bool = False

    def __init__(self, message: str = "", *, retryable: bool | None = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class TransportError(PanelPipelineError):
    """Network failure or non-validation HTTP error talking to a remote service."""
    retryable = True

    def __init__(self, message: str = "", *, status_code: int | None = None, retryable: bool | None = None):
        super().__init__(message, retryable=retryable)
        self.status_code = status_code


class ProviderRejectedError(PanelPipelineError):
    """The provider refused the request (bad parameters, unsupported model, quota...)."""

    def __init__(self, message: str = "", *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class JobTimeoutError(PanelPipelineError):
    retryable = True

    def __init__(self, job_id: str, timeout: float):
        super().__init__(f"job {job_id} did not finish within {timeout:g}s")
        self.job_id = job_id
        self.timeout = timeout


class JobFailedError(PanelPipelineError):
    """Provider reported the job as failed. `provider_message` is passed through unchanged."""

    def __init__(self, job_id: str, provider_message: str | None):
        super().__init__(provider_message or f"job {job_id} failed")
        self.job_id = job_id
        self.provider_message = provider_message


class ReferenceResolutionError(PanelPipelineError):
    def __init__(self, character_id: str, message: str):
        super().__init__(f"{character_id}: {message}")
        self.character_id = character_id


class BatchGenerationError(PanelPipelineError):
    """A scene failed and took the batch down with it."""

    def __init__(self, scene_index: int, cause: BaseException):
        super().__init__(f"scene {scene_index + 1} failed: {cause}")
        self.scene_index = scene_index
        self.cause = cause
        self.retryable = bool(getattr(cause, "retryable", False))


class StaleCandidateError(PanelPipelineError):
    """A revision candidate no longer matches the current panel list."""


class UnknownCharacterError(PanelPipelineError):
    def __init__(self, character_ids):
        ids = sorted(character_ids)
        super().__init__(f"unknown character(s): {', '.join(ids)}")
        self.character_ids = ids


def status_code_for(exc: BaseException) -> int:
    """HTTP status a router should answer with for a pipeline error."""
    if isinstance(exc, BatchGenerationError):
        return status_code_for(exc.cause)
    if isinstance(exc, JobTimeoutError):
        return 504
    if isinstance(exc, (TransportError, ProviderRejectedError, JobFailedError, ReferenceResolutionError)):
        return 502
    if isinstance(exc, StaleCandidateError):
        return 409
    if isinstance(exc, (UnknownCharacterError, ValueError)):
        return 422
    if isinstance(exc, (IndexError, KeyError)):
        return 404
    return 500
