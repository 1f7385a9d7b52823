from __future__ import annotations


class GenerationError(Exception):
    """Base class; `code` is what gets stored in error_code."""

    code = "GENERATION_FAILED"


class InvalidRequestError(GenerationError):
    code = "INVALID_REQUEST"


class NotFoundError(GenerationError):
    code = "NOT_FOUND"


class ProviderError(GenerationError):
    code = "PROVIDER_ERROR"


class ProviderConfigurationError(ProviderError):
    code = "PROVIDER_NOT_CONFIGURED"


class ProviderResponseError(ProviderError):
    """Provider payload did not match the declared response schema."""

    code = "PROVIDER_BAD_RESPONSE"


class ProviderSubmissionError(ProviderError):
    code = "SUBMISSION_FAILED"


class ProviderPollError(ProviderError):
    """A single poll call failed. The polling loop keeps going."""

    code = "POLL_ERROR"


class ProviderTerminalFailure(ProviderError):
    code = "PROVIDER_FAILED"


class UnsupportedStageError(ProviderError):
    code = "UNSUPPORTED_STAGE"


class PollTimeoutError(GenerationError):
    code = "TIMEOUT"


class PipelineStageFailure(GenerationError):
    code = "PIPELINE_STAGE_FAILED"

    def __init__(self, step: str, message: str):
        super().__init__(message)
        self.step = step


class JobStateError(GenerationError):
    """Illegal transition, e.g. mutating a job that is already terminal."""

    code = "INVALID_TRANSITION"


class RevisionConflictError(JobStateError):
    code = "REVISION_CONFLICT"


class ArtifactNotPersistedError(GenerationError):
    code = "ARTIFACT_NOT_PERSISTED"


class JobCancelledError(GenerationError):
    code = "CANCELLED"


def error_code(e: BaseException) -> str:
    if isinstance(e, GenerationError):
        return e.code
    return GenerationError.code
