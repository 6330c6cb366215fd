"""Error taxonomy for the content pipeline.

Each error carries a ``retryable`` flag that the orchestrator reads when it
decides whether a queue delivery should be acknowledged or redelivered.
"""


class ContentPipelineError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = True


class ValidationError(ContentPipelineError):
    """Bad input from a caller. Never retried."""

    retryable = False


class NotFoundError(ContentPipelineError):
    """A job or content record does not exist. Never retried."""

    retryable = False


class ExternalServiceError(ContentPipelineError):
    """A remote call failed or returned an error payload."""

    retryable = True


class RemoteNotFoundError(ExternalServiceError):
    """The video service does not know a resource yet, or any more.

    Stream listings lag behind writes, so this stays retryable.
    """


class PollingTimeoutError(ContentPipelineError):
    """A polling loop exceeded its wait bound."""

    retryable = True


class IndexingError(ContentPipelineError):
    """Vector indexing failed. Logged by the orchestrator, never fatal to a job."""

    retryable = False


def is_retryable(error: BaseException) -> bool:
    """Classify an exception for queue redelivery.

    Pipeline errors answer for themselves; anything else is an unexpected
    failure and is treated as transient.
    """
    if isinstance(error, ContentPipelineError):
        return error.retryable
    return True


def short_reason(text: str, limit: int = 200) -> str:
    """Trim remote error text before it is logged or stored on a job."""
    text = " ".join(text.split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text
