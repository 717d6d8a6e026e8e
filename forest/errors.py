"""Error taxonomy for the forest engine.

Executors never let these escape across the Dispatcher boundary: they are
caught inside the executor and turned into an Outcome.
"""


class ForestError(Exception):
    """Base class for all forest errors."""


class ConfigError(ForestError):
    """Configuration generation is invalid. The previous generation keeps running."""


class PublishError(ForestError):
    """The stream refused or failed to store an event. Always retried by the caller."""


class ValidationRejection(ForestError):
    """Permanent input or output shape problem. Dead-lettered without retry."""


class ParseRejection(ValidationRejection):
    """Non-deterministic output did not satisfy the response contract."""

    def __init__(self, message: str, raw_response: str = "") -> None:
        super().__init__(message)
        self.raw_response = raw_response


class TransientFailure(ForestError):
    """Network, timeout or resource contention. Retried with backoff."""


class ProviderFailure(TransientFailure):
    """Inference provider error. Same retry path as TransientFailure."""
