"""
ERROR TAXONOMY

Only ValidationError and InternalError ever reach the caller.
Everything else is absorbed by the next fallback tier or logged.
"""

from typing import Optional


class HoneypotError(Exception):
    """Base class for every error raised inside the engagement pipeline"""


class ValidationError(HoneypotError):
    """Inbound request is missing a required field. Raised before any state is touched."""


class ProviderError(HoneypotError):
    """A text-generation provider failed (auth, timeout, malformed or empty output)"""

    def __init__(self, provider: str, message: str, cause: Optional[BaseException] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.cause = cause


class ClassifierUnavailable(HoneypotError):
    """Semantic detection stage unreachable or its verdict could not be parsed"""


class PersistenceError(HoneypotError):
    """Evidence store could not be written"""


class ReportError(HoneypotError):
    """Final-result report could not be delivered"""


class InternalError(HoneypotError):
    """Unexpected fault inside the pipeline. The message is safe to show callers."""

    SAFE_MESSAGE = "Internal processing error"

    def __init__(self, message: str = SAFE_MESSAGE):
        super().__init__(message)
