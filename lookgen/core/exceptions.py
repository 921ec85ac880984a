"""
Global Exception Handling

Error taxonomy for the generation core and the user-facing
classification of failure messages.
"""

from typing import Optional, Dict, Any, List, Tuple

from lookgen.core.logging import job_id_var


# =============================================================================
# Failure Classification
# =============================================================================

# Gemini/worker policy block phrases
POLICY_BLOCK_PATTERNS: List[str] = [
    "safety",
    "blocked",
    "policy",
    "harassment",
    "sexually explicit",
    "dangerous content",
    "generation blocked",
    "safety block",
]

# Ordered (phrases, user message) table. First match wins.
# Compatibility shim until the worker returns structured error codes.
FAILURE_PHRASES: List[Tuple[Tuple[str, ...], str]] = [
    (
        tuple(POLICY_BLOCK_PATTERNS),
        "This image was blocked by the model's safety filters. "
        "Try different items or another photo.",
    ),
    (
        ("access outfit items", "don't follow"),
        "Unable to access some items in this outfit. "
        "You may need to follow the outfit creator to try it on.",
    ),
    (
        ("network", "connection"),
        "Network error. Please check your connection and try again.",
    ),
    (
        ("url", "configuration"),
        "Configuration error. Please contact support if this persists.",
    ),
    (
        ("timeout", "timed out"),
        "Generation is taking longer than expected. "
        "Check your outfits page to see when it's ready.",
    ),
]

DEFAULT_FAILURE_MESSAGE = "Generation failed"


def is_policy_block_error(message: Optional[str]) -> bool:
    """Check if an error message indicates a model policy block."""
    if not message:
        return False
    normalized = message.lower()
    return any(pattern in normalized for pattern in POLICY_BLOCK_PATTERNS)


def classify_failure(message: Optional[str]) -> str:
    """Map a raw failure message to the message shown to the user."""
    if not message:
        return DEFAULT_FAILURE_MESSAGE

    normalized = message.lower()
    for phrases, user_message in FAILURE_PHRASES:
        if any(phrase in normalized for phrase in phrases):
            return user_message

    return message


# =============================================================================
# Custom Exceptions
# =============================================================================

class LookgenBaseException(Exception):
    """Base exception for the generation core."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        job_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.job_id = job_id or job_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)

    @property
    def user_message(self) -> str:
        """Message safe to show in the interactive path."""
        return classify_failure(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.message,
            "user_message": self.user_message,
            "error_type": type(self).__name__,
            "code": self.code,
            "job_id": self.job_id,
            "stage": self.stage,
            "details": self.details,
        }


class ValidationError(LookgenBaseException):
    """Raised when required reference assets or inputs are missing."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)

    @property
    def user_message(self) -> str:
        return self.message


class TransportError(LookgenBaseException):
    """Raised when a call to the remote service fails at the network layer."""

    def __init__(self, message: str, service: str = "generation", http_status: Optional[int] = None, **kwargs):
        super().__init__(message, code=502, **kwargs)
        self.details["service"] = service
        self.details["http_status"] = http_status


class JobFailedError(LookgenBaseException):
    """Raised when a job reaches the terminal failed status."""

    def __init__(self, message: str, job_type: Optional[str] = None, **kwargs):
        super().__init__(message, code=500, **kwargs)
        self.details["job_type"] = job_type

    @property
    def is_policy_block(self) -> bool:
        return is_policy_block_error(self.message)


class PollingTimeoutError(LookgenBaseException):
    """Raised when max attempts are exhausted before a terminal status."""

    def __init__(self, message: str = "Polling timeout - max attempts reached", attempts: int = 0, **kwargs):
        super().__init__(message, code=504, **kwargs)
        self.details["attempts"] = attempts


class CompositingError(LookgenBaseException):
    """Raised when a raster load, draw or encode step fails."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, stage=kwargs.pop("stage", "compositing"), **kwargs)


class StorageError(LookgenBaseException):
    """Raised when storage operations fail."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class GenerationInProgressError(LookgenBaseException):
    """Raised when a second pipeline is started while one is active."""

    def __init__(self, message: str = "A generation is already in progress", **kwargs):
        super().__init__(message, code=409, **kwargs)

    @property
    def user_message(self) -> str:
        return self.message


class GenerationCancelledError(LookgenBaseException):
    """Raised into a pipeline whose local tracking was cancelled."""

    def __init__(self, message: str = "Generation cancelled", **kwargs):
        super().__init__(message, code=499, **kwargs)

    @property
    def user_message(self) -> str:
        return self.message
