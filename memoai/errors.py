"""
Error taxonomy for LLM operations, plus error logging utilities.

Every failure surfaced by the providers, the service registry and the tag
service is an LLMError subclass. Vault failures form a separate VaultError
tree since they never come from a remote backend.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class LLMError(Exception):
    """Base class for LLM operation failures."""


class ProviderNotConfiguredError(LLMError):
    """No credential/host set, or no active provider."""

    def __init__(self, message: str = "llm provider not configured"):
        super().__init__(message)


class ProviderNotRegisteredError(LLMError):
    """The requested provider type was never registered."""

    def __init__(self, provider_type):
        self.provider_type = provider_type
        super().__init__(f"provider {provider_type} not registered")


class InvalidAPIKeyError(LLMError):
    """HTTP 401 from the backend."""

    def __init__(self, message: str = "invalid or missing API key"):
        super().__init__(message)


class RateLimitedError(LLMError):
    """HTTP 429 from the backend."""

    def __init__(self, message: str = "rate limit exceeded"):
        super().__init__(message)


class RateLimitExceededError(RateLimitedError):
    """Local per-user quota exceeded (no request was sent)."""

    def __init__(self, message: str = "rate limit exceeded for tag suggestions"):
        super().__init__(message)


class ProviderUnavailableError(LLMError):
    """HTTP 502/503/504, or the backend could not be reached."""

    def __init__(self, message: str = "provider service unavailable"):
        super().__init__(message)


class ContextTooLongError(LLMError):
    def __init__(self, message: str = "input exceeds maximum context length"):
        super().__init__(message)


class ModelNotFoundError(LLMError):
    def __init__(self, message: str = "model not found"):
        super().__init__(message)


class APIError(LLMError):
    """Any other non-2xx response."""

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        self.message = message
        super().__init__(f"API error (status {status_code}): {message}")


class ResponseParseError(LLMError):
    """The backend answered 2xx with a body we could not decode."""


class CapabilityNotSupportedError(LLMError):
    """The provider has no such capability (e.g. embeddings)."""


class FeatureDisabledError(LLMError):
    """The feature is switched off in settings."""


class JobQueueFullError(LLMError):
    def __init__(self, message: str = "job queue is full"):
        super().__init__(message)


class CancelledError(LLMError):
    def __init__(self, message: str = "context cancelled"):
        super().__init__(message)


class DeadlineExceededError(CancelledError):
    def __init__(self, message: str = "context deadline exceeded"):
        super().__init__(message)


# -----------------------------------------------------------------------------
# Vault errors
# -----------------------------------------------------------------------------

class VaultError(Exception):
    """Base class for credential vault failures. Never retried."""


class KeyTooShortError(VaultError):
    def __init__(self, message: str = "encryption key too short"):
        super().__init__(message)


class InvalidCiphertextError(VaultError):
    def __init__(self, message: str = "invalid ciphertext"):
        super().__init__(message)


class KeyNotFoundError(VaultError):
    def __init__(self, message: str = "API key not found"):
        super().__init__(message)


class KeyAlreadyExistsError(VaultError):
    def __init__(self, message: str = "API key already exists for this provider"):
        super().__init__(message)


class InvalidAPIKeyFormatError(ValueError):
    """API key does not match the provider's expected format."""


# -----------------------------------------------------------------------------
# Classification for user-facing surfaces
# -----------------------------------------------------------------------------

_USER_MESSAGES = {
    "not_configured": "AI features require an LLM provider to be configured in settings.",
    "disabled": "AI tag suggestions are disabled in settings.",
    "rate_limited": "Rate limit exceeded. Please try again later.",
    "busy": "The server is handling too many AI requests. Please try again shortly.",
    "invalid_key": "The configured API key was rejected by the provider. Check it in settings.",
    "unavailable": "The LLM provider is currently unavailable. Please try again later.",
    "error": "The AI request failed.",
}


def error_kind(exc: BaseException) -> str:
    """
    Classify an exception for the editing surface.

    Returns one of: not_configured, disabled, rate_limited, busy,
    invalid_key, unavailable, error.
    """
    if isinstance(exc, ProviderNotConfiguredError):
        return "not_configured"
    if isinstance(exc, FeatureDisabledError):
        return "disabled"
    if isinstance(exc, RateLimitedError):
        return "rate_limited"
    if isinstance(exc, JobQueueFullError):
        return "busy"
    if isinstance(exc, InvalidAPIKeyError):
        return "invalid_key"
    if isinstance(exc, (ProviderUnavailableError, DeadlineExceededError)):
        return "unavailable"
    return "error"


def user_message(exc: BaseException) -> str:
    """Guidance text distinct per error kind."""
    return _USER_MESSAGES[error_kind(exc)]


# -----------------------------------------------------------------------------
# Error log
# -----------------------------------------------------------------------------

def _error_log_path() -> Path:
    """Resolve error log path, respecting MEMOAI_HOME."""
    home = os.environ.get("MEMOAI_HOME")
    if home:
        return Path(home) / "memoai-errors.log"
    return Path.home() / ".memoai" / "memoai-errors.log"


def log_exception(exc: Exception, context: str = "", log_path: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        log_path: Override for the log file location

    Returns:
        Path to the error log file
    """
    log_path = log_path or _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
