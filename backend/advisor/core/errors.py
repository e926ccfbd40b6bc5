"""Exception hierarchy for the advisor service.

Model backend failures are normalized into ``AIClientError`` with one of a
small set of error types and a message that is safe to show to end users.
Raw provider text stays in logs and in ``context``.
"""
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class AdvisorError(Exception):
    """Base exception class for advisor errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "ADVISOR_ERROR",
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.context = context or {}
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "context": self.context,
            "cause": str(self.cause) if self.cause else None,
        }


# ===== Configuration Errors =====

class ConfigurationError(AdvisorError):
    """Raised when there's an invalid configuration."""

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        super().__init__(
            message=message,
            error_code="CONFIG_ERROR",
            context={"config_key": config_key} if config_key else {},
            **kwargs,
        )


# ===== Model Backend Errors =====

class AIErrorType(str, Enum):
    RATE_LIMIT = "rate_limit"
    AUTH_ERROR = "auth_error"
    PROVIDER_ERROR = "provider_error"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


USER_SAFE_MESSAGES: Dict[AIErrorType, str] = {
    AIErrorType.RATE_LIMIT: (
        "Our AI advisor is receiving a lot of requests right now. "
        "Please try again in a moment."
    ),
    AIErrorType.AUTH_ERROR: (
        "The AI advisor is temporarily unavailable due to a configuration issue."
    ),
    AIErrorType.PROVIDER_ERROR: (
        "The AI provider is having trouble right now. Please try again shortly."
    ),
    AIErrorType.TIMEOUT: (
        "The AI advisor took too long to respond. Please try again."
    ),
    AIErrorType.UNKNOWN: (
        "Something went wrong while generating advice. Please try again."
    ),
}


class AIClientError(AdvisorError):
    """Raised when a model backend call fails after retries."""

    def __init__(
        self,
        error_type: AIErrorType,
        model: Optional[str] = None,
        status_code: Optional[int] = None,
        detail: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(
            message=USER_SAFE_MESSAGES[error_type],
            error_code=f"AI_{error_type.value.upper()}",
            context={
                "model": model,
                "status_code": status_code,
                "detail": detail,
            },
            cause=cause,
        )
        self.error_type = error_type
        self.model = model
        self.status_code = status_code

    @property
    def user_message(self) -> str:
        return self.message


class MissingAPIKeyError(AIClientError):
    """Raised when a backend is selected but its API key is not configured."""

    def __init__(self, model: str, env_var: str):
        super().__init__(
            AIErrorType.AUTH_ERROR,
            model=model,
            detail=f"environment variable {env_var} is not set",
        )
        self.env_var = env_var


class ProviderResponseError(Exception):
    """Raised when a backend answers 2xx with a body we cannot interpret."""


# ===== Subscription Errors =====

class SubscriptionNotFoundError(AdvisorError):
    """Raised when a user has no subscription record."""

    def __init__(self, user_id: str):
        super().__init__(
            message=f"No subscription found for user {user_id}",
            error_code="SUBSCRIPTION_NOT_FOUND",
            context={"user_id": user_id},
        )


class OrchestratorNotApplicableError(AdvisorError):
    """Raised when an orchestrator is invoked without the data it requires."""

    def __init__(self, orchestrator: str, reason: str):
        super().__init__(
            message=reason,
            error_code="ORCHESTRATOR_NOT_APPLICABLE",
            context={"orchestrator": orchestrator},
        )


# ===== Classification =====

RETRYABLE_TRANSPORT_ERRORS = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


def _status_code(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


def is_retryable_error(exc: BaseException) -> bool:
    """HTTP 429, HTTP 5xx, transport timeouts and connection resets are retryable."""
    status = _status_code(exc)
    if status is not None:
        return status == 429 or status >= 500
    return isinstance(exc, RETRYABLE_TRANSPORT_ERRORS)


def classify_error(exc: BaseException) -> AIErrorType:
    """Map a raw backend failure to an AIErrorType."""
    if isinstance(exc, AIClientError):
        return exc.error_type
    if isinstance(exc, httpx.TimeoutException):
        return AIErrorType.TIMEOUT

    status = _status_code(exc)
    if status is not None:
        if status == 429:
            return AIErrorType.RATE_LIMIT
        if status in (401, 403):
            return AIErrorType.AUTH_ERROR
        if status == 408:
            return AIErrorType.TIMEOUT
        if status >= 500:
            return AIErrorType.PROVIDER_ERROR
        return AIErrorType.UNKNOWN

    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError, ProviderResponseError)):
        return AIErrorType.PROVIDER_ERROR
    return AIErrorType.UNKNOWN


def to_client_error(exc: BaseException, model: Optional[str] = None) -> AIClientError:
    """Wrap any backend failure into an AIClientError, keeping the cause."""
    if isinstance(exc, AIClientError):
        return exc
    return AIClientError(
        classify_error(exc),
        model=model,
        status_code=_status_code(exc),
        detail=str(exc),
        cause=exc,
    )
