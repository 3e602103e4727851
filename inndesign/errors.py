"""Failure taxonomy for design generation.

Raw failures (provider HTTP errors, transport errors, storage errors, bad
templates) are mapped onto a closed set of codes. Each classified error has a
retryable flag from a static table and a user-facing message that never
contains provider payloads or credentials. Raw details stay on the record for
logging only.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import httpx

logger = logging.getLogger("inndesign.errors")


class ErrorCode(str, Enum):
    PROVIDER_UNAVAILABLE = "PROVIDER_UNAVAILABLE"
    API_KEY_INVALID = "API_KEY_INVALID"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    COST_LIMIT_EXCEEDED = "COST_LIMIT_EXCEEDED"
    INVALID_PROMPT = "INVALID_PROMPT"
    GENERATION_FAILED = "GENERATION_FAILED"
    STORAGE_FAILED = "STORAGE_FAILED"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


RETRYABLE_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.PROVIDER_UNAVAILABLE,
    ErrorCode.RATE_LIMIT_EXCEEDED,
    ErrorCode.GENERATION_FAILED,
    ErrorCode.STORAGE_FAILED,
    ErrorCode.UNKNOWN_ERROR,
})

DEFAULT_USER_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.PROVIDER_UNAVAILABLE: "The AI service is temporarily unavailable. Please try again in a few moments.",
    ErrorCode.API_KEY_INVALID: "There's a configuration issue with our AI service. Please contact support.",
    ErrorCode.RATE_LIMIT_EXCEEDED: "You're generating images too quickly. Please wait a moment before trying again.",
    ErrorCode.COST_LIMIT_EXCEEDED: "You've reached your generation limit. Please try again later or upgrade your plan.",
    ErrorCode.INVALID_PROMPT: "Your design description couldn't be processed. Please try a different description.",
    ErrorCode.GENERATION_FAILED: "Image generation failed. Please try again with different settings.",
    ErrorCode.STORAGE_FAILED: "There was an issue saving your generated images. Please try again.",
    ErrorCode.UNKNOWN_ERROR: "An unexpected error occurred. Please try again or contact support if the issue persists.",
}

HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.PROVIDER_UNAVAILABLE: 503,
    ErrorCode.API_KEY_INVALID: 502,
    ErrorCode.RATE_LIMIT_EXCEEDED: 429,
    ErrorCode.COST_LIMIT_EXCEEDED: 429,
    ErrorCode.INVALID_PROMPT: 400,
    ErrorCode.GENERATION_FAILED: 502,
    ErrorCode.STORAGE_FAILED: 502,
    ErrorCode.UNKNOWN_ERROR: 500,
}


class ProviderError(Exception):
    """Raised by provider adapters when a backend call fails."""

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        payload: Any = None,
    ):
        self.provider = provider
        self.message = message
        self.status_code = status_code
        self.code = code
        self.payload = payload
        super().__init__(f"{provider}: {message}" + (f" ({status_code})" if status_code else ""))


class InvalidPromptError(ValueError):
    def __init__(self, message: str, field_name: str | None = None):
        self.field_name = field_name
        super().__init__(message)


class StorageError(Exception):
    pass


@dataclass(frozen=True)
class ErrorRecord:
    code: ErrorCode
    message: str
    user_message: str
    retryable: bool
    details: dict[str, Any] = field(default_factory=dict)
    cause: BaseException | None = None


class GenerationFailedError(Exception):
    """Raised by the HTTP layer to surface a failed generation result."""

    def __init__(self, error: ErrorRecord):
        self.error = error
        super().__init__(error.message)


def make_error(
    code: ErrorCode,
    message: str,
    *,
    user_message: str | None = None,
    details: dict[str, Any] | None = None,
    cause: BaseException | None = None,
) -> ErrorRecord:
    return ErrorRecord(
        code=code,
        message=message,
        user_message=user_message or DEFAULT_USER_MESSAGES[code],
        retryable=code in RETRYABLE_CODES,
        details=details or {},
        cause=cause,
    )


def _raw_details(raw: BaseException) -> dict[str, Any]:
    details: dict[str, Any] = {"type": type(raw).__name__, "message": str(raw)}
    if isinstance(raw, ProviderError):
        details.update(status_code=raw.status_code, code=raw.code, payload=raw.payload)
    return details


class ErrorClassifier:
    """Maps provider-specific failure shapes into ``ErrorRecord``s."""

    def classify(self, provider_id: str | None, raw: BaseException) -> ErrorRecord:
        provider = getattr(provider_id, "value", provider_id) or "unknown"
        logger.error("%s provider error: %r", provider, raw)

        if isinstance(raw, InvalidPromptError):
            return make_error(ErrorCode.INVALID_PROMPT, str(raw), details=_raw_details(raw), cause=raw)
        if isinstance(raw, StorageError):
            return self.classify_storage_error(raw)
        if isinstance(raw, httpx.TimeoutException):
            return make_error(
                ErrorCode.PROVIDER_UNAVAILABLE,
                f"{provider} request timeout",
                user_message="The generation is taking longer than expected. Please try again.",
                details=_raw_details(raw),
                cause=raw,
            )
        if isinstance(raw, httpx.TransportError):
            return make_error(
                ErrorCode.PROVIDER_UNAVAILABLE,
                f"Network error talking to {provider}",
                details=_raw_details(raw),
                cause=raw,
            )

        if provider == "openai":
            return self._classify_openai(raw)
        if provider == "replicate":
            return self._classify_replicate(raw)

        return make_error(
            ErrorCode.UNKNOWN_ERROR,
            f"Unknown provider error: {raw}",
            details=_raw_details(raw),
            cause=raw,
        )

    def _classify_openai(self, raw: BaseException) -> ErrorRecord:
        details = _raw_details(raw)
        code = getattr(raw, "code", None)
        status = getattr(raw, "status_code", None)

        if code:
            if code in ("invalid_api_key", "unauthorized"):
                return make_error(ErrorCode.API_KEY_INVALID, "OpenAI API key is invalid", details=details, cause=raw)
            if code == "rate_limit_exceeded":
                return make_error(
                    ErrorCode.RATE_LIMIT_EXCEEDED,
                    "OpenAI rate limit exceeded",
                    user_message="Too many requests. Please wait a few minutes before trying again.",
                    details=details,
                    cause=raw,
                )
            if code == "insufficient_quota":
                return make_error(
                    ErrorCode.COST_LIMIT_EXCEEDED,
                    "OpenAI quota exceeded",
                    user_message="The image service quota is exhausted. Please try again later.",
                    details=details,
                    cause=raw,
                )
            if code == "content_policy_violation":
                return make_error(
                    ErrorCode.INVALID_PROMPT,
                    "Content policy violation",
                    user_message="Your design description violates content policy. Please try a different description.",
                    details=details,
                    cause=raw,
                )
            if code == "billing_not_active":
                return make_error(ErrorCode.API_KEY_INVALID, "OpenAI billing not active", details=details, cause=raw)
            return make_error(ErrorCode.GENERATION_FAILED, f"OpenAI error: {code}", details=details, cause=raw)

        if status is not None:
            if status in (401, 403):
                return make_error(ErrorCode.API_KEY_INVALID, "OpenAI unauthorized", details=details, cause=raw)
            if status == 429:
                return make_error(ErrorCode.RATE_LIMIT_EXCEEDED, "OpenAI rate limited", details=details, cause=raw)
            if status >= 500:
                return make_error(ErrorCode.PROVIDER_UNAVAILABLE, "OpenAI server error", details=details, cause=raw)

        if isinstance(raw, ProviderError) or str(raw):
            return make_error(ErrorCode.GENERATION_FAILED, f"OpenAI error: {raw}", details=details, cause=raw)

        return make_error(ErrorCode.UNKNOWN_ERROR, "Unknown OpenAI error", details=details, cause=raw)

    def _classify_replicate(self, raw: BaseException) -> ErrorRecord:
        details = _raw_details(raw)
        message = (getattr(raw, "message", None) or str(raw)).lower()
        status = getattr(raw, "status_code", None)

        if message:
            if "authentication" in message or "unauthenticated" in message:
                return make_error(ErrorCode.API_KEY_INVALID, "Replicate authentication failed", details=details, cause=raw)
            if "rate limit" in message:
                return make_error(ErrorCode.RATE_LIMIT_EXCEEDED, "Replicate rate limit exceeded", details=details, cause=raw)
            if "timeout" in message or "timed out" in message:
                return make_error(
                    ErrorCode.PROVIDER_UNAVAILABLE,
                    "Replicate request timeout",
                    user_message="The generation is taking longer than expected. Please try again.",
                    details=details,
                    cause=raw,
                )
            if "insufficient funds" in message:
                return make_error(
                    ErrorCode.COST_LIMIT_EXCEEDED,
                    "Replicate insufficient funds",
                    user_message="The image service account needs funding. Please try again later.",
                    details=details,
                    cause=raw,
                )
            if "model not found" in message:
                return make_error(
                    ErrorCode.GENERATION_FAILED,
                    "Replicate model not found",
                    user_message="The selected AI model is not available. Please try a different model.",
                    details=details,
                    cause=raw,
                )

        if status is not None:
            if status in (401, 403):
                return make_error(ErrorCode.API_KEY_INVALID, "Replicate unauthorized", details=details, cause=raw)
            if status == 429:
                return make_error(ErrorCode.RATE_LIMIT_EXCEEDED, "Replicate rate limited", details=details, cause=raw)
            if status in (500, 502, 503, 504):
                return make_error(ErrorCode.PROVIDER_UNAVAILABLE, "Replicate server error", details=details, cause=raw)
            return make_error(ErrorCode.GENERATION_FAILED, f"Replicate HTTP {status}", details=details, cause=raw)

        if isinstance(raw, ProviderError):
            # prediction reached a terminal "failed" state
            return make_error(ErrorCode.GENERATION_FAILED, f"Replicate prediction failed: {raw.message}", details=details, cause=raw)

        return make_error(ErrorCode.UNKNOWN_ERROR, "Unknown Replicate error", details=details, cause=raw)

    def classify_storage_error(self, raw: BaseException) -> ErrorRecord:
        details = _raw_details(raw)
        message = str(raw).lower()
        if "not found" in message:
            return make_error(
                ErrorCode.STORAGE_FAILED,
                "Storage bucket not found",
                user_message="Storage configuration issue. Please contact support.",
                details=details,
                cause=raw,
            )
        if "unauthorized" in message:
            return make_error(
                ErrorCode.STORAGE_FAILED,
                "Storage unauthorized",
                user_message="Storage access denied. Please contact support.",
                details=details,
                cause=raw,
            )
        if "quota" in message:
            return make_error(
                ErrorCode.STORAGE_FAILED,
                "Storage quota exceeded",
                user_message="Storage quota exceeded. Please contact support.",
                details=details,
                cause=raw,
            )
        return make_error(ErrorCode.STORAGE_FAILED, "Storage operation failed", details=details, cause=raw)


def format_for_api(error: ErrorRecord, *, debug: bool = False) -> dict[str, Any]:
    body: dict[str, Any] = {
        "success": False,
        "error": error.user_message,
        "code": error.code.value,
        "retryable": error.retryable,
    }
    if debug:
        body["details"] = {k: v for k, v in error.details.items() if k != "payload"}
    return body


def format_for_logging(error: ErrorRecord, context: dict[str, Any] | None = None) -> dict[str, Any]:
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error": {
            "code": error.code.value,
            "message": error.message,
            "user_message": error.user_message,
            "retryable": error.retryable,
            "details": error.details,
        },
        "context": context or {},
    }
