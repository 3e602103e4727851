import httpx
import pytest

from inndesign.errors import (
    DEFAULT_USER_MESSAGES,
    ErrorClassifier,
    ErrorCode,
    InvalidPromptError,
    ProviderError,
    StorageError,
    format_for_api,
    format_for_logging,
    make_error,
)

classifier = ErrorClassifier()


class TestRetryableTable:
    @pytest.mark.parametrize("code", [
        ErrorCode.PROVIDER_UNAVAILABLE,
        ErrorCode.RATE_LIMIT_EXCEEDED,
        ErrorCode.GENERATION_FAILED,
        ErrorCode.STORAGE_FAILED,
        ErrorCode.UNKNOWN_ERROR,
    ])
    def test_retryable(self, code):
        assert make_error(code, "x").retryable is True

    @pytest.mark.parametrize("code", [
        ErrorCode.API_KEY_INVALID,
        ErrorCode.COST_LIMIT_EXCEEDED,
        ErrorCode.INVALID_PROMPT,
    ])
    def test_not_retryable(self, code):
        assert make_error(code, "x").retryable is False

    def test_default_user_message(self):
        assert make_error(ErrorCode.UNKNOWN_ERROR, "boom").user_message == DEFAULT_USER_MESSAGES[ErrorCode.UNKNOWN_ERROR]


class TestOpenAIRules:
    @pytest.mark.parametrize("code,expected", [
        ("invalid_api_key", ErrorCode.API_KEY_INVALID),
        ("rate_limit_exceeded", ErrorCode.RATE_LIMIT_EXCEEDED),
        ("insufficient_quota", ErrorCode.COST_LIMIT_EXCEEDED),
        ("content_policy_violation", ErrorCode.INVALID_PROMPT),
        ("billing_not_active", ErrorCode.API_KEY_INVALID),
        ("something_new", ErrorCode.GENERATION_FAILED),
    ])
    def test_error_codes(self, code, expected):
        raw = ProviderError("openai", "failed", status_code=400, code=code)
        assert classifier.classify("openai", raw).code == expected

    @pytest.mark.parametrize("status,expected", [
        (401, ErrorCode.API_KEY_INVALID),
        (403, ErrorCode.API_KEY_INVALID),
        (429, ErrorCode.RATE_LIMIT_EXCEEDED),
        (500, ErrorCode.PROVIDER_UNAVAILABLE),
        (503, ErrorCode.PROVIDER_UNAVAILABLE),
        (400, ErrorCode.GENERATION_FAILED),
    ])
    def test_statuses(self, status, expected):
        raw = ProviderError("openai", "failed", status_code=status)
        assert classifier.classify("openai", raw).code == expected


class TestReplicateRules:
    @pytest.mark.parametrize("message,expected", [
        ("Unauthenticated", ErrorCode.API_KEY_INVALID),
        ("Rate limit reached", ErrorCode.RATE_LIMIT_EXCEEDED),
        ("Replicate prediction timeout", ErrorCode.PROVIDER_UNAVAILABLE),
        ("Insufficient funds on account", ErrorCode.COST_LIMIT_EXCEEDED),
        ("Model not found", ErrorCode.GENERATION_FAILED),
    ])
    def test_message_substrings(self, message, expected):
        raw = ProviderError("replicate", message)
        assert classifier.classify("replicate", raw).code == expected

    def test_server_error_status(self):
        raw = ProviderError("replicate", "Internal server error", status_code=502)
        record = classifier.classify("replicate", raw)
        assert record.code == ErrorCode.PROVIDER_UNAVAILABLE
        assert record.retryable is True

    def test_failed_prediction(self):
        raw = ProviderError("replicate", "CUDA out of memory")
        record = classifier.classify("replicate", raw)
        assert record.code == ErrorCode.GENERATION_FAILED
        assert "CUDA out of memory" in record.message

    def test_non_provider_exception_is_unknown(self):
        assert classifier.classify("replicate", RuntimeError("")).code == ErrorCode.UNKNOWN_ERROR


class TestGenericRules:
    def test_timeout_is_unavailable(self):
        record = classifier.classify("openai", httpx.ReadTimeout("slow"))
        assert record.code == ErrorCode.PROVIDER_UNAVAILABLE

    def test_transport_error_is_unavailable(self):
        record = classifier.classify("replicate", httpx.ConnectError("refused"))
        assert record.code == ErrorCode.PROVIDER_UNAVAILABLE

    def test_invalid_prompt(self):
        record = classifier.classify(None, InvalidPromptError("missing room", "room_type"))
        assert record.code == ErrorCode.INVALID_PROMPT
        assert record.retryable is False

    def test_unknown_provider(self):
        assert classifier.classify("midjourney", ValueError("x")).code == ErrorCode.UNKNOWN_ERROR

    @pytest.mark.parametrize("message,user_fragment", [
        ("Bucket not found", "configuration"),
        ("unauthorized", "access denied"),
        ("quota exceeded", "quota"),
        ("disk on fire", "saving your generated images"),
    ])
    def test_storage(self, message, user_fragment):
        record = classifier.classify(None, StorageError(message))
        assert record.code == ErrorCode.STORAGE_FAILED
        assert user_fragment in record.user_message


class TestFormatting:
    def test_api_body_hides_details(self):
        raw = ProviderError("openai", "bad key sk-secret", status_code=401, payload={"key": "sk-secret"})
        record = classifier.classify("openai", raw)
        body = format_for_api(record)
        assert body == {
            "success": False,
            "error": record.user_message,
            "code": "API_KEY_INVALID",
            "retryable": False,
        }
        assert "sk-secret" not in str(body)

    def test_api_debug_omits_payload(self):
        raw = ProviderError("openai", "x", status_code=500, payload={"secret": 1})
        body = format_for_api(classifier.classify("openai", raw), debug=True)
        assert "payload" not in body["details"]
        assert body["details"]["status_code"] == 500

    def test_logging_shape(self):
        record = make_error(ErrorCode.GENERATION_FAILED, "boom", details={"a": 1})
        entry = format_for_logging(record, {"user_id": "u"})
        assert entry["error"]["code"] == "GENERATION_FAILED"
        assert entry["error"]["details"] == {"a": 1}
        assert entry["context"] == {"user_id": "u"}
        assert "timestamp" in entry
