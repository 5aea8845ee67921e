from pagebot.services.llm import LLMError
from pagebot.services.result import Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("verified")
        assert result.ok is True
        assert result.value == "verified"
        assert result.error is None

    def test_success_with_different_types(self):
        assert Result.success(42).value == 42
        assert Result.success({"stage": "Interested"}).value == {"stage": "Interested"}


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("No LLM configured", "no_llm")
        assert result.ok is False
        assert result.error == "No LLM configured"
        assert result.error_code == "no_llm"
        assert result.value is None

    def test_failure_default_code(self):
        assert Result.failure("Error message").error_code == "unknown"

    def test_from_exception_keeps_type_and_message(self):
        result = Result.from_exception(LLMError("rate limited", status_code=429), "llm_error")
        assert result.ok is False
        assert result.error == "LLMError: rate limited"
        assert result.error_code == "llm_error"


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success("actual value").unwrap_or("default") == "actual value"

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("Error", "code").unwrap_or("default") == "default"

    def test_unwrap_or_with_none_value(self):
        assert Result.success(None).unwrap_or("default") is None
