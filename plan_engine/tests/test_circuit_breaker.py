"""Tests for the circuit breaker and the typed API errors."""

import pytest
import requests

from plan_engine.circuit_breaker import CircuitBreaker, CircuitState
from plan_engine.exceptions import ApiErrorType, PlanApiError, RateLimitError, ValidationError


def _boom():
    raise ValueError("upstream down")


class TestCircuitBreaker:
    def test_success_passes_through(self):
        breaker = CircuitBreaker("test")
        assert breaker.call(lambda x: x * 2, 21) == 42
        assert breaker.state == CircuitState.CLOSED

    def test_opens_at_threshold(self):
        breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=60)
        for _ in range(2):
            with pytest.raises(ValueError):
                breaker.call(_boom)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(PlanApiError) as exc:
            breaker.call(lambda: "never called")
        assert exc.value.error_type == ApiErrorType.CIRCUIT_OPEN
        assert not exc.value.is_retryable

    def test_half_open_success_closes(self):
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=-1)
        with pytest.raises(ValueError):
            breaker.call(_boom)
        assert breaker.state == CircuitState.OPEN

        assert breaker.call(lambda: "ok") == "ok"
        assert breaker.state == CircuitState.CLOSED
        assert breaker.stats()["failure_count"] == 0

    def test_half_open_failure_reopens(self):
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=-1)
        with pytest.raises(ValueError):
            breaker.call(_boom)
        with pytest.raises(ValueError):
            breaker.call(_boom)
        assert breaker.state == CircuitState.OPEN

    def test_half_open_call_limit(self):
        breaker = CircuitBreaker("test", half_open_max_calls=1)
        breaker._state = CircuitState.HALF_OPEN
        breaker._half_open_calls = 1
        with pytest.raises(PlanApiError) as exc:
            breaker.call(lambda: "ok")
        assert exc.value.error_type == ApiErrorType.CIRCUIT_HALF_OPEN

    def test_stats_and_reset(self):
        breaker = CircuitBreaker("test", failure_threshold=5)
        with pytest.raises(ValueError):
            breaker.call(_boom)
        stats = breaker.stats()
        assert stats["state"] == "CLOSED"
        assert stats["failure_count"] == 1
        assert stats["last_failure_time"] > 0

        breaker.reset()
        assert breaker.stats()["failure_count"] == 0


class TestPlanApiError:
    @pytest.mark.parametrize("status,error_type,retryable", [
        (400, ApiErrorType.INVALID_PARAMETERS, False),
        (401, ApiErrorType.UNAUTHORIZED, False),
        (403, ApiErrorType.FORBIDDEN, False),
        (404, ApiErrorType.NOT_FOUND, False),
        (429, ApiErrorType.RATE_LIMITED, True),
        (500, ApiErrorType.SERVER_ERROR, True),
        (502, ApiErrorType.SERVICE_UNAVAILABLE, True),
        (503, ApiErrorType.SERVICE_UNAVAILABLE, True),
        (504, ApiErrorType.SERVICE_UNAVAILABLE, True),
        (507, ApiErrorType.SERVER_ERROR, True),
        (418, ApiErrorType.UNKNOWN, False),
    ])
    def test_from_http_error(self, status, error_type, retryable):
        err = PlanApiError.from_http_error(status, "reason", {"tdsp_duns": "x"})
        assert err.error_type == error_type
        assert err.is_retryable is retryable
        assert err.context["status_code"] == status
        assert err.context["tdsp_duns"] == "x"

    @pytest.mark.parametrize("message,error_type", [
        ("Read timed out", ApiErrorType.TIMEOUT),
        ("connect timeout=10", ApiErrorType.TIMEOUT),
        ("getaddrinfo failed", ApiErrorType.DNS_ERROR),
        ("Temporary failure in name resolution", ApiErrorType.DNS_ERROR),
        ("Connection reset by peer", ApiErrorType.NETWORK_ERROR),
    ])
    def test_from_network_error(self, message, error_type):
        err = PlanApiError.from_network_error(requests.ConnectionError(message))
        assert err.error_type == error_type
        assert err.is_retryable

    def test_user_message_mentions_city(self):
        err = PlanApiError(ApiErrorType.TIMEOUT, "slow", {"city": "Dallas"})
        assert "for Dallas" in err.user_message
        assert " for " not in PlanApiError(ApiErrorType.TIMEOUT, "slow").user_message

    def test_unknown_type_gets_default_message(self):
        err = PlanApiError(ApiErrorType.CACHE_ERROR, "cache broke")
        assert err.user_message.startswith("An unexpected error occurred")

    def test_to_dict(self):
        d = PlanApiError(ApiErrorType.NOT_FOUND, "missing", {"city": "x"}).to_dict()
        assert d == {
            "code": "NOT_FOUND",
            "message": "missing",
            "userMessage": d["userMessage"],
            "retryable": False,
            "context": {"city": "x"},
        }


class TestEngineErrors:
    def test_validation_error_code(self):
        err = ValidationError("bad zip", "INVALID_FORMAT", {"zip_code": "1"})
        assert err.code == "INVALID_FORMAT"
        assert err.details == {"zip_code": "1"}
        assert str(err) == "bad zip"

    def test_rate_limit_error(self):
        assert RateLimitError("slow down").retry_after == 60
