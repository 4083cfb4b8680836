"""Exception types for the plan engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class PlanEngineError(Exception):
    """Base exception for the plan engine."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(PlanEngineError):
    """Missing or invalid configuration."""

    pass


class ValidationError(PlanEngineError):
    """Request or input validation failure, carries a machine-readable code."""

    def __init__(self, message: str, code: str = "VALIDATION_ERROR",
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.code = code


class RateLimitError(PlanEngineError):
    """Client exceeded its request window."""

    def __init__(self, message: str, retry_after: int = 60,
                 details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.retry_after = retry_after


class ApiErrorType(str, Enum):
    # Network
    TIMEOUT = "TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    DNS_ERROR = "DNS_ERROR"

    # HTTP
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    RATE_LIMITED = "RATE_LIMITED"
    SERVER_ERROR = "SERVER_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"

    # Pricing / ERCOT
    INVALID_TDSP = "INVALID_TDSP"
    NO_PLANS_AVAILABLE = "NO_PLANS_AVAILABLE"
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    DATA_VALIDATION_ERROR = "DATA_VALIDATION_ERROR"
    ESIID_LOOKUP_ERROR = "ESIID_LOOKUP_ERROR"
    ESIID_NOT_FOUND = "ESIID_NOT_FOUND"

    # Circuit breaker
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    CIRCUIT_HALF_OPEN = "CIRCUIT_HALF_OPEN"

    # Cache / fallback
    CACHE_ERROR = "CACHE_ERROR"
    FALLBACK_UNAVAILABLE = "FALLBACK_UNAVAILABLE"

    UNKNOWN = "UNKNOWN"


_USER_MESSAGES = {
    ApiErrorType.TIMEOUT: "The service is taking longer than usual to respond{city}. Please try again in a moment.",
    ApiErrorType.NETWORK_ERROR: "We're experiencing connectivity issues{city}. Please check your internet connection and try again.",
    ApiErrorType.RATE_LIMITED: "Too many requests have been made{city}. Please wait a moment before trying again.",
    ApiErrorType.SERVICE_UNAVAILABLE: "Our electricity plan service is temporarily unavailable{city}. Please try again in a few minutes.",
    ApiErrorType.INVALID_TDSP: "We couldn't find electricity plans for your area{city}. Please verify your location is in a deregulated Texas market.",
    ApiErrorType.NO_PLANS_AVAILABLE: "No electricity plans are currently available{city}. Try adjusting your filters or check back later.",
    ApiErrorType.INVALID_PARAMETERS: "Your search criteria{city} aren't valid. Please adjust your filters and try again.",
    ApiErrorType.CIRCUIT_OPEN: "Our electricity plan service{city} is temporarily experiencing issues. We're working to restore it quickly.",
    ApiErrorType.UNAUTHORIZED: "Authentication error occurred{city}. Please refresh the page and try again.",
    ApiErrorType.FORBIDDEN: "Access denied to electricity plan data{city}. Please contact support if this continues.",
    ApiErrorType.SERVER_ERROR: "Our servers are experiencing issues{city}. Please try again in a moment.",
    ApiErrorType.DATA_VALIDATION_ERROR: "The electricity plan data{city} appears to be incomplete. Please try again or contact support.",
    ApiErrorType.FALLBACK_UNAVAILABLE: "All electricity plan services{city} are currently unavailable. Please try again later.",
    ApiErrorType.ESIID_NOT_FOUND: "We couldn't find an electric meter at that address{city}. Please check the street address and ZIP code.",
    ApiErrorType.ESIID_LOOKUP_ERROR: "We couldn't look up that address right now{city}. Please try again or search by ZIP code.",
}
_DEFAULT_USER_MESSAGE = "An unexpected error occurred while fetching electricity plans{city}. Please try again."


class PlanApiError(PlanEngineError):
    """Upstream API failure with a type, retry hint and user-facing message."""

    def __init__(self, error_type: ApiErrorType, message: str,
                 context: Optional[Dict[str, Any]] = None, is_retryable: bool = False) -> None:
        super().__init__(message, context)
        self.error_type = error_type
        self.context = self.details
        self.is_retryable = is_retryable
        self.timestamp = datetime.utcnow().isoformat()
        self.user_message = self._user_message()

    def _user_message(self) -> str:
        city = self.context.get("city")
        suffix = f" for {city}" if city else ""
        template = _USER_MESSAGES.get(self.error_type, _DEFAULT_USER_MESSAGE)
        return template.format(city=suffix)

    def to_dict(self) -> dict:
        return {
            "code": self.error_type.value,
            "message": self.message,
            "userMessage": self.user_message,
            "retryable": self.is_retryable,
            "context": self.context,
        }

    @classmethod
    def from_http_error(cls, status_code: int, reason: str = "",
                        context: Optional[Dict[str, Any]] = None) -> "PlanApiError":
        """Map an HTTP status to a typed error."""
        ctx = dict(context or {})
        ctx["status_code"] = status_code

        if status_code == 400:
            return cls(ApiErrorType.INVALID_PARAMETERS, f"Bad request: {reason}", ctx, False)
        if status_code == 401:
            return cls(ApiErrorType.UNAUTHORIZED, f"Unauthorized: {reason}", ctx, False)
        if status_code == 403:
            return cls(ApiErrorType.FORBIDDEN, f"Forbidden: {reason}", ctx, False)
        if status_code == 404:
            return cls(ApiErrorType.NOT_FOUND, f"Not found: {reason}", ctx, False)
        if status_code == 429:
            return cls(ApiErrorType.RATE_LIMITED, f"Rate limited: {reason}", ctx, True)
        if status_code == 500:
            return cls(ApiErrorType.SERVER_ERROR, f"Server error: {reason}", ctx, True)
        if status_code in (502, 503, 504):
            return cls(ApiErrorType.SERVICE_UNAVAILABLE, f"Service unavailable: {reason}", ctx, True)

        server_side = status_code >= 500
        return cls(
            ApiErrorType.SERVER_ERROR if server_side else ApiErrorType.UNKNOWN,
            f"HTTP {status_code}: {reason}",
            ctx,
            server_side,
        )

    @classmethod
    def from_network_error(cls, error: Exception,
                           context: Optional[Dict[str, Any]] = None) -> "PlanApiError":
        """Classify a transport-level exception (timeouts, DNS, resets)."""
        text = str(error).lower()
        if "timeout" in text or "timed out" in text:
            return cls(ApiErrorType.TIMEOUT, f"Request timeout: {error}", context, True)
        if "dns" in text or "getaddrinfo" in text or "name resolution" in text:
            return cls(ApiErrorType.DNS_ERROR, f"DNS resolution failed: {error}", context, True)
        return cls(ApiErrorType.NETWORK_ERROR, f"Network error: {error}", context, True)
