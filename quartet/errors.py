"""Error taxonomy for Quartet invocations."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import uuid


class ErrorCode(str, Enum):
    MODEL_CONNECTION_FAILED = "E001"
    SECOND_OPINION_FAILED = "E002"
    TIMEOUT_EXCEEDED = "E003"
    RATE_LIMIT_EXCEEDED = "E004"
    API_KEY_INVALID = "E005"

    PROMPT_INJECTION_DETECTED = "E101"
    RESPONSE_VALIDATION_FAILED = "E102"
    CONSISTENCY_THRESHOLD_NOT_MET = "E103"
    FAKE_DATA_DETECTED = "E104"
    PII_DETECTED = "E105"
    UNSAFE_CODE_DETECTED = "E106"

    JSON_PARSE_FAILED = "E201"
    AGENT_NOT_FOUND = "E204"
    INVALID_CONFIG = "E205"
    INTERNAL_ERROR = "E299"


def create_run_id() -> str:
    return str(uuid.uuid4())


class AgentError(Exception):
    """Base error carrying a code, run context and a recoverability flag."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.context.setdefault("run_id", create_run_id())
        self.recoverable = recoverable
        self.timestamp = datetime.now(timezone.utc).isoformat(timespec="seconds")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code.value,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp,
            "recoverable": self.recoverable,
        }


class ModelConnectionError(AgentError):
    """Upstream model unreachable or answered with a non-2xx status."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.MODEL_CONNECTION_FAILED,
    ) -> None:
        super().__init__(code, message, context, recoverable=True)
        self.provider = provider
        self.status_code = status_code


class ModelTimeoutError(ModelConnectionError):
    def __init__(self, provider: str, timeout_seconds: float, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            provider,
            f"{provider} call exceeded {timeout_seconds}s timeout",
            context=context,
            code=ErrorCode.TIMEOUT_EXCEEDED,
        )
        self.timeout_seconds = timeout_seconds


class RateLimitError(AgentError):
    def __init__(self, retry_after_ms: Optional[int] = None, context: Optional[Dict[str, Any]] = None) -> None:
        message = "Rate limit exceeded"
        if retry_after_ms:
            message += f". Retry after {retry_after_ms}ms"
        super().__init__(ErrorCode.RATE_LIMIT_EXCEEDED, message, context, recoverable=True)
        self.retry_after_ms = retry_after_ms


class ValidationError(AgentError):
    def __init__(self, failures: List[str], context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            ErrorCode.RESPONSE_VALIDATION_FAILED,
            f"Validation failed: {', '.join(failures)}",
            context,
            recoverable=False,
        )
        self.failures = list(failures)


_SECURITY_CODES = {
    "prompt_injection": ErrorCode.PROMPT_INJECTION_DETECTED,
    "unsafe_code": ErrorCode.UNSAFE_CODE_DETECTED,
    "pii_leak": ErrorCode.PII_DETECTED,
}


class SecurityError(AgentError):
    def __init__(self, security_type: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        code = _SECURITY_CODES.get(security_type, ErrorCode.PROMPT_INJECTION_DETECTED)
        super().__init__(code, message, context, recoverable=False)
        self.security_type = security_type


class ConfigurationError(AgentError):
    """Fatal setup problem detected before any network call."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_CONFIG,
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(code, message, context, recoverable=False)


def internal_error(exc: BaseException, context: Optional[Dict[str, Any]] = None) -> AgentError:
    """Wrap an exception that is not an AgentError as E299."""
    return AgentError(ErrorCode.INTERNAL_ERROR, f"Unexpected error: {exc}", context)
