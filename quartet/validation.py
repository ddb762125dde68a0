"""Structural response checks and optional enforcement policies."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from quartet.errors import SecurityError, ValidationError
from quartet.schema import AgentResponse, CLASSicMetrics
from quartet.security import (
    DEFAULT_RULES,
    PII,
    RESPONSE_INJECTION,
    RESPONSE_UNSAFE_CODE,
    RuleTable,
)

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    passed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def score(self) -> float:
        total = len(self.passed) + len(self.failed)
        # No checks ran: report 0.0 rather than claiming success
        return len(self.passed) / total if total else 0.0


def validate_response(response: AgentResponse, level: str = "medium") -> ValidationResult:
    """Run the structural checks for a validation level. One entry per check."""
    result = ValidationResult()

    def check(ok: bool, passed: str, failed: str) -> None:
        (result.passed if ok else result.failed).append(passed if ok else failed)

    check(len(response.reasoning) > 0, "Contains reasoning steps", "Missing reasoning steps")
    check(0 <= response.confidence <= 1, "Valid confidence score", "Invalid confidence score")
    check(
        len(response.recommendation or "") > 10,
        "Has substantive recommendation",
        "Recommendation too short or missing",
    )

    if level in ("high", "strict"):
        check(
            len(response.reasoning) >= 3,
            "Sufficient reasoning depth",
            "Insufficient reasoning depth for high validation",
        )
        check(len(response.alternatives) > 0, "Provides alternatives", "No alternatives provided")

    if level == "strict":
        check(len(response.warnings) > 0, "Identifies potential risks", "No risk analysis provided")

    return result


FAKE_DATA_PATTERNS = [
    (re.compile(r"lorem\s+ipsum", re.I), "Lorem ipsum text"),
    (re.compile(r"example\.com", re.I), "example.com domain"),
    (re.compile(r"test@|@test\.", re.I), "Test email pattern"),
    (re.compile(r"\bfoo\b|\bbar\b|\bbaz\b", re.I), "foo/bar/baz placeholder"),
    (re.compile(r"TODO:|FIXME:|XXX:|HACK:", re.I), "TODO/FIXME marker"),
    (re.compile(r"mock|placeholder|sample|dummy", re.I), "Mock/sample indicator"),
    (re.compile(r"123-?45-?6789"), "Fake SSN pattern"),
    (re.compile(r"555-\d{4}"), "Fake phone pattern"),
    (re.compile(r"John\s+Doe|Jane\s+Doe", re.I), "Placeholder name"),
    (re.compile(r"1234\s*5678\s*9012\s*3456"), "Fake credit card"),
]


@dataclass
class FakeDataResult:
    has_fake_data: bool
    patterns: List[str] = field(default_factory=list)


def check_fake_data(text: str) -> FakeDataResult:
    found = [name for pattern, name in FAKE_DATA_PATTERNS if pattern.search(text or "")]
    return FakeDataResult(has_fake_data=bool(found), patterns=found)


@dataclass
class ResponseSecurity:
    prompt_injection_blocked: bool
    safe_code_generated: bool
    pii_detected: bool = False


def serialize_response(response: AgentResponse) -> str:
    return json.dumps(response.to_dict())


def check_response_security(response: AgentResponse, rules: Optional[RuleTable] = None) -> ResponseSecurity:
    """Scan a finished response.

    The whole serialized response is scanned for injection phrases, while only
    the code output is scanned for unsafe execution patterns.
    ``prompt_injection_blocked`` is True when nothing was found.
    """
    table = rules or DEFAULT_RULES
    full_text = serialize_response(response)
    safe_code = True
    if response.code_output:
        safe_code = not table.match(RESPONSE_UNSAFE_CODE, response.code_output)
    return ResponseSecurity(
        prompt_injection_blocked=not table.match(RESPONSE_INJECTION, full_text),
        safe_code_generated=safe_code,
        pii_detected=bool(table.match(PII, full_text)),
    )


@dataclass(frozen=True)
class EnforcementPolicy:
    enforce_validation: bool = True
    enforce_security: bool = True
    enforce_fake_data_check: bool = True
    min_validation_score: float = 0.7


@dataclass
class EnforcementReport:
    validation: ValidationResult
    security: ResponseSecurity
    fake_data: FakeDataResult


def enforce_validation(
    response: AgentResponse,
    level: str = "medium",
    policy: Optional[EnforcementPolicy] = None,
    context: Optional[Dict[str, Any]] = None,
) -> EnforcementReport:
    """Validate a response and raise when the policy forbids the outcome.

    Strict level always enforces validation. PII only blocks at strict level.
    """
    policy = policy or EnforcementPolicy()
    strict = level == "strict"
    should_enforce = strict or policy.enforce_validation

    validation = validate_response(response, level)
    security = check_response_security(response)
    fake_data = check_fake_data(serialize_response(response))

    logger.debug(
        f"Validation: {len(validation.passed)} passed, {len(validation.failed)} failed "
        f"(enforced={should_enforce})"
    )

    if should_enforce and validation.failed and validation.score < policy.min_validation_score:
        raise ValidationError(validation.failed, context)

    if policy.enforce_security:
        if not security.prompt_injection_blocked:
            logger.warning("Security event prompt_injection (blocked=True)")
            raise SecurityError("prompt_injection", "Prompt injection detected and blocked", context)
        if not security.safe_code_generated:
            logger.warning("Security event unsafe_code (blocked=True)")
            raise SecurityError("unsafe_code", "Unsafe code patterns detected", context)
        if security.pii_detected:
            logger.warning(f"Security event pii_detected (blocked={strict}): PII detected in response")
            if strict:
                raise SecurityError("pii_leak", "PII detected in response - blocked in strict mode", context)

    if strict and policy.enforce_fake_data_check and fake_data.has_fake_data:
        raise ValidationError(
            [f"Fake/placeholder data detected: {', '.join(fake_data.patterns)}"],
            context,
        )

    return EnforcementReport(validation=validation, security=security, fake_data=fake_data)


DEFAULT_THRESHOLDS: Dict[str, Dict[str, float]] = {
    "architect": {"min_accuracy": 0.85, "max_latency_ms": 30000, "max_cost": 0.10},
    "mechanic": {"min_accuracy": 0.90, "max_latency_ms": 20000, "max_cost": 0.08},
    "code_ninja": {"min_accuracy": 0.88, "max_latency_ms": 25000, "max_cost": 0.12},
    "philosopher": {"min_accuracy": 0.80, "max_latency_ms": 35000, "max_cost": 0.15},
}


def threshold_failures(
    agent_type: str,
    metrics: CLASSicMetrics,
    thresholds: Optional[Dict[str, Dict[str, float]]] = None,
) -> List[str]:
    limits = (thresholds or {}).get(agent_type) or DEFAULT_THRESHOLDS.get(agent_type)
    if not limits:
        return []
    failures: List[str] = []
    min_accuracy = limits.get("min_accuracy")
    if min_accuracy is not None and metrics.accuracy.task_success_rate < min_accuracy:
        failures.append(f"Accuracy {metrics.accuracy.task_success_rate:.2f} below threshold {min_accuracy}")
    max_latency = limits.get("max_latency_ms")
    if max_latency is not None and metrics.latency.total_ms > max_latency:
        failures.append(f"Latency {metrics.latency.total_ms}ms exceeds threshold {max_latency}ms")
    max_cost = limits.get("max_cost")
    if max_cost is not None and metrics.cost.estimated_cost > max_cost:
        failures.append(f"Cost ${metrics.cost.estimated_cost:.4f} exceeds threshold ${max_cost}")
    return failures


def enforce_classic_thresholds(
    agent_type: str,
    metrics: CLASSicMetrics,
    thresholds: Optional[Dict[str, Dict[str, float]]] = None,
    context: Optional[Dict[str, Any]] = None,
) -> None:
    failures = threshold_failures(agent_type, metrics, thresholds)
    if failures:
        logger.warning(f"CLASSic threshold violations for {agent_type}: {'; '.join(failures)}")
        raise ValidationError(failures, context)
