"""Rule-based prompt-injection, unsafe-code and PII scanning.

Patterns are grouped into families inside a :class:`RuleTable`. The scanners
only ask the table for a family, so new patterns can be registered without
touching the invocation pipeline::

    DEFAULT_RULES.add(SecurityRule("prompt_injection", "override_mode", r"developer\\s+mode"))
"""
from __future__ import annotations

import logging
import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

PROMPT_INJECTION = "prompt_injection"
UNSAFE_CODE = "unsafe_code"
PII = "pii"
# Narrower families the evaluator applies to completed responses
RESPONSE_INJECTION = "response_injection"
RESPONSE_UNSAFE_CODE = "response_unsafe_code"


@dataclass(frozen=True)
class SecurityRule:
    family: str
    name: str
    pattern: str
    flags: int = re.IGNORECASE
    category: str = ""

    def compile(self) -> re.Pattern:
        return re.compile(self.pattern, self.flags)


class RuleTable:
    def __init__(self, rules: Iterable[SecurityRule] = ()) -> None:
        self._rules: Dict[str, List[tuple[SecurityRule, re.Pattern]]] = {}
        for rule in rules:
            self.add(rule)

    def add(self, rule: SecurityRule) -> None:
        self._rules.setdefault(rule.family, []).append((rule, rule.compile()))

    def families(self) -> List[str]:
        return list(self._rules)

    def rules(self, family: str) -> List[SecurityRule]:
        return [rule for rule, _ in self._rules.get(family, [])]

    def match(self, family: str, text: str) -> List[str]:
        """Names of the rules in family that match text, in registration order."""
        return [rule.name for rule, compiled in self._rules.get(family, []) if compiled.search(text)]


_DEFAULT_RULES = [
    # Roleplay and override phrases
    SecurityRule(PROMPT_INJECTION, "ignore_instructions", r"ignore\s+(previous|above|all)\s+(instructions|prompts?)", category="override"),
    SecurityRule(PROMPT_INJECTION, "disregard_instructions", r"disregard\s+(previous|all)\s+(instructions|prompts?)", category="override"),
    SecurityRule(PROMPT_INJECTION, "forget_everything", r"forget\s+(everything|all|previous)", category="override"),
    SecurityRule(PROMPT_INJECTION, "you_are_now", r"you\s+are\s+now\s+(a|an)\s+", category="roleplay"),
    SecurityRule(PROMPT_INJECTION, "pretend", r"pretend\s+(you\s+are|to\s+be)", category="roleplay"),
    SecurityRule(PROMPT_INJECTION, "act_as", r"act\s+as\s+(if|a|an)\b", category="roleplay"),
    SecurityRule(PROMPT_INJECTION, "system_marker", r"system:\s*$", flags=re.IGNORECASE | re.MULTILINE, category="override"),
    SecurityRule(PROMPT_INJECTION, "dan_mode", r"\bDAN\b.*\bmode\b", category="roleplay"),
    SecurityRule(PROMPT_INJECTION, "jailbreak", r"jailbreak", category="override"),
    # Special control tokens
    SecurityRule(PROMPT_INJECTION, "inst_open", r"\[INST\]", category="control_token"),
    SecurityRule(PROMPT_INJECTION, "inst_close", r"\[/INST\]", category="control_token"),
    SecurityRule(PROMPT_INJECTION, "im_start", r"<\|im_start\|>", category="control_token"),
    SecurityRule(PROMPT_INJECTION, "im_end", r"<\|im_end\|>", category="control_token"),
    SecurityRule(PROMPT_INJECTION, "sys_open", r"<<SYS>>", category="control_token"),
    SecurityRule(PROMPT_INJECTION, "sys_close", r"</SYS>", category="control_token"),
    # Code execution primitives
    SecurityRule(UNSAFE_CODE, "eval_call", r"eval\s*\(", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "exec_call", r"exec\s*\(", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "function_constructor", r"Function\s*\(\s*['\"]", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "dunder_import", r"__import__\s*\(", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "subprocess", r"subprocess\.(run|call|Popen)", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "os_exec", r"os\.(system|popen|exec)", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "child_process", r"child_process", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "spawn_call", r"spawn\s*\(", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "shell_substitution", r"\$\(\s*[`'\"]", category="code_execution"),
    SecurityRule(UNSAFE_CODE, "rm_rf", r"rm\s+-rf", category="code_execution"),
    # Destructive SQL
    SecurityRule(UNSAFE_CODE, "drop_table", r"DROP\s+TABLE", category="sql"),
    SecurityRule(UNSAFE_CODE, "delete_all", r"DELETE\s+FROM\s+.*WHERE\s+1\s*=\s*1", category="sql"),
    SecurityRule(UNSAFE_CODE, "truncate_table", r"TRUNCATE\s+TABLE", category="sql"),
    SecurityRule(UNSAFE_CODE, "sql_comment", r";\s*--", category="sql"),
    SecurityRule(UNSAFE_CODE, "union_select", r"UNION\s+SELECT", category="sql"),
    # XSS vectors
    SecurityRule(UNSAFE_CODE, "script_tag", r"<script[^>]*>", category="xss"),
    SecurityRule(UNSAFE_CODE, "javascript_uri", r"javascript:", category="xss"),
    SecurityRule(UNSAFE_CODE, "event_handler", r"on(click|load|error|mouseover)\s*=", category="xss"),
    # PII shapes
    SecurityRule(PII, "email", r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", flags=0),
    SecurityRule(PII, "ssn", r"\b\d{3}[-.\s]?\d{2}[-.\s]?\d{4}\b", flags=0),
    SecurityRule(PII, "phone", r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b", flags=0),
    SecurityRule(PII, "credit_card", r"\b(?:\d{4}[-\s]?){3}\d{4}\b", flags=0),
    SecurityRule(PII, "date_of_birth", r"\b\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}\b", flags=0),
    SecurityRule(PII, "password", r"\b(?:password|pwd|passwd)\s*[:=]\s*\S+"),
    SecurityRule(PII, "api_key", r"\b(?:api[_-]?key|apikey|secret[_-]?key)\s*[:=]\s*\S+"),
    SecurityRule(PII, "bearer_token", r"Bearer\s+[A-Za-z0-9\-._~+/]+=*"),
    SecurityRule(PII, "secret_key_shape", r"\b(?:sk-|pk-)[A-Za-z0-9]{32,}", flags=0),
    # Response scan used by the evaluator
    SecurityRule(RESPONSE_INJECTION, "ignore_instructions", r"ignore.*previous.*instructions"),
    SecurityRule(RESPONSE_INJECTION, "disregard_rules", r"disregard.*rules"),
    SecurityRule(RESPONSE_INJECTION, "system_prompt", r"system.*prompt"),
    SecurityRule(RESPONSE_INJECTION, "jailbreak", r"jailbreak"),
    SecurityRule(RESPONSE_UNSAFE_CODE, "eval_call", r"eval\s*\(", flags=0),
    SecurityRule(RESPONSE_UNSAFE_CODE, "exec_call", r"exec\s*\(", flags=0),
    SecurityRule(RESPONSE_UNSAFE_CODE, "child_process", r"child_process", flags=0),
    SecurityRule(RESPONSE_UNSAFE_CODE, "subprocess", r"subprocess\.(run|call|Popen)|os\.system", flags=0),
    SecurityRule(RESPONSE_UNSAFE_CODE, "rm_rf", r"rm\s+-rf", flags=0),
    SecurityRule(RESPONSE_UNSAFE_CODE, "drop_table", r"DROP\s+TABLE"),
    SecurityRule(RESPONSE_UNSAFE_CODE, "delete_all", r"DELETE\s+FROM.*WHERE\s*1\s*=\s*1"),
]

DEFAULT_RULES = RuleTable(_DEFAULT_RULES)


@dataclass
class DetectionResult:
    detected: bool
    patterns: List[str] = field(default_factory=list)

    @property
    def types(self) -> List[str]:
        return self.patterns


@dataclass
class SecurityEvent:
    event_type: str
    blocked: bool
    details: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat(timespec="seconds"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "blocked": self.blocked,
            "details": self.details,
            "timestamp": self.timestamp,
        }


@dataclass
class SecurityCheckResult:
    safe: bool
    events: List[SecurityEvent] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return any(event.blocked for event in self.events)


def _detect(family: str, text: str, rules: Optional[RuleTable]) -> DetectionResult:
    matched = (rules or DEFAULT_RULES).match(family, text or "")
    return DetectionResult(detected=bool(matched), patterns=matched)


def check_prompt_injection(text: str, rules: Optional[RuleTable] = None) -> DetectionResult:
    return _detect(PROMPT_INJECTION, text, rules)


def check_unsafe_code(text: str, rules: Optional[RuleTable] = None) -> DetectionResult:
    return _detect(UNSAFE_CODE, text, rules)


def check_pii_patterns(text: str, rules: Optional[RuleTable] = None) -> DetectionResult:
    return _detect(PII, text, rules)


def run_security_checks(
    text: str,
    block_on_detection: bool = True,
    rules: Optional[RuleTable] = None,
) -> SecurityCheckResult:
    events: List[SecurityEvent] = []

    injection = check_prompt_injection(text, rules)
    if injection.detected:
        events.append(SecurityEvent(
            "prompt_injection",
            blocked=block_on_detection,
            details=f"Detected patterns: {', '.join(injection.patterns)}",
        ))
        logger.warning(f"Security event prompt_injection (blocked={block_on_detection}): {', '.join(injection.patterns)}")

    unsafe = check_unsafe_code(text, rules)
    if unsafe.detected:
        events.append(SecurityEvent(
            "unsafe_code",
            blocked=block_on_detection,
            details=f"Detected patterns: {', '.join(unsafe.patterns)}",
        ))
        logger.warning(f"Security event unsafe_code (blocked={block_on_detection}): {', '.join(unsafe.patterns)}")

    pii = check_pii_patterns(text, rules)
    if pii.detected:
        # PII is reported but never blocks
        events.append(SecurityEvent(
            "pii_detected",
            blocked=False,
            details=f"Detected PII patterns: {len(pii.patterns)} types",
        ))
        logger.warning(f"Security event pii_detected: {len(pii.patterns)} PII patterns detected")

    return SecurityCheckResult(safe=not injection.detected and not unsafe.detected, events=events)


_CONTROL_CHARS = re.compile(r"[\u0000-\u001F\u007F-\u009F]")
_ZERO_WIDTH = re.compile("[\\u200B-\\u200D\\uFEFF]")


def normalize_unicode(text: str) -> str:
    text = unicodedata.normalize("NFKC", text)
    text = _CONTROL_CHARS.sub("", text)
    return _ZERO_WIDTH.sub("", text)


def extract_strings(value: Any, max_depth: int = 10, depth: int = 0) -> List[str]:
    if depth > max_depth:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [s for item in value for s in extract_strings(item, max_depth, depth + 1)]
    if isinstance(value, dict):
        return [s for item in value.values() for s in extract_strings(item, max_depth, depth + 1)]
    return []


def run_deep_security_checks(
    value: Any,
    block_on_detection: bool = True,
    max_depth: int = 10,
    rules: Optional[RuleTable] = None,
) -> SecurityCheckResult:
    """Scan every string leaf of a nested structure."""
    events: List[SecurityEvent] = []
    for text in extract_strings(value, max_depth=max_depth):
        result = run_security_checks(normalize_unicode(text), block_on_detection=block_on_detection, rules=rules)
        events.extend(result.events)
    return SecurityCheckResult(safe=all(not event.blocked for event in events), events=events)


_SENSITIVE_KEYS = ("password", "secret", "token", "api_key", "apikey", "authorization")


def sanitize_payload(
    payload: Any,
    redact_pii: bool = True,
    max_depth: int = 10,
    rules: Optional[RuleTable] = None,
) -> Any:
    """Copy of payload with PII redacted and string values under sensitive keys masked."""
    table = rules or DEFAULT_RULES

    def _sanitize(value: Any, depth: int) -> Any:
        if depth > max_depth:
            return "[MAX_DEPTH_EXCEEDED]"
        if isinstance(value, str):
            if redact_pii:
                for rule in table.rules(PII):
                    value = rule.compile().sub("[REDACTED]", value)
            return value
        if isinstance(value, (list, tuple)):
            return [_sanitize(item, depth + 1) for item in value]
        if isinstance(value, dict):
            cleaned: Dict[str, Any] = {}
            for key, item in value.items():
                lower = str(key).lower()
                if isinstance(item, str) and any(marker in lower for marker in _SENSITIVE_KEYS):
                    cleaned[key] = "[REDACTED]"
                else:
                    cleaned[key] = _sanitize(item, depth + 1)
            return cleaned
        return value

    return _sanitize(payload, 0)
