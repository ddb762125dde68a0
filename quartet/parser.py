"""Parse JSON model replies into AgentResponse records."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

from quartet.schema import AgentResponse, ReasoningStep, Validations

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE = 0.5

COT_SYSTEM_SUFFIX = """

You MUST structure your response using Chain-of-Thought reasoning.
For each step of your reasoning:
1. State what you're thinking (Thought)
2. What action you're taking or considering (Action)
3. What you observe from that action (Observation)

After completing your reasoning steps, provide your final recommendation.
Format your response as JSON:
{
  "reasoning": [
    {"step": 1, "thought": "...", "action": "...", "observation": "..."},
    {"step": 2, "thought": "...", "action": "...", "observation": "..."}
  ],
  "recommendation": "Your final answer/recommendation",
  "confidence": 0.0-1.0,
  "alternatives": ["Alternative approach 1", "Alternative approach 2"],
  "warnings": ["Potential issue 1"],
  "codeOutput": "// Code if applicable",
  "validations": {
    "passed": ["Validation 1 passed"],
    "failed": ["Validation 1 failed"]
  }
}"""


def parse_json_payload(text: str) -> Dict[str, Any] | None:
    """Return the JSON object in text, also when it is wrapped in prose or fences."""
    if not text:
        return None
    try:
        data = json.loads(text)
        return data if isinstance(data, dict) else None
    except ValueError:
        pass
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    try:
        data = json.loads(text[start:end + 1])
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def normalize_confidence(value: Any) -> float:
    if isinstance(value, bool):
        return DEFAULT_CONFIDENCE
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if confidence != confidence or confidence < 0 or confidence > 1:
        return DEFAULT_CONFIDENCE
    return confidence


def string_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if not isinstance(value, list):
        return []
    return [str(item) for item in value if item is not None and str(item).strip()]


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = value if isinstance(value, str) else json.dumps(value)
    return text


def parse_reasoning(value: Any) -> List[ReasoningStep]:
    """Convert a reasoning array into steps, keeping the order the model produced."""
    if not isinstance(value, list):
        return []
    steps: List[ReasoningStep] = []
    for idx, item in enumerate(value, start=1):
        if isinstance(item, str):
            steps.append(ReasoningStep(step=idx, thought=item))
            continue
        if not isinstance(item, dict):
            continue
        try:
            number = int(item.get("step", idx))
        except (TypeError, ValueError):
            number = idx
        steps.append(ReasoningStep(
            step=number,
            thought=str(item.get("thought") or ""),
            action=_optional_str(item.get("action")),
            observation=_optional_str(item.get("observation")),
        ))
    return steps


def parse_validations(value: Any) -> Validations:
    if not isinstance(value, dict):
        return Validations()
    return Validations(passed=string_list(value.get("passed")), failed=string_list(value.get("failed")))


def fallback_response(text: str) -> AgentResponse:
    return AgentResponse(
        recommendation=text,
        confidence=DEFAULT_CONFIDENCE,
        reasoning=[],
        validations=Validations(),
    )


def response_from_payload(payload: Dict[str, Any], raw_text: str = "") -> AgentResponse:
    recommendation = payload.get("recommendation")
    if recommendation is None:
        recommendation = payload.get("conclusion")
    if recommendation is None:
        recommendation = raw_text
    if not isinstance(recommendation, str):
        recommendation = json.dumps(recommendation)
    return AgentResponse(
        recommendation=recommendation,
        confidence=normalize_confidence(payload.get("confidence", DEFAULT_CONFIDENCE)),
        reasoning=parse_reasoning(payload.get("reasoning")),
        alternatives=string_list(payload.get("alternatives")),
        warnings=string_list(payload.get("warnings")),
        code_output=_optional_str(payload.get("codeOutput", payload.get("code_output"))),
        validations=parse_validations(payload.get("validations")),
    )


def parse_agent_response(text: str) -> AgentResponse:
    """Parse a model reply. Unparseable text degrades to an unstructured response."""
    payload = parse_json_payload(text or "")
    if payload is None:
        logger.debug("Model reply was not a JSON object; using raw text as recommendation")
        return fallback_response(text or "")
    return response_from_payload(payload, raw_text=text)
