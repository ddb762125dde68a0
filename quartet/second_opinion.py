"""Independent review of a response by a second model provider."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from quartet.models.gateway import ModelGateway
from quartet.schema import SecondOpinion

logger = logging.getLogger(__name__)

SECOND_OPINION_PROMPT = """You are providing a second opinion on an AI coding assistant's response.

ORIGINAL RESPONSE TO REVIEW:
{original}

USER'S ORIGINAL QUESTION:
{question}

Provide your independent analysis:
1. Do you agree with the recommendation? Why or why not?
2. What alternatives or improvements would you suggest?
3. Are there any risks or considerations the original response missed?
4. Rate the original response quality (1-10) and explain.

Be direct and specific in your feedback. Challenge assumptions if needed."""

_RATING = re.compile(r"(\d+)\s*/\s*10|rating[:\s]+(\d+)", re.I)
_BULLET = re.compile(r"^(?:[-*]|\d+\.)\s*")

_SECTION_KEYWORDS = [
    ("agreements", ("agree", "strength")),
    ("improvements", ("improve", "suggest", "alternative")),
    ("risks", ("risk", "miss", "concern")),
]


@dataclass(frozen=True)
class SecondOpinionSettings:
    model: str = "grok-3-latest"
    max_tokens: int = 2048
    temperature: float = 0.8

    @classmethod
    def from_config(cls, values: Optional[Dict[str, Any]]) -> "SecondOpinionSettings":
        values = values or {}
        return cls(
            model=str(values.get("model") or "grok-3-latest"),
            max_tokens=int(values.get("max_tokens", 2048)),
            temperature=float(values.get("temperature", 0.8)),
        )


def parse_second_opinion(content: str, model: str) -> SecondOpinion:
    """Split a free-form review into rating, agreements, improvements and risks.

    A line mentioning a section keyword switches the current section; bullet
    or numbered lines longer than 10 characters are collected into it.
    """
    match = _RATING.search(content or "")
    rating = int(match.group(1) or match.group(2)) if match else None

    sections: Dict[str, List[str]] = {"agreements": [], "improvements": [], "risks": []}
    current = ""
    for line in (content or "").splitlines():
        stripped = line.strip()
        lowered = stripped.lower()
        section = next(
            (name for name, words in _SECTION_KEYWORDS if any(word in lowered for word in words)),
            None,
        )
        if section:
            current = section
            continue
        if _BULLET.match(stripped):
            item = _BULLET.sub("", stripped, count=1)
            if len(item) > 10 and current:
                sections[current].append(item)

    return SecondOpinion(
        content=content or "",
        model=model,
        rating=rating,
        agreements=sections["agreements"],
        improvements=sections["improvements"],
        risks=sections["risks"],
    )


def request_second_opinion(
    gateway: ModelGateway,
    system_prompt: str,
    user_prompt: str,
    original_response: str,
    settings: Optional[SecondOpinionSettings] = None,
    timeout: float = 120,
) -> SecondOpinion:
    settings = settings or SecondOpinionSettings()
    completion = gateway.generate(
        system_prompt,
        SECOND_OPINION_PROMPT.format(original=original_response, question=user_prompt),
        model=settings.model,
        max_tokens=settings.max_tokens,
        temperature=settings.temperature,
        timeout=timeout,
    )
    opinion = parse_second_opinion(completion.text, completion.model or settings.model)
    logger.debug(f"Second opinion from {opinion.model}: rating={opinion.rating}")
    return opinion
