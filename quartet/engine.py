"""Prompt engine: chain-of-thought generation, self-consistency voting and self-critique."""
from __future__ import annotations

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from quartet.config import AgentConfig
from quartet.errors import ModelTimeoutError
from quartet.models.gateway import ModelGateway
from quartet.parser import COT_SYSTEM_SUFFIX, parse_agent_response, parse_json_payload, string_list
from quartet.schema import ConsistencyPath, ConsistencyResult, CritiqueResult

logger = logging.getLogger(__name__)

CRITIC_SYSTEM_PROMPT = (
    "You are a critical reviewer evaluating AI-generated responses for accuracy, completeness, and quality."
)

CRITIQUE_PROMPT = """
Review the following response and identify any issues, gaps, or improvements:

Original Response:
{original}

Provide your critique as JSON:
{{
  "critique": "Your detailed critique",
  "improvements": ["Improvement 1", "Improvement 2"],
  "severity": "low|medium|high"
}}"""

IMPROVE_PROMPT = """
Based on this critique, provide an improved response:

Critique: {critique}
Suggested Improvements: {improvements}

Original Response:
{original}

Provide the improved response."""

NO_ISSUES = {"critique": "No issues found", "improvements": [], "severity": "low"}

SEVERITIES = ("low", "medium", "high")


@dataclass(frozen=True)
class CriticSettings:
    model: Optional[str] = None
    max_tokens: int = 1000
    temperature: float = 0.3

    @classmethod
    def from_config(cls, values: Optional[Dict[str, Any]]) -> "CriticSettings":
        values = values or {}
        return cls(
            model=values.get("model"),
            max_tokens=int(values.get("max_tokens", 1000)),
            temperature=float(values.get("temperature", 0.3)),
        )


def attempt_prompt(user_prompt: str, index: int) -> str:
    """Prompt for path ``index``; later paths carry an attempt marker."""
    if index == 0:
        return user_prompt
    return f"{user_prompt}\n[Reasoning attempt {index + 1}]"


def normalize_conclusion(conclusion: str) -> str:
    return (conclusion or "").strip().lower()


def vote(paths: List[ConsistencyPath]) -> ConsistencyResult:
    """Pick the most common conclusion. Ties go to the path seen first."""
    if not paths:
        raise ValueError("vote() needs at least one path")
    keys = [normalize_conclusion(path.conclusion) for path in paths]
    counts = Counter(keys)
    best = max(counts.values())
    selected_index = next(idx for idx, key in enumerate(keys) if counts[key] == best)
    disagreements: List[str] = []
    if len(counts) > 1:
        disagreements.append(f"{len(counts)} different conclusions reached")
        for idx, path in enumerate(paths):
            if keys[idx] != keys[selected_index]:
                disagreements.append(f"Path {idx + 1} concluded: {path.conclusion[:120]}")
    return ConsistencyResult(
        selected_path=paths[selected_index],
        all_paths=list(paths),
        consensus_score=best / len(paths),
        disagreements=disagreements,
    )


class PromptEngine:
    def __init__(
        self,
        gateway: ModelGateway,
        config: AgentConfig,
        critic: Optional[CriticSettings] = None,
        log: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        self.gateway = gateway
        self.config = config
        self.critic = critic or CriticSettings()
        self.log = log or logger

    def generate_with_cot(self, system_prompt: str, user_prompt: str) -> ConsistencyPath:
        completion = self.gateway.generate(
            system_prompt + COT_SYSTEM_SUFFIX,
            user_prompt,
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            json_mode=True,
            timeout=self.config.timeout_seconds,
        )
        response = parse_agent_response(completion.text)
        return ConsistencyPath(
            steps=list(response.reasoning),
            conclusion=response.recommendation,
            confidence=response.confidence,
            response=response,
            input_tokens=completion.input_tokens,
            output_tokens=completion.output_tokens,
            duration_ms=completion.duration_ms,
            raw_text=completion.text,
        )

    def run_self_consistency(
        self,
        system_prompt: str,
        user_prompt: str,
        mode: Optional[str] = None,
    ) -> ConsistencyResult:
        """Generate independent paths concurrently and vote on their conclusions.

        A failing path raises out of this method; no partial result is kept.
        """
        config = self.config
        if mode and mode != config.consistency_mode:
            config = AgentConfig.from_dict({"consistency_mode": mode}, base=config)
        path_count = config.path_count
        timeout = config.timeout_seconds
        self.log.debug(f"Running {path_count} reasoning path(s) in {config.consistency_mode} mode")

        executor = ThreadPoolExecutor(max_workers=path_count)
        try:
            futures = [
                executor.submit(self.generate_with_cot, system_prompt, attempt_prompt(user_prompt, idx))
                for idx in range(path_count)
            ]
            _, pending = wait(futures, timeout=timeout)
            if pending:
                for future in pending:
                    future.cancel()
                raise ModelTimeoutError(self.gateway.provider, timeout)
            paths = [future.result() for future in futures]
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        result = vote(paths)
        self.log.debug(
            f"Consensus {result.consensus_score:.2f} across {len(paths)} path(s)"
            + (f"; {result.disagreements[0]}" if result.disagreements else "")
        )
        return result

    def _critique(self, original_response: str) -> tuple[Dict[str, Any], int, int, float]:
        completion = self.gateway.generate(
            CRITIC_SYSTEM_PROMPT,
            CRITIQUE_PROMPT.format(original=original_response),
            model=self.critic.model or self.config.model,
            max_tokens=self.critic.max_tokens,
            temperature=self.critic.temperature,
            json_mode=True,
            timeout=self.config.timeout_seconds,
        )
        payload = parse_json_payload(completion.text)
        if payload is None:
            self.log.debug("Critic reply was not JSON; treating as no issues")
            payload = dict(NO_ISSUES)
        critique = {
            "critique": str(payload.get("critique") or NO_ISSUES["critique"]),
            "improvements": string_list(payload.get("improvements")),
            "severity": str(payload.get("severity") or "low").strip().lower(),
        }
        if critique["severity"] not in SEVERITIES:
            critique["severity"] = "low"
        return critique, completion.input_tokens, completion.output_tokens, completion.duration_ms

    def apply_self_critique(self, original_response: str, system_prompt: str) -> CritiqueResult:
        """Critique a response and regenerate it once when the critique is serious."""
        critique, input_tokens, output_tokens, critic_ms = self._critique(original_response)
        result = CritiqueResult(
            original_response=original_response,
            critique=critique["critique"],
            improved_response=original_response,
            severity=critique["severity"],
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            step_ms=[critic_ms],
        )
        if critique["severity"] != "high" and len(critique["improvements"]) <= 2:
            return result

        self.log.info(
            f"Critique severity {critique['severity']} with {len(critique['improvements'])} improvement(s); regenerating"
        )
        completion = self.gateway.generate(
            system_prompt + COT_SYSTEM_SUFFIX,
            IMPROVE_PROMPT.format(
                critique=critique["critique"],
                improvements=", ".join(critique["improvements"]),
                original=original_response,
            ),
            model=self.config.model,
            max_tokens=self.config.max_tokens,
            temperature=self.config.temperature,
            json_mode=True,
            timeout=self.config.timeout_seconds,
        )
        result.improved_response = completion.text or original_response
        result.improvements_made = list(critique["improvements"])
        result.input_tokens += completion.input_tokens
        result.output_tokens += completion.output_tokens
        result.step_ms.append(completion.duration_ms)
        return result
