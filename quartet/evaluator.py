"""CLASSic metrics: Cost, Latency, Accuracy, Security, Stability."""
from __future__ import annotations

import re
import time
from typing import Callable, List, Optional, Sequence

from quartet.schema import (
    AccuracyMetrics,
    AgentResponse,
    CLASSicMetrics,
    CostMetrics,
    LatencyMetrics,
    SecurityMetrics,
    StabilityMetrics,
)
from quartet.validation import ValidationResult, check_response_security, validate_response

# GPT-4o list prices, USD per 1K tokens
COST_PER_1K_INPUT = 0.0025
COST_PER_1K_OUTPUT = 0.01

HALLUCINATION_PATTERNS = [
    re.compile(r"as of my (last |knowledge )?cutoff", re.I),
    re.compile(r"I don't have access to real-time", re.I),
    re.compile(r"I cannot browse the internet", re.I),
    re.compile(r"my training data", re.I),
]


class Evaluator:
    """Computes metrics from a finished response and run metadata.

    ``clock`` returns seconds; ``start_time`` passed to :meth:`build_metrics`
    must come from the same clock.
    """

    def __init__(
        self,
        validation_level: str = "medium",
        cost_per_1k_input: float = COST_PER_1K_INPUT,
        cost_per_1k_output: float = COST_PER_1K_OUTPUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.validation_level = validation_level
        self.cost_per_1k_input = cost_per_1k_input
        self.cost_per_1k_output = cost_per_1k_output
        self.clock = clock

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> CostMetrics:
        cost = (input_tokens / 1000) * self.cost_per_1k_input + (output_tokens / 1000) * self.cost_per_1k_output
        return CostMetrics(
            tokens=input_tokens + output_tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            estimated_cost=round(cost, 4),
        )

    def measure_latency(self, start_time: float, step_times: Optional[Sequence[float]] = None) -> LatencyMetrics:
        elapsed_ms = max(0, int(round((self.clock() - start_time) * 1000)))
        return LatencyMetrics(total_ms=elapsed_ms, per_step_ms=list(step_times or []))

    def validate_response(self, response: AgentResponse) -> ValidationResult:
        return validate_response(response, self.validation_level)

    def check_security(self, response: AgentResponse) -> SecurityMetrics:
        security = check_response_security(response)
        return SecurityMetrics(
            prompt_injection_blocked=security.prompt_injection_blocked,
            safe_code_generated=security.safe_code_generated,
        )

    def assess_stability(self, consensus_score: float, paths_evaluated: int, response: AgentResponse) -> StabilityMetrics:
        text = response.recommendation + (response.code_output or "")
        return StabilityMetrics(
            consistency_score=consensus_score,
            hallucination_detected=any(p.search(text) for p in HALLUCINATION_PATTERNS),
            paths_evaluated=paths_evaluated,
        )

    def build_metrics(
        self,
        start_time: float,
        input_tokens: int,
        output_tokens: int,
        response: AgentResponse,
        consensus_score: float,
        paths_evaluated: int,
        step_times: Optional[List[float]] = None,
    ) -> CLASSicMetrics:
        validation = self.validate_response(response)
        return CLASSicMetrics(
            cost=self.calculate_cost(input_tokens, output_tokens),
            latency=self.measure_latency(start_time, step_times),
            accuracy=AccuracyMetrics(
                task_success_rate=validation.score,
                validations_passed=len(validation.passed),
                validations_failed=len(validation.failed),
            ),
            security=self.check_security(response),
            stability=self.assess_stability(consensus_score, paths_evaluated, response),
        )
