"""Structured records passed through the invocation pipeline."""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ReasoningStep:
    step: int
    thought: str
    action: Optional[str] = None
    observation: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"step": self.step, "thought": self.thought}
        if self.action is not None:
            data["action"] = self.action
        if self.observation is not None:
            data["observation"] = self.observation
        return data


@dataclass(frozen=True)
class Validations:
    passed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def merged(self, other: "Validations") -> "Validations":
        return Validations(passed=[*self.passed, *other.passed], failed=[*self.failed, *other.failed])

    def to_dict(self) -> Dict[str, List[str]]:
        return {"passed": list(self.passed), "failed": list(self.failed)}


@dataclass(frozen=True)
class SecondOpinion:
    content: str
    model: str
    rating: Optional[int] = None
    agreements: List[str] = field(default_factory=list)
    improvements: List[str] = field(default_factory=list)
    risks: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AgentResponse:
    """Parsed output of one generation. Instances are never edited in place."""
    recommendation: str
    confidence: float = 0.5
    reasoning: List[ReasoningStep] = field(default_factory=list)
    alternatives: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    code_output: Optional[str] = None
    validations: Validations = field(default_factory=Validations)
    second_opinion: Optional[SecondOpinion] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "reasoning": [step.to_dict() for step in self.reasoning],
            "recommendation": self.recommendation,
            "confidence": self.confidence,
            "alternatives": list(self.alternatives),
            "warnings": list(self.warnings),
            "validations": self.validations.to_dict(),
        }
        if self.code_output is not None:
            data["codeOutput"] = self.code_output
        if self.second_opinion is not None:
            data["secondOpinion"] = self.second_opinion.to_dict()
        return data


@dataclass(frozen=True)
class Completion:
    """Raw model output as returned by a gateway."""
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: float = 0.0
    model: str = ""


@dataclass
class ConsistencyPath:
    steps: List[ReasoningStep]
    conclusion: str
    confidence: float
    response: Optional[AgentResponse] = None
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: float = 0.0
    raw_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "conclusion": self.conclusion,
            "confidence": self.confidence,
        }


@dataclass
class ConsistencyResult:
    selected_path: ConsistencyPath
    all_paths: List[ConsistencyPath]
    consensus_score: float
    disagreements: List[str] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        return {
            "consensus_score": self.consensus_score,
            "paths_evaluated": len(self.all_paths),
            "disagreements": list(self.disagreements),
            "conclusions": [path.conclusion for path in self.all_paths],
        }


@dataclass
class CritiqueResult:
    original_response: str
    critique: str
    improved_response: str
    improvements_made: List[str] = field(default_factory=list)
    severity: str = "low"
    input_tokens: int = 0
    output_tokens: int = 0
    step_ms: List[float] = field(default_factory=list)

    @property
    def improved(self) -> bool:
        return bool(self.improvements_made)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "original_response": self.original_response,
            "critique": self.critique,
            "improved_response": self.improved_response,
            "improvements_made": list(self.improvements_made),
            "severity": self.severity,
        }


@dataclass(frozen=True)
class CostMetrics:
    tokens: int
    input_tokens: int
    output_tokens: int
    estimated_cost: float


@dataclass(frozen=True)
class LatencyMetrics:
    total_ms: int
    per_step_ms: List[float] = field(default_factory=list)


@dataclass(frozen=True)
class AccuracyMetrics:
    task_success_rate: float
    validations_passed: int
    validations_failed: int


@dataclass(frozen=True)
class SecurityMetrics:
    # True when no injection phrase was found; the flag names the absence of a problem.
    prompt_injection_blocked: bool
    safe_code_generated: bool


@dataclass(frozen=True)
class StabilityMetrics:
    consistency_score: float
    hallucination_detected: bool
    paths_evaluated: int


@dataclass(frozen=True)
class CLASSicMetrics:
    cost: CostMetrics
    latency: LatencyMetrics
    accuracy: AccuracyMetrics
    security: SecurityMetrics
    stability: StabilityMetrics

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cost": {
                "tokens": self.cost.tokens,
                "inputTokens": self.cost.input_tokens,
                "outputTokens": self.cost.output_tokens,
                "estimatedCost": self.cost.estimated_cost,
            },
            "latency": {
                "totalMs": self.latency.total_ms,
                "perStepMs": list(self.latency.per_step_ms),
            },
            "accuracy": {
                "taskSuccessRate": self.accuracy.task_success_rate,
                "validationsPassed": self.accuracy.validations_passed,
                "validationsFailed": self.accuracy.validations_failed,
            },
            "security": {
                "promptInjectionBlocked": self.security.prompt_injection_blocked,
                "safeCodeGenerated": self.security.safe_code_generated,
            },
            "stability": {
                "consistencyScore": self.stability.consistency_score,
                "hallucinationDetected": self.stability.hallucination_detected,
                "pathsEvaluated": self.stability.paths_evaluated,
            },
        }


@dataclass
class AgentInvocationResult:
    response: AgentResponse
    metrics: CLASSicMetrics
    run_id: str = ""
    agent_type: str = ""
    consistency: Dict[str, Any] = field(default_factory=dict)
    critique: Optional[CritiqueResult] = None
    security_events: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def second_opinion(self) -> Optional[SecondOpinion]:
        return self.response.second_opinion

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "run_id": self.run_id,
            "agent_type": self.agent_type,
            "response": self.response.to_dict(),
            "metrics": self.metrics.to_dict(),
            "consistency": dict(self.consistency),
            "security_events": list(self.security_events),
        }
        if self.critique is not None:
            data["critique"] = self.critique.to_dict()
        return data
