"""Per-invocation run context: identifiers, logger, collaborators and event hooks."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional

from quartet.config import AgentConfig
from quartet.engine import CriticSettings
from quartet.errors import create_run_id
from quartet.evaluator import COST_PER_1K_INPUT, COST_PER_1K_OUTPUT
from quartet.models.gateway import ModelGateway
from quartet.project_context import ProjectContext
from quartet.second_opinion import SecondOpinionSettings
from quartet.telemetry import NullTelemetry, TelemetrySink

logger = logging.getLogger("quartet.run")

EventHandler = Callable[[str, Dict[str, Any]], None]


class InvocationState(str, Enum):
    START = "start"
    GENERATING = "generating"
    CRITIQUING = "critiquing"
    SECOND_OPINION = "second_opinion"
    EVALUATING = "evaluating"
    DONE = "done"
    FAILED = "failed"


class RunLogger(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        return f"[{self.extra['run_id'][:8]} {self.extra['agent_type'] or '-'}] {msg}", kwargs


@dataclass
class RunContext:
    """Everything one invocation needs. Built per call and never shared between runs."""
    config: AgentConfig
    gateway: ModelGateway
    second_gateway: Optional[ModelGateway] = None
    run_id: str = field(default_factory=create_run_id)
    agent_type: str = ""
    telemetry: TelemetrySink = field(default_factory=NullTelemetry)
    project_context: ProjectContext = field(default_factory=ProjectContext)
    critic: CriticSettings = field(default_factory=CriticSettings)
    second_opinion: SecondOpinionSettings = field(default_factory=SecondOpinionSettings)
    pricing: Dict[str, float] = field(default_factory=lambda: {
        "cost_per_1k_input": COST_PER_1K_INPUT,
        "cost_per_1k_output": COST_PER_1K_OUTPUT,
    })
    thresholds: Dict[str, Dict[str, float]] = field(default_factory=dict)
    on_event: Optional[EventHandler] = None
    state: InvocationState = InvocationState.START

    def __post_init__(self) -> None:
        self.log = RunLogger(logger, {"run_id": self.run_id, "agent_type": self.agent_type})

    def emit(self, event: str, data: Dict[str, Any]) -> None:
        if self.on_event is None:
            return
        payload = {"run_id": self.run_id, "agent_type": self.agent_type, **data}
        try:
            self.on_event(event, payload)
        except Exception as exc:
            self.log.warning(f"Event handler failed on '{event}': {exc}")

    def transition(self, state: InvocationState, **data: Any) -> None:
        self.state = state
        self.log.debug(f"-> {state.value}")
        self.emit("status", {"state": state.value, **data})
