"""Top-level entry point: persona selection, single invocations and multi-persona pipelines."""
from __future__ import annotations

import json
import logging
import queue
import threading
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from quartet.agent import FAILED, Agent, classify_outcome
from quartet.config import AgentConfig, Config, get_config
from quartet.context import EventHandler, RunContext
from quartet.engine import CriticSettings
from quartet.errors import AgentError, internal_error
from quartet.models.gateway import ModelGateway
from quartet.models.openai import ChatCompletionsClient
from quartet.personas import PersonaType, get_persona, list_personas
from quartet.project_context import ProjectContext, load_project_context
from quartet.schema import AgentInvocationResult, Validations
from quartet.second_opinion import SecondOpinionSettings
from quartet.telemetry import TelemetrySink, telemetry_from_path
from quartet.workflow import ThreePassConfig, ThreePassWorkflow, WorkflowOutput

logger = logging.getLogger(__name__)

QA_AUDIT_PROMPTS = {
    "full": (
        "Perform a complete architecture audit of the codebase. Identify dependency issues, "
        "duplicate configurations, and schema inconsistencies."
    ),
    "staged": "Review the staged changes for architectural issues and potential problems.",
}


@dataclass
class InvocationOutcome:
    """Terminal result of one invocation: success, partial (finished with warnings) or failed."""
    status: str
    agent_type: str
    result: Optional[AgentInvocationResult] = None
    error: Optional[AgentError] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"status": self.status, "agent_type": self.agent_type}
        if self.result is not None:
            data["result"] = self.result.to_dict()
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data


@dataclass
class PipelineResult:
    stages: Dict[str, AgentInvocationResult] = field(default_factory=dict)

    def __getitem__(self, name: str) -> AgentInvocationResult:
        return self.stages[name]

    def get(self, name: str) -> Optional[AgentInvocationResult]:
        return self.stages.get(name)

    def to_dict(self) -> Dict[str, Any]:
        return {name: result.to_dict() for name, result in self.stages.items()}


def _response_json(result: AgentInvocationResult) -> str:
    return json.dumps(result.response.to_dict())


class Orchestrator:
    """Builds agents over shared collaborators and runs them.

    Collaborators not passed in are built from the YAML config: the primary
    gateway, the second-opinion gateway, the telemetry sink and the project
    context read from the project root.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        agent_config: Union[AgentConfig, Dict[str, Any], None] = None,
        gateway: Optional[ModelGateway] = None,
        second_gateway: Optional[ModelGateway] = None,
        telemetry: Optional[TelemetrySink] = None,
        project_root: Optional[Path] = None,
        project_context: Optional[ProjectContext] = None,
    ) -> None:
        self.settings = config or get_config()
        self.project_context = project_context or load_project_context(project_root or self.settings.project_root)

        if isinstance(agent_config, AgentConfig):
            self.config = agent_config
        else:
            base = AgentConfig.from_dict(self.project_context.agent_overrides, base=self.settings.agent)
            self.config = AgentConfig.from_dict(agent_config or {}, base=base)

        primary = self.settings.provider("primary")
        self.gateway = gateway or ModelGateway(
            ChatCompletionsClient.from_config(primary, provider="openai"),
            default_model=str(primary.get("model") or self.config.model),
        )
        second = self.settings.provider("second_opinion")
        self.second_gateway = second_gateway or ModelGateway(
            ChatCompletionsClient.from_config(second, provider="xai"),
            default_model=str(second.get("model") or "grok-3-latest"),
        )
        self.telemetry = telemetry or telemetry_from_path(self.settings.telemetry_path)
        self.critic = CriticSettings.from_config(self.settings.provider("critic"))
        self.second_opinion = SecondOpinionSettings.from_config(second)

        self.agents: Dict[PersonaType, Agent] = {
            persona.key: Agent(persona, self._context) for persona in list_personas()
        }

    def _context(self, agent_type: str, on_event: Optional[EventHandler] = None) -> RunContext:
        return RunContext(
            config=self.config,
            gateway=self.gateway,
            second_gateway=self.second_gateway,
            agent_type=agent_type,
            telemetry=self.telemetry,
            project_context=self.project_context,
            critic=self.critic,
            second_opinion=self.second_opinion,
            pricing=dict(self.settings.pricing),
            thresholds=dict(self.settings.thresholds or {}),
            on_event=on_event,
        )

    def get_agent(self, agent_type: Union[str, PersonaType]) -> Agent:
        return self.agents[get_persona(agent_type).key]

    @property
    def architect(self) -> Agent:
        return self.agents[PersonaType.ARCHITECT]

    @property
    def mechanic(self) -> Agent:
        return self.agents[PersonaType.MECHANIC]

    @property
    def code_ninja(self) -> Agent:
        return self.agents[PersonaType.CODE_NINJA]

    @property
    def philosopher(self) -> Agent:
        return self.agents[PersonaType.PHILOSOPHER]

    def invoke_agent(
        self,
        agent_type: Union[str, PersonaType],
        prompt: str,
        on_event: Optional[EventHandler] = None,
    ) -> AgentInvocationResult:
        """Invoke one persona; in strict mode with the philosopher enabled, add its review."""
        agent = self.get_agent(agent_type)
        result = agent.invoke(prompt, on_event=on_event)

        if self.config.enable_philosopher and self.config.validation_level == "strict":
            review = self.philosopher.evaluate(_response_json(result), f"Original prompt: {prompt}")
            extra = review.response.validations
            validations = result.response.validations.merged(Validations(
                passed=[f"[Philosopher] {item}" for item in extra.passed],
                failed=[f"[Philosopher] {item}" for item in extra.failed],
            ))
            result.response = replace(result.response, validations=validations)
        return result

    def execute(
        self,
        agent_type: Union[str, PersonaType],
        prompt: str,
        on_event: Optional[EventHandler] = None,
    ) -> InvocationOutcome:
        """Like invoke_agent, but always returns an outcome instead of raising."""
        name = str(agent_type.value if isinstance(agent_type, PersonaType) else agent_type)
        seen_error = False

        def relay(event: str, data: Dict[str, Any]) -> None:
            nonlocal seen_error
            seen_error = seen_error or event == "error"
            if on_event is not None:
                on_event(event, data)

        try:
            result = self.invoke_agent(agent_type, prompt, on_event=relay)
        except AgentError as exc:
            error = exc
        except Exception as exc:
            logger.exception(f"Unexpected failure invoking {name}")
            error = internal_error(exc, {"agent_type": name})
        else:
            return InvocationOutcome(status=classify_outcome(result), agent_type=name, result=result)

        if not seen_error and on_event is not None:
            on_event("error", {"agent_type": name, "error": error.to_dict()})
        return InvocationOutcome(status=FAILED, agent_type=name, error=error)

    def stream(self, agent_type: Union[str, PersonaType], prompt: str) -> Iterator[Tuple[str, Dict[str, Any]]]:
        """Yield ``(event, data)`` pairs while the invocation runs in a worker thread."""
        events: "queue.Queue[Any]" = queue.Queue()
        finished = object()

        def run() -> None:
            try:
                self.execute(agent_type, prompt, on_event=lambda event, data: events.put((event, data)))
            finally:
                events.put(finished)

        worker = threading.Thread(target=run, name="quartet-stream", daemon=True)
        worker.start()
        while True:
            item = events.get()
            if item is finished:
                break
            yield item
        worker.join()

    def run_pipeline(self, task: str) -> PipelineResult:
        """Architect designs, code ninja implements, mechanic diagnoses failures, philosopher reviews."""
        pipeline = PipelineResult()
        blueprint = self.architect.design(task)
        pipeline.stages["blueprint"] = blueprint

        implementation = self.code_ninja.implement(
            blueprint.response.recommendation,
            blueprint.response.alternatives,
        )
        pipeline.stages["implementation"] = implementation

        if implementation.response.validations.failed:
            pipeline.stages["diagnosis"] = self.mechanic.diagnose(
                "Implementation has validation failures",
                json.dumps(implementation.response.validations.failed),
            )

        if self.config.enable_philosopher:
            pipeline.stages["meta_analysis"] = self.philosopher.meta_think(
                [_response_json(result) for result in pipeline.stages.values()]
            )
        return pipeline

    def run_qa_review(self, scope: str = "full") -> PipelineResult:
        if scope not in QA_AUDIT_PROMPTS:
            raise ValueError(f"Unknown review scope '{scope}'. Must be one of: {', '.join(QA_AUDIT_PROMPTS)}")
        review = PipelineResult()
        audit = self.architect.invoke(QA_AUDIT_PROMPTS[scope])
        review.stages["architect_audit"] = audit

        diagnosis = self.mechanic.diagnose(
            "Review the codebase for bugs, performance issues, and code quality problems",
            _response_json(audit),
        )
        review.stages["mechanic_diagnosis"] = diagnosis

        review.stages["code_ninja_remediation"] = self.code_ninja.invoke(
            "Based on the following issues, propose fixes with priorities:\n\n"
            f"Architect findings: {audit.response.recommendation}\n\n"
            f"Mechanic findings: {diagnosis.response.recommendation}"
        )
        review.stages["philosopher_validation"] = self.philosopher.meta_think(
            [_response_json(result) for result in review.stages.values()]
        )
        return review

    def chain(
        self,
        agent_types: Sequence[Union[str, PersonaType]],
        task: str,
        on_stage: Optional[Callable[[str, AgentInvocationResult], None]] = None,
    ) -> List[Tuple[str, AgentInvocationResult]]:
        """Run personas in order, feeding each recommendation into the next prompt."""
        results: List[Tuple[str, AgentInvocationResult]] = []
        prompt = task
        for agent_type in agent_types:
            agent = self.get_agent(agent_type)
            result = agent.invoke(prompt)
            key = agent.persona.key.value
            results.append((key, result))
            if on_stage is not None:
                on_stage(key, result)
            prompt = f"{task}\n\nPrevious analysis from {agent.name}:\n{result.response.recommendation}"
        return results

    def run_three_pass(self, task: str, workflow_config: Optional[ThreePassConfig] = None) -> WorkflowOutput:
        """Foundation, refinement and final passes with conflict resolution and sign-off."""
        settings = workflow_config or ThreePassConfig.from_config(self.settings.workflow.get("three_pass"))
        workflow = ThreePassWorkflow(self.architect, self.mechanic, self.code_ninja, self.philosopher, settings)
        return workflow.run(task)
