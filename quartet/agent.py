"""The shared invocation pipeline and the per-persona Agent facade."""
from __future__ import annotations

import time
from dataclasses import replace
from functools import partial
from typing import Any, Callable, Dict, List, Optional

from quartet.context import InvocationState, RunContext
from quartet.engine import PromptEngine
from quartet.errors import AgentError, ConfigurationError, ErrorCode, SecurityError, internal_error
from quartet.evaluator import Evaluator
from quartet.parser import fallback_response, parse_agent_response
from quartet.personas import Persona
from quartet.schema import AgentInvocationResult, AgentResponse, Validations
from quartet.second_opinion import request_second_opinion
from quartet.security import SecurityCheckResult, run_deep_security_checks, run_security_checks
from quartet.validation import EnforcementPolicy, enforce_classic_thresholds, enforce_validation, validate_response

SUCCESS = "success"
PARTIAL = "partial"
FAILED = "failed"


def classify_outcome(result: AgentInvocationResult) -> str:
    """``partial`` when the run finished with failed checks or security findings."""
    if result.response.validations.failed or result.security_events:
        return PARTIAL
    return SUCCESS


def _raise_if_blocked(check: SecurityCheckResult, where: str, ctx: RunContext) -> None:
    blocked = [event for event in check.events if event.blocked]
    if not blocked:
        return
    event = blocked[0]
    raise SecurityError(
        event.event_type,
        f"{event.event_type.replace('_', ' ').capitalize()} detected in {where}: {event.details}",
        {"run_id": ctx.run_id, "agent_type": ctx.agent_type},
    )


def _check_environment(ctx: RunContext) -> None:
    if not ctx.gateway.available:
        raise ConfigurationError(
            f"No API key configured for model provider '{ctx.gateway.provider}'",
            code=ErrorCode.API_KEY_INVALID,
            context={"run_id": ctx.run_id, "agent_type": ctx.agent_type},
        )


def invoke(persona: Persona, prompt: str, ctx: RunContext) -> AgentInvocationResult:
    """Run one prompt through a persona.

    States: start, generating, critiquing (optional), second_opinion
    (optional), evaluating, done. Any error moves the run to failed and is
    re-raised after the failure is recorded. Errors that are not AgentError
    are raised as E299.
    """
    config = ctx.config
    start_time = time.monotonic()
    security_events: List[Dict[str, Any]] = []
    try:
        ctx.transition(InvocationState.START, persona=persona.name)
        _check_environment(ctx)
        input_check = run_security_checks(prompt, block_on_detection=config.block_on_detection)
        security_events.extend(event.to_dict() for event in input_check.events)
        _raise_if_blocked(input_check, "prompt", ctx)

        system_prompt = ctx.project_context.apply(persona.system_prompt)
        engine = PromptEngine(ctx.gateway, config, ctx.critic, ctx.log)

        ctx.transition(InvocationState.GENERATING, paths=config.path_count)
        consistency = engine.run_self_consistency(system_prompt, prompt, config.consistency_mode)
        selected = consistency.selected_path
        response = selected.response or fallback_response(selected.conclusion)
        input_tokens = sum(path.input_tokens for path in consistency.all_paths)
        output_tokens = sum(path.output_tokens for path in consistency.all_paths)
        step_times = [path.duration_ms for path in consistency.all_paths]
        for step in selected.steps:
            ctx.emit("reasoning", {"step": step.to_dict()})

        critique = None
        if config.enable_self_critique:
            ctx.transition(InvocationState.CRITIQUING)
            critique = engine.apply_self_critique(selected.conclusion, system_prompt)
            input_tokens += critique.input_tokens
            output_tokens += critique.output_tokens
            step_times.extend(critique.step_ms)
            if critique.improved:
                improved = parse_agent_response(critique.improved_response)
                if not improved.reasoning:
                    improved = replace(improved, reasoning=list(selected.steps))
                response = improved

        validation = validate_response(response, config.validation_level)
        response = replace(
            response,
            validations=response.validations.merged(Validations(validation.passed, validation.failed)),
        )

        if config.enable_second_opinion:
            ctx.transition(InvocationState.SECOND_OPINION)
            response = _with_second_opinion(response, prompt, system_prompt, ctx)

        ctx.transition(InvocationState.EVALUATING)
        output_check = run_deep_security_checks(response.to_dict(), block_on_detection=config.block_on_detection)
        security_events.extend(event.to_dict() for event in output_check.events)
        _raise_if_blocked(output_check, "response", ctx)

        evaluator = Evaluator(
            config.validation_level,
            cost_per_1k_input=float(ctx.pricing.get("cost_per_1k_input", 0.0025)),
            cost_per_1k_output=float(ctx.pricing.get("cost_per_1k_output", 0.01)),
        )
        metrics = evaluator.build_metrics(
            start_time,
            input_tokens,
            output_tokens,
            response,
            consistency.consensus_score,
            len(consistency.all_paths),
            step_times,
        )

        if config.enforce_validation:
            enforce_validation(
                response,
                config.validation_level,
                EnforcementPolicy(min_validation_score=config.min_validation_score),
                {"run_id": ctx.run_id, "agent_type": ctx.agent_type},
            )
        if config.enforce_thresholds:
            enforce_classic_thresholds(
                ctx.agent_type,
                metrics,
                ctx.thresholds,
                {"run_id": ctx.run_id, "agent_type": ctx.agent_type},
            )

        result = AgentInvocationResult(
            response=response,
            metrics=metrics,
            run_id=ctx.run_id,
            agent_type=ctx.agent_type,
            consistency=consistency.summary(),
            critique=critique,
            security_events=security_events,
        )
    except AgentError as exc:
        _record_failure(exc, ctx)
        raise
    except Exception as exc:
        ctx.log.debug("Unexpected failure during invocation", exc_info=True)
        error = internal_error(exc, {"run_id": ctx.run_id, "agent_type": ctx.agent_type})
        _record_failure(error, ctx)
        raise error from exc

    outcome = classify_outcome(result)
    ctx.transition(InvocationState.DONE, outcome=outcome)
    ctx.log.info(
        f"Done: consensus={metrics.stability.consistency_score:.2f} "
        f"tokens={metrics.cost.tokens} cost=${metrics.cost.estimated_cost:.4f} "
        f"latency={metrics.latency.total_ms}ms"
    )
    ctx.emit("complete", {"response": response.to_dict(), "metrics": metrics.to_dict()})
    ctx.telemetry.record(ctx.run_id, ctx.agent_type, outcome, {
        "metrics": metrics.to_dict(),
        "consistency": result.consistency,
        "security_events": security_events,
    })
    return result


def _with_second_opinion(response: AgentResponse, prompt: str, system_prompt: str, ctx: RunContext) -> AgentResponse:
    gateway = ctx.second_gateway
    if gateway is None or not gateway.available:
        ctx.log.warning("Second opinion requested but no second-opinion provider is configured; skipping")
        return response
    try:
        opinion = request_second_opinion(
            gateway,
            system_prompt,
            prompt,
            response.recommendation,
            ctx.second_opinion,
            timeout=ctx.config.timeout_seconds,
        )
    except AgentError as exc:
        ctx.log.warning(f"Second opinion failed [{ErrorCode.SECOND_OPINION_FAILED.value}]: {exc.message}")
        return response
    except Exception as exc:
        ctx.log.warning(f"Second opinion failed [{ErrorCode.SECOND_OPINION_FAILED.value}]: unexpected error: {exc}")
        return response
    return replace(response, second_opinion=opinion)


def _record_failure(error: AgentError, ctx: RunContext) -> None:
    ctx.state = InvocationState.FAILED
    ctx.log.warning(f"Invocation failed [{error.code.value}]: {error.message}")
    ctx.emit("error", {"state": InvocationState.FAILED.value, "error": error.to_dict()})
    ctx.telemetry.record(ctx.run_id, ctx.agent_type, FAILED, {"error": error.to_dict()})


ContextFactory = Callable[..., RunContext]


class Agent:
    """A persona bound to a context factory. Every call runs in a fresh RunContext.

    Helper prompts are exposed as methods, e.g. ``agent.diagnose(issue, error_log)``.
    """

    def __init__(self, persona: Persona, context_factory: ContextFactory) -> None:
        self.persona = persona
        self._context_factory = context_factory

    @property
    def name(self) -> str:
        return self.persona.name

    @property
    def system_prompt(self) -> str:
        return self.persona.system_prompt

    def invoke(self, prompt: str, on_event: Optional[Callable[[str, Dict[str, Any]], None]] = None) -> AgentInvocationResult:
        ctx = self._context_factory(self.persona.key.value, on_event=on_event)
        return invoke(self.persona, prompt, ctx)

    def helper(self, name: str, *args: Any, **kwargs: Any) -> AgentInvocationResult:
        return self.invoke(self.persona.build_prompt(name, *args, **kwargs))

    def __getattr__(self, name: str) -> Callable[..., AgentInvocationResult]:
        persona = self.__dict__.get("persona")
        if name.startswith("_") or persona is None or name not in persona.helpers:
            raise AttributeError(f"{type(self).__name__} has no attribute '{name}'")
        return partial(self.helper, name)
