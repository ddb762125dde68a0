"""Command line interface for Quartet."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from quartet.config import get_config
from quartet.errors import AgentError, internal_error
from quartet.orchestrator import Orchestrator
from quartet.personas import list_personas
from quartet.security import sanitize_payload
from quartet.workflow import ThreePassConfig, format_report

logger = logging.getLogger(__name__)


def _print(obj: Any) -> None:
    print(json.dumps(obj, indent=2))


def _progress_printer(event: str, data: Dict[str, Any]) -> None:
    agent = data.get("agent_type") or "-"
    if event == "status":
        print(f"[quartet] {agent}: {data.get('state')}", file=sys.stderr)
    elif event == "reasoning":
        step = data.get("step") or {}
        print(f"[quartet] {agent}: step {step.get('step')}: {step.get('thought', '')[:100]}", file=sys.stderr)
    elif event == "complete":
        metrics = data.get("metrics") or {}
        stability = metrics.get("stability") or {}
        print(f"[quartet] {agent}: complete (consensus={stability.get('consistencyScore')})", file=sys.stderr)
    elif event == "error":
        error = data.get("error") or {}
        print(f"[quartet] {agent}: error {error.get('code')}: {error.get('message')}", file=sys.stderr)


def _agent_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if getattr(args, "consistency", None):
        overrides["consistency_mode"] = args.consistency
    if getattr(args, "validation", None):
        overrides["validation_level"] = args.validation
    if getattr(args, "critique", None) is not None:
        overrides["enable_self_critique"] = args.critique
    if getattr(args, "philosopher", False):
        overrides["enable_philosopher"] = True
    if getattr(args, "second_opinion", False):
        overrides["enable_second_opinion"] = True
    if getattr(args, "model", None):
        overrides["model"] = args.model
    if getattr(args, "max_tokens", None):
        overrides["max_tokens"] = args.max_tokens
    if getattr(args, "temperature", None) is not None:
        overrides["temperature"] = args.temperature
    if getattr(args, "timeout", None):
        overrides["timeout_seconds"] = args.timeout
    if getattr(args, "block", False):
        overrides["block_on_detection"] = True
    if getattr(args, "enforce", False):
        overrides["enforce_validation"] = True
    if getattr(args, "enforce_thresholds", False):
        overrides["enforce_thresholds"] = True
    return overrides


def _orchestrator(args: argparse.Namespace) -> Orchestrator:
    project_root = Path(args.project_root) if getattr(args, "project_root", None) else None
    return Orchestrator(config=get_config(), agent_config=_agent_overrides(args), project_root=project_root)


def _read_prompt(args: argparse.Namespace) -> str:
    if args.prompt_file:
        return Path(args.prompt_file).read_text(encoding="utf-8")
    if args.prompt:
        return args.prompt
    if not sys.stdin.isatty():
        return sys.stdin.read()
    raise SystemExit("quartet: provide --prompt, --prompt-file or a prompt on stdin")


def _fail(error: Exception) -> None:
    if not isinstance(error, AgentError):
        logger.debug("Unexpected failure", exc_info=True)
        error = internal_error(error)
    _print({"status": "failed", "error": error.to_dict()})
    print(f"[quartet] failed with {error.code.value}: {error.message}", file=sys.stderr)
    sys.exit(1)


def cmd_invoke(args: argparse.Namespace) -> None:
    try:
        orchestrator = _orchestrator(args)
    except AgentError as exc:
        _fail(exc)
        return
    prompt = _read_prompt(args)
    on_event = _progress_printer if args.progress else None
    outcome = orchestrator.execute(args.agent, prompt, on_event=on_event)
    _print(outcome.to_dict())
    if not outcome.ok:
        print(f"[quartet] failed with {outcome.error.code.value}: {outcome.error.message}", file=sys.stderr)
        sys.exit(1)


def cmd_pipeline(args: argparse.Namespace) -> None:
    try:
        result = _orchestrator(args).run_pipeline(args.task)
    except Exception as exc:
        _fail(exc)
        return
    _print(result.to_dict())


def cmd_review(args: argparse.Namespace) -> None:
    try:
        result = _orchestrator(args).run_qa_review(args.scope)
    except Exception as exc:
        _fail(exc)
        return
    _print(result.to_dict())


def cmd_chain(args: argparse.Namespace) -> None:
    try:
        stages = _orchestrator(args).chain(args.agents, args.task)
    except Exception as exc:
        _fail(exc)
        return
    _print([{"agent_type": key, "result": result.to_dict()} for key, result in stages])


def cmd_three_pass(args: argparse.Namespace) -> None:
    try:
        orchestrator = _orchestrator(args)
        workflow_config = None
        if args.trigger_threshold is not None:
            base = ThreePassConfig.from_config(orchestrator.settings.workflow.get("three_pass"))
            workflow_config = replace(base, philosopher_trigger_threshold=args.trigger_threshold)
        output = orchestrator.run_three_pass(args.task, workflow_config)
    except Exception as exc:
        _fail(exc)
        return
    if args.markdown:
        print(format_report(output), end="")
    else:
        _print(output.to_dict())


def cmd_personas(args: argparse.Namespace) -> None:
    _print([
        {"key": persona.key.value, "name": persona.name, "helpers": sorted(persona.helpers)}
        for persona in list_personas()
    ])


def cmd_config(args: argparse.Namespace) -> None:
    config = get_config()
    _print({
        "agent": config.agent.to_dict(),
        "providers": sanitize_payload(config.providers, redact_pii=False),
        "pricing": config.pricing,
        "thresholds": config.thresholds,
        "telemetry_path": str(config.telemetry_path) if config.telemetry_path else None,
        "project_root": str(config.project_root),
    })


def _add_agent_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--consistency", choices=["none", "fast", "robust"])
    parser.add_argument("--validation", choices=["low", "medium", "high", "strict"])
    parser.add_argument("--critique", dest="critique", action="store_true", default=None)
    parser.add_argument("--no-critique", dest="critique", action="store_false")
    parser.add_argument("--philosopher", action="store_true")
    parser.add_argument("--second-opinion", action="store_true")
    parser.add_argument("--model")
    parser.add_argument("--max-tokens", type=int)
    parser.add_argument("--temperature", type=float)
    parser.add_argument("--timeout", type=float, help="Seconds before a model call is abandoned")
    parser.add_argument("--block", action="store_true", help="Fail when injection or unsafe code is detected")
    parser.add_argument("--enforce", action="store_true", help="Fail when validation score is below the minimum")
    parser.add_argument("--enforce-thresholds", action="store_true", help="Fail when a run breaks its persona's CLASSic thresholds")
    parser.add_argument("--project-root")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="quartet")
    parser.add_argument("--log-level", default="WARNING")
    sub = parser.add_subparsers(dest="command")

    invoke = sub.add_parser("invoke", help="Run one persona on a prompt")
    invoke.add_argument("--agent", required=True, help="architect|mechanic|code_ninja|philosopher")
    invoke.add_argument("--prompt")
    invoke.add_argument("--prompt-file")
    invoke.add_argument("--progress", action="store_true")
    _add_agent_options(invoke)

    pipeline = sub.add_parser("pipeline", help="Design, implement, diagnose and review a task")
    pipeline.add_argument("--task", required=True)
    _add_agent_options(pipeline)

    review = sub.add_parser("review", help="Run the four-persona QA review")
    review.add_argument("--scope", choices=["full", "staged"], default="full")
    _add_agent_options(review)

    chain = sub.add_parser("chain", help="Run personas in order, feeding each answer to the next")
    chain.add_argument("--task", required=True)
    chain.add_argument("agents", nargs="+")
    _add_agent_options(chain)

    three_pass = sub.add_parser("three-pass", help="Plan, refine and execute a task over three passes with sign-off")
    three_pass.add_argument("--task", required=True)
    three_pass.add_argument("--trigger-threshold", type=float, help="Plan change ratio that triggers the alignment check")
    three_pass.add_argument("--markdown", action="store_true", help="Print the implementation plan report instead of JSON")
    _add_agent_options(three_pass)

    sub.add_parser("personas")
    sub.add_parser("config")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.command == "invoke":
        cmd_invoke(args)
    elif args.command == "pipeline":
        cmd_pipeline(args)
    elif args.command == "review":
        cmd_review(args)
    elif args.command == "chain":
        cmd_chain(args)
    elif args.command == "three-pass":
        cmd_three_pass(args)
    elif args.command == "personas":
        cmd_personas(args)
    elif args.command == "config":
        cmd_config(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
