#!/usr/bin/env python3
"""
Quartet Demo -- the four personas on canned model replies.

Run:
    python examples/demo.py
    python examples/demo.py --live --agent architect --prompt "Design a job queue"

Offline by default: replies come from a scripted client, so no API key is
needed. With --live the configured OpenAI-compatible provider is used.
"""
from __future__ import annotations

import json
import sys
from pathlib import Path

# Ensure quartet is importable when running from the repo root.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from quartet.config import AgentConfig, get_config
from quartet.engine import CRITIC_SYSTEM_PROMPT
from quartet.models.gateway import ModelGateway
from quartet.models.scripted import ScriptedClient
from quartet.orchestrator import Orchestrator
from quartet.project_context import ProjectContext
from quartet.telemetry import NullTelemetry


CANNED = {
    "The Architect": "Split ingestion and scoring into two services joined by a durable queue",
    "The Mechanic": "Guard the dictionary lookup with .get() and log the missing key",
    "The Code Ninja": "Implement the scorer as a pure function with an LRU cache in front",
    "The Philosopher": "The plan is sound but assumes traffic stays bursty; revisit in a quarter",
}


def scripted_reply(prompt: str, system: str | None) -> dict:
    if system == CRITIC_SYSTEM_PROMPT:
        return {"critique": "Clear and actionable", "improvements": [], "severity": "low"}
    persona = next((name for name in CANNED if (system or "").startswith(f"You are {name}")), "The Architect")
    return {
        "reasoning": [
            {"step": 1, "thought": "Restate the problem and its constraints"},
            {"step": 2, "thought": "Compare the candidate approaches"},
            {"step": 3, "thought": "Pick the approach with the fewest moving parts"},
        ],
        "recommendation": CANNED[persona],
        "confidence": 0.82,
        "alternatives": ["Keep a single service and scale vertically"],
        "warnings": ["Queue depth needs an alert"],
    }


def offline_orchestrator(agent_config: AgentConfig) -> Orchestrator:
    return Orchestrator(
        config=get_config(),
        agent_config=agent_config,
        gateway=ModelGateway(ScriptedClient(responder=scripted_reply)),
        second_gateway=ModelGateway(ScriptedClient(available=False)),
        telemetry=NullTelemetry(),
        project_context=ProjectContext(),
    )


def run_demo(agent: str, prompt: str, live: bool) -> None:
    agent_config = AgentConfig(consistency_mode="fast", validation_level="high")
    orchestrator = Orchestrator(agent_config=agent_config) if live else offline_orchestrator(agent_config)

    print(f"\n{'=' * 72}")
    print(f"  {agent}: {prompt}")
    print(f"{'=' * 72}\n")

    for event, data in orchestrator.stream(agent, prompt):
        if event == "status":
            print(f"  [{data['state']}]")
        elif event == "reasoning":
            step = data["step"]
            print(f"    {step['step']}. {step['thought']}")
        elif event == "complete":
            response = data["response"]
            metrics = data["metrics"]
            print(f"\n  Recommendation: {response['recommendation']}")
            print(f"  Consensus: {metrics['stability']['consistencyScore']}")
            print(f"  Validations passed: {len(response['validations']['passed'])}")
            print(f"  Estimated cost: ${metrics['cost']['estimatedCost']:.4f}")
        elif event == "error":
            print(f"\n  Failed: {json.dumps(data['error'], indent=2)}")

    if not live:
        print("\n  Pipeline stages:")
        for name, result in offline_orchestrator(agent_config).run_pipeline(prompt).stages.items():
            print(f"    {name}: {result.response.recommendation}")
    print()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description="Run a Quartet persona on a sample prompt.")
    parser.add_argument("--agent", default="architect")
    parser.add_argument("--prompt", default="Design a scoring service for incoming support tickets")
    parser.add_argument("--live", action="store_true", help="Call the configured model provider.")
    args = parser.parse_args()
    run_demo(args.agent, args.prompt, args.live)


if __name__ == "__main__":
    main()
