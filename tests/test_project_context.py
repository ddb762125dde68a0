"""Tests for quartet.project_context module."""
import tempfile
import unittest
from pathlib import Path

from quartet.config import AgentConfig, Config
from quartet.models.gateway import ModelGateway
from quartet.models.scripted import ScriptedClient
from quartet.orchestrator import Orchestrator
from quartet.project_context import (
    CONTEXT_HEADER,
    ProjectContext,
    extract_section,
    load_project_context,
    parse_project_context,
)
from quartet.telemetry import NullTelemetry

SAMPLE = """# Payments service

## Agent Config
consistency.mode: robust
validationLevel: strict
enableSelfCritique: false
maxTokens: 2048
temperature: 0.2

## Code Standards
- Type hints on public functions
- No bare except

## Security Constraints
* Never log card numbers

## Custom Instructions
- Prefer small pull requests
"""


class TestParseProjectContext(unittest.TestCase):
    def test_overrides(self):
        ctx = parse_project_context(SAMPLE)
        self.assertEqual(ctx.agent_overrides, {
            "consistency_mode": "robust",
            "validation_level": "strict",
            "enable_self_critique": False,
            "max_tokens": 2048,
            "temperature": 0.2,
        })

    def test_sections(self):
        ctx = parse_project_context(SAMPLE)
        self.assertEqual(ctx.code_standards, ["Type hints on public functions", "No bare except"])
        self.assertEqual(ctx.security_constraints, ["Never log card numbers"])
        self.assertEqual(ctx.custom_instructions, ["Prefer small pull requests"])
        self.assertEqual(ctx.architectural_rules, [])

    def test_build_context_titles(self):
        text = parse_project_context(SAMPLE).build_context()
        self.assertTrue(text.startswith("Code Standards:\n- Type hints on public functions"))
        self.assertIn("Additional Instructions:\n- Prefer small pull requests", text)
        self.assertNotIn("Architectural Rules", text)

    def test_apply(self):
        ctx = parse_project_context(SAMPLE)
        prompt = ctx.apply("You are The Mechanic")
        self.assertTrue(prompt.startswith("You are The Mechanic" + CONTEXT_HEADER))
        self.assertEqual(ProjectContext().apply("You are The Mechanic"), "You are The Mechanic")

    def test_extract_missing_section(self):
        self.assertEqual(extract_section("# Nothing here", "Code Standards"), [])


class TestLoadProjectContext(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.root = Path(self.tmp.name)

    def test_missing_files_give_empty_context(self):
        ctx = load_project_context(self.root)
        self.assertIsNone(ctx.source)
        self.assertEqual(ctx.agent_overrides, {})
        self.assertEqual(ctx.build_context(), "")

    def test_replit_md_wins_over_agent_md(self):
        (self.root / "AGENT.md").write_text("validationLevel: low\n")
        (self.root / "replit.md").write_text("validationLevel: high\n")
        ctx = load_project_context(self.root)
        self.assertEqual(ctx.source, self.root / "replit.md")
        self.assertEqual(ctx.agent_overrides["validation_level"], "high")

    def test_orchestrator_layers_overrides(self):
        (self.root / "AGENT.md").write_text(SAMPLE)
        orch = Orchestrator(
            config=Config({"agent": {"validation_level": "low", "model": "gpt-4o-mini"}}),
            agent_config={"temperature": 0.9},
            gateway=ModelGateway(ScriptedClient()),
            telemetry=NullTelemetry(),
            project_root=self.root,
        )
        self.assertEqual(orch.config.validation_level, "strict")
        self.assertEqual(orch.config.consistency_mode, "robust")
        self.assertEqual(orch.config.model, "gpt-4o-mini")
        self.assertEqual(orch.config.temperature, 0.9)

    def test_explicit_agent_config_is_used_as_is(self):
        (self.root / "AGENT.md").write_text(SAMPLE)
        explicit = AgentConfig(validation_level="low")
        orch = Orchestrator(
            config=Config({}),
            agent_config=explicit,
            gateway=ModelGateway(ScriptedClient()),
            telemetry=NullTelemetry(),
            project_root=self.root,
        )
        self.assertIs(orch.config, explicit)
        self.assertEqual(orch.project_context.source, self.root / "AGENT.md")


if __name__ == "__main__":
    unittest.main()
