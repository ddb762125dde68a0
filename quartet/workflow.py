"""Three-pass review workflow.

Pass 1 sets meta-goals (philosopher), plans (architect) and validates the plan
(mechanic). Overlapping findings are merged, or escalated to the philosopher
when they contradict each other. Pass 2 refines the plan and asks the
philosopher for an alignment check only when the plan moved more than the
trigger threshold. Pass 3 finalizes the roadmap, runs a joint validation and
hands the roadmap to the code ninja.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Union

from quartet.agent import Agent
from quartet.schema import AgentInvocationResult

logger = logging.getLogger(__name__)

WORKFLOW_VERSION = "2.1"
CONFLICT_SIMILARITY = 0.5
DEFAULT_GOAL = "Complete task successfully"

FINDING_MARKERS = ("finding", "issue", "recommendation")
ADJACENT_MARKERS = ("opportunity", "adjacent", "future")
GOAL_MARKERS = ("goal", "metric", "target")
HIGH_IMPACT_MARKERS = ("critical", "security", "breaking")
LOW_IMPACT_MARKERS = ("minor", "optional", "nice to have")

CONTRADICTORY_PAIRS = (
    ("add", "remove"),
    ("increase", "decrease"),
    ("enable", "disable"),
    ("should", "should not"),
    ("must", "must not"),
    ("do", "don't"),
)

PHILOSOPHER_GOALS_PROMPT = """As Philosopher, establish meta-goals for this task:

{task}

1. Define success metrics (max 5)
2. Identify adjacent opportunities for future optimization
3. Set quality thresholds

Keep under 300 words."""

ARCHITECT_PLAN_PROMPT = """As Architect, create a plan for this task:

{task}

Meta-goals from Philosopher:
{goals}

Provide:
1. Findings list (ARCH-001, ARCH-002...)
2. Core components (max 3)
3. Data flow (text-based)

Keep under 500 words. No implementation details."""

MECHANIC_VALIDATE_PROMPT = """Validate Architect's findings for this task:

{task}

Architect's Plan:
{plan}

Provide:
1. Validation status per finding
2. Your own findings (MECH-001...)
3. Risk assessment

Flag contradictions for Philosopher escalation."""

RESOLVE_CONFLICT_PROMPT = """Resolve this contradictory conflict:

Finding A ({a_id}): {a_text}
Finding B ({b_id}): {b_text}

Determine which recommendation is correct and explain why."""

ARCHITECT_UPDATE_PROMPT = """Update your plan based on Mechanic's feedback:

Original Plan:
{plan}

Mechanic Feedback:
{feedback}

Resolved Conflicts:
{resolutions}

Incorporate edge cases and address all issues."""

MECHANIC_RECHECK_PROMPT = """Validate the updated plan:

Updated Plan:
{plan}

Provide:
1. Risk analysis
2. Edge case coverage check
3. Calculate change percentage from original"""

PHILOSOPHER_ALIGNMENT_PROMPT = """Check alignment after significant changes ({changed:.1f}% changed):

Original Goals:
{goals}

Updated Plan:
{plan}

1. Confirm goals still aligned
2. Spot new adjacent opportunities
3. Flag any concerns"""

ARCHITECT_FINAL_PROMPT = """Finalize the roadmap:

Current Plan:
{plan}

All Findings Addressed:
{findings}

Create the final implementation roadmap."""

JOINT_VALIDATION_PROMPT = """Joint validation of final roadmap (act as both Mechanic and Philosopher):

Final Roadmap:
{roadmap}

=== MECHANIC VALIDATION ===
Verify:
- [ ] All findings addressed
- [ ] Edge cases covered
- [ ] Risk analysis complete

=== PHILOSOPHER VALIDATION ===
Confirm:
- [ ] Goals aligned with original meta-goals
- [ ] Strategic impact is positive
- [ ] Document any final ADJACENT OPPORTUNITIES for future optimization

Provide comprehensive validation covering both perspectives."""

NINJA_EXECUTE_PROMPT = """Implement approved changes from validated roadmap:

{roadmap}

Rules:
1. Follow approved blueprint exactly
2. No additional features
3. No scope expansion

Execute and report completion status."""


@dataclass(frozen=True)
class ThreePassConfig:
    philosopher_trigger_threshold: float = 0.15
    auto_merge_simple_conflicts: bool = True

    @classmethod
    def from_config(cls, values: Optional[Dict[str, Any]]) -> "ThreePassConfig":
        values = values or {}
        return cls(
            philosopher_trigger_threshold=float(values.get("philosopher_trigger_threshold", 0.15)),
            auto_merge_simple_conflicts=bool(values.get("auto_merge_simple_conflicts", True)),
        )


@dataclass
class Finding:
    id: str
    agent: str
    description: str
    impact: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "agent": self.agent, "description": self.description, "impact": self.impact}


@dataclass
class Conflict:
    id: str
    finding_a: Finding
    finding_b: Finding
    kind: str
    resolution: Optional[str] = None
    resolved_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "findingA": self.finding_a.to_dict(),
            "findingB": self.finding_b.to_dict(),
            "type": self.kind,
            "resolution": self.resolution,
            "resolvedBy": self.resolved_by,
        }


@dataclass
class Adjacent:
    id: str
    description: str
    pass_number: int
    source: str = "philosopher"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "description": self.description, "source": self.source, "pass": self.pass_number}


@dataclass
class PassResult:
    number: int
    calls: int = 0
    findings: List[Finding] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    adjacents: List[Adjacent] = field(default_factory=list)
    outputs: Dict[str, AgentInvocationResult] = field(default_factory=dict)
    change_percentage: Optional[float] = None

    def recommendation(self, key: str) -> str:
        result = self.outputs.get(key)
        return result.response.recommendation if result is not None else ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "pass": self.number,
            "calls": self.calls,
            "findings": [finding.to_dict() for finding in self.findings],
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
            "adjacents": [adjacent.to_dict() for adjacent in self.adjacents],
            "agentOutputs": {key: result.to_dict() for key, result in self.outputs.items()},
        }
        if self.change_percentage is not None:
            data["changePercentage"] = round(self.change_percentage, 4)
        return data


SignoffValue = Union[bool, str]


@dataclass
class WorkflowOutput:
    version: str = WORKFLOW_VERSION
    status: str = "complete"
    passes: List[PassResult] = field(default_factory=list)
    total_calls: int = 0
    meta_goals: List[str] = field(default_factory=list)
    findings: List[Finding] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    adjacents: List[Adjacent] = field(default_factory=list)
    final_roadmap: str = ""
    ninja_execution: Optional[AgentInvocationResult] = None
    signoff: Dict[str, Dict[str, SignoffValue]] = field(default_factory=lambda: {
        "pass1": {"architect": False, "mechanic": False, "philosopher": False},
        "pass2": {"architect": False, "mechanic": False, "philosopher": "skipped"},
        "pass3": {"architect": False, "mechanic": False, "philosopher": False, "code_ninja": False},
    })

    def add_pass(self, result: PassResult) -> None:
        self.passes.append(result)
        self.total_calls += result.calls
        self.findings.extend(result.findings)
        self.conflicts.extend(result.conflicts)
        self.adjacents.extend(result.adjacents)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "status": self.status,
            "passes": [result.to_dict() for result in self.passes],
            "totalCalls": self.total_calls,
            "metaGoals": list(self.meta_goals),
            "allFindings": [finding.to_dict() for finding in self.findings],
            "allConflicts": [conflict.to_dict() for conflict in self.conflicts],
            "allAdjacents": [adjacent.to_dict() for adjacent in self.adjacents],
            "finalRoadmap": self.final_roadmap,
            "ninjaExecution": self.ninja_execution.to_dict() if self.ninja_execution else None,
            "signoff": {name: dict(values) for name, values in self.signoff.items()},
        }


def infer_impact(text: str) -> str:
    lower = text.lower()
    if any(marker in lower for marker in HIGH_IMPACT_MARKERS):
        return "high"
    if any(marker in lower for marker in LOW_IMPACT_MARKERS):
        return "low"
    return "medium"


def _words(text: str) -> List[str]:
    return [word for word in re.split(r"\s+", text.lower()) if word]


def text_similarity(a: str, b: str) -> float:
    """Share of the combined vocabulary that ``a`` has in common with ``b``."""
    words_a = _words(a)
    words_b = _words(b)
    union = set(words_a) | set(words_b)
    if not union:
        return 0.0
    set_b = set(words_b)
    shared = sum(1 for word in words_a if word in set_b)
    return shared / len(union)


def is_contradictory(a: str, b: str) -> bool:
    lower_a = a.lower()
    lower_b = b.lower()
    for first, second in CONTRADICTORY_PAIRS:
        if (first in lower_a and second in lower_b) or (second in lower_a and first in lower_b):
            return True
    return False


def change_percentage(original: str, updated: str) -> float:
    """Words added plus words removed, over the longer text's word count."""
    original_words = _words(original)
    updated_words = _words(updated)
    original_set = set(original_words)
    updated_set = set(updated_words)
    added = sum(1 for word in updated_words if word not in original_set)
    removed = sum(1 for word in original_words if word not in updated_set)
    total = max(len(original_words), len(updated_words))
    return (added + removed) / total if total else 0.0


def merge_findings(a: Finding, b: Finding) -> str:
    combined = f"Merged finding: {a.description}"
    extra = b.description.replace(a.description, "").strip()
    if len(extra) > 10:
        return f"{combined}. Additional context: {extra}"
    return combined


def extract_goals(text: str) -> List[str]:
    goals = [line.strip() for line in text.splitlines() if any(marker in line.lower() for marker in GOAL_MARKERS)]
    return goals or [DEFAULT_GOAL]


def _marked_lines(text: str, markers) -> List[str]:
    return [line.strip() for line in text.splitlines() if any(marker in line.lower() for marker in markers)]


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class ThreePassWorkflow:
    """Runs the three passes over four persona agents. Adjacent opportunities are kept in the output only."""

    def __init__(
        self,
        architect: Agent,
        mechanic: Agent,
        code_ninja: Agent,
        philosopher: Agent,
        config: Optional[ThreePassConfig] = None,
    ) -> None:
        self.architect = architect
        self.mechanic = mechanic
        self.code_ninja = code_ninja
        self.philosopher = philosopher
        self.config = config or ThreePassConfig()
        self._counters = {"finding": 0, "conflict": 0, "adjacent": 0}

    def _next_id(self, kind: str, prefix: str) -> str:
        self._counters[kind] += 1
        return f"{prefix}-{self._counters[kind]:03d}"

    def parse_findings(self, text: str, agent: str) -> List[Finding]:
        prefix = "ARCH" if agent == "architect" else "MECH"
        lines = _marked_lines(text, FINDING_MARKERS) or [text[:200]]
        return [
            Finding(id=self._next_id("finding", prefix), agent=agent, description=line, impact=infer_impact(line))
            for line in lines
        ]

    def parse_adjacents(self, text: str, pass_number: int) -> List[Adjacent]:
        return [
            Adjacent(id=self._next_id("adjacent", "ADJ"), description=line, pass_number=pass_number)
            for line in _marked_lines(text, ADJACENT_MARKERS)
        ]

    def detect_conflicts(self, arch_findings: List[Finding], mech_findings: List[Finding]) -> List[Conflict]:
        conflicts: List[Conflict] = []
        for arch in arch_findings:
            for mech in mech_findings:
                if text_similarity(arch.description, mech.description) <= CONFLICT_SIMILARITY:
                    continue
                kind = "complex" if is_contradictory(arch.description, mech.description) else "simple"
                conflicts.append(Conflict(id=self._next_id("conflict", "C"), finding_a=arch, finding_b=mech, kind=kind))
        return conflicts

    def resolve_conflicts(self, conflicts: List[Conflict], result: PassResult) -> List[Conflict]:
        """Merge simple overlaps; contradictions cost one philosopher call each."""
        for conflict in conflicts:
            if conflict.kind == "simple" and self.config.auto_merge_simple_conflicts:
                logger.info(f"Auto-merge {conflict.finding_a.id} + {conflict.finding_b.id}")
                conflict.resolution = merge_findings(conflict.finding_a, conflict.finding_b)
                conflict.resolved_by = "auto"
                continue
            logger.info(f"Escalating {conflict.finding_a.id} vs {conflict.finding_b.id} to the philosopher")
            ruling = self.philosopher.invoke(RESOLVE_CONFLICT_PROMPT.format(
                a_id=conflict.finding_a.id,
                a_text=conflict.finding_a.description,
                b_id=conflict.finding_b.id,
                b_text=conflict.finding_b.description,
            ))
            conflict.resolution = ruling.response.recommendation
            conflict.resolved_by = "philosopher"
            result.calls += 1
        return conflicts

    def run(self, task: str) -> WorkflowOutput:
        output = WorkflowOutput()

        logger.info("Pass 1: foundation")
        first = self.foundation_pass(task)
        output.add_pass(first)
        output.signoff["pass1"] = {"architect": True, "mechanic": True, "philosopher": True}

        logger.info("Pass 2: refinement")
        second = self.refinement_pass(first)
        output.add_pass(second)
        triggered = "philosopher" in second.outputs
        output.signoff["pass2"] = {"architect": True, "mechanic": True, "philosopher": True if triggered else "skipped"}

        logger.info("Pass 3: final")
        third = self.final_pass(second)
        output.add_pass(third)
        output.signoff["pass3"] = {"architect": True, "mechanic": True, "philosopher": True, "code_ninja": True}

        output.final_roadmap = third.recommendation("architect")
        output.ninja_execution = third.outputs.get("code_ninja")
        output.meta_goals = extract_goals(first.recommendation("philosopher"))
        logger.info(
            f"Sign-off complete: calls={output.total_calls} findings={len(output.findings)} "
            f"conflicts={len(output.conflicts)} adjacents={len(output.adjacents)}"
        )
        return output

    def foundation_pass(self, task: str) -> PassResult:
        result = PassResult(number=1)

        goals = self.philosopher.invoke(PHILOSOPHER_GOALS_PROMPT.format(task=task))
        result.outputs["philosopher"] = goals
        result.calls += 1
        result.adjacents.extend(self.parse_adjacents(goals.response.recommendation, 1))

        plan = self.architect.invoke(ARCHITECT_PLAN_PROMPT.format(task=task, goals=goals.response.recommendation))
        result.outputs["architect"] = plan
        result.calls += 1
        arch_findings = self.parse_findings(plan.response.recommendation, "architect")
        result.findings.extend(arch_findings)

        check = self.mechanic.invoke(MECHANIC_VALIDATE_PROMPT.format(task=task, plan=plan.response.recommendation))
        result.outputs["mechanic"] = check
        result.calls += 1
        mech_findings = self.parse_findings(check.response.recommendation, "mechanic")
        result.findings.extend(mech_findings)

        result.conflicts = self.resolve_conflicts(self.detect_conflicts(arch_findings, mech_findings), result)
        return result

    def refinement_pass(self, first: PassResult) -> PassResult:
        result = PassResult(number=2)
        original_plan = first.recommendation("architect")
        resolutions = "\n".join(f"{conflict.id}: {conflict.resolution}" for conflict in first.conflicts)

        plan = self.architect.invoke(ARCHITECT_UPDATE_PROMPT.format(
            plan=original_plan,
            feedback=first.recommendation("mechanic") or "No feedback",
            resolutions=resolutions or "None",
        ))
        result.outputs["architect"] = plan
        result.calls += 1

        check = self.mechanic.invoke(MECHANIC_RECHECK_PROMPT.format(plan=plan.response.recommendation))
        result.outputs["mechanic"] = check
        result.calls += 1
        result.findings.extend(self.parse_findings(check.response.recommendation, "mechanic"))

        changed = change_percentage(original_plan, plan.response.recommendation)
        result.change_percentage = changed
        threshold = self.config.philosopher_trigger_threshold
        if changed <= threshold:
            logger.info(f"Alignment check skipped: {changed * 100:.1f}% changed (threshold {threshold * 100:.0f}%)")
            return result

        logger.info(f"Alignment check triggered: {changed * 100:.1f}% changed")
        alignment = self.philosopher.invoke(PHILOSOPHER_ALIGNMENT_PROMPT.format(
            changed=changed * 100,
            goals=first.recommendation("philosopher") or "N/A",
            plan=plan.response.recommendation,
        ))
        result.outputs["philosopher"] = alignment
        result.calls += 1
        result.adjacents.extend(self.parse_adjacents(alignment.response.recommendation, 2))
        return result

    def final_pass(self, second: PassResult) -> PassResult:
        result = PassResult(number=3)
        findings = "\n".join(f"{finding.id}: {finding.description}" for finding in second.findings)

        roadmap = self.architect.invoke(ARCHITECT_FINAL_PROMPT.format(
            plan=second.recommendation("architect"),
            findings=findings or "None pending",
        ))
        result.outputs["architect"] = roadmap
        result.calls += 1

        joint = self.philosopher.invoke(JOINT_VALIDATION_PROMPT.format(roadmap=roadmap.response.recommendation))
        result.outputs["joint"] = joint
        result.outputs["philosopher"] = joint
        result.calls += 1
        result.adjacents.extend(self.parse_adjacents(joint.response.recommendation, 3))

        execution = self.code_ninja.invoke(NINJA_EXECUTE_PROMPT.format(roadmap=roadmap.response.recommendation))
        result.outputs["code_ninja"] = execution
        result.calls += 1
        return result


def _mark(value: SignoffValue) -> str:
    if value == "skipped":
        return "Skipped"
    return "yes" if value else "-"


def format_report(output: WorkflowOutput, today: Optional[date] = None) -> str:
    """Render the workflow output as a Markdown implementation plan."""
    today = today or date.today()
    status = "Review Complete" if output.status == "complete" else "Failed"
    sections = [f"# Implementation Plan\n**Version:** {output.version}\n**Date:** {today.isoformat()}\n**Status:** {status}"]

    goals = "\n".join(f"- {goal}" for goal in output.meta_goals)
    first_pass_adjacents = sum(1 for adjacent in output.adjacents if adjacent.pass_number == 1)
    sections.append(
        f"## 1. Meta-Goals (Philosopher, pass 1)\n{goals}\n\n"
        f"**Adjacent Opportunities:** {first_pass_adjacents} identified"
    )

    for number, (title, agent) in enumerate((("Architect Findings", "architect"), ("Mechanic Validation", "mechanic")), 2):
        rows = "\n".join(
            f"| {finding.id} | {_truncate(finding.description, 50)} | {finding.impact} |"
            for finding in output.findings if finding.agent == agent
        )
        sections.append(f"## {number}. {title}\n| ID | Description | Impact |\n|----|-------------|--------|\n{rows}")

    rows = "\n".join(
        f"| {conflict.id} | {conflict.kind} | {_truncate(conflict.resolution or '', 30)} | {conflict.resolved_by} |"
        for conflict in output.conflicts
    ) or "| - | - | No conflicts | - |"
    sections.append(
        "## 4. Conflict Resolutions\n| ID | Type | Resolution | Resolved By |\n"
        f"|----|------|------------|-------------|\n{rows}"
    )

    sections.append(f"## 5. Final Roadmap\n{output.final_roadmap}")
    execution = output.ninja_execution.response.recommendation if output.ninja_execution else "Execution pending"
    sections.append(f"## 6. Code Ninja Execution\n{execution}")
    final_adjacents = "\n".join(f"- {adjacent.description}" for adjacent in output.adjacents if adjacent.pass_number == 3)
    sections.append(f"## 7. Final Adjacents (Philosopher, pass 3)\n{final_adjacents or 'None identified'}")

    signoff = output.signoff
    table = [
        "| Pass | Architect | Mechanic | Philosopher | Code Ninja |",
        "|------|-----------|----------|-------------|------------|",
    ]
    for number in (1, 2, 3):
        marks = signoff[f"pass{number}"]
        ninja = _mark(marks["code_ninja"]) if "code_ninja" in marks else "-"
        table.append(
            f"| {number} | {_mark(marks['architect'])} | {_mark(marks['mechanic'])} | {_mark(marks['philosopher'])} | {ninja} |"
        )
    sections.append("## 8. Sign-off Summary\n" + "\n".join(table) + f"\n\n**Total AI Calls:** {output.total_calls}")
    return "\n\n---\n\n".join(sections) + "\n"
