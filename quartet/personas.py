"""Persona registry: system prompts plus the helper prompts each persona offers."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from quartet.errors import ConfigurationError, ErrorCode


class PersonaType(str, Enum):
    ARCHITECT = "architect"
    MECHANIC = "mechanic"
    CODE_NINJA = "code_ninja"
    PHILOSOPHER = "philosopher"

    @classmethod
    def parse(cls, value: "str | PersonaType") -> "PersonaType":
        if isinstance(value, cls):
            return value
        key = str(value).strip()
        key = _PERSONA_ALIASES.get(key, key.lower().replace("-", "_"))
        try:
            return cls(key)
        except ValueError:
            raise ConfigurationError(
                f"Unknown agent type '{value}'. Must be one of: {', '.join(p.value for p in cls)}",
                code=ErrorCode.AGENT_NOT_FOUND,
            ) from None


_PERSONA_ALIASES = {"codeNinja": "code_ninja", "codeninja": "code_ninja"}

HelperBuilder = Callable[..., str]


@dataclass(frozen=True)
class Persona:
    key: PersonaType
    name: str
    system_prompt: str
    helpers: Dict[str, HelperBuilder] = field(default_factory=dict)

    def build_prompt(self, helper: str, *args, **kwargs) -> str:
        builder = self.helpers.get(helper)
        if builder is None:
            raise ConfigurationError(
                f"{self.name} has no helper '{helper}'. Available: {', '.join(sorted(self.helpers))}",
                code=ErrorCode.AGENT_NOT_FOUND,
            )
        return builder(*args, **kwargs)


def _bullets(title: str, items: Optional[Sequence[str]]) -> str:
    if not items:
        return ""
    return f"\n\n{title}:\n" + "\n".join(f"- {item}" for item in items)


def _fenced(code: str) -> str:
    return f"```\n{code}\n```"


# Architect
def design(task: str, constraints: Optional[Sequence[str]] = None) -> str:
    return f"Design a system architecture for: {task}{_bullets('Constraints to consider', constraints)}"


def evaluate_architecture(existing_architecture: str) -> str:
    return f"Evaluate the following architecture and suggest improvements:\n\n{existing_architecture}"


def decompose(system: str) -> str:
    return f"Decompose the following system into well-defined components:\n\n{system}"


# Mechanic
def diagnose(issue: str, error_log: Optional[str] = None) -> str:
    log_text = f"\n\nError Log:\n{_fenced(error_log)}" if error_log else ""
    return f"Diagnose and fix this issue: {issue}{log_text}"


def fix(code: str, problem: str) -> str:
    return f"Fix the following problem in this code:\n\nProblem: {problem}\n\nCode:\n{_fenced(code)}"


def optimize(code: str, metric: str = "performance") -> str:
    return f"Optimize the following code for {metric}:\n\n{_fenced(code)}"


# Code Ninja
def implement(feature: str, constraints: Optional[Sequence[str]] = None) -> str:
    return f"Implement the following feature: {feature}{_bullets('Technical constraints', constraints)}"


def refactor(code: str, goals: Optional[Sequence[str]] = None) -> str:
    return f"Refactor the following code:{_bullets('Refactoring goals', goals)}\n\n{_fenced(code)}"


def write_tests(code: str, framework: str = "pytest") -> str:
    return f"Write comprehensive tests for this code using {framework}:\n\n{_fenced(code)}"


# Philosopher
def evaluate_content(content: str, context: Optional[str] = None) -> str:
    context_text = f"\n\nContext:\n{context}" if context else ""
    return f"Evaluate the following for quality, biases, and missed opportunities:{context_text}\n\n{content}"


def identify_biases(decision: str) -> str:
    return f"Identify cognitive biases in this decision-making process:\n\n{decision}"


def map_opportunities(situation: str) -> str:
    return f"Map adjacent opportunities and unexplored possibilities for:\n\n{situation}"


def meta_think(agent_outputs: Sequence[str]) -> str:
    outputs = "\n\n---\n\n".join(f"Agent Output {idx}:\n{text}" for idx, text in enumerate(agent_outputs, start=1))
    return f"Perform meta-analysis on these agent outputs and provide an integrated assessment:\n\n{outputs}"


ARCHITECT_PROMPT = (
    "You are The Architect, an expert system designer who creates robust, scalable software architectures.\n\n"
    "Your core capabilities:\n"
    "1. System architecture design with clear component boundaries\n"
    "2. Decomposition of complex systems into well-defined components\n"
    "3. Selection of architectural patterns (layered, event-driven, services)\n"
    "4. Trade-off analysis between competing approaches\n"
    "5. Scalability planning for future growth\n\n"
    "Consider functional and non-functional requirements, data flow, state management, "
    "bottlenecks and failure points. Describe components, data flow and API boundaries textually "
    "and include a risk assessment. Always weigh maintainability, testability, security and operations."
)

MECHANIC_PROMPT = (
    "You are The Mechanic, an expert debugger who diagnoses and repairs software issues.\n\n"
    "Your core capabilities:\n"
    "1. Root cause analysis of bugs\n"
    "2. Interpreting error messages, stack traces and logs\n"
    "3. Finding and fixing performance bottlenecks\n"
    "4. Improving code quality without changing behavior\n"
    "5. Resolving dependency conflicts\n\n"
    "Your diagnostic process: reproduce, isolate, identify the root cause, apply a targeted fix, "
    "and explain how to verify it. Check for null references, off-by-one errors, race conditions "
    "and resource leaks. Always explain the issue, the fix, why it works and how to prevent it."
)

CODE_NINJA_PROMPT = (
    "You are The Code Ninja, an expert programmer who writes clean, efficient, well-tested code.\n\n"
    "Your core capabilities:\n"
    "1. Translating requirements into working code\n"
    "2. Production-ready code generation\n"
    "3. Refactoring without changing behavior\n"
    "4. Writing thorough test suites\n"
    "5. Building clean, documented APIs\n\n"
    "Design the interface first, implement with proper error handling, consider edge cases and "
    "validation, keep functions small with meaningful names, and follow the project's existing patterns."
)

PHILOSOPHER_PROMPT = (
    "You are The Philosopher, a meta-evaluator who provides deep analysis and finds opportunities others miss.\n\n"
    "Your core capabilities:\n"
    "1. Decision analysis and long-term implications\n"
    "2. Cognitive bias detection\n"
    "3. Opportunity mapping\n"
    "4. Evaluation of decision-making processes\n"
    "5. Identification of hidden risks and second-order effects\n\n"
    "Summarize the proposal, identify stated and unstated goals, analyze the reasoning, point out "
    "blind spots and suggest alternative framings. Check for confirmation bias, sunk cost, anchoring, "
    "availability and survivorship bias. Score the reasoning quality (0-100) and list the biases found."
)


PERSONAS: Dict[PersonaType, Persona] = {
    PersonaType.ARCHITECT: Persona(
        key=PersonaType.ARCHITECT,
        name="The Architect",
        system_prompt=ARCHITECT_PROMPT,
        helpers={"design": design, "evaluate": evaluate_architecture, "decompose": decompose},
    ),
    PersonaType.MECHANIC: Persona(
        key=PersonaType.MECHANIC,
        name="The Mechanic",
        system_prompt=MECHANIC_PROMPT,
        helpers={"diagnose": diagnose, "fix": fix, "optimize": optimize},
    ),
    PersonaType.CODE_NINJA: Persona(
        key=PersonaType.CODE_NINJA,
        name="The Code Ninja",
        system_prompt=CODE_NINJA_PROMPT,
        helpers={"implement": implement, "refactor": refactor, "test": write_tests},
    ),
    PersonaType.PHILOSOPHER: Persona(
        key=PersonaType.PHILOSOPHER,
        name="The Philosopher",
        system_prompt=PHILOSOPHER_PROMPT,
        helpers={
            "evaluate": evaluate_content,
            "identify_biases": identify_biases,
            "map_opportunities": map_opportunities,
            "meta_think": meta_think,
        },
    ),
}


def get_persona(value: "str | PersonaType") -> Persona:
    return PERSONAS[PersonaType.parse(value)]


def list_personas() -> List[Persona]:
    return list(PERSONAS.values())
