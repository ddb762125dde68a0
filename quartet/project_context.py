"""Project context files (replit.md / AGENT.md) that tune agents for a repository."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

CONTEXT_FILES = ("replit.md", "AGENT.md", ".replit.md")

CONTEXT_HEADER = "\n\n--- Project Context ---\n"

_CONFIG_PATTERNS = {
    "consistency_mode": (re.compile(r"consistency\.mode:\s*(none|fast|robust)", re.I), str.lower),
    "validation_level": (re.compile(r"validationLevel:\s*(low|medium|high|strict)", re.I), str.lower),
    "enable_self_critique": (re.compile(r"enableSelfCritique:\s*(true|false)", re.I), lambda v: v.lower() == "true"),
    "enable_philosopher": (re.compile(r"enablePhilosopher:\s*(true|false)", re.I), lambda v: v.lower() == "true"),
    "max_tokens": (re.compile(r"maxTokens:\s*(\d+)", re.I), int),
    "temperature": (re.compile(r"temperature:\s*(\d+(?:\.\d+)?)", re.I), float),
}

# (heading in the file, title in the generated context)
_SECTIONS = (
    ("Code Standards", "Code Standards"),
    ("Architectural Rules", "Architectural Rules"),
    ("Security Constraints", "Security Constraints"),
    ("Custom Instructions", "Additional Instructions"),
)


@dataclass
class ProjectContext:
    source: Optional[Path] = None
    agent_overrides: Dict[str, Any] = field(default_factory=dict)
    sections: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def code_standards(self) -> List[str]:
        return self.sections.get("Code Standards", [])

    @property
    def architectural_rules(self) -> List[str]:
        return self.sections.get("Architectural Rules", [])

    @property
    def security_constraints(self) -> List[str]:
        return self.sections.get("Security Constraints", [])

    @property
    def custom_instructions(self) -> List[str]:
        return self.sections.get("Custom Instructions", [])

    def build_context(self) -> str:
        blocks = []
        for heading, title in _SECTIONS:
            items = self.sections.get(heading) or []
            if items:
                blocks.append(f"{title}:\n" + "\n".join(f"- {item}" for item in items))
        return "\n\n".join(blocks)

    def apply(self, system_prompt: str) -> str:
        context = self.build_context()
        return f"{system_prompt}{CONTEXT_HEADER}{context}" if context else system_prompt


def extract_section(content: str, name: str) -> List[str]:
    match = re.search(rf"##\s*{re.escape(name)}.*?(?=##|\Z)", content, re.I | re.S)
    if not match:
        return []
    items = []
    for line in match.group(0).splitlines():
        stripped = line.strip()
        if stripped.startswith(("-", "*")):
            item = stripped[1:].strip()
            if item:
                items.append(item)
    return items


def parse_project_context(content: str, source: Optional[Path] = None) -> ProjectContext:
    overrides: Dict[str, Any] = {}
    for name, (pattern, convert) in _CONFIG_PATTERNS.items():
        match = pattern.search(content)
        if match:
            overrides[name] = convert(match.group(1))
    sections = {heading: extract_section(content, heading) for heading, _ in _SECTIONS}
    return ProjectContext(source=source, agent_overrides=overrides, sections=sections)


def load_project_context(root: Optional[Path] = None) -> ProjectContext:
    """Read the first context file found under root. Missing files give an empty context."""
    root = Path(root) if root else Path.cwd()
    for name in CONTEXT_FILES:
        path = root / name
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning(f"Could not read project context {path}: {exc}")
            continue
        logger.debug(f"Loaded project context from {path}")
        return parse_project_context(content, source=path)
    return ProjectContext()
