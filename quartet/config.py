"""Configuration loader for Quartet."""
from __future__ import annotations

from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Optional
import os
import yaml

from quartet.errors import ConfigurationError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "default.yaml"
USER_CONFIG_PATH = Path.home() / ".config" / "quartet" / "config.yaml"

CONSISTENCY_MODES = ("none", "fast", "robust")
VALIDATION_LEVELS = ("low", "medium", "high", "strict")

# camelCase names used by project context files and JSON callers
_FIELD_ALIASES = {
    "consistencyMode": "consistency_mode",
    "validationLevel": "validation_level",
    "enableSelfCritique": "enable_self_critique",
    "enablePhilosopher": "enable_philosopher",
    "enableSecondOpinion": "enable_second_opinion",
    "enableGrokSecondOpinion": "enable_second_opinion",
    "maxTokens": "max_tokens",
    "robustPaths": "robust_paths",
    "timeoutSeconds": "timeout_seconds",
    "blockOnDetection": "block_on_detection",
    "enforceValidation": "enforce_validation",
    "minValidationScore": "min_validation_score",
    "enforceThresholds": "enforce_thresholds",
}


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config() -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    if DEFAULT_CONFIG_PATH.exists():
        data = yaml.safe_load(DEFAULT_CONFIG_PATH.read_text()) or {}
    if USER_CONFIG_PATH.exists():
        override = yaml.safe_load(USER_CONFIG_PATH.read_text()) or {}
        data = _deep_merge(data, override)

    providers = data.setdefault("providers", {})

    # Environment overrides - API keys
    primary = providers.setdefault("primary", {})
    for env_name in primary.get("api_key_env") or ["OPENAI_API_KEY"]:
        value = os.getenv(env_name)
        if value:
            primary["api_key"] = value
            break
    base_url = os.getenv("OPENAI_BASE_URL")
    if base_url:
        primary["base_url"] = base_url

    second = providers.setdefault("second_opinion", {})
    for env_name in second.get("api_key_env") or ["XAI_API_KEY"]:
        value = os.getenv(env_name)
        if value:
            second["api_key"] = value
            break

    # Environment overrides - Agent defaults
    agent = data.setdefault("agent", {})
    model = os.getenv("QUARTET_MODEL")
    if model:
        agent["model"] = model
    consistency = os.getenv("QUARTET_CONSISTENCY")
    if consistency:
        agent["consistency_mode"] = consistency.strip().lower()
    validation = os.getenv("QUARTET_VALIDATION")
    if validation:
        agent["validation_level"] = validation.strip().lower()
    timeout = os.getenv("QUARTET_TIMEOUT")
    if timeout:
        try:
            agent["timeout_seconds"] = float(timeout)
        except ValueError:
            pass

    # Environment overrides - Telemetry and project context
    telemetry_path = os.getenv("QUARTET_TELEMETRY_PATH")
    if telemetry_path:
        data.setdefault("telemetry", {})["path"] = telemetry_path
    project_root = os.getenv("QUARTET_PROJECT_ROOT")
    if project_root:
        data.setdefault("project", {})["root"] = project_root

    return data


@dataclass(frozen=True)
class AgentConfig:
    """Per-invocation settings. Supplied by the caller and never changed mid-run."""
    consistency_mode: str = "fast"
    validation_level: str = "medium"
    enable_self_critique: bool = True
    enable_philosopher: bool = False
    enable_second_opinion: bool = False
    max_tokens: int = 4096
    temperature: float = 0.7
    model: str = "gpt-4o"
    robust_paths: int = 3
    timeout_seconds: float = 120.0
    block_on_detection: bool = False
    enforce_validation: bool = False
    min_validation_score: float = 0.7
    enforce_thresholds: bool = False

    def __post_init__(self) -> None:
        if self.consistency_mode not in CONSISTENCY_MODES:
            raise ConfigurationError(
                f"Unknown consistency mode '{self.consistency_mode}'. Must be one of: {', '.join(CONSISTENCY_MODES)}"
            )
        if self.validation_level not in VALIDATION_LEVELS:
            raise ConfigurationError(
                f"Unknown validation level '{self.validation_level}'. Must be one of: {', '.join(VALIDATION_LEVELS)}"
            )
        if self.max_tokens <= 0:
            raise ConfigurationError("max_tokens must be positive")
        if self.timeout_seconds <= 0:
            raise ConfigurationError("timeout_seconds must be positive")

    @property
    def path_count(self) -> int:
        if self.consistency_mode == "none":
            return 1
        if self.consistency_mode == "fast":
            return 2
        return max(3, int(self.robust_paths))

    @classmethod
    def from_dict(cls, values: Optional[Dict[str, Any]] = None, base: Optional["AgentConfig"] = None) -> "AgentConfig":
        base = base or cls()
        if not values:
            return base
        known = {f.name for f in fields(cls)}
        updates: Dict[str, Any] = {}
        for key, value in values.items():
            name = _FIELD_ALIASES.get(key, key)
            if name not in known or value is None:
                continue
            if name in ("consistency_mode", "validation_level"):
                value = str(value).strip().lower()
            updates[name] = value
        try:
            return replace(base, **updates)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Invalid agent config: {exc}") from exc

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_AGENT_CONFIG = AgentConfig()

STRICT_AGENT_CONFIG = AgentConfig(
    consistency_mode="robust",
    validation_level="strict",
    enable_self_critique=True,
    enable_philosopher=True,
    enable_second_opinion=True,
    max_tokens=4096,
    temperature=0.4,
)


@dataclass
class Config:
    raw: Dict[str, Any]

    @property
    def agent(self) -> AgentConfig:
        return AgentConfig.from_dict(self.raw.get("agent", {}))

    @property
    def providers(self) -> Dict[str, Any]:
        return self.raw.get("providers", {})

    def provider(self, name: str) -> Dict[str, Any]:
        return self.providers.get(name, {}) or {}

    def api_key(self, name: str) -> str:
        return str(self.provider(name).get("api_key") or "")

    @property
    def pricing(self) -> Dict[str, Any]:
        return self.raw.get("pricing", {})

    @property
    def thresholds(self) -> Dict[str, Any]:
        return self.raw.get("thresholds", {})

    @property
    def workflow(self) -> Dict[str, Any]:
        return self.raw.get("workflow", {}) or {}

    @property
    def telemetry(self) -> Dict[str, Any]:
        return self.raw.get("telemetry", {}) or {}

    @property
    def telemetry_path(self) -> Path | None:
        path = self.telemetry.get("path")
        return Path(path).expanduser() if path else None

    @property
    def project_root(self) -> Path:
        root = (self.raw.get("project", {}) or {}).get("root")
        return Path(root).expanduser() if root else Path.cwd()

    @property
    def consistency_modes(self) -> List[str]:
        return list(CONSISTENCY_MODES)

    @property
    def validation_levels(self) -> List[str]:
        return list(VALIDATION_LEVELS)


def get_config() -> Config:
    return Config(load_config())
