"""Telemetry sinks that receive one record per finished invocation."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Protocol
import json
import threading
import time

from quartet.security import sanitize_payload


class TelemetrySink(Protocol):
    def record(self, run_id: str, agent_type: str, outcome: str, payload: Dict[str, Any]) -> None: ...


class NullTelemetry:
    def record(self, run_id: str, agent_type: str, outcome: str, payload: Dict[str, Any]) -> None:
        return None


@dataclass
class JsonlTelemetry:
    """Appends sanitized run records to a JSON lines file."""
    path: Path

    def __post_init__(self) -> None:
        self.path = Path(self.path).expanduser()
        self._lock = threading.Lock()

    def record(self, run_id: str, agent_type: str, outcome: str, payload: Dict[str, Any]) -> None:
        entry = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%S"),
            "run_id": run_id,
            "agent_type": agent_type,
            "outcome": outcome,
            "data": sanitize_payload(payload or {}),
        }
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(entry) + "\n")


def telemetry_from_path(path: Path | None) -> TelemetrySink:
    return JsonlTelemetry(path) if path else NullTelemetry()
