"""In-process client that replays canned replies. Used for offline runs and tests."""
from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from quartet.models.openai import ChatResult

Reply = Union[str, Dict[str, Any], ChatResult, Exception]
Responder = Callable[[str, Optional[str]], Reply]


@dataclass
class ScriptedCall:
    prompt: str
    system: str | None
    model: str
    json_mode: bool
    temperature: float
    max_tokens: int | None


@dataclass
class ScriptedClient:
    """Returns queued replies in call order, or delegates to a responder.

    Dict replies are serialized as JSON; exceptions are raised; a ChatResult is
    returned as-is so failure results can be scripted too.
    """
    replies: List[Reply] = field(default_factory=list)
    responder: Responder | None = None
    available: bool = True
    provider: str = "scripted"
    calls: List[ScriptedCall] = field(default_factory=list)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def generate(
        self,
        prompt: str,
        model: str = "scripted",
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        timeout: float = 120,
    ) -> ChatResult:
        with self._lock:
            self.calls.append(ScriptedCall(prompt, system, model, json_mode, temperature, max_tokens))
            if self.responder is not None:
                reply = self.responder(prompt, system)
            elif self.replies:
                reply = self.replies.pop(0)
            else:
                reply = ""
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, ChatResult):
            return reply
        text = json.dumps(reply) if isinstance(reply, dict) else str(reply)
        return ChatResult(
            text=text,
            ok=True,
            status_code=200,
            usage={
                "prompt_tokens": (len(prompt) + len(system or "")) // 4,
                "completion_tokens": len(text) // 4,
            },
            model=model,
        )
