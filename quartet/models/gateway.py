"""Gateway that turns client results into completions or typed errors."""
from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from quartet.errors import ModelConnectionError, ModelTimeoutError, RateLimitError
from quartet.schema import Completion

logger = logging.getLogger(__name__)


class ChatClient(Protocol):
    provider: str

    @property
    def available(self) -> bool: ...

    def generate(
        self,
        prompt: str,
        model: str = ...,
        system: str | None = ...,
        temperature: float = ...,
        max_tokens: Optional[int] = ...,
        json_mode: bool = ...,
        timeout: float = ...,
    ) -> Any: ...


def estimate_tokens(text: str) -> int:
    """Rough token estimate (4 chars per token) for providers that omit usage."""
    return (len(text or "") + 3) // 4


class ModelGateway:
    def __init__(self, client: ChatClient, default_model: str = "gpt-4o") -> None:
        self.client = client
        self.default_model = default_model

    @property
    def available(self) -> bool:
        return bool(self.client.available)

    @property
    def provider(self) -> str:
        return str(getattr(self.client, "provider", "unknown"))

    def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: float = 0.7,
        json_mode: bool = False,
        timeout: float = 120,
    ) -> Completion:
        model = model or self.default_model
        result = self.client.generate(
            user_prompt,
            model=model,
            system=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            json_mode=json_mode,
            timeout=timeout,
        )
        if not result.ok:
            logger.debug(f"{self.provider} call failed: {result.error}")
            if result.timed_out:
                raise ModelTimeoutError(self.provider, timeout)
            if result.status_code == 429:
                raise RateLimitError(retry_after_ms=result.retry_after_ms)
            raise ModelConnectionError(
                self.provider,
                result.error or "unknown error",
                status_code=result.status_code,
            )
        usage = result.usage or {}
        input_tokens = int(usage.get("prompt_tokens") or 0) or estimate_tokens(system_prompt + user_prompt)
        output_tokens = int(usage.get("completion_tokens") or 0) or estimate_tokens(result.text)
        return Completion(
            text=result.text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            duration_ms=round(result.duration_ms, 2),
            model=result.model or model,
        )
