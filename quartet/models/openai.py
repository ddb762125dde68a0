"""OpenAI-compatible chat completions client for Quartet."""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

import httpx

logger = logging.getLogger(__name__)


@dataclass
class ChatResult:
    """Result from a chat completions call."""
    text: str = ""
    ok: bool = True
    error: str | None = None
    status_code: int | None = None
    retry_after_ms: int | None = None
    timed_out: bool = False
    duration_ms: float = 0.0
    usage: Dict[str, Any] | None = None
    model: str = ""


def _retry_after_ms(value: str | None) -> int | None:
    if not value:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


def _token_count(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


class ChatCompletionsClient:
    """Chat completions client over httpx. Works for OpenAI and xAI endpoints."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = "https://api.openai.com/v1",
        provider: str = "openai",
        api_key_env: Sequence[str] = ("OPENAI_API_KEY", "AI_INTEGRATIONS_OPENAI_API_KEY"),
    ) -> None:
        if api_key is None:
            api_key = next((os.environ[name] for name in api_key_env if os.environ.get(name)), "")
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.provider = provider

    @classmethod
    def from_config(cls, provider_cfg: Dict[str, Any], provider: str = "openai") -> "ChatCompletionsClient":
        return cls(
            api_key=str(provider_cfg.get("api_key") or ""),
            base_url=str(provider_cfg.get("base_url") or "https://api.openai.com/v1"),
            provider=provider,
        )

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def generate(
        self,
        prompt: str,
        model: str = "gpt-4o",
        system: str | None = None,
        temperature: float = 0.7,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
        timeout: float = 120,
    ) -> ChatResult:
        if not self.api_key:
            return ChatResult(ok=False, error=f"{self.provider} API key not set")

        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        body: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
        }
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        if json_mode:
            body["response_format"] = {"type": "json_object"}

        headers = {"Authorization": f"Bearer {self.api_key}"}
        start = time.perf_counter()
        try:
            with httpx.Client(timeout=timeout) as client:
                response = client.post(f"{self.base_url}/chat/completions", json=body, headers=headers)

            duration_ms = (time.perf_counter() - start) * 1000

            if response.status_code == 429:
                return ChatResult(
                    ok=False,
                    error="HTTP 429: rate limited",
                    status_code=429,
                    retry_after_ms=_retry_after_ms(response.headers.get("retry-after")),
                    duration_ms=duration_ms,
                )
            if response.status_code != 200:
                return ChatResult(
                    ok=False,
                    error=f"HTTP {response.status_code}: {response.text[:500]}",
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )

            try:
                data = response.json()
            except ValueError:
                logger.warning(f"{self.provider} returned a non-JSON body")
                return ChatResult(
                    ok=False,
                    error="Invalid JSON body",
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )
            choices = data.get("choices") if isinstance(data, dict) else None
            if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
                return ChatResult(
                    ok=False,
                    error="No choices in response",
                    status_code=response.status_code,
                    duration_ms=duration_ms,
                )

            message = choices[0].get("message")
            content = message.get("content") if isinstance(message, dict) else None
            text = content if isinstance(content, str) else ""
            usage_raw = data.get("usage")
            if not isinstance(usage_raw, dict):
                usage_raw = {}
            usage = {
                "prompt_tokens": _token_count(usage_raw.get("prompt_tokens")),
                "completion_tokens": _token_count(usage_raw.get("completion_tokens")),
                "total_tokens": _token_count(usage_raw.get("total_tokens")),
            }
            return ChatResult(
                text=text,
                ok=True,
                status_code=response.status_code,
                duration_ms=duration_ms,
                usage=usage,
                model=str(data.get("model") or model),
            )

        except httpx.TimeoutException:
            duration_ms = (time.perf_counter() - start) * 1000
            return ChatResult(
                ok=False,
                error=f"{self.provider} API timeout after {timeout}s",
                timed_out=True,
                duration_ms=duration_ms,
            )
        except httpx.HTTPError as exc:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.warning(f"{self.provider} request failed: {exc}")
            return ChatResult(ok=False, error=str(exc), duration_ms=duration_ms)
