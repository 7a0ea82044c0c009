from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable

from ..common import as_int
from ..models import GenerationResult, Usage
from .base import BaseProviderClient
from .errors import ProviderConfigError

logger = logging.getLogger("persona_bot.llm")


class OllamaClient(BaseProviderClient):
    backend_name = "ollama"

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: int = 120,
        temperature: float = 0.7,
        sleep: Callable[[float], Awaitable[object]] | None = None,
        rng: Callable[[], float] | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, sleep=sleep, rng=rng)
        self.base_url = (base_url or "http://127.0.0.1:11434").strip().rstrip("/")
        self.temperature = float(temperature)

    @staticmethod
    def _strip_reasoning_blocks(text: str) -> str:
        cleaned = str(text or "").strip()
        # Some reasoning-capable models may emit hidden-thought tags.
        return re.sub(r"<think>.*?</think>\s*", "", cleaned, flags=re.IGNORECASE | re.DOTALL).strip()

    @staticmethod
    def _extract_usage(data: dict[str, Any]) -> Usage:
        prompt_tokens = data.get("prompt_eval_count")
        completion_tokens = data.get("eval_count")
        return Usage(
            prompt_tokens=as_int(prompt_tokens) if prompt_tokens is not None else None,
            completion_tokens=as_int(completion_tokens) if completion_tokens is not None else None,
        )

    async def generate_reply(
        self,
        prompt: str,
        *,
        model: str,
        attempts: int = 3,
        backoff_ms: int = 1000,
    ) -> GenerationResult:
        if not model:
            raise ProviderConfigError("Ollama model is not configured", provider=self.backend_name)

        payload: dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": self.temperature},
        }
        url = f"{self.base_url}/api/generate"

        async def attempt() -> dict[str, Any]:
            logger.info("-> Ollama request model=%s function=generate_reply", model)
            return await self._request_json("POST", url, payload=payload)

        data = await self._with_retries(attempt, attempts=attempts, backoff_ms=backoff_ms, label="generate_reply")
        raw = data.get("response")
        text = self._strip_reasoning_blocks(raw) if isinstance(raw, str) else ""
        return GenerationResult(
            text=text or None,
            usage=self._extract_usage(data),
            provider=self.backend_name,
            model=model,
        )

    async def list_models(self, *, attempts: int = 3, backoff_ms: int = 1000) -> list[str]:
        url = f"{self.base_url}/api/tags"

        async def attempt() -> dict[str, Any]:
            return await self._request_json("GET", url)

        data = await self._with_retries(attempt, attempts=attempts, backoff_ms=backoff_ms, label="list_models")
        names: list[str] = []
        for item in data.get("models") or []:
            if isinstance(item, dict) and str(item.get("name") or "").strip():
                names.append(str(item["name"]).strip())
        return names
