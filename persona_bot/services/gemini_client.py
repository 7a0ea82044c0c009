from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from ..common import as_int
from ..models import GenerationResult, Usage
from .base import BaseProviderClient
from .errors import ProviderConfigError

logger = logging.getLogger("persona_bot.llm")


class GeminiClient(BaseProviderClient):
    backend_name = "gemini"

    def __init__(
        self,
        api_key: str,
        timeout_seconds: int,
        temperature: float,
        base_url: str = "https://generativelanguage.googleapis.com",
        *,
        sleep: Callable[[float], Awaitable[object]] | None = None,
        rng: Callable[[], float] | None = None,
    ) -> None:
        super().__init__(timeout_seconds=timeout_seconds, sleep=sleep, rng=rng)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.temperature = temperature

    def _require_key(self) -> None:
        if not self.api_key:
            raise ProviderConfigError("GEMINI_API_KEY is not set", provider=self.backend_name)

    def _generate_endpoint(self, model: str) -> str:
        return f"{self.base_url}/v1beta/models/{model}:generateContent?key={self.api_key}"

    def _models_endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models?key={self.api_key}&pageSize=1000"

    @staticmethod
    def _extract_text(data: dict[str, Any]) -> str | None:
        candidates = data.get("candidates") or []
        if not candidates:
            block_reason = (data.get("promptFeedback") or {}).get("blockReason")
            if block_reason:
                logger.warning("Gemini blocked response: %s", block_reason)
            return None

        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        chunks = [
            part["text"].strip()
            for part in parts
            if isinstance(part.get("text"), str) and part["text"].strip()
        ]
        joined = "\n".join(chunks).strip()
        if joined:
            return joined
        finish_reason = first.get("finishReason")
        if finish_reason:
            logger.warning("Gemini empty response (finishReason=%s)", finish_reason)
        return None

    @staticmethod
    def _extract_usage(data: dict[str, Any]) -> Usage:
        meta = data.get("usageMetadata") or {}
        prompt_tokens = meta.get("promptTokenCount")
        completion_tokens = meta.get("candidatesTokenCount")
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
        self._require_key()
        if not model:
            raise ProviderConfigError("Gemini model is not configured", provider=self.backend_name)

        payload: dict[str, Any] = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"temperature": self.temperature},
        }
        url = self._generate_endpoint(model)

        async def attempt() -> dict[str, Any]:
            logger.info("-> Gemini request model=%s function=generate_reply", model)
            return await self._request_json("POST", url, payload=payload)

        data = await self._with_retries(attempt, attempts=attempts, backoff_ms=backoff_ms, label="generate_reply")
        return GenerationResult(
            text=self._extract_text(data),
            usage=self._extract_usage(data),
            provider=self.backend_name,
            model=model,
        )

    async def list_models(self, *, attempts: int = 3, backoff_ms: int = 1000) -> list[str]:
        self._require_key()
        url = self._models_endpoint()

        async def attempt() -> dict[str, Any]:
            return await self._request_json("GET", url)

        data = await self._with_retries(attempt, attempts=attempts, backoff_ms=backoff_ms, label="list_models")
        names: list[str] = []
        for item in data.get("models") or []:
            if not isinstance(item, dict):
                continue
            methods = item.get("supportedGenerationMethods") or []
            if methods and "generateContent" not in methods:
                continue
            name = str(item.get("name") or "").strip()
            if name.startswith("models/"):
                name = name[len("models/") :]
            if name:
                names.append(name)
        return names
