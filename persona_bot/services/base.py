from __future__ import annotations

import abc
import asyncio
import json
import random
from typing import Any, Awaitable, Callable

import aiohttp

from ..models import GenerationResult
from .errors import ProviderError, error_from_exception, error_from_response
from .retry import call_with_retries


class BaseProviderClient(abc.ABC):
    backend_name = "llm"

    def __init__(
        self,
        *,
        timeout_seconds: int,
        sleep: Callable[[float], Awaitable[object]] | None = None,
        rng: Callable[[], float] | None = None,
    ) -> None:
        self.timeout = aiohttp.ClientTimeout(total=max(5, int(timeout_seconds)))
        self._session: aiohttp.ClientSession | None = None
        self._sleep = sleep or asyncio.sleep
        self._rng = rng or random.random

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Single HTTP attempt; every failure surfaces as a ``ProviderError``."""
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        try:
            async with self._session.request(method, url, json=payload) as response:
                text = await response.text()
                if not 200 <= response.status < 300:
                    raise error_from_response(
                        self.backend_name,
                        response.status,
                        text,
                        response.headers.get("Retry-After"),
                    )
        except asyncio.CancelledError:
            raise
        except ProviderError:
            raise
        except Exception as exc:
            raise error_from_exception(self.backend_name, exc) from exc

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ProviderError(
                f"{self.backend_name} returned invalid JSON",
                provider=self.backend_name,
                status=response.status,
                kind="response",
            ) from exc
        if not isinstance(parsed, dict):
            raise ProviderError(
                f"{self.backend_name} returned non-object JSON response",
                provider=self.backend_name,
                status=response.status,
                kind="response",
            )
        return parsed

    async def _with_retries(self, operation: Callable[[], Awaitable[Any]], *, attempts: int, backoff_ms: int, label: str) -> Any:
        return await call_with_retries(
            operation,
            attempts=attempts,
            base_backoff_ms=backoff_ms,
            label=f"{self.backend_name}.{label}",
            sleep=self._sleep,
            rng=self._rng,
        )

    @abc.abstractmethod
    async def generate_reply(
        self,
        prompt: str,
        *,
        model: str,
        attempts: int = 3,
        backoff_ms: int = 1000,
    ) -> GenerationResult: ...

    @abc.abstractmethod
    async def list_models(self, *, attempts: int = 3, backoff_ms: int = 1000) -> list[str]: ...
