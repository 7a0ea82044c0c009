from __future__ import annotations

import logging
from typing import Mapping, Protocol

from ..models import GenerationResult, ProviderConfig, ProviderTarget
from .errors import ProviderConfigError, ProviderError

logger = logging.getLogger("persona_bot.llm")


class ProviderClient(Protocol):
    backend_name: str

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def generate_reply(
        self,
        prompt: str,
        *,
        model: str,
        attempts: int = 3,
        backoff_ms: int = 1000,
    ) -> GenerationResult: ...

    async def list_models(self, *, attempts: int = 3, backoff_ms: int = 1000) -> list[str]: ...


class _ProviderConfigSource(Protocol):
    def get_provider_config(self) -> ProviderConfig: ...


class LLMRouter:
    """Routes generation to the provider named in the current config.

    The provider config is read on every call, so switching providers in the
    config file takes effect without a restart.
    """

    def __init__(self, config: _ProviderConfigSource, clients: Mapping[str, ProviderClient]) -> None:
        self.config = config
        self.clients = {name.strip().lower(): client for name, client in clients.items()}

    async def start(self) -> None:
        for client in self.clients.values():
            await client.start()

    async def close(self) -> None:
        for name, client in self.clients.items():
            try:
                await client.close()
            except Exception as exc:
                logger.warning("Failed to close %s client: %s", name, exc)

    def current_provider(self) -> str:
        return self.config.get_provider_config().provider

    def _client_for(self, provider: str) -> ProviderClient:
        client = self.clients.get((provider or "").strip().lower())
        if client is None:
            raise ProviderConfigError(f"Unsupported LLM provider: {provider}", provider=provider)
        return client

    def validate(self) -> None:
        cfg = self.config.get_provider_config()
        for target in (ProviderTarget(cfg.provider, cfg.model), *cfg.fallbacks):
            client = self._client_for(target.provider)
            if not target.model:
                raise ProviderConfigError(f"No model configured for provider {target.provider}", provider=target.provider)
            if target.provider == "gemini" and not getattr(client, "api_key", ""):
                raise ProviderConfigError("GEMINI_API_KEY is required for the gemini provider", provider="gemini")

    async def generate_reply(self, prompt: str) -> GenerationResult:
        cfg = self.config.get_provider_config()
        primary = ProviderTarget(cfg.provider, cfg.model)
        # Unknown primary is fatal before any request is made.
        self._client_for(primary.provider)

        last_error: ProviderError | None = None
        for target in (primary, *cfg.fallbacks):
            client = self._client_for(target.provider)
            if last_error is not None:
                logger.warning(
                    "Failing over to %s (%s) after %s exhausted retries: %s",
                    target.provider,
                    target.model,
                    last_error.provider,
                    last_error,
                )
            logger.info("Using %s provider for generate_reply", target.provider)
            try:
                return await client.generate_reply(
                    prompt,
                    model=target.model,
                    attempts=cfg.retry_attempts,
                    backoff_ms=cfg.retry_backoff_ms,
                )
            except ProviderError as exc:
                if not exc.retryable:
                    raise
                last_error = exc

        assert last_error is not None
        raise last_error

    async def list_models(self, provider: str | None = None) -> list[str]:
        cfg = self.config.get_provider_config()
        name = provider or cfg.provider
        client = self._client_for(name)
        logger.info("Fetching models from %s provider", name)
        return await client.list_models(attempts=cfg.retry_attempts, backoff_ms=cfg.retry_backoff_ms)
