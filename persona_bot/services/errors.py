from __future__ import annotations

import asyncio

import aiohttp

RETRYABLE_STATUSES = frozenset({408, 429})


class ProviderError(Exception):
    """Classified provider failure; retry decisions only look at these fields."""

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status: int | None = None,
        retryable: bool = False,
        retry_after_ms: int | None = None,
        kind: str = "http",
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.status = status
        self.retryable = retryable
        self.retry_after_ms = retry_after_ms
        self.kind = kind

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(provider={self.provider!r}, status={self.status!r}, "
            f"retryable={self.retryable!r}, retry_after_ms={self.retry_after_ms!r}, kind={self.kind!r})"
        )


class ProviderConfigError(ProviderError):
    def __init__(self, message: str, *, provider: str) -> None:
        super().__init__(message, provider=provider, retryable=False, kind="config")


def is_retryable_status(status: int) -> bool:
    return status >= 500 or status in RETRYABLE_STATUSES


def parse_retry_after(value: str | None) -> int | None:
    """Return the Retry-After hint in ms when it is numeric seconds, else None."""
    if value is None:
        return None
    raw = value.strip()
    if not raw:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        # HTTP-date form; not used for backoff.
        return None
    if seconds < 0:
        return None
    return int(round(seconds * 1000))


def error_from_response(provider: str, status: int, body: str, retry_after: str | None = None) -> ProviderError:
    snippet = (body or "").strip()[:300]
    message = f"{provider} API error {status}" + (f": {snippet}" if snippet else "")
    return ProviderError(
        message,
        provider=provider,
        status=status,
        retryable=is_retryable_status(status),
        retry_after_ms=parse_retry_after(retry_after),
        kind="http",
    )


def error_from_exception(provider: str, exc: BaseException) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return ProviderError(f"{provider} request timed out", provider=provider, retryable=True, kind="network")
    if isinstance(exc, (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, ConnectionResetError)):
        return ProviderError(
            f"{provider} connection failed: {exc}",
            provider=provider,
            retryable=True,
            kind="network",
        )
    return ProviderError(f"{provider} request failed: {exc}", provider=provider, retryable=False, kind="response")
