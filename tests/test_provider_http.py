from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

import pytest
from aiohttp import test_utils, web


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from persona_bot.services.base import BaseProviderClient  # noqa: E402
from persona_bot.services.errors import ProviderError  # noqa: E402
from persona_bot.services.ollama_client import OllamaClient  # noqa: E402


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _build_app(generate_calls: list[int]) -> web.Application:
    async def unavailable(_request: web.Request) -> web.Response:
        return web.Response(status=503, text="model is loading", headers={"Retry-After": "1"})

    async def unauthorized(_request: web.Request) -> web.Response:
        return web.Response(status=401, text="invalid api key")

    async def array_body(_request: web.Request) -> web.Response:
        return web.json_response([])

    async def garbage(_request: web.Request) -> web.Response:
        return web.Response(text="<html>gateway</html>", content_type="text/html")

    async def generate(_request: web.Request) -> web.Response:
        generate_calls.append(1)
        if len(generate_calls) == 1:
            return web.Response(status=503, text="busy", headers={"Retry-After": "1"})
        return web.json_response({"response": "<think>hmm</think>hey!", "prompt_eval_count": 9, "eval_count": 2})

    app = web.Application()
    app.router.add_get("/unavailable", unavailable)
    app.router.add_get("/unauthorized", unauthorized)
    app.router.add_get("/array", array_body)
    app.router.add_get("/garbage", garbage)
    app.router.add_post("/api/generate", generate)
    return app


def _run_against_server(
    scenario: Callable[[OllamaClient, test_utils.TestServer], Awaitable[Any]],
    *,
    generate_calls: list[int] | None = None,
    sleep: _SleepRecorder | None = None,
) -> Any:
    async def runner() -> Any:
        server = test_utils.TestServer(_build_app(generate_calls if generate_calls is not None else []))
        await server.start_server()
        client = OllamaClient(base_url=str(server.make_url("/")), timeout_seconds=10, sleep=sleep, rng=lambda: 0.0)
        try:
            return await scenario(client, server)
        finally:
            await client.close()
            await server.close()

    return asyncio.run(runner())


def _request_error(path: str) -> ProviderError:
    async def scenario(client: OllamaClient, server: test_utils.TestServer) -> ProviderError:
        with pytest.raises(ProviderError) as excinfo:
            await client._request_json("GET", str(server.make_url(path)))
        return excinfo.value

    return _run_against_server(scenario)


def test_service_unavailable_is_retryable_with_retry_after_hint() -> None:
    error = _request_error("/unavailable")

    assert error.status == 503
    assert error.retryable is True
    assert error.retry_after_ms == 1000
    assert error.kind == "http"
    assert "model is loading" in str(error)


def test_unauthorized_is_fatal() -> None:
    error = _request_error("/unauthorized")

    assert error.status == 401
    assert error.retryable is False
    assert error.retry_after_ms is None


def test_json_array_body_is_a_response_error() -> None:
    error = _request_error("/array")

    assert error.kind == "response"
    assert error.retryable is False
    assert error.status == 200


def test_non_json_body_is_a_response_error() -> None:
    error = _request_error("/garbage")

    assert error.kind == "response"
    assert "invalid JSON" in str(error)


def test_generate_reply_waits_retry_after_then_succeeds() -> None:
    calls: list[int] = []
    sleep = _SleepRecorder()

    async def scenario(client: OllamaClient, _server: test_utils.TestServer):
        return await client.generate_reply("hi", model="llama3.1:8b", attempts=3, backoff_ms=50)

    result = _run_against_server(scenario, generate_calls=calls, sleep=sleep)

    assert len(calls) == 2
    assert sleep.delays == [1.0]
    assert result.text == "hey!"
    assert result.usage.prompt_tokens == 9


def test_base_client_cannot_be_instantiated() -> None:
    with pytest.raises(TypeError):
        BaseProviderClient(timeout_seconds=30)  # type: ignore[abstract]
