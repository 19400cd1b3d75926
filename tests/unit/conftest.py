"""Shared fixtures for studybuddy-gateway tests."""

import asyncio
import json
import threading
import time
from typing import Any

import pytest
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from studybuddy_gateway.ledger.memory_ledger import MemoryUsageLedger
from studybuddy_gateway.models import ChatMessage, Fragment, GatewayConfig, TokenUsage
from studybuddy_gateway.rate_limiter import FixedWindowRateLimiter

# ------------------------------------------------------------------
# Fake clock
# ------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock usable wherever ``time.time`` is expected."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ------------------------------------------------------------------
# In-process fake completion service
# ------------------------------------------------------------------


class FakeUpstream:
    """Scripted ``CompletionService`` that records every conversation it gets."""

    def __init__(
        self,
        fragments: list[str] | None = None,
        *,
        usage: TokenUsage | None = None,
        delay: float = 0.0,
        first_delay: float = 0.0,
        fail_at: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.fragments = ["Hello", " from", " fake!"] if fragments is None else fragments
        self.usage = usage
        self.delay = delay
        self.first_delay = first_delay
        self.fail_at = fail_at
        self.error = error or RuntimeError("upstream exploded")
        self.calls: list[list[ChatMessage]] = []
        self.closed = 0

    async def stream(self, messages: list[ChatMessage]):
        self.calls.append(list(messages))
        try:
            if self.first_delay:
                await asyncio.sleep(self.first_delay)
            for i, text in enumerate(self.fragments):
                if self.fail_at == i:
                    raise self.error
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield Fragment(text=text)
            if self.fail_at is not None and self.fail_at >= len(self.fragments):
                raise self.error
            if self.usage is not None:
                yield Fragment(usage=self.usage)
        finally:
            self.closed += 1


# ------------------------------------------------------------------
# Mock OpenAI-compatible server
# ------------------------------------------------------------------

_STREAM_CHUNKS = [
    {
        "id": "chatcmpl-mock",
        "object": "chat.completion.chunk",
        "model": "mock-model",
        "choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}, "finish_reason": None}],
    },
    {
        "id": "chatcmpl-mock",
        "object": "chat.completion.chunk",
        "model": "mock-model",
        "choices": [{"index": 0, "delta": {"content": "Hello"}, "finish_reason": None}],
    },
    {
        "id": "chatcmpl-mock",
        "object": "chat.completion.chunk",
        "model": "mock-model",
        "choices": [{"index": 0, "delta": {"content": " from mock!"}, "finish_reason": None}],
    },
    {
        "id": "chatcmpl-mock",
        "object": "chat.completion.chunk",
        "model": "mock-model",
        "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}],
    },
    {
        "id": "chatcmpl-mock",
        "object": "chat.completion.chunk",
        "model": "mock-model",
        "choices": [],
        "usage": {"prompt_tokens": 7, "completion_tokens": 3, "total_tokens": 10},
    },
]


def _build_mock_openai_app() -> FastAPI:
    """Minimal OpenAI-compatible server returning canned SSE streams."""
    app = FastAPI()
    app.state.request_log = []
    app.state.mode = "ok"

    @app.post("/v1/chat/completions")
    async def chat_completions(request: Request):
        body = await request.json()
        app.state.request_log.append({"body": body, "headers": dict(request.headers)})

        if app.state.mode == "error":
            return JSONResponse(status_code=503, content={"error": {"message": "overloaded"}})
        if app.state.mode == "slow":
            await asyncio.sleep(2.0)
        return StreamingResponse(_stream_chunks(), media_type="text/event-stream")

    return app


def _stream_chunks():
    for chunk in _STREAM_CHUNKS:
        yield f"data: {json.dumps(chunk)}\n\n"
    yield "data: [DONE]\n\n"


class MockOpenAIServer:
    """Run a mock OpenAI-compatible server in a background thread."""

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        self.host = host
        self.port = port
        self.app = _build_mock_openai_app()
        self._server: uvicorn.Server | None = None
        self._thread: threading.Thread | None = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def request_log(self) -> list[dict[str, Any]]:
        return self.app.state.request_log

    def set_mode(self, mode: str) -> None:
        self.app.state.mode = mode

    def start(self) -> None:
        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level="error",
        )
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, daemon=True)
        self._thread.start()
        # Wait for server to be ready
        deadline = time.time() + 5.0
        while time.time() < deadline:
            if self._server.started:
                # Grab the actual port if 0 was passed
                for sock in self._server.servers:
                    self.port = sock.sockets[0].getsockname()[1]
                return
            time.sleep(0.05)
        raise RuntimeError("Mock OpenAI server failed to start")

    def stop(self) -> None:
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None:
            self._thread.join(timeout=5.0)


# ------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> MemoryUsageLedger:
    return MemoryUsageLedger(capacity=1000, clock=clock)


@pytest.fixture
def rate_limiter(clock: FakeClock) -> FixedWindowRateLimiter:
    return FixedWindowRateLimiter(max_requests=20, window_seconds=60.0, clock=clock)


@pytest.fixture
def config() -> GatewayConfig:
    return GatewayConfig(api_key="test-key", upstream_timeout=5.0)


@pytest.fixture
def fake_upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def mock_openai():
    """Start a mock OpenAI-compatible server and yield it."""
    server = MockOpenAIServer(port=0)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def make_upstream():
    """Factory for scripted upstreams: ``make_upstream(["a", "b"], delay=...)``."""
    return FakeUpstream


@pytest.fixture
def make_clock():
    return FakeClock
