"""FastAPI application factory and CLI entrypoint for studybuddy-gateway."""

import argparse
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import yaml
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from studybuddy_gateway._version import __version__
from studybuddy_gateway.errors import RelayError
from studybuddy_gateway.ledger.base import UsageLedger
from studybuddy_gateway.ledger.memory_ledger import MemoryUsageLedger
from studybuddy_gateway.middleware import UNKNOWN_CLIENT, ClientIdentityMiddleware
from studybuddy_gateway.models import GatewayConfig
from studybuddy_gateway.prompts import (
    CODING_GREETING,
    STUDY_GREETING,
    CodingSessionConfig,
    StudySessionConfig,
    build_coding_prompt,
    build_study_prompt,
    opening_messages,
)
from studybuddy_gateway.rate_limiter import FixedWindowRateLimiter
from studybuddy_gateway.relay import ChatRelay, RelayStream
from studybuddy_gateway.upstream import CompletionService, OpenAIUpstream

logger = logging.getLogger(__name__)

DASHBOARD_LOG_LIMIT = 100
DASHBOARD_ACTIVITY_MINUTES = 60


# ------------------------------------------------------------------
# App factory
# ------------------------------------------------------------------


def create_app(
    config: GatewayConfig | None = None,
    *,
    upstream: CompletionService | None = None,
    ledger: UsageLedger | None = None,
    rate_limiter: FixedWindowRateLimiter | None = None,
) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if config is None:
        config = GatewayConfig()

    if ledger is None:
        ledger = MemoryUsageLedger(capacity=config.ledger_capacity)

    owned_upstream: OpenAIUpstream | None = None
    if upstream is None:
        owned_upstream = OpenAIUpstream.from_config(config)
        upstream = owned_upstream

    relay = ChatRelay(config, upstream, ledger, rate_limiter=rate_limiter)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if owned_upstream is not None:
            await owned_upstream.start()
        yield
        if owned_upstream is not None:
            await owned_upstream.stop()

    app = FastAPI(title="studybuddy-gateway", version=__version__, lifespan=lifespan)

    app.add_middleware(ClientIdentityMiddleware)

    # -- Health ------------------------------------------------------------

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    # -- Chat --------------------------------------------------------------

    @app.post("/api/chat")
    async def chat(request: Request):
        identity = getattr(request.state, "client_identity", UNKNOWN_CLIENT)
        body = await _safe_json(request)

        try:
            stream = await relay.handle(body, identity)
        except RelayError as exc:
            return _error_response(exc)

        headers = {"X-RateLimit-Remaining": str(stream.remaining)}

        if isinstance(body, dict) and body.get("stream") is False:
            try:
                content = await stream.collect()
            except RelayError as exc:
                return _error_response(exc)
            return JSONResponse(
                content={"message": {"role": "assistant", "content": content}},
                headers=headers,
            )

        return StreamingResponse(
            _relay_body(stream),
            media_type="text/plain; charset=utf-8",
            headers=headers,
        )

    # -- Dashboard ---------------------------------------------------------

    @app.get("/api/dashboard")
    async def dashboard():
        try:
            stats = ledger.stats()
            logs = ledger.list_entries(DASHBOARD_LOG_LIMIT)
            activity = ledger.activity(DASHBOARD_ACTIVITY_MINUTES)
        except Exception:
            logger.exception("Failed to build dashboard")
            return JSONResponse(
                status_code=500,
                content={"error": "Failed to fetch dashboard data"},
            )
        return {
            "stats": stats.model_dump(),
            "logs": [entry.model_dump() for entry in logs],
            "activity": [bucket.model_dump() for bucket in activity],
        }

    # -- Prompt templates --------------------------------------------------

    @app.post("/api/prompts/study")
    async def study_prompt(request: Request):
        body = await _safe_json(request)
        try:
            session = StudySessionConfig.model_validate(body or {})
        except ValidationError as exc:
            return JSONResponse(status_code=400, content={"error": _first_error(exc)})
        prompt = build_study_prompt(session)
        return {
            "system_prompt": prompt,
            "messages": [m.model_dump() for m in opening_messages(prompt, STUDY_GREETING)],
        }

    @app.post("/api/prompts/coding")
    async def coding_prompt(request: Request):
        body = await _safe_json(request)
        try:
            session = CodingSessionConfig.model_validate(body or {})
        except ValidationError as exc:
            return JSONResponse(status_code=400, content={"error": _first_error(exc)})
        prompt = build_coding_prompt(session)
        return {
            "system_prompt": prompt,
            "messages": [m.model_dump() for m in opening_messages(prompt, CODING_GREETING)],
        }

    # Store references on app for external access
    app.state.config = config  # type: ignore[attr-defined]
    app.state.relay = relay  # type: ignore[attr-defined]
    app.state.ledger = ledger  # type: ignore[attr-defined]
    app.state.rate_limiter = relay.rate_limiter  # type: ignore[attr-defined]

    return app


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


async def _safe_json(request: Request) -> Any:
    try:
        return await request.json()
    except Exception:
        return None


def _error_response(exc: RelayError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message},
        headers=exc.headers(),
    )


def _first_error(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid session configuration"
    err = errors[0]
    loc = ".".join(str(part) for part in err.get("loc", ()))
    return f"{loc}: {err.get('msg', 'invalid')}" if loc else err.get("msg", "invalid")


async def _relay_body(stream: RelayStream) -> AsyncIterator[str]:
    """Forward fragments until the stream ends, fails or the client leaves.

    The status line is already sent by the time this runs, so upstream
    failures can only end the body early; the relay has recorded them.
    """
    try:
        async for fragment in stream:
            yield fragment
    except RelayError as exc:
        logger.warning("Stream for %s ended early: %s", stream.client_identity, exc.detail)
    finally:
        await stream.aclose()


# ------------------------------------------------------------------
# Config loading
# ------------------------------------------------------------------

_ENV_MAP = {
    "STUDYBUDDY_GATEWAY_HOST": "host",
    "STUDYBUDDY_GATEWAY_PORT": "port",
    "STUDYBUDDY_GATEWAY_LOG_LEVEL": "log_level",
    "STUDYBUDDY_GATEWAY_MODEL": "model",
    "STUDYBUDDY_GATEWAY_UPSTREAM_URL": "upstream_base_url",
    "STUDYBUDDY_GATEWAY_RATE_LIMIT": "rate_limit_max_requests",
    "STUDYBUDDY_GATEWAY_TIMEOUT": "upstream_timeout",
    "OPENAI_API_KEY": "api_key",
}


def _load_config(args: argparse.Namespace) -> GatewayConfig:
    """Build a ``GatewayConfig`` from CLI args, env vars, and optional YAML file."""
    data: dict[str, Any] = {}

    # 1. YAML file (lowest priority)
    config_path = getattr(args, "config", None)
    if config_path:
        with open(config_path) as f:
            data.update(yaml.safe_load(f) or {})

    # 2. Env vars (pydantic coerces numeric strings)
    for env_key, config_key in _ENV_MAP.items():
        val = os.environ.get(env_key)
        if val is not None:
            data[config_key] = val

    # 3. CLI args (highest priority)
    cli_map = {
        "host": "host",
        "port": "port",
        "log_level": "log_level",
        "model": "model",
        "upstream_url": "upstream_base_url",
    }
    for arg_name, config_key in cli_map.items():
        val = getattr(args, arg_name, None)
        if val is not None:
            data[config_key] = val

    return GatewayConfig(**data)


# ------------------------------------------------------------------
# CLI entrypoint
# ------------------------------------------------------------------


def main() -> None:
    parser = argparse.ArgumentParser(description="studybuddy-gateway: rate-limited, metered LLM chat relay")
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--config", type=str, default=None, help="Path to YAML config")
    parser.add_argument("--model", type=str, default=None)
    parser.add_argument("--upstream-url", type=str, default=None, help="OpenAI-compatible base URL")
    parser.add_argument("--log-level", type=str, default=None)

    args = parser.parse_args()
    config = _load_config(args)

    logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))

    app = create_app(config)

    import uvicorn

    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())


if __name__ == "__main__":
    main()
