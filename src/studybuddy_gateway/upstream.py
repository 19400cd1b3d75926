"""httpx-based client for the OpenAI-compatible chat completions endpoint.

Only streaming calls are made.  SSE ``data:`` lines are decoded into
``Fragment`` objects carrying the delta text; the final usage chunk (sent when
``stream_options.include_usage`` is honoured) becomes a text-less fragment
carrying ``TokenUsage``.
"""

import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

import httpx

from studybuddy_gateway.errors import UpstreamError, UpstreamTimeoutError
from studybuddy_gateway.messages import to_payload
from studybuddy_gateway.models import ChatMessage, Fragment, GatewayConfig, TokenUsage

logger = logging.getLogger(__name__)


class CompletionService(Protocol):
    """Anything that can turn a conversation into a stream of fragments."""

    def stream(self, messages: list[ChatMessage]) -> AsyncIterator[Fragment]: ...


class OpenAIUpstream:
    """Stream chat completions from a single upstream provider and model."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        model: str,
        *,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self._http: httpx.AsyncClient | None = None
        if not api_key:
            logger.warning("No upstream API key configured; calls will fail until one is set.")

    @classmethod
    def from_config(cls, config: GatewayConfig) -> "OpenAIUpstream":
        return cls(
            base_url=config.upstream_base_url,
            api_key=config.api_key,
            model=config.model,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
            timeout=config.upstream_timeout,
        )

    async def start(self) -> None:
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(self.timeout),
            limits=httpx.Limits(max_connections=200, max_keepalive_connections=50),
        )

    async def stop(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def build_payload(self, messages: list[ChatMessage]) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": to_payload(messages),
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "stream": True,
            "stream_options": {"include_usage": True},
        }

    async def stream(self, messages: list[ChatMessage]) -> AsyncIterator[Fragment]:
        if self._http is None:
            await self.start()
        assert self._http is not None

        payload = self.build_payload(messages)
        try:
            async with self._http.stream(
                "POST",
                "/chat/completions",
                json=payload,
                headers=self._headers(),
            ) as resp:
                if resp.status_code >= 400:
                    body = await resp.aread()
                    raise UpstreamError(f"upstream returned {resp.status_code}: {body[:200].decode('utf-8', 'replace')}")

                async for line in resp.aiter_lines():
                    fragment = parse_sse_line(line)
                    if fragment is None:
                        continue
                    yield fragment
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError(f"upstream timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"upstream request failed: {exc}") from exc

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }


# ------------------------------------------------------------------
# SSE decoding
# ------------------------------------------------------------------


def parse_sse_line(line: str) -> Fragment | None:
    """Decode one SSE line into a ``Fragment``.

    Returns ``None`` for blank lines, comments, ``[DONE]`` and chunks with
    neither content nor usage.
    """
    if not line.startswith("data:"):
        return None
    data_str = line[5:].strip()
    if not data_str or data_str == "[DONE]":
        return None
    try:
        chunk = json.loads(data_str)
    except json.JSONDecodeError:
        logger.debug("Skipping undecodable SSE payload: %r", data_str[:80])
        return None
    if not isinstance(chunk, dict):
        return None

    if "error" in chunk:
        err = chunk["error"]
        message = err.get("message") if isinstance(err, dict) else str(err)
        raise UpstreamError(f"upstream stream error: {message}")

    text = ""
    choices = chunk.get("choices") or []
    if choices:
        delta = choices[0].get("delta") or {}
        text = delta.get("content") or ""

    usage = None
    raw_usage = chunk.get("usage")
    if raw_usage:
        usage = TokenUsage(
            prompt_tokens=int(raw_usage.get("prompt_tokens", 0) or 0),
            completion_tokens=int(raw_usage.get("completion_tokens", 0) or 0),
        )

    if not text and usage is None:
        return None
    return Fragment(text=text, usage=usage)
