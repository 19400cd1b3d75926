"""Client for talking to a running studybuddy-gateway."""

from collections.abc import AsyncIterator, Iterator
from typing import Any

import httpx

from studybuddy_gateway.models import ChatMessage, UsageLogEntry, UsageStats


def _payload(messages: list[ChatMessage] | list[dict[str, Any]], stream: bool) -> dict[str, Any]:
    return {
        "messages": [m.model_dump() if isinstance(m, ChatMessage) else m for m in messages],
        "stream": stream,
    }


class GatewayClient:
    """Synchronous client for the studybuddy-gateway REST API."""

    def __init__(
        self,
        gateway_url: str,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.gateway_url = gateway_url.rstrip("/")
        self._http = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self._http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -- Chat --------------------------------------------------------------

    def chat(self, messages: list[ChatMessage] | list[dict[str, Any]]) -> ChatMessage:
        """Send a conversation and wait for the complete assistant reply."""
        resp = self._http.post(f"{self.gateway_url}/api/chat", json=_payload(messages, stream=False))
        resp.raise_for_status()
        return ChatMessage(**resp.json()["message"])

    def stream_chat(self, messages: list[ChatMessage] | list[dict[str, Any]]) -> Iterator[str]:
        """Send a conversation and yield reply text as it arrives."""
        with self._http.stream("POST", f"{self.gateway_url}/api/chat", json=_payload(messages, stream=True)) as resp:
            if resp.is_error:
                resp.read()
            resp.raise_for_status()
            yield from resp.iter_text()

    # -- Reporting ---------------------------------------------------------

    def dashboard(self) -> dict[str, Any]:
        resp = self._http.get(f"{self.gateway_url}/api/dashboard")
        resp.raise_for_status()
        return resp.json()

    def stats(self) -> UsageStats:
        return UsageStats(**self.dashboard()["stats"])

    def logs(self) -> list[UsageLogEntry]:
        return [UsageLogEntry(**e) for e in self.dashboard()["logs"]]

    # -- Prompt templates --------------------------------------------------

    def study_prompt(self, topic: str, **options: Any) -> dict[str, Any]:
        resp = self._http.post(f"{self.gateway_url}/api/prompts/study", json={"topic": topic, **options})
        resp.raise_for_status()
        return resp.json()

    def coding_prompt(self, topic: str, **options: Any) -> dict[str, Any]:
        resp = self._http.post(f"{self.gateway_url}/api/prompts/coding", json={"topic": topic, **options})
        resp.raise_for_status()
        return resp.json()

    def health(self) -> dict[str, Any]:
        resp = self._http.get(f"{self.gateway_url}/health")
        resp.raise_for_status()
        return resp.json()


class AsyncGatewayClient:
    """Async variant of :class:`GatewayClient` using ``httpx.AsyncClient``."""

    def __init__(
        self,
        gateway_url: str,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.gateway_url = gateway_url.rstrip("/")
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # -- Chat --------------------------------------------------------------

    async def chat(self, messages: list[ChatMessage] | list[dict[str, Any]]) -> ChatMessage:
        resp = await self._http.post(f"{self.gateway_url}/api/chat", json=_payload(messages, stream=False))
        resp.raise_for_status()
        return ChatMessage(**resp.json()["message"])

    async def stream_chat(self, messages: list[ChatMessage] | list[dict[str, Any]]) -> AsyncIterator[str]:
        async with self._http.stream(
            "POST", f"{self.gateway_url}/api/chat", json=_payload(messages, stream=True)
        ) as resp:
            if resp.is_error:
                await resp.aread()
            resp.raise_for_status()
            async for text in resp.aiter_text():
                yield text

    # -- Reporting ---------------------------------------------------------

    async def dashboard(self) -> dict[str, Any]:
        resp = await self._http.get(f"{self.gateway_url}/api/dashboard")
        resp.raise_for_status()
        return resp.json()

    async def stats(self) -> UsageStats:
        return UsageStats(**(await self.dashboard())["stats"])

    async def logs(self) -> list[UsageLogEntry]:
        return [UsageLogEntry(**e) for e in (await self.dashboard())["logs"]]

    # -- Prompt templates --------------------------------------------------

    async def study_prompt(self, topic: str, **options: Any) -> dict[str, Any]:
        resp = await self._http.post(f"{self.gateway_url}/api/prompts/study", json={"topic": topic, **options})
        resp.raise_for_status()
        return resp.json()

    async def coding_prompt(self, topic: str, **options: Any) -> dict[str, Any]:
        resp = await self._http.post(f"{self.gateway_url}/api/prompts/coding", json={"topic": topic, **options})
        resp.raise_for_status()
        return resp.json()

    async def health(self) -> dict[str, Any]:
        resp = await self._http.get(f"{self.gateway_url}/health")
        resp.raise_for_status()
        return resp.json()
