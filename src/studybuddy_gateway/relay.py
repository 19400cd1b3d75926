"""Chat relay: admission, validation, upstream streaming and accounting.

The relay sits between an untrusted browser conversation and the upstream
completion service.  Pre-flight failures (rate limit, malformed request) are
raised before anything is sent upstream and never reach the ledger.  Every
request that does reach upstream produces exactly one ledger entry, except a
stream the client abandons before receiving any output.
"""

import asyncio
import logging
import time
from typing import Any

from studybuddy_gateway.errors import (
    RateLimitError,
    RelayError,
    UpstreamError,
    UpstreamTimeoutError,
)
from studybuddy_gateway.ledger.base import UsageLedger
from studybuddy_gateway.messages import extract_messages, truncate_context, validate_messages
from studybuddy_gateway.models import ChatMessage, Fragment, GatewayConfig, TokenUsage
from studybuddy_gateway.rate_limiter import FixedWindowRateLimiter
from studybuddy_gateway.tokens import HeuristicTokenEstimator, ModelPricing, TokenEstimator, resolve_usage
from studybuddy_gateway.upstream import CompletionService

logger = logging.getLogger(__name__)

DISCONNECTED = "client disconnected"


class _Done:
    pass


class _Failure:
    def __init__(self, error: RelayError) -> None:
        self.error = error


_DONE = _Done()
_NOTHING = object()


class ChatRelay:
    """Bridge client conversations to the upstream completion service."""

    def __init__(
        self,
        config: GatewayConfig,
        upstream: CompletionService,
        ledger: UsageLedger,
        *,
        rate_limiter: FixedWindowRateLimiter | None = None,
        estimator: TokenEstimator | None = None,
    ) -> None:
        self.config = config
        self.upstream = upstream
        self.ledger = ledger
        self.rate_limiter = rate_limiter or FixedWindowRateLimiter(
            max_requests=config.rate_limit_max_requests,
            window_seconds=config.rate_limit_window_seconds,
            max_clients=config.rate_limit_max_clients,
        )
        self.estimator: TokenEstimator = estimator or HeuristicTokenEstimator()
        self.pricing = ModelPricing(
            prompt_per_1k=config.prompt_price_per_1k,
            completion_per_1k=config.completion_price_per_1k,
        )

    # ------------------------------------------------------------------
    # Main entrypoint
    # ------------------------------------------------------------------

    async def handle(self, body: Any, client_identity: str) -> "RelayStream":
        """Admit, validate and start relaying *body* for *client_identity*.

        Returns an opened ``RelayStream`` whose first upstream item has already
        arrived, so upstream failures that happen before any output are raised
        here rather than mid-response.
        """
        decision = self.rate_limiter.admit(client_identity)
        if not decision.allowed:
            logger.info("Rate limit exceeded for %s", client_identity)
            raise RateLimitError(retry_after=decision.retry_after)

        messages = self.prepare(body)
        stream = RelayStream(self, messages, client_identity, remaining=decision.remaining)
        await stream.open()
        return stream

    def prepare(self, body: Any) -> list[ChatMessage]:
        """Validate the request body and truncate it to the context window."""
        messages = validate_messages(
            extract_messages(body),
            max_messages=self.config.max_request_messages,
            max_length=self.config.max_message_length,
        )
        return truncate_context(messages, self.config.max_context_messages)

    # ------------------------------------------------------------------
    # Accounting
    # ------------------------------------------------------------------

    def record_success(
        self,
        messages: list[ChatMessage],
        fragments: list[str],
        reported: TokenUsage | None,
        client_identity: str,
        latency_ms: float,
    ) -> None:
        usage = resolve_usage(self.estimator, messages, fragments, reported)
        cost = self.pricing.cost(usage)
        self.ledger.record(
            endpoint=self.config.chat_endpoint_label,
            model=self.config.model,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            cost=cost,
            client_identity=client_identity,
            success=True,
        )
        logger.info(
            "Chat usage model=%s prompt_tokens=%d completion_tokens=%d total_tokens=%d cost=%.6f latency_ms=%.1f",
            self.config.model,
            usage.prompt_tokens,
            usage.completion_tokens,
            usage.total_tokens,
            cost,
            latency_ms,
        )

    def record_failure(self, error: str, client_identity: str) -> None:
        self.ledger.record(
            endpoint=self.config.chat_endpoint_label,
            model=self.config.model,
            client_identity=client_identity,
            success=False,
            error=error,
        )


class RelayStream:
    """Async iterator over the text fragments of one relayed completion.

    A producer task pulls fragments from upstream into a bounded queue so a
    slow reader stalls the upstream read instead of growing a buffer.  The
    whole upstream call, not each fragment, is subject to the timeout.
    """

    def __init__(
        self,
        relay: ChatRelay,
        messages: list[ChatMessage],
        client_identity: str,
        *,
        remaining: int,
    ) -> None:
        self.relay = relay
        self.messages = messages
        self.client_identity = client_identity
        self.remaining = remaining
        self.fragments: list[str] = []
        self._reported: TokenUsage | None = None
        self._queue: asyncio.Queue[Fragment | _Done | _Failure] = asyncio.Queue(
            maxsize=max(1, relay.config.stream_buffer_size)
        )
        self._task: asyncio.Task[None] | None = None
        self._pending: Any = _NOTHING
        # Terminal item that arrived while the queue was full
        self._outcome: _Done | _Failure | None = None
        self._finished = False
        self._t0 = 0.0

    # -- Lifecycle ----------------------------------------------------------

    async def open(self) -> None:
        self._t0 = time.perf_counter()
        self._task = asyncio.create_task(self._produce())
        try:
            item = await self._next_item()
        except BaseException:
            self._finished = True
            await self._cancel_producer()
            raise
        if isinstance(item, _Failure):
            self._fail(item.error)
            raise item.error
        self._pending = item

    async def aclose(self) -> None:
        """Stop relaying.  Safe to call more than once."""
        if self._finished:
            return
        self._finished = True
        # Record before awaiting so a cancelled caller still leaves an entry
        if self.fragments:
            logger.info("Client %s disconnected after %d fragments", self.client_identity, len(self.fragments))
            self.relay.record_failure(DISCONNECTED, self.client_identity)
        await self._cancel_producer()

    async def collect(self) -> str:
        """Drain the stream and return the concatenated text."""
        try:
            parts = [fragment async for fragment in self]
        finally:
            await self.aclose()
        return "".join(parts)

    # -- Iteration ----------------------------------------------------------

    def __aiter__(self) -> "RelayStream":
        return self

    async def __anext__(self) -> str:
        while True:
            if self._finished:
                raise StopAsyncIteration
            if self._pending is not _NOTHING:
                item, self._pending = self._pending, _NOTHING
            else:
                item = await self._next_item()

            if isinstance(item, _Done):
                self._succeed()
                raise StopAsyncIteration
            if isinstance(item, _Failure):
                self._fail(item.error)
                raise item.error

            if item.usage is not None:
                self._reported = item.usage
            if item.text:
                self.fragments.append(item.text)
                return item.text

    # -- Producer -----------------------------------------------------------

    async def _produce(self) -> None:
        timeout = self.relay.config.upstream_timeout
        try:
            await asyncio.wait_for(self._pump(), timeout=timeout)
        except asyncio.TimeoutError:
            self._finish(_Failure(UpstreamTimeoutError(f"upstream call exceeded {timeout:g}s")))
        except RelayError as exc:
            self._finish(_Failure(exc))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Unexpected upstream failure")
            self._finish(_Failure(UpstreamError(str(exc) or type(exc).__name__)))
        else:
            self._finish(_DONE)

    def _finish(self, item: _Done | _Failure) -> None:
        # Never block here: nobody may be left to drain a full queue
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            self._outcome = item

    async def _next_item(self) -> Fragment | _Done | _Failure:
        if self._outcome is not None and self._queue.empty():
            item, self._outcome = self._outcome, None
            return item
        return await self._queue.get()

    async def _pump(self) -> None:
        fragments = self.relay.upstream.stream(self.messages)
        try:
            async for fragment in fragments:
                await self._queue.put(fragment)
        finally:
            # Release the upstream connection now rather than at GC time
            aclose = getattr(fragments, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _cancel_producer(self) -> None:
        task = self._task
        if task is None or task.done():
            return
        task.cancel()
        # asyncio.wait leaves the caller's own cancellation intact
        await asyncio.wait({task})

    # -- Outcomes -----------------------------------------------------------

    def _succeed(self) -> None:
        self._finished = True
        latency_ms = (time.perf_counter() - self._t0) * 1000
        self.relay.record_success(
            self.messages,
            self.fragments,
            self._reported,
            self.client_identity,
            latency_ms,
        )

    def _fail(self, error: RelayError) -> None:
        self._finished = True
        if isinstance(error, UpstreamTimeoutError):
            logger.warning("Upstream timeout for %s: %s", self.client_identity, error.detail)
        else:
            logger.error("Upstream failure for %s: %s", self.client_identity, error.detail)
        self.relay.record_failure(error.detail, self.client_identity)
