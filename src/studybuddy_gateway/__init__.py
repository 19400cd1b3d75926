"""studybuddy-gateway: rate-limited, metered streaming relay to a hosted LLM."""

from studybuddy_gateway._version import __version__
from studybuddy_gateway.client import AsyncGatewayClient, GatewayClient
from studybuddy_gateway.errors import (
    InvalidRequestError,
    RateLimitError,
    RelayError,
    UpstreamError,
    UpstreamTimeoutError,
)
from studybuddy_gateway.ledger.memory_ledger import MemoryUsageLedger
from studybuddy_gateway.models import (
    ActivityBucket,
    ChatMessage,
    GatewayConfig,
    UsageLogEntry,
    UsageStats,
)
from studybuddy_gateway.rate_limiter import FixedWindowRateLimiter
from studybuddy_gateway.relay import ChatRelay
from studybuddy_gateway.server import create_app

__all__ = [
    "__version__",
    "create_app",
    "ChatRelay",
    "FixedWindowRateLimiter",
    "MemoryUsageLedger",
    "GatewayClient",
    "AsyncGatewayClient",
    "GatewayConfig",
    "ChatMessage",
    "UsageLogEntry",
    "UsageStats",
    "ActivityBucket",
    "RelayError",
    "InvalidRequestError",
    "RateLimitError",
    "UpstreamError",
    "UpstreamTimeoutError",
]
