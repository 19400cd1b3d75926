"""Pydantic data models for the studybuddy-gateway."""

import os
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]


class ChatMessage(BaseModel):
    """One role-tagged turn of a conversation."""

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class TokenUsage(BaseModel):
    """Prompt/completion token counts for one upstream call."""

    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class Fragment(BaseModel):
    """An incremental piece of upstream output.

    The final fragment of a stream may carry the provider-reported ``usage``
    with empty ``text``.
    """

    model_config = ConfigDict(frozen=True)

    text: str = ""
    usage: TokenUsage | None = None


class UsageLogEntry(BaseModel):
    """A single completed (or failed) upstream call."""

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: float
    endpoint: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cost: float = 0.0
    client_identity: str = "unknown"
    success: bool = True
    error: str | None = None


class UsageStats(BaseModel):
    """Aggregates computed over the current ledger contents."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    success_rate: float = 0.0
    total_tokens: int = 0
    total_cost: float = 0.0
    average_tokens_per_request: float = 0.0
    requests_per_minute: int = 0
    requests_today: int = 0
    tokens_today: int = 0
    cost_today: float = 0.0


class ActivityBucket(BaseModel):
    """Request count for one minute of the activity histogram."""

    timestamp: str
    minute_start: float
    count: int = 0


class GatewayConfig(BaseModel):
    """Top-level gateway configuration."""

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"
    # Upstream
    upstream_base_url: str = "https://api.openai.com/v1"
    api_key: str = Field(default_factory=lambda: os.environ.get("OPENAI_API_KEY", ""))
    model: str = "gpt-4o-mini"
    max_tokens: int = 1000
    temperature: float = 0.7
    upstream_timeout: float = 30.0
    stream_buffer_size: int = 16
    # Request bounds
    max_context_messages: int = 20
    max_request_messages: int = 50
    max_message_length: int = 2000
    # Rate limiting
    rate_limit_window_seconds: float = 60.0
    rate_limit_max_requests: int = 20
    rate_limit_max_clients: int = 10_000
    # Accounting
    ledger_capacity: int = 1000
    prompt_price_per_1k: float = 0.00015
    completion_price_per_1k: float = 0.0006
    chat_endpoint_label: str = "/api/chat"
