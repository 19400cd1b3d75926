"""Token estimation and per-model pricing.

Counts produced here are heuristics.  When the upstream service reports exact
usage the relay prefers it; the estimator only fills the gaps.
"""

from dataclasses import dataclass
from typing import Protocol

from studybuddy_gateway.messages import input_characters
from studybuddy_gateway.models import ChatMessage, TokenUsage


class TokenEstimator(Protocol):
    """Pluggable token counting strategy."""

    def prompt_tokens(self, messages: list[ChatMessage]) -> int: ...

    def completion_tokens(self, fragments: list[str]) -> int: ...


class HeuristicTokenEstimator:
    """Length-based estimate: roughly four characters per prompt token.

    Completion tokens are counted as the number of streamed fragments, which
    for OpenAI-style streams is close to one fragment per token.
    """

    def __init__(self, chars_per_token: float = 4.0) -> None:
        self.chars_per_token = chars_per_token

    def prompt_tokens(self, messages: list[ChatMessage]) -> int:
        return max(1, int(input_characters(messages) / self.chars_per_token))

    def completion_tokens(self, fragments: list[str]) -> int:
        return sum(1 for f in fragments if f)


@dataclass(frozen=True)
class ModelPricing:
    """Per-1K-token prices for a single model."""

    prompt_per_1k: float
    completion_per_1k: float

    def cost(self, usage: TokenUsage) -> float:
        return (
            usage.prompt_tokens * self.prompt_per_1k / 1000
            + usage.completion_tokens * self.completion_per_1k / 1000
        )


def resolve_usage(
    estimator: TokenEstimator,
    messages: list[ChatMessage],
    fragments: list[str],
    reported: TokenUsage | None,
) -> TokenUsage:
    """Combine provider-reported counts with estimates for anything missing."""
    if reported is not None and reported.prompt_tokens > 0:
        prompt = reported.prompt_tokens
    else:
        prompt = estimator.prompt_tokens(messages)
    if reported is not None and reported.completion_tokens > 0:
        completion = reported.completion_tokens
    else:
        completion = estimator.completion_tokens(fragments)
    return TokenUsage(prompt_tokens=prompt, completion_tokens=completion)
