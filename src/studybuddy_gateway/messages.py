"""Validation and context truncation for client-supplied conversations.

Operates on the raw decoded JSON body and produces immutable
``ChatMessage`` instances.  Nothing here talks to the upstream service.
"""

from typing import Any

from studybuddy_gateway.errors import InvalidRequestError
from studybuddy_gateway.models import ChatMessage

VALID_ROLES = frozenset({"system", "user", "assistant"})


# ------------------------------------------------------------------
# Validation
# ------------------------------------------------------------------


def validate_messages(
    messages: Any,
    *,
    max_messages: int,
    max_length: int,
) -> list[ChatMessage]:
    """Check the structure of *messages* and convert them to ``ChatMessage``.

    Raises ``InvalidRequestError`` when *messages* is not a non-empty list of
    at most *max_messages* items, or when any item lacks a recognised role or
    has non-string content longer than *max_length* characters.
    """
    if not isinstance(messages, list):
        raise InvalidRequestError("messages must be a list")
    if not messages:
        raise InvalidRequestError("messages must not be empty")
    if len(messages) > max_messages:
        raise InvalidRequestError(f"too many messages ({len(messages)} > {max_messages})")

    validated: list[ChatMessage] = []
    for i, msg in enumerate(messages):
        if not isinstance(msg, dict):
            raise InvalidRequestError(f"message {i} is not an object")
        role = msg.get("role")
        content = msg.get("content")
        if role not in VALID_ROLES:
            raise InvalidRequestError(f"message {i} has unknown role {role!r}")
        if not isinstance(content, str):
            raise InvalidRequestError(f"message {i} content must be a string")
        if len(content) > max_length:
            raise InvalidRequestError(f"message {i} content too long ({len(content)} > {max_length})")
        validated.append(ChatMessage(role=role, content=content))
    return validated


def extract_messages(body: Any) -> Any:
    """Pull the ``messages`` field out of a decoded request body."""
    if not isinstance(body, dict):
        raise InvalidRequestError("request body must be a JSON object")
    return body.get("messages")


# ------------------------------------------------------------------
# Truncation
# ------------------------------------------------------------------


def truncate_context(messages: list[ChatMessage], max_context: int) -> list[ChatMessage]:
    """Keep every system message plus the *max_context* most recent others.

    Relative order is preserved within each group; system messages are placed
    first.
    """
    system = [m for m in messages if m.role == "system"]
    others = [m for m in messages if m.role != "system"]
    recent = others[-max_context:] if max_context > 0 else []
    return system + recent


def to_payload(messages: list[ChatMessage]) -> list[dict[str, str]]:
    """Serialise messages for the upstream request body."""
    return [{"role": m.role, "content": m.content} for m in messages]


def input_characters(messages: list[ChatMessage]) -> int:
    return sum(len(m.content) for m in messages)
