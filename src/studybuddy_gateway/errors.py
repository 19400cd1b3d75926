"""Error taxonomy surfaced by the chat relay.

Every error carries the HTTP status it maps to and a short message that is
safe to show to the end user.
"""

import math


class RelayError(Exception):
    status_code: int = 500
    message: str = "Failed to process chat request."

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail or self.message

    def headers(self) -> dict[str, str]:
        return {}


class InvalidRequestError(RelayError):
    """Malformed conversation or a message that is too long."""

    status_code = 400
    message = "Invalid request format or message too long."


class RateLimitError(RelayError):
    """The client used up its requests for the current window."""

    status_code = 429
    message = "Rate limit exceeded. Please wait before sending more messages."

    def __init__(self, retry_after: float, detail: str | None = None) -> None:
        super().__init__(detail)
        self.retry_after = max(1, math.ceil(retry_after))
        self.remaining = 0

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Remaining": "0",
            "Retry-After": str(self.retry_after),
        }


class UpstreamTimeoutError(RelayError):
    status_code = 504
    message = "Request timed out. Please try again."


class UpstreamError(RelayError):
    """Catch-all for failures of the upstream completion service."""

    status_code = 500
    message = "Failed to process chat request."
