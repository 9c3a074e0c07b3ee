"""
Compliance with server-side rate limiting.
A 429 response carries the number of seconds until the window resets;
we wait exactly that long and try again.
"""
import asyncio
import logging
from typing import Awaitable, Callable

from scrobbler.config.settings import settings
from scrobbler.utils.http_client import GatewayError, InvalidResponse, RawResponse, Sleep

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429
RATE_LIMIT_RESET_IN = "X-RateLimit-Reset-In"


class RateLimitExceeded(GatewayError):
    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Still rate limited after {attempts} attempts")


def reset_in_seconds(response: RawResponse) -> int:
    """Seconds until the rate limit window resets. Raises InvalidResponse if unknown."""
    value = response.header(RATE_LIMIT_RESET_IN)
    if value is None:
        raise InvalidResponse(f"No '{RATE_LIMIT_RESET_IN}' header on a rate limited response")
    try:
        seconds = int(value.strip())
    except ValueError as exc:
        raise InvalidResponse(f"Invalid '{RATE_LIMIT_RESET_IN}' value: {value!r}") from exc
    if seconds < 0:
        raise InvalidResponse(f"Invalid '{RATE_LIMIT_RESET_IN}' value: {value!r}")
    return seconds


async def comply_with_rate_limit(
    send: Callable[[], Awaitable[RawResponse]],
    *,
    attempts: int = settings.RATE_LIMIT_ATTEMPTS,
    sleep: Sleep = asyncio.sleep,
) -> RawResponse:
    """Call ``send`` until the response is not rate limited."""
    for attempt in range(1, attempts + 1):
        response = await send()
        if response.status != TOO_MANY_REQUESTS:
            return response

        wait = reset_in_seconds(response)
        if attempt == attempts:
            break
        logger.info(
            "Rate limit reached, waiting for a new window",
            extra={"wait": wait, "attempt": attempt},
        )
        await sleep(wait)

    raise RateLimitExceeded(attempts)
