"""
Shared async HTTP transport with:
- Retry with exponential backoff on server errors and dropped connections
- Timeouts
- Injectable sleep, so backoff waits stay cancellable and testable
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import aiohttp
from aiohttp import ClientSession, TCPConnector

from scrobbler.config.settings import settings
from scrobbler.utils.url_builder import QueryParams

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

_RETRYABLE_STATUSES = {500, 502, 503, 504, 507}


class GatewayError(Exception):
    """Base class for failures of the request execution layer."""


class TransientTransportError(GatewayError):
    pass


class RetryExhausted(TransientTransportError):
    pass


class InvalidResponse(GatewayError):
    pass


class HttpError(GatewayError):
    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(f"HTTP {status}: {message}")


@dataclass(frozen=True)
class RawResponse:
    status: int
    # Raw bytes as received; str is accepted for bodies built in code.
    body: Union[bytes, str] = b""
    # Header names are stored lower-cased.
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def text(self) -> str:
        if isinstance(self.body, bytes):
            return self.body.decode("utf-8", errors="replace")
        return self.body

    def header(self, name: str) -> Optional[str]:
        return self.headers.get(name.lower())

    def json(self) -> Any:
        try:
            body = self.body.decode("utf-8") if isinstance(self.body, bytes) else self.body
        except UnicodeDecodeError as exc:
            raise InvalidResponse(f"Response body is not valid UTF-8: {exc}") from exc
        try:
            return json.loads(body)
        except ValueError as exc:
            raise InvalidResponse(f"Response body is not valid JSON: {exc}") from exc


def build_session(user_agent: Optional[str] = None) -> ClientSession:
    connector = TCPConnector(
        limit=10,
        ssl=True,
    )
    timeout = aiohttp.ClientTimeout(total=settings.HTTP_TIMEOUT_SECONDS)
    return ClientSession(
        connector=connector,
        timeout=timeout,
        trust_env=False,
        headers={"User-Agent": user_agent or settings.user_agent},
    )


async def fetch_json(
    session: ClientSession,
    url: str,
    *,
    headers: Optional[dict] = None,
    params: Optional[QueryParams] = None,
    sleep: Sleep = asyncio.sleep,
) -> Any:
    """GET JSON with retry."""
    response = await request_with_retry(
        session, "GET", url, headers=headers, params=params, sleep=sleep
    )
    if response.status >= 400:
        raise HttpError(response.status, response.text[:200])
    return response.json()


async def request_with_retry(
    session: ClientSession,
    method: str,
    url: str,
    *,
    headers: Optional[dict] = None,
    params: Optional[QueryParams] = None,
    json_body: Any = None,
    attempts: int = settings.HTTP_RETRY_ATTEMPTS,
    backoff: float = settings.HTTP_RETRY_BACKOFF,
    sleep: Sleep = asyncio.sleep,
) -> RawResponse:
    """
    Send a request, retrying server errors and connection failures.
    The first wait is one second, each following wait is ``backoff`` times longer.
    Any other status is returned as-is, success or not.
    """
    wait = 1.0
    reason = "no attempts made"
    for attempt in range(1, attempts + 1):
        try:
            response = await _send_once(
                session, method, url, headers=headers, params=params, json_body=json_body
            )
        except TransientTransportError as exc:
            reason = str(exc)
        else:
            if response.status not in _RETRYABLE_STATUSES:
                logger.debug(
                    "Response will not be retried",
                    extra={"status": response.status, "attempt": attempt},
                )
                return response
            reason = f"HTTP {response.status}"

        if attempt == attempts:
            break

        logger.warning(
            "Request failed, retrying",
            extra={"reason": reason, "attempt": attempt, "wait": wait},
        )
        await sleep(wait)
        wait *= backoff

    raise RetryExhausted(f"Retry limit reached after {attempts} attempts: {reason}")


async def _send_once(
    session: ClientSession,
    method: str,
    url: str,
    *,
    headers: Optional[dict] = None,
    params: Optional[QueryParams] = None,
    json_body: Any = None,
) -> RawResponse:
    logger.debug("Sending request", extra={"method": method, "url": url})
    try:
        async with session.request(
            method,
            url,
            headers=headers,
            params=list(params) if params else None,
            json=json_body,
        ) as resp:
            body = await resp.read()
            return RawResponse(
                status=resp.status,
                body=body,
                headers={k.lower(): v for k, v in resp.headers.items()},
            )
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        raise TransientTransportError(f"{type(exc).__name__}: {exc}") from exc
