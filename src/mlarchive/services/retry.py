from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable

import httpx

TRANSIENT_HTTP_STATUS = {408, 409, 425, 429, 500, 502, 503, 504}
TRANSIENT_NETWORK_ERRORS = (httpx.TimeoutException, httpx.NetworkError, httpx.RemoteProtocolError)


@dataclass
class TransientHttpError(Exception):
    status_code: int
    message: str
    retry_after_seconds: float | None = None


def parse_retry_after(value: str | None) -> float | None:
    value = (value or "").strip()
    if not value:
        return None
    if value.isdigit():
        return max(0.0, float(value))
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=timezone.utc)
    return max(0.0, (retry_at - datetime.now(timezone.utc)).total_seconds())


def is_transient(exc: Exception) -> tuple[bool, float | None]:
    if isinstance(exc, TransientHttpError):
        return True, exc.retry_after_seconds
    if isinstance(exc, TRANSIENT_NETWORK_ERRORS):
        return True, None
    if isinstance(exc, httpx.HTTPStatusError):
        retry_after = parse_retry_after(exc.response.headers.get("Retry-After"))
        return exc.response.status_code in TRANSIENT_HTTP_STATUS, retry_after
    return False, None


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    return min(max_delay, base_delay * (2 ** (attempt - 1)))


async def with_retry(
    *,
    operation: str,
    call: Callable[[], Awaitable[httpx.Response]],
    max_attempts: int,
    base_delay_seconds: float,
    max_delay_seconds: float,
    logger: logging.Logger,
) -> httpx.Response:
    """Run ``call`` until it returns a non-transient response.

    Transient statuses and network errors are retried with exponential
    backoff, or after the server's ``Retry-After`` when it sends one. The last
    error is re-raised once ``max_attempts`` is spent.
    """
    attempts = max(1, int(max_attempts))
    base_delay = max(0.1, float(base_delay_seconds))
    max_delay = max(base_delay, float(max_delay_seconds))

    attempt = 0
    while True:
        attempt += 1
        try:
            response = await call()
            if response.status_code in TRANSIENT_HTTP_STATUS:
                raise TransientHttpError(
                    status_code=response.status_code,
                    message=f"transient HTTP status {response.status_code}",
                    retry_after_seconds=parse_retry_after(response.headers.get("Retry-After")),
                )
            response.raise_for_status()
            return response
        except Exception as exc:
            transient, retry_after = is_transient(exc)
            if not transient or attempt >= attempts:
                raise
            delay = retry_after if retry_after is not None else backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "Retrying archive request after transient failure",
                extra={
                    "event": "archive_request_retry_scheduled",
                    "operation": operation,
                    "attempt": attempt,
                    "max_attempts": attempts,
                    "delay_seconds": delay,
                    "error": repr(exc),
                },
            )
            await asyncio.sleep(delay)
