"""Resilient HTTP layer shared by every outbound call.

Handles 429 backoff (honouring Retry-After), retries transport failures with
the same schedule, and tracks per-service rate-limit headers for the UI.
Callers never implement their own retry loop.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Awaitable, Callable, Dict, Optional

import httpx

from config import (
    ERROR_BODY_LIMIT,
    RATE_LIMIT_WARNING_THRESHOLD,
    REQUEST_TIMEOUT,
    RETRY_INITIAL_DELAY,
    RETRY_MAX_ATTEMPTS,
    RETRY_MAX_DELAY,
    RETRY_MULTIPLIER,
)

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Non-2xx response (or unusable body) from a remote service."""

    def __init__(self, status: Optional[int], body: str = "", message: Optional[str] = None):
        self.status = status
        self.body = (body or "")[:ERROR_BODY_LIMIT]
        super().__init__(message or f"HTTP {status}: {self.body}")


class RateLimitExhausted(FetchError):
    """Still throttled after the last allowed attempt."""


@dataclass
class RateLimitState:
    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset_time: Optional[float] = None  # epoch seconds

    @property
    def is_low(self) -> bool:
        return self.remaining is not None and self.remaining < RATE_LIMIT_WARNING_THRESHOLD

    def to_dict(self) -> dict:
        return {
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_time": self.reset_time,
            "warning": self.is_low,
        }


def backoff_delay(
    attempt: int,
    initial_delay: float = RETRY_INITIAL_DELAY,
    multiplier: float = RETRY_MULTIPLIER,
    max_delay: float = RETRY_MAX_DELAY,
) -> float:
    """Delay before retrying after the given 1-based attempt failed."""
    return min(initial_delay * multiplier ** (attempt - 1), max_delay)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Seconds to wait from a Retry-After header (delta-seconds or HTTP-date)."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _int_header(headers: httpx.Headers, name: str) -> Optional[int]:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(float(raw))
    except ValueError:
        return None


class ResilientFetcher:
    """Wraps an httpx.AsyncClient with rate-limit aware retries."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: int = RETRY_MAX_ATTEMPTS,
        initial_delay: float = RETRY_INITIAL_DELAY,
        multiplier: float = RETRY_MULTIPLIER,
        max_delay: float = RETRY_MAX_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        emit: Optional[Callable[..., None]] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.max_retries = max(1, max_retries)
        self.initial_delay = initial_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self._sleep = sleep
        self._emit = emit
        self.rate_limits: Dict[str, RateLimitState] = {}
        self.indicator: Optional[str] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=REQUEST_TIMEOUT)
        return self._client

    async def aclose(self):
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def delay_for(self, attempt: int) -> float:
        return backoff_delay(attempt, self.initial_delay, self.multiplier, self.max_delay)

    async def request(self, method: str, url: str, *, service: str = "default", **kwargs) -> httpx.Response:
        """Send a request, retrying 429s and transport errors up to max_retries attempts."""
        attempt = 0
        while True:
            attempt += 1
            try:
                response = await self.client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    logger.error("%s %s failed after %d attempts: %s", method, url, attempt, e)
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "%s %s network error (attempt %d/%d), retrying in %.1fs: %s",
                    method, url, attempt, self.max_retries, delay, e,
                )
                await self._sleep(delay)
                continue

            self._track_rate_limit(service, response.headers)

            if response.status_code == 429:
                if attempt >= self.max_retries:
                    self._set_indicator(service, None)
                    raise RateLimitExhausted(
                        429, response.text,
                        f"Rate limited by {service} after {attempt} attempts",
                    )
                hinted = parse_retry_after(response.headers.get("Retry-After"))
                delay = hinted if hinted is not None else self.delay_for(attempt)
                logger.info(
                    "%s rate limited (attempt %d/%d), retrying in %.1fs",
                    service, attempt, self.max_retries, delay,
                )
                self._set_indicator(service, f"Rate limited, retrying in {delay:g}s")
                await self._sleep(delay)
                continue

            if not response.is_success:
                raise FetchError(response.status_code, response.text)

            if self.indicator is not None:
                self._set_indicator(service, None)
            return response

    async def post_json(self, url: str, payload: dict, *, service: str = "default", headers: Optional[dict] = None) -> dict:
        """POST JSON and decode the JSON reply."""
        response = await self.request("POST", url, service=service, json=payload, headers=headers)
        return decode_json(response)

    async def get_json(self, url: str, *, service: str = "default", headers: Optional[dict] = None, params: Optional[dict] = None) -> dict:
        response = await self.request("GET", url, service=service, headers=headers, params=params)
        return decode_json(response)

    def _track_rate_limit(self, service: str, headers: httpx.Headers):
        remaining = _int_header(headers, "X-RateLimit-Remaining")
        limit = _int_header(headers, "X-RateLimit-Limit")
        reset = _int_header(headers, "X-RateLimit-Reset")
        if remaining is None and reset is None and limit is None:
            return
        state = self.rate_limits.setdefault(service, RateLimitState())
        if remaining is not None:
            state.remaining = remaining
        if limit is not None:
            state.limit = limit
        if reset is not None:
            # Some services send seconds-until-reset, others an epoch timestamp
            state.reset_time = float(reset) if reset > 10**9 else time.time() + reset
        if state.is_low:
            logger.warning("%s rate limit low: %s remaining", service, state.remaining)

    def _set_indicator(self, service: str, message: Optional[str]):
        self.indicator = message
        if self._emit:
            self._emit("rate_limit", service=service, message=message)


def decode_json(response: httpx.Response) -> dict:
    try:
        return response.json()
    except ValueError:
        raise FetchError(
            response.status_code,
            response.text,
            f"Invalid JSON response: {response.text[:200]}",
        )
