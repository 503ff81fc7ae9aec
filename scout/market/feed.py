"""Tick sources.

Both feeds return a ``PriceBatch``: one timestamp plus a price per
instrument, and optionally the broker's current payout percentages.

Expected JSON document (HTTP body or file contents)::

    {
        "timestamp": 1718000000000,
        "prices": {"EUR/USD_OTC": 1.08431, "USDJPY_otc": 157.112},
        "payouts": {"EUR/USD_OTC": 92}
    }

``timestamp`` is optional (the caller's clock is used when absent).
"""

import asyncio
import json
import logging
import math
from dataclasses import dataclass, field
from numbers import Real
from pathlib import Path
from typing import Optional

import httpx

from scout.market.instruments import normalise_instrument

logger = logging.getLogger("scout.feed")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}


@dataclass(frozen=True)
class PriceBatch:
    """One poll's worth of prices."""

    timestamp_ms: Optional[int]
    prices: dict[str, float] = field(default_factory=dict)
    payouts: dict[str, float] = field(default_factory=dict)


def _positive_number(value) -> bool:
    return (
        isinstance(value, Real)
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value > 0
    )


def parse_price_payload(payload: dict) -> PriceBatch:
    """Validate a raw feed document.

    Instruments with non-numeric, non-finite or non-positive prices are
    dropped; names are normalised to the ``EUR/USD_OTC`` form.
    """
    if not isinstance(payload, dict):
        raise ValueError(f"Price payload must be an object, got {type(payload).__name__}")

    raw_ts = payload.get("timestamp")
    timestamp_ms = int(raw_ts) if _positive_number(raw_ts) else None

    prices: dict[str, float] = {}
    for name, price in (payload.get("prices") or {}).items():
        if not _positive_number(price):
            logger.debug("Dropping invalid price for %s: %r", name, price)
            continue
        prices[normalise_instrument(name)] = float(price)

    payouts: dict[str, float] = {}
    for name, payout in (payload.get("payouts") or {}).items():
        if isinstance(payout, Real) and not isinstance(payout, bool) and math.isfinite(payout):
            payouts[normalise_instrument(name)] = float(payout)

    return PriceBatch(timestamp_ms=timestamp_ms, prices=prices, payouts=payouts)


class HttpPriceFeed:
    """Polls a JSON price endpoint.

    Args:
        url: Endpoint returning the document described in the module docstring.
        headers: Optional extra request headers.
    """

    def __init__(self, url: str, headers: Optional[dict] = None) -> None:
        self._url = url
        self._headers = headers or {"Accept": "application/json"}

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(self, url: str, **kwargs) -> httpx.Response:
        """GET with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(
                        url,
                        headers=self._headers,
                        timeout=10.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Feed GET %s returned %d, retry %d/%d in %.1fs",
                        url, resp.status_code, attempt + 1, _MAX_RETRIES, delay,
                    )
                    await asyncio.sleep(delay)
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    continue

                resp.raise_for_status()
                return resp

            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Feed GET %s transport error (%s), retry %d/%d in %.1fs",
                    url, exc, attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise last_exc  # type: ignore[misc]

    async def fetch(self) -> PriceBatch:
        resp = await self._request_with_retry(self._url)
        return parse_price_payload(resp.json())


class FilePriceFeed:
    """Reads the latest price document from a file written by another process."""

    def __init__(self, path: str) -> None:
        self._path = Path(path)

    async def fetch(self) -> PriceBatch:
        if not self._path.exists():
            return PriceBatch(timestamp_ms=None)
        return parse_price_payload(json.loads(self._path.read_text(encoding="utf-8")))


def build_feed(feed_url: Optional[str], feed_file: Optional[str]):
    """Pick the configured tick source; the URL wins when both are set."""
    if feed_url:
        return HttpPriceFeed(feed_url)
    if feed_file:
        return FilePriceFeed(feed_file)
    raise ValueError("No tick source configured (SCOUT_FEED_URL or SCOUT_FEED_FILE)")
