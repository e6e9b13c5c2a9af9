"""
Signal Feed Service - Fan out to every configured engine feed

Each engine publishes its candidate records at a URL (Config.SIGNAL_FEED_URLS,
"engine=url" pairs). One selection cycle fetches all of them concurrently:
- one httpx GET per engine, each with its own timeout
- asyncio.gather(..., return_exceptions=True), results merged after the join
- a failed or timed-out engine is recorded as unavailable and omitted;
  it is never retried inside the same cycle

Accepted payloads: a JSON list of records, or an object carrying the list
under "data", "picks", "legs" or "records".
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import httpx

from core.error_responses import ErrorCode
from env_config import Config

logger = logging.getLogger(__name__)

PAYLOAD_LIST_KEYS = ("data", "picks", "legs", "records")


@dataclass
class FeedResult:
    engine: str
    records: List[Dict[str, Any]] = field(default_factory=list)
    ok: bool = False
    error: Optional[str] = None
    latency_ms: int = 0


@dataclass
class FeedFanOut:
    """Merged fan-out output: batches keep the configured engine order."""
    batches: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    unavailable: List[str] = field(default_factory=list)
    results: List[FeedResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "engines": [r.engine for r in self.results],
            "available": list(self.batches),
            "unavailable": list(self.unavailable),
            "records": {engine: len(records) for engine, records in self.batches.items()},
            "latency_ms": {r.engine: r.latency_ms for r in self.results},
            "errors": {r.engine: r.error for r in self.results if r.error},
            "code": ErrorCode.UPSTREAM_UNAVAILABLE if self.unavailable else None,
        }


def extract_records(payload: Any) -> List[Dict[str, Any]]:
    """Pull the record list out of a feed payload; raises ValueError on other shapes."""
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict):
        records = next((payload[k] for k in PAYLOAD_LIST_KEYS if isinstance(payload.get(k), list)), None)
        if records is None:
            raise ValueError(f"payload has none of {', '.join(PAYLOAD_LIST_KEYS)}")
    else:
        raise ValueError(f"unexpected payload type {type(payload).__name__}")
    return [r for r in records if isinstance(r, dict)]


async def fetch_feed(
    engine: str,
    url: str,
    client: httpx.AsyncClient,
    timeout_s: float,
    headers: Optional[Dict[str, str]] = None,
) -> FeedResult:
    """One engine feed. Never raises: failures come back as ok=False."""
    start = time.time()
    result = FeedResult(engine=engine)
    try:
        resp = await client.get(url, headers=headers, timeout=timeout_s)
        resp.raise_for_status()
        result.records = extract_records(resp.json())
        result.ok = True
    except httpx.TimeoutException:
        result.error = f"timeout after {timeout_s:.1f}s"
    except httpx.HTTPStatusError as e:
        result.error = f"HTTP {e.response.status_code}"
    except httpx.HTTPError as e:
        result.error = f"{type(e).__name__}: {e}"
    except ValueError as e:
        result.error = f"bad payload: {e}"
    result.latency_ms = int((time.time() - start) * 1000)

    if result.ok:
        logger.info("Feed %s: %d record(s) in %dms", engine, len(result.records), result.latency_ms)
    else:
        logger.warning("Feed %s unavailable: %s", engine, result.error)
    return result


async def fetch_all_feeds(
    feeds: Optional[Mapping[str, str]] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout_s: Optional[float] = None,
    token: Optional[str] = None,
) -> FeedFanOut:
    """
    Fetch every engine feed concurrently.

    Args:
        feeds: engine -> URL (defaults to Config.SIGNAL_FEED_URLS)
        client: shared AsyncClient (a local one is opened when None)
        timeout_s: per-call timeout (defaults to Config.SIGNAL_TIMEOUT_S)
        token: bearer token sent to every feed (defaults to Config.SIGNAL_FEED_TOKEN)
    """
    feeds = dict(Config.SIGNAL_FEED_URLS if feeds is None else feeds)
    timeout_s = timeout_s if timeout_s is not None else Config.SIGNAL_TIMEOUT_S
    token = token if token is not None else Config.SIGNAL_FEED_TOKEN
    headers = {"Authorization": f"Bearer {token}"} if token else None

    if not feeds:
        logger.warning("No signal feeds configured")
        return FeedFanOut()

    if client is None:
        async with httpx.AsyncClient(timeout=timeout_s) as local_client:
            return await _fan_out(feeds, local_client, timeout_s, headers)
    return await _fan_out(feeds, client, timeout_s, headers)


async def _fan_out(
    feeds: Dict[str, str],
    client: httpx.AsyncClient,
    timeout_s: float,
    headers: Optional[Dict[str, str]],
) -> FeedFanOut:
    engines = list(feeds)
    responses = await asyncio.gather(
        *[fetch_feed(engine, feeds[engine], client, timeout_s, headers) for engine in engines],
        return_exceptions=True,
    )

    fan_out = FeedFanOut()
    for engine, response in zip(engines, responses):
        if isinstance(response, BaseException):
            logger.error("Feed %s raised %s", engine, type(response).__name__, exc_info=response)
            response = FeedResult(engine=engine, error=f"{type(response).__name__}: {response}")
        fan_out.results.append(response)
        if response.ok:
            fan_out.batches[engine] = response.records
        else:
            fan_out.unavailable.append(engine)

    logger.info(
        "Feed fan-out: %d/%d engines available",
        len(fan_out.batches), len(engines),
    )
    return fan_out
