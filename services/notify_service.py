"""
Notify Service - Forward cycle summaries to a webhook

Delivery is best-effort: a failed POST is logged and reported as False,
never raised, so a notification outage cannot fail a selection or
calibration cycle. Message formatting for chat channels happens on the
receiving side; this sends the summary dict as JSON.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from env_config import Config

logger = logging.getLogger(__name__)


async def forward_summary(
    kind: str,
    summary: Dict[str, Any],
    webhook_url: Optional[str] = None,
    client: Optional[httpx.AsyncClient] = None,
    timeout_s: Optional[float] = None,
) -> bool:
    """
    POST {"kind": kind, "summary": summary} to the configured webhook.

    Returns:
        True when the webhook answered 2xx, False when unset or failed
    """
    webhook_url = webhook_url or Config.NOTIFY_WEBHOOK_URL
    if not webhook_url:
        logger.debug("Notify: no webhook configured, skipping %s summary", kind)
        return False
    timeout_s = timeout_s if timeout_s is not None else Config.NOTIFY_TIMEOUT_S
    body = {"kind": kind, "summary": summary}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout_s) as local_client:
                resp = await local_client.post(webhook_url, json=body)
        else:
            resp = await client.post(webhook_url, json=body, timeout=timeout_s)
        resp.raise_for_status()
    except httpx.HTTPError as e:
        logger.warning("Notify: %s summary not delivered (%s)", kind, type(e).__name__)
        return False

    logger.info("Notify: %s summary delivered", kind)
    return True
