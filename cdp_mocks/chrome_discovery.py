"""Find page targets through the DevTools HTTP endpoint of a running browser."""

from __future__ import annotations

import logging
import time
import urllib.parse

import requests

from .constants import TARGET_PAGE
from .exceptions import ProtocolError

logger = logging.getLogger(__name__)

PICK_RETRIES = 8


def _read_json(url: str) -> list[dict] | dict:
    response = requests.get(url, timeout=5)
    response.raise_for_status()
    return response.json()


def list_targets(host: str, port: int, retries: int = 1, retry_delay_seconds: float = 0.5) -> list[dict]:
    """Return every target listed at ``/json``, retrying while the browser starts up."""
    endpoint = f"http://{host}:{port}/json"
    attempts = max(1, retries)
    last_error: Exception | None = None
    for attempt in range(1, attempts + 1):
        try:
            data = _read_json(endpoint)
        except (requests.RequestException, ValueError) as exc:
            last_error = exc
        else:
            if isinstance(data, list):
                return data
            last_error = ProtocolError(f"{endpoint} returned {type(data).__name__}, expected a target list")
        if attempt < attempts:
            logger.debug("DevTools endpoint not ready (attempt %d/%d): %s", attempt, attempts, last_error)
            time.sleep(retry_delay_seconds)

    raise ProtocolError(
        f"Could not reach Chrome DevTools at {endpoint}. "
        "Start Chrome with --remote-debugging-port and try again."
    ) from last_error


def list_page_targets(host: str, port: int, retries: int = 1) -> list[dict]:
    return [t for t in list_targets(host, port, retries=retries) if t.get("type") == TARGET_PAGE]


def _matches(target: dict, hint: str) -> bool:
    needle = hint.lower()
    return any(needle in str(target.get(field, "")).lower() for field in ("url", "title"))


def pick_target(host: str, port: int, hint: str | None = None) -> dict:
    """First page whose URL or title contains *hint*, else the first page."""
    pages = list_page_targets(host, port, retries=PICK_RETRIES)
    if not pages:
        raise ProtocolError(
            "No page targets found. Open a tab in the Chrome instance started with --remote-debugging-port."
        )
    if hint:
        return next((page for page in pages if _matches(page, hint)), pages[0])
    return pages[0]


def get_websocket_debug_url(host: str, port: int, hint: str | None = None) -> str:
    target = pick_target(host, port, hint)
    if target.get("webSocketDebuggerUrl"):
        return str(target["webSocketDebuggerUrl"])

    # Some embedders omit the URL; the page id is enough to build it.
    target_id = str(target.get("id", ""))
    if not target_id:
        raise ProtocolError("Target missing webSocketDebuggerUrl and id")
    return f"ws://{host}:{port}/devtools/page/{urllib.parse.quote(target_id)}"
