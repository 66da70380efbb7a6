"""Fetch-domain interception on top of :class:`~cdp_mocks.cdp.CDPClient`."""

from __future__ import annotations

import base64
import logging
import queue
import threading
from typing import Callable

from .cdp import CDPClient
from .models import FetchEvent, FetchInterceptionStage, MocksPattern
from .patterns import build_fetch_patterns

logger = logging.getLogger(__name__)


def normalize_headers(headers: list[dict[str, str]] | None = None) -> dict[str, str]:
    """Turn CDP ``[{name, value}]`` header entries into a lower-cased mapping."""
    table: dict[str, str] = {}
    for entry in headers or []:
        table[str(entry.get("name", "")).lower()] = str(entry.get("value", ""))
    return table


def create_response_headers(headers: dict[str, str]) -> list[dict[str, str]]:
    return [{"name": name, "value": value} for name, value in headers.items()]


class FetchApi:
    """Operations available to a handler for the paused request it was given."""

    def __init__(self, client: CDPClient) -> None:
        self._client = client

    def continue_request(self, request_id: str) -> None:
        self._client.send_command("Fetch.continueRequest", {"requestId": request_id})

    def get_real_response(self, request_id: str) -> bytes:
        result = self._client.send_command("Fetch.getResponseBody", {"requestId": request_id})
        body = str(result.get("body", ""))
        if result.get("base64Encoded"):
            return base64.b64decode(body)
        return body.encode("utf-8")

    def respond_with_mock(
        self,
        request_id: str,
        body: str,
        headers: dict[str, str],
        response_code: int = 200,
    ) -> None:
        # body holds one byte per character (latin-1), see DumpResponse
        self._client.send_command(
            "Fetch.fulfillRequest",
            {
                "requestId": request_id,
                "responseCode": response_code,
                "responseHeaders": create_response_headers(headers),
                "body": base64.b64encode(body.encode("latin-1")).decode("ascii"),
            },
        )


Handler = Callable[[FetchEvent, FetchApi], None]


class FetchInterceptor:
    """Pause matching requests at one stage and feed them to a handler.

    Usage::

        interceptor = FetchInterceptor(client, [MocksPattern("https://api.example.com/*")],
                                       FetchInterceptionStage.REQUEST)
        interceptor.listen(handler)
        interceptor.enable()
    """

    def __init__(
        self,
        client: CDPClient,
        patterns: list[MocksPattern],
        stage: FetchInterceptionStage,
    ) -> None:
        self.client = client
        self.patterns = patterns
        self.stage = stage

    def enable(self) -> None:
        fetch_patterns = build_fetch_patterns(self.patterns, self.stage)
        self.client.send_command("Fetch.enable", {"patterns": fetch_patterns})
        logger.info("Enabled %s-stage interception for %d pattern(s)", self.stage.value, len(fetch_patterns))

    def listen(self, handler: Handler) -> threading.Thread:
        """Deliver paused requests to *handler*, one at a time and in arrival order.

        The returned dispatch thread ends when the CDP connection closes.
        """
        events: queue.Queue[FetchEvent | None] = queue.Queue()
        self.client.on("Fetch.requestPaused", lambda params: events.put(FetchEvent.from_params(params)))
        self.client.on_close(lambda: events.put(None))
        if self.client.closed:
            events.put(None)

        thread = threading.Thread(
            target=self._dispatch_loop,
            args=(events, handler),
            name=f"fetch-dispatch-{self.stage.value.lower()}",
            daemon=True,
        )
        thread.start()
        return thread

    def _dispatch_loop(self, events: queue.Queue[FetchEvent | None], handler: Handler) -> None:
        while True:
            event = events.get()
            if event is None:
                break
            try:
                handler(event, FetchApi(self.client))
            except Exception:  # noqa: BLE001
                logger.exception("Interception handler failed for %s", event.request_url)
