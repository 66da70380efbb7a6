from __future__ import annotations

import json
import logging
import threading
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from itertools import count
from typing import Any, Callable

from websocket import (
    WebSocket,
    WebSocketBadStatusException,
    WebSocketException,
    create_connection,
)

from .exceptions import ProtocolError

logger = logging.getLogger(__name__)

EventCallback = Callable[[dict[str, Any]], None]


class CDPClient:
    """DevTools protocol connection to a single target.

    A background reader thread owns ``recv``: command replies are routed back
    to the thread blocked in :meth:`send_command`, events are handed to the
    callbacks registered with :meth:`on`. Callbacks run on the reader thread
    and must not block on further commands.
    """

    def __init__(self, websocket_url: str, timeout_seconds: float = 10) -> None:
        self.websocket_url = websocket_url
        self.timeout_seconds = timeout_seconds
        self._next_id = count(1)
        self._ws: WebSocket | None = None
        self._reader: threading.Thread | None = None
        self._send_lock = threading.Lock()
        self._pending: dict[int, Future] = {}
        self._pending_lock = threading.Lock()
        self._listeners: dict[str, list[EventCallback]] = {}
        self._close_callbacks: list[Callable[[], None]] = []
        self._closed = threading.Event()
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def connect(self) -> None:
        try:
            ws = create_connection(self.websocket_url, timeout=self.timeout_seconds)
        except WebSocketBadStatusException as exc:
            raise ProtocolError(
                "Failed to connect to Chrome DevTools websocket. "
                "Start Chrome with --remote-allow-origins=* and --remote-debugging-port."
            ) from exc
        except (WebSocketException, OSError) as exc:
            raise ProtocolError(f"Failed to connect to {self.websocket_url}: {exc}") from exc

        ws.settimeout(None)
        self._ws = ws
        self._closed.clear()
        self._reader = threading.Thread(
            target=self._read_loop,
            args=(ws,),
            name=f"cdp-reader-{id(self):x}",
            daemon=True,
        )
        self._reader.start()

    def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                ws.abort()
                ws.close()
            except (WebSocketException, OSError):
                logger.debug("Ignoring error while closing %s", self.websocket_url, exc_info=True)
        reader, self._reader = self._reader, None
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=self.timeout_seconds)

    def on(self, method: str, callback: EventCallback) -> None:
        """Call *callback* with the ``params`` of every *method* event."""
        self._listeners.setdefault(method, []).append(callback)

    def on_close(self, callback: Callable[[], None]) -> None:
        """Call *callback* once the connection is gone, whoever closed it."""
        self._close_callbacks.append(callback)

    def send_command(self, method: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        ws = self._ws
        if ws is None or self.closed:
            raise ProtocolError("CDP client is not connected")

        msg_id = next(self._next_id)
        reply: Future = Future()
        with self._pending_lock:
            self._pending[msg_id] = reply
        if self.closed:
            self._forget(msg_id)
            raise ProtocolError("CDP client is not connected")

        payload = {"id": msg_id, "method": method, "params": params or {}}
        try:
            with self._send_lock:
                ws.send(json.dumps(payload))
            return reply.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            raise ProtocolError(f"CDP command {method} timed out after {self.timeout_seconds}s") from exc
        except (WebSocketException, OSError) as exc:
            raise ProtocolError(f"CDP command {method} failed: {exc}") from exc
        finally:
            self._forget(msg_id)

    # ---- Page helpers ----

    def navigate(self, url: str) -> dict[str, Any]:
        """Navigate the attached page to *url* (``Page.navigate``)."""
        return self.send_command("Page.navigate", {"url": url})

    def reload(self, ignore_cache: bool = False) -> dict[str, Any]:
        """Reload the current page (``Page.reload``)."""
        return self.send_command("Page.reload", {"ignoreCache": ignore_cache})

    # ---- reader thread ----

    def _forget(self, msg_id: int) -> None:
        with self._pending_lock:
            self._pending.pop(msg_id, None)

    def _read_loop(self, ws: WebSocket) -> None:
        try:
            while True:
                try:
                    raw = ws.recv()
                except (WebSocketException, OSError):
                    break
                if not raw:
                    if not ws.connected:
                        break
                    continue
                try:
                    message = json.loads(raw)
                except ValueError:
                    logger.warning("Ignoring malformed CDP message from %s", self.websocket_url)
                    continue
                if "id" in message:
                    self._resolve(message)
                elif "method" in message:
                    self._dispatch(str(message["method"]), dict(message.get("params", {})))
        finally:
            self._shutdown()

    def _resolve(self, message: dict[str, Any]) -> None:
        with self._pending_lock:
            reply = self._pending.get(message["id"])
        if reply is None or reply.done():
            return
        if "error" in message:
            reply.set_exception(ProtocolError(f"CDP command failed: {message['error']}"))
        else:
            reply.set_result(dict(message.get("result", {})))

    def _dispatch(self, method: str, params: dict[str, Any]) -> None:
        for callback in list(self._listeners.get(method, [])):
            try:
                callback(params)
            except Exception:  # noqa: BLE001
                logger.exception("CDP listener for %s failed", method)

    def _shutdown(self) -> None:
        self._closed.set()
        with self._pending_lock:
            pending = list(self._pending.values())
            self._pending.clear()
        for reply in pending:
            if not reply.done():
                reply.set_exception(ProtocolError("CDP connection closed"))
        for callback in list(self._close_callbacks):
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.exception("CDP close callback failed")
        logger.debug("CDP connection to %s closed", self.websocket_url)
