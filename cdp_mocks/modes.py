"""Wire paused requests to store operations for each run mode.

``play`` answers requests from the dump at the request stage. ``save`` and
``create`` let requests reach the network, record the response at the
response stage and hand the same bytes back to the page. The two writing
modes only differ in how the dump is saved at test end.
"""

from __future__ import annotations

import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, Callable

from .cdp import CDPClient
from .constants import is_bodyless_status
from .context import TestContext
from .exceptions import CacheMissError, ConfigurationError
from .interceptor import FetchApi, FetchInterceptor, normalize_headers
from .models import DumpResponse, FetchEvent, FetchInterceptionStage, MocksPattern, RunMode
from .store import Store

logger = logging.getLogger(__name__)

StoreGetter = Callable[[], "Store | None"]
DumpsKey = Callable[[str], str]


def identity_key(request_url: str) -> str:
    return request_url


def use_modes(
    mode: RunMode | str,
    on_play: Callable[[], Any] | None = None,
    on_save: Callable[[], Any] | None = None,
    on_create: Callable[[], Any] | None = None,
) -> Any:
    """Run the callback registered for *mode* and return its result."""
    try:
        mode = RunMode(mode)
    except ValueError as exc:
        raise ConfigurationError(f"Unknown run mode: {mode!r}") from exc

    if mode is RunMode.PLAY:
        action = on_play
    elif mode is RunMode.SAVE:
        action = on_save
    else:
        action = on_create
    return action() if action is not None else None


def _submit(executor: Executor | None, fn: Callable[..., None], *args: Any) -> None:
    if executor is None:
        fn(*args)
        return
    try:
        executor.submit(fn, *args)
    except RuntimeError:
        logger.debug("Session is shutting down, dropping %s", getattr(fn, "__name__", fn))


def _guarded(test: TestContext | None, fn: Callable[..., None], *args: Any) -> None:
    try:
        fn(*args)
    except Exception as exc:  # noqa: BLE001
        if test is None:
            logger.warning("Interception call failed outside of a test: %s", exc)
        else:
            test.record_error_once(exc)


def _pass_through(executor: Executor | None, event: FetchEvent, api: FetchApi) -> None:
    logger.warning("No active test for %s, letting the request through", event.request_url)
    _submit(executor, _guarded, None, api.continue_request, event.request_id)


def read_mode(
    client: CDPClient,
    patterns: list[MocksPattern],
    get_store: StoreGetter,
    dumps_key: DumpsKey = identity_key,
    executor: Executor | None = None,
) -> FetchInterceptor:
    interceptor = FetchInterceptor(client, patterns, FetchInterceptionStage.REQUEST)

    def handle(event: FetchEvent, api: FetchApi) -> None:
        store = get_store()
        if store is None:
            _pass_through(executor, event, api)
            return

        test = store.current_test
        try:
            key = dumps_key(event.request_url)
            response = store.get(key)
        except Exception as exc:  # noqa: BLE001
            test.record_error_once(exc)
            return

        if response is None:
            # The request is left paused; the recorded error fails the test.
            test.record_error_once(CacheMissError(f"Cache is empty:\nkey={key}"))
            return

        logger.debug("Replaying %s (%d)", key, response.response_code)
        _submit(
            executor,
            _guarded,
            test,
            api.respond_with_mock,
            event.request_id,
            response.body,
            response.headers,
            response.response_code,
        )

    interceptor.listen(handle)
    interceptor.enable()
    return interceptor


def _record(store: Store, event: FetchEvent, api: FetchApi, key: str, slot: int) -> None:
    try:
        response_code = event.response_status_code
        headers = normalize_headers(event.response_headers)
        if is_bodyless_status(response_code):
            logger.debug("Skipping body of %s (%d)", key, response_code)
            body = ""
        else:
            body = api.get_real_response(event.request_id).decode("latin-1")

        store.set(key, DumpResponse(response_code=response_code, headers=headers, body=body), slot=slot)
        api.respond_with_mock(event.request_id, body, headers, response_code)
    except Exception as exc:  # noqa: BLE001
        store.current_test.record_error_once(exc)


def write_mode(
    client: CDPClient,
    patterns: list[MocksPattern],
    get_store: StoreGetter,
    dumps_key: DumpsKey = identity_key,
    executor: Executor | None = None,
) -> FetchInterceptor:
    interceptor = FetchInterceptor(client, patterns, FetchInterceptionStage.RESPONSE)

    def handle(event: FetchEvent, api: FetchApi) -> None:
        store = get_store()
        if store is None:
            _pass_through(executor, event, api)
            return

        test = store.current_test
        if event.response_status_code is None:
            # Paused without a response (network error); nothing to record.
            _submit(executor, _guarded, test, api.continue_request, event.request_id)
            return

        # The slot is taken in arrival order; the body fetch may finish later.
        try:
            key = dumps_key(event.request_url)
            slot = store.reserve(key)
        except Exception as exc:  # noqa: BLE001
            test.record_error_once(exc)
            return
        _submit(executor, _record, store, event, api, key, slot)

    interceptor.listen(handle)
    interceptor.enable()
    return interceptor


class MockSession:
    """One CDP connection intercepting in a fixed run mode.

    Protocol round-trips for individual requests run on a small per-session
    pool so a slow body fetch does not hold up the next paused request.
    The pool is shut down when the connection closes.
    """

    def __init__(
        self,
        client: CDPClient,
        patterns: list[MocksPattern],
        mode: RunMode,
        get_store: StoreGetter,
        dumps_key: DumpsKey = identity_key,
        max_workers: int | None = None,
    ) -> None:
        self.client = client
        self.patterns = patterns
        self.mode = RunMode(mode)
        self.get_store = get_store
        self.dumps_key = dumps_key
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mocks-handler")
        self.interceptor: FetchInterceptor | None = None
        client.on_close(lambda: self.executor.shutdown(wait=False))

    def start(self) -> FetchInterceptor:
        args = (self.client, self.patterns, self.get_store, self.dumps_key, self.executor)
        self.interceptor = use_modes(
            self.mode,
            on_play=lambda: read_mode(*args),
            on_save=lambda: write_mode(*args),
            on_create=lambda: write_mode(*args),
        )
        logger.info("Mocks session started on %s in %s mode", self.client.websocket_url, self.mode.value)
        return self.interceptor

    def close(self) -> None:
        self.client.close()
        self.executor.shutdown(wait=False)
