"""Lifecycle glue between a host test runner and the mocking engine.

The runner calls these hooks from its own events; nothing here knows which
runner it is plugged into.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future
from typing import Callable

from .cdp import CDPClient
from .config import MocksConfig
from .context import TestContext, TestOutcome
from .exceptions import ProtocolError
from .modes import MockSession, use_modes
from .store import Store
from .workers import DumpWriteQueue

logger = logging.getLogger(__name__)


class MocksPlugin:
    """Record or replay network traffic for every test in the allowed browsers.

    Usage::

        plugin = MocksPlugin(parse_config({"browsers": ["chrome"], "mode": "play"}))
        plugin.on_session_start(session_id, "chrome", [page_ws_url])
        plugin.on_test_begin(test)
        ...  # run the test
        plugin.on_test_end(test)
        outcome = plugin.resolve_test_result(test, passed=True)
        plugin.on_session_end(session_id)
        plugin.on_runner_end()
    """

    def __init__(
        self,
        config: MocksConfig,
        write_queue: DumpWriteQueue | None = None,
        client_factory: Callable[[str], CDPClient] = CDPClient,
    ) -> None:
        self.config = config
        self.write_queue = write_queue or DumpWriteQueue()
        self._client_factory = client_factory
        self._stores: dict[str, Store] = {}
        self._sessions: dict[str, list[MockSession]] = {}
        self._session_browsers: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def active(self) -> bool:
        return self.config.enabled and bool(self.config.browsers)

    def tracks(self, browser_id: str) -> bool:
        return self.active and browser_id in self.config.browsers

    def store_for(self, session_id: str) -> Store | None:
        with self._lock:
            return self._stores.get(session_id)

    # ---- browser sessions ----

    def attach_target(self, session_id: str, ws_url: str) -> MockSession:
        client = self._client_factory(ws_url)
        client.connect()
        session = MockSession(
            client,
            self.config.patterns,
            self.config.mode,
            get_store=lambda: self.store_for(session_id),
            dumps_key=self.config.dumps_key,
        )
        try:
            session.start()
        except Exception:
            session.close()
            raise
        with self._lock:
            self._sessions.setdefault(session_id, []).append(session)
        return session

    def on_session_start(self, session_id: str, browser_id: str, ws_urls: list[str]) -> list[MockSession]:
        if not self.tracks(browser_id):
            return []
        with self._lock:
            self._session_browsers[session_id] = browser_id
        sessions = [self.attach_target(session_id, ws_url) for ws_url in ws_urls]
        logger.info("Attached %d target(s) for %s session %s", len(sessions), browser_id, session_id)
        return sessions

    def on_target_created(self, session_id: str, ws_url: str) -> MockSession | None:
        with self._lock:
            known = session_id in self._session_browsers
        if not known:
            return None
        try:
            return self.attach_target(session_id, ws_url)
        except Exception as exc:  # noqa: BLE001
            error = ProtocolError(f"Couldn't create CDP session (original error: {exc})")
            store = self.store_for(session_id)
            if store is None:
                logger.warning("%s", error)
            else:
                store.current_test.record_error_once(error)
            return None

    def on_session_end(self, session_id: str) -> None:
        with self._lock:
            sessions = self._sessions.pop(session_id, [])
            self._session_browsers.pop(session_id, None)
        for session in sessions:
            session.close()

    # ---- tests ----

    def on_test_begin(self, test: TestContext) -> Store | None:
        if not self.tracks(test.browser_id):
            return None
        store = Store(
            self.config.dumps_dir,
            test,
            gzip_dumps=self.config.gzip_dumps,
            encryption_key=self.config.encryption_key,
        )
        with self._lock:
            self._stores[test.session_id] = store
        return store

    def on_test_end(self, test: TestContext) -> Future | None:
        if not self.tracks(test.browser_id):
            return None
        with self._lock:
            store = self._stores.pop(test.session_id, None)
        if store is None:
            return None
        return use_modes(
            self.config.mode,
            on_save=lambda: self.write_queue.submit(store.save_dump, overwrite=True),
            on_create=lambda: self.write_queue.submit(store.save_dump, overwrite=False),
        )

    def resolve_test_result(
        self,
        test: TestContext,
        passed: bool,
        error: BaseException | None = None,
    ) -> TestOutcome:
        return test.resolve_outcome(passed, error)

    # ---- runner ----

    def on_runner_end(self) -> list[BaseException]:
        """Close remaining sessions and wait for every queued dump write."""
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            self.on_session_end(session_id)
        failures = self.write_queue.wait_idle()
        self.write_queue.shutdown()
        return failures
