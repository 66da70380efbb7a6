from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from .exceptions import MocksError

logger = logging.getLogger(__name__)


@dataclass
class TestOutcome:
    __test__ = False

    passed: bool
    error: BaseException | None = None


@dataclass
class TestContext:
    """The running test as seen by the mocking layer.

    Interception handlers never raise into the protocol layer; they park the
    first failure in :attr:`mocks_error` and the host runner settles it with
    :meth:`resolve_outcome` once the test is over.
    """

    __test__ = False

    full_title: str
    browser_id: str
    session_id: str = ""
    mocks_error: MocksError | None = field(default=None, init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def record_error_once(self, error: BaseException) -> MocksError:
        """Store *error* unless an earlier one is already stored; return the stored one."""
        with self._lock:
            if self.mocks_error is None:
                if not isinstance(error, MocksError):
                    wrapped = MocksError(str(error))
                    wrapped.__cause__ = error
                    error = wrapped
                self.mocks_error = error
                logger.debug("Recorded mocks error for %r: %s", self.full_title, error)
            return self.mocks_error

    def resolve_outcome(self, passed: bool, error: BaseException | None = None) -> TestOutcome:
        if self.mocks_error is None:
            return TestOutcome(passed=passed, error=error)
        if passed:
            return TestOutcome(passed=False, error=self.mocks_error)
        return TestOutcome(passed=False, error=error if error is not None else self.mocks_error)
