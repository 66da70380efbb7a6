from __future__ import annotations


class MocksError(Exception):
    """Base exception type for library consumers.

    An instance stored on a :class:`~cdp_mocks.context.TestContext` is the
    reason a test is failed at result time.
    """


class ConfigurationError(MocksError):
    pass


class ProtocolError(MocksError):
    pass


class CacheMissError(MocksError):
    pass


class DumpIOError(MocksError):
    pass
