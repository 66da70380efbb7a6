"""cdp-mocks package."""

from .cdp import CDPClient
from .config import MocksConfig, parse_config
from .context import TestContext, TestOutcome
from .dump_io import read_dump, write_dump
from .exceptions import CacheMissError, ConfigurationError, DumpIOError, MocksError, ProtocolError
from .interceptor import FetchApi, FetchInterceptor
from .models import Dump, DumpResponse, FetchEvent, FetchInterceptionStage, MocksPattern, RunMode
from .modes import MockSession, read_mode, use_modes, write_mode
from .plugin import MocksPlugin
from .store import Store
from .workers import DumpWriteQueue

__all__ = [
    "CDPClient",
    "CacheMissError",
    "ConfigurationError",
    "Dump",
    "DumpIOError",
    "DumpResponse",
    "DumpWriteQueue",
    "FetchApi",
    "FetchEvent",
    "FetchInterceptionStage",
    "FetchInterceptor",
    "MockSession",
    "MocksConfig",
    "MocksError",
    "MocksPattern",
    "MocksPlugin",
    "ProtocolError",
    "RunMode",
    "Store",
    "TestContext",
    "TestOutcome",
    "parse_config",
    "read_dump",
    "read_mode",
    "use_modes",
    "write_dump",
    "write_mode",
]
