from __future__ import annotations

DUMPS_DIR = "cdp-mocks-dumps"
TARGET_PAGE = "page"
ENV_PREFIX = "cdp_mocks_"
CLI_PREFIX = "--mocks-"
ENCRYPTION_KEY_ENV = "CDP_MOCKS_ENCRYPTION_KEY"

SUPPORTED_RESOURCE_TYPES = [
    "Document",
    "Stylesheet",
    "Image",
    "Media",
    "Script",
    "XHR",
    "Fetch",
]

DUMP_EXTENSIONS = {
    "json": ".json",
    "json_gz": ".json.gz",
}

# Responses with these codes never carry a body, Fetch.getResponseBody fails on them.
BODYLESS_STATUS_CODES = frozenset({204, 205, 301, 302, 304})


def is_bodyless_status(status_code: int) -> bool:
    return 100 <= status_code < 200 or status_code in BODYLESS_STATUS_CODES
