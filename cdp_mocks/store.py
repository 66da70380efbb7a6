from __future__ import annotations

import base64
import hashlib
import logging
import threading
from pathlib import Path
from typing import Callable, Union

from .context import TestContext
from .dump_io import read_dump, write_dump
from .models import Dump, DumpResponse

logger = logging.getLogger(__name__)

_UNFILLED = ""

DumpsDir = Union[str, Path, Callable[[TestContext], Union[str, Path]]]


def dump_file_name(test: TestContext) -> str:
    """Short, filesystem-safe name derived from the test title and browser id.

    Only the low byte of each character is hashed, the way Node's ``"ascii"``
    buffer encoding does, so non-ASCII titles map to the same file names.
    """
    identity = f"{test.full_title}#{test.browser_id}"
    raw = bytes(ord(char) & 0xFF for char in identity)
    digest = base64.b64encode(hashlib.md5(raw).digest()).decode("ascii")
    return digest[:8].replace("/", "#")


def response_hash(response: DumpResponse) -> str:
    joined_headers = "#".join(response.headers.values())
    content = f"{response.response_code}#{response.body}#{joined_headers}"
    return hashlib.md5(content.encode("utf-8")).hexdigest()


class Store:
    """Recorded responses for one test in one browser session.

    ``get`` replays the responses recorded under a key in recording order,
    one per call; ``set`` appends a response to a key. Cursor and list
    bookkeeping happens under a lock at call time, so concurrent handlers
    for the same key are served in the order they reached the store.

    A recorder that learns the response later than the request arrived calls
    :meth:`reserve` first and passes the returned slot to :meth:`set`; slots
    never filled are dropped on save.
    """

    def __init__(
        self,
        dumps_dir: DumpsDir,
        test: TestContext,
        gzip_dumps: bool = True,
        encryption_key: str | None = None,
    ) -> None:
        self.dumps_dir = dumps_dir
        self.test = test
        self.gzip_dumps = gzip_dumps
        self.encryption_key = encryption_key
        self._dump: Dump | None = None
        self._cursors: dict[str, int] = {}
        self._lock = threading.Lock()

    @property
    def current_test(self) -> TestContext:
        return self.test

    @property
    def dump_path(self) -> Path:
        base = self.dumps_dir(self.test) if callable(self.dumps_dir) else self.dumps_dir
        return Path(base).resolve() / dump_file_name(self.test)

    def get(self, key: str) -> DumpResponse | None:
        with self._lock:
            if self._dump is None:
                self._dump = read_dump(
                    self.dump_path,
                    gzip_dumps=self.gzip_dumps,
                    encryption_key=self.encryption_key,
                )
            index = self._cursors.get(key, 0)
            self._cursors[key] = index + 1
            hashes = self._dump.requests.get(key, [])
            if index >= len(hashes):
                logger.debug("No recorded response #%d for %s", index, key)
                return None
            return self._dump.responses.get(hashes[index])

    def reserve(self, key: str) -> int:
        """Claim the next position under *key*; return its slot index."""
        with self._lock:
            if self._dump is None:
                self._dump = Dump()
            hashes = self._dump.requests.setdefault(key, [])
            hashes.append(_UNFILLED)
            return len(hashes) - 1

    def set(self, key: str, response: DumpResponse, slot: int | None = None) -> str:
        digest = response_hash(response)
        with self._lock:
            if self._dump is None:
                self._dump = Dump()
            hashes = self._dump.requests.setdefault(key, [])
            if slot is None:
                hashes.append(digest)
            else:
                hashes[slot] = digest
            self._dump.responses[digest] = response
        return digest

    def save_dump(self, overwrite: bool = False) -> bool:
        """Persist and drop the in-memory dump; nothing is written if nothing was recorded."""
        with self._lock:
            dump, self._dump = self._dump, None
        if dump is not None:
            for key in list(dump.requests):
                filled = [h for h in dump.requests[key] if h != _UNFILLED]
                if filled:
                    dump.requests[key] = filled
                else:
                    del dump.requests[key]
        if dump is None or dump.is_empty():
            logger.debug("Nothing recorded for %r, skipping save", self.test.full_title)
            return False
        return write_dump(
            self.dump_path,
            dump,
            overwrite=overwrite,
            gzip_dumps=self.gzip_dumps,
            encryption_key=self.encryption_key,
        )
