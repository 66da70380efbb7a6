"""Dump files on disk: plain or gzip-compressed JSON, optionally Fernet-encrypted.

Missing or unreadable dumps read back as an empty :class:`Dump` so a first
run in ``play`` mode fails on cache misses rather than on I/O. Encrypted
dumps carry an ``ENC:`` prefix and need the key that wrote them.
"""

from __future__ import annotations

import gzip
import json
import logging
import zlib
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from .constants import DUMP_EXTENSIONS
from .exceptions import ConfigurationError, DumpIOError
from .models import Dump

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "ENC:"


def dump_file_path(path: str | Path, gzip_dumps: bool = True) -> Path:
    extension = DUMP_EXTENSIONS["json_gz"] if gzip_dumps else DUMP_EXTENSIONS["json"]
    return Path(f"{path}{extension}")


def generate_key() -> str:
    return Fernet.generate_key().decode("utf-8")


def _seal(text: str, key: str) -> str:
    token = Fernet(key.encode("utf-8")).encrypt(text.encode("utf-8")).decode("utf-8")
    return f"{ENCRYPTED_PREFIX}{token}"


def _unseal(text: str, key: str) -> str:
    token = text[len(ENCRYPTED_PREFIX) :]
    try:
        return Fernet(key.encode("utf-8")).decrypt(token.encode("utf-8")).decode("utf-8")
    except InvalidToken as exc:
        raise ConfigurationError("Invalid encryption key for encrypted dump file") from exc


def read_dump(path: str | Path, gzip_dumps: bool = True, encryption_key: str | None = None) -> Dump:
    file_path = dump_file_path(path, gzip_dumps)
    try:
        raw = file_path.read_bytes()
    except FileNotFoundError:
        logger.debug("No dump at %s, starting empty", file_path)
        return Dump()
    except OSError as exc:
        logger.warning("Could not read dump %s (%s), starting empty", file_path, exc)
        return Dump()

    try:
        if gzip_dumps:
            raw = gzip.decompress(raw)
        text = raw.decode("utf-8")
    except (OSError, EOFError, zlib.error, UnicodeDecodeError) as exc:
        logger.warning("Dump %s is corrupted (%s), starting empty", file_path, exc)
        return Dump()

    if text.startswith(ENCRYPTED_PREFIX):
        if not encryption_key:
            raise ConfigurationError(f"Dump {file_path} is encrypted. Provide an encryption key.")
        text = _unseal(text, encryption_key)

    try:
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("top-level value is not an object")
        return Dump.from_dict(data)
    except (ValueError, TypeError, AttributeError) as exc:
        logger.warning("Dump %s is not a valid dump (%s), starting empty", file_path, exc)
        return Dump()


def write_dump(
    path: str | Path,
    dump: Dump,
    overwrite: bool = False,
    gzip_dumps: bool = True,
    encryption_key: str | None = None,
) -> bool:
    """Persist *dump*; returns ``False`` when an existing file was left alone."""
    file_path = dump_file_path(path, gzip_dumps)
    if file_path.is_dir():
        raise DumpIOError(f"{file_path} is directory. Please remove or rename it")
    if file_path.exists() and not overwrite:
        logger.debug("Keeping existing dump %s", file_path)
        return False

    text = json.dumps(dump.to_dict(), ensure_ascii=False, indent=None if gzip_dumps else 2)
    if encryption_key:
        text = _seal(text, encryption_key)
    data = text.encode("utf-8")
    if gzip_dumps:
        data = gzip.compress(data)

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_bytes(data)
    except OSError as exc:
        raise DumpIOError(f"Could not write dump {file_path}: {exc}") from exc

    logger.info(
        "Saved dump %s (%d key(s), %d response(s))",
        file_path,
        len(dump.requests),
        len(dump.responses),
    )
    return True
