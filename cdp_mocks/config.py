from __future__ import annotations

import json
import os
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from .constants import CLI_PREFIX, DUMPS_DIR, ENCRYPTION_KEY_ENV, ENV_PREFIX, SUPPORTED_RESOURCE_TYPES
from .exceptions import ConfigurationError
from .models import MocksPattern, RunMode
from .modes import identity_key
from .store import DumpsDir


@dataclass
class MocksConfig:
    enabled: bool = True
    patterns: list[MocksPattern] = field(default_factory=list)
    browsers: list[str] = field(default_factory=list)
    mode: RunMode = RunMode.PLAY
    dumps_dir: DumpsDir = DUMPS_DIR
    dumps_key: Callable[[str], str] = identity_key
    gzip_dumps: bool = True
    encryption_key: str | None = None


def resolve_key(
    explicit_key: str | None,
    key_env_var: str = ENCRYPTION_KEY_ENV,
    env: Mapping[str, str] | None = None,
) -> str | None:
    if explicit_key:
        return explicit_key.strip()
    env_value = (os.environ if env is None else env).get(key_env_var)
    return env_value.strip() if env_value else None


# Options that come from env/argv as JSON; the rest are taken verbatim.
_JSON_OPTIONS = {"enabled", "patterns", "browsers", "gzip_dumps"}
_TEXT_OPTIONS = {"mode", "dumps_dir", "encryption_key"}
_MISSING = object()


def _article(type_desc: str) -> str:
    return "an" if type_desc[:1] in "aeiou" else "a"


def _fail(name: str, type_desc: str, value: Any) -> ConfigurationError:
    return ConfigurationError(
        f"{name} must be {_article(type_desc)} {type_desc}, but got {type(value).__name__}"
    )


def _cli_value(argv: list[str], flag: str) -> str | None:
    value = None
    for index, arg in enumerate(argv):
        if arg == flag and index + 1 < len(argv):
            value = argv[index + 1]
        elif arg.startswith(flag + "="):
            value = arg[len(flag) + 1 :]
    return value


def _raw_value(name: str, options: Mapping[str, Any], env: Mapping[str, str], argv: list[str]) -> Any:
    if name in _JSON_OPTIONS or name in _TEXT_OPTIONS:
        flag = CLI_PREFIX + name.replace("_", "-")
        for source, raw in (("command line", _cli_value(argv, flag)), ("environment", env.get(ENV_PREFIX + name))):
            if raw is None:
                continue
            if name in _TEXT_OPTIONS:
                return raw
            try:
                return json.loads(raw)
            except ValueError as exc:
                raise ConfigurationError(f"{name} from {source} is not valid JSON: {raw!r}") from exc
    return options.get(name, _MISSING)


def _parse_bool(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise _fail(name, "boolean", value)
    return value


def _parse_browsers(name: str, value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise _fail(name, "array of strings", value)
    return list(value)


def _parse_mode(name: str, value: Any) -> RunMode:
    try:
        return RunMode(value)
    except (ValueError, TypeError):
        valid = " or ".join(f'"{m.value}"' for m in RunMode)
        raise ConfigurationError(f"{name} must be a {valid}, but got {value!r}") from None


def _parse_resources(value: Any) -> list[str] | str:
    if value == "*":
        return "*"
    if not isinstance(value, list) or not value:
        raise _fail("patterns.resources", '"*" or non-empty array of resource types', value)
    unknown = [v for v in value if v not in SUPPORTED_RESOURCE_TYPES]
    if unknown:
        raise ConfigurationError(
            f"patterns.resources has unsupported resource types {unknown}. "
            f"Supported: {', '.join(SUPPORTED_RESOURCE_TYPES)}"
        )
    return list(value)


def _parse_patterns(name: str, value: Any) -> list[MocksPattern]:
    if not isinstance(value, list):
        raise _fail(name, "array of patterns", value)
    parsed: list[MocksPattern] = []
    for item in value:
        if isinstance(item, MocksPattern):
            parsed.append(MocksPattern(item.url, _parse_resources(item.resources)))
        elif isinstance(item, str):
            parsed.append(MocksPattern(item))
        elif isinstance(item, Mapping) and isinstance(item.get("url"), str):
            parsed.append(MocksPattern(item["url"], _parse_resources(item.get("resources", "*"))))
        else:
            raise ConfigurationError(f"{name} items must be URL strings or {{url, resources}} objects, got {item!r}")
    return parsed


def _parse_dumps_dir(name: str, value: Any) -> DumpsDir:
    if not isinstance(value, (str, Path)) and not callable(value):
        raise _fail(name, "string or function", value)
    return value


def _parse_dumps_key(name: str, value: Any) -> Callable[[str], str]:
    if not callable(value):
        raise _fail(name, "function", value)
    return value


def _parse_optional_text(name: str, value: Any) -> str | None:
    if value is not None and not isinstance(value, str):
        raise _fail(name, "string", value)
    return value or None


_PARSERS: dict[str, Callable[[str, Any], Any]] = {
    "enabled": _parse_bool,
    "patterns": _parse_patterns,
    "browsers": _parse_browsers,
    "mode": _parse_mode,
    "dumps_dir": _parse_dumps_dir,
    "dumps_key": _parse_dumps_key,
    "gzip_dumps": _parse_bool,
    "encryption_key": _parse_optional_text,
}


def parse_config(
    options: Mapping[str, Any] | None = None,
    env: Mapping[str, str] | None = None,
    argv: list[str] | None = None,
    base_url: str | None = None,
) -> MocksConfig:
    """Build a :class:`MocksConfig` from options, environment and command line.

    Command-line flags (``--mocks-dumps-dir=...``) win over environment
    variables (``cdp_mocks_dumps_dir``), which win over *options*.
    """
    options = options or {}
    env = os.environ if env is None else env
    argv = sys.argv[1:] if argv is None else argv

    unknown = set(options) - set(_PARSERS)
    if unknown:
        raise ConfigurationError(f"Unknown options: {', '.join(sorted(unknown))}")

    values: dict[str, Any] = {}
    for name, parse in _PARSERS.items():
        raw = _raw_value(name, options, env, argv)
        if raw is not _MISSING:
            values[name] = parse(name, raw)

    config = MocksConfig(**values)
    if not config.patterns and base_url:
        config.patterns = [MocksPattern(f"{base_url}*")]
    if config.encryption_key is None:
        config.encryption_key = resolve_key(None, env=env)
    return config
