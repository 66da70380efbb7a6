from pathlib import Path

import pytest

from cdp_mocks.config import MocksConfig, parse_config, resolve_key
from cdp_mocks.constants import DUMPS_DIR, ENCRYPTION_KEY_ENV
from cdp_mocks.exceptions import ConfigurationError
from cdp_mocks.models import MocksPattern, RunMode
from cdp_mocks.modes import identity_key


def _parse(options=None, env=None, argv=None, base_url=None):
    return parse_config(options, env=env or {}, argv=argv or [], base_url=base_url)


def test_defaults():
    config = _parse()

    assert config == MocksConfig()
    assert config.mode is RunMode.PLAY
    assert config.dumps_dir == DUMPS_DIR
    assert config.dumps_key is identity_key
    assert config.gzip_dumps is True
    assert config.encryption_key is None


def test_options_are_parsed():
    key = lambda url: url.split("?")[0]  # noqa: E731
    config = _parse(
        {
            "enabled": False,
            "patterns": ["https://a/*", {"url": "https://b/*", "resources": ["XHR", "Fetch"]}],
            "browsers": ["chrome", "edge"],
            "mode": "save",
            "dumps_dir": Path("/tmp/dumps"),
            "dumps_key": key,
            "gzip_dumps": False,
        }
    )

    assert config.enabled is False
    assert config.patterns == [MocksPattern("https://a/*"), MocksPattern("https://b/*", ["XHR", "Fetch"])]
    assert config.browsers == ["chrome", "edge"]
    assert config.mode is RunMode.SAVE
    assert config.dumps_dir == Path("/tmp/dumps")
    assert config.dumps_key is key
    assert config.gzip_dumps is False


def test_callable_dumps_dir_is_accepted():
    def per_test(test):
        return f"dumps/{test.browser_id}"

    assert _parse({"dumps_dir": per_test}).dumps_dir is per_test


def test_environment_overrides_options():
    config = _parse(
        {"mode": "play", "browsers": ["chrome"]},
        env={"cdp_mocks_mode": "create", "cdp_mocks_browsers": '["firefox"]', "cdp_mocks_gzip_dumps": "false"},
    )

    assert config.mode is RunMode.CREATE
    assert config.browsers == ["firefox"]
    assert config.gzip_dumps is False


def test_command_line_overrides_environment():
    config = _parse(
        env={"cdp_mocks_mode": "create", "cdp_mocks_dumps_dir": "from-env"},
        argv=["--mocks-mode", "save", "--mocks-dumps-dir=from-cli", "--mocks-enabled=false"],
    )

    assert config.mode is RunMode.SAVE
    assert config.dumps_dir == "from-cli"
    assert config.enabled is False


def test_base_url_gives_default_pattern():
    assert _parse(base_url="http://localhost:3000/").patterns == [MocksPattern("http://localhost:3000/*")]
    assert _parse({"patterns": ["https://api/*"]}, base_url="http://x/").patterns == [MocksPattern("https://api/*")]


def test_encryption_key_falls_back_to_environment():
    assert _parse(env={ENCRYPTION_KEY_ENV: " secret "}).encryption_key == "secret"
    assert _parse({"encryption_key": "explicit"}, env={ENCRYPTION_KEY_ENV: "env"}).encryption_key == "explicit"


@pytest.mark.parametrize(
    ("options", "message"),
    [
        ({"enabled": "yes"}, "enabled must be a boolean, but got str"),
        ({"gzip_dumps": 1}, "gzip_dumps must be a boolean, but got int"),
        ({"browsers": "chrome"}, "browsers must be an array of strings, but got str"),
        ({"browsers": ["chrome", 3]}, "browsers must be an array of strings, but got list"),
        ({"mode": "replay"}, 'mode must be a "play" or "save" or "create", but got \'replay\''),
        ({"mode": None}, 'mode must be a "play" or "save" or "create", but got None'),
        ({"patterns": "https://x/*"}, "patterns must be an array of patterns, but got str"),
        ({"patterns": [42]}, "patterns items must be URL strings"),
        ({"patterns": [{"url": "https://x/*", "resources": ["Font"]}]}, "unsupported resource types ['Font']"),
        ({"patterns": [{"url": "https://x/*", "resources": []}]}, "patterns.resources must be"),
        ({"dumps_dir": 5}, "dumps_dir must be a string or function, but got int"),
        ({"dumps_key": "url"}, "dumps_key must be a function, but got str"),
        ({"encryption_key": 123}, "encryption_key must be a string, but got int"),
        ({"verbose": True}, "Unknown options: verbose"),
    ],
)
def test_invalid_options_are_rejected(options, message):
    with pytest.raises(ConfigurationError) as exc_info:
        _parse(options)

    assert message in str(exc_info.value)


def test_invalid_json_from_environment_is_rejected():
    with pytest.raises(ConfigurationError, match="browsers from environment is not valid JSON"):
        _parse(env={"cdp_mocks_browsers": "[chrome"})


def test_resolve_key_prefers_explicit_value():
    assert resolve_key(" abc ", env={ENCRYPTION_KEY_ENV: "env"}) == "abc"
    assert resolve_key(None, env={ENCRYPTION_KEY_ENV: "env"}) == "env"
    assert resolve_key(None, key_env_var="OTHER", env={"OTHER": "other"}) == "other"
    assert resolve_key(None, env={}) is None
