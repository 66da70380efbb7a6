import base64
import hashlib
import time

import pytest

from cdp_mocks.context import TestContext
from cdp_mocks.dump_io import read_dump
from cdp_mocks.exceptions import CacheMissError, ConfigurationError, MocksError
from cdp_mocks.models import DumpResponse, FetchEvent, FetchInterceptionStage, MocksPattern, RunMode
from cdp_mocks.modes import MockSession, read_mode, use_modes, write_mode
from cdp_mocks.store import Store
from fakes import FakeApi, FakeCDPClient, FakeStore, InlineExecutor


class FakeInterceptor:
    def __init__(self, client, patterns, stage):
        self.client = client
        self.patterns = patterns
        self.stage = stage
        self.handler = None
        self.enabled = False

    def listen(self, handler):
        self.handler = handler

    def enable(self):
        self.enabled = True


@pytest.fixture
def fake_interceptor(monkeypatch):
    monkeypatch.setattr("cdp_mocks.modes.FetchInterceptor", FakeInterceptor)


def _request_event(url="https://x/a", request_id="id"):
    return FetchEvent(request_id=request_id, request_url=url)


def _response_event(url="https://x/a", request_id="id", status=200, headers=None):
    return FetchEvent(
        request_id=request_id,
        request_url=url,
        response_headers=headers if headers is not None else [{"name": "Content-Type", "value": "text/plain"}],
        response_status_code=status,
    )


def _wait_for(predicate, timeout=2.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


# ---- use_modes ----


@pytest.mark.parametrize("mode", ["play", "save", "create"])
def test_use_modes_calls_only_matching_callback(mode):
    called = []

    result = use_modes(
        mode,
        on_play=lambda: called.append("play") or "p",
        on_save=lambda: called.append("save") or "s",
        on_create=lambda: called.append("create") or "c",
    )

    assert called == [mode]
    assert result == mode[0]


def test_use_modes_missing_callback_is_noop():
    assert use_modes(RunMode.PLAY, on_save=lambda: "s") is None


def test_use_modes_rejects_unknown_mode():
    with pytest.raises(ConfigurationError):
        use_modes("replay")


# ---- play ----


def test_read_mode_enables_request_stage(fake_interceptor):
    interceptor = read_mode(FakeCDPClient(), [MocksPattern("*")], lambda: None)

    assert interceptor.stage is FetchInterceptionStage.REQUEST
    assert interceptor.enabled
    assert interceptor.handler is not None


def test_play_hit_responds_with_stored_response(fake_interceptor):
    stored = DumpResponse(response_code=201, headers={"foo": "bar"}, body="cached")
    store = FakeStore({"https://x/a": [stored]})
    api = FakeApi()
    interceptor = read_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_request_event(), api)

    assert store.gets == ["https://x/a"]
    assert api.called("respond_with_mock") == [("id", "cached", {"foo": "bar"}, 201)]
    assert store.test.mocks_error is None


def test_play_uses_dumps_key(fake_interceptor):
    store = FakeStore()
    interceptor = read_mode(
        FakeCDPClient(),
        [],
        lambda: store,
        dumps_key=lambda url: url.split("?")[0],
        executor=InlineExecutor(),
    )

    interceptor.handler(_request_event("https://x/a?ts=123"), FakeApi())

    assert store.gets == ["https://x/a"]


def test_play_miss_records_error_and_leaves_request_paused(fake_interceptor):
    store = FakeStore()
    api = FakeApi()
    interceptor = read_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_request_event("https://x/a"), api)

    assert isinstance(store.test.mocks_error, CacheMissError)
    assert "key=https://x/a" in str(store.test.mocks_error)
    assert api.calls == []


def test_play_keeps_first_error(fake_interceptor):
    store = FakeStore()
    interceptor = read_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_request_event("https://x/first"), FakeApi())
    interceptor.handler(_request_event("https://x/second"), FakeApi())

    assert "https://x/first" in str(store.test.mocks_error)


def test_play_fulfill_failure_is_recorded(fake_interceptor):
    store = FakeStore({"https://x/a": [DumpResponse(200, {}, "")]})
    interceptor = read_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_request_event(), FakeApi(fail_on="respond_with_mock"))

    assert isinstance(store.test.mocks_error, MocksError)
    assert "respond_with_mock failed" in str(store.test.mocks_error)


def test_play_without_active_test_lets_request_through(fake_interceptor):
    api = FakeApi()
    interceptor = read_mode(FakeCDPClient(), [], lambda: None, executor=InlineExecutor())

    interceptor.handler(_request_event(), api)

    assert api.called("continue_request") == [("id",)]


# ---- save / create ----


def test_write_mode_enables_response_stage(fake_interceptor):
    interceptor = write_mode(FakeCDPClient(), [], lambda: None)

    assert interceptor.stage is FetchInterceptionStage.RESPONSE
    assert interceptor.enabled


def test_record_stores_and_forwards_real_response(fake_interceptor):
    store = FakeStore()
    api = FakeApi(body=b"\xffbody")
    interceptor = write_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_response_event(headers=[{"name": "Foo", "value": "bar"}]), api)

    expected = DumpResponse(response_code=200, headers={"foo": "bar"}, body="\xffbody")
    assert store.sets == [("https://x/a", expected)]
    assert api.called("respond_with_mock") == [("id", "\xffbody", {"foo": "bar"}, 200)]


@pytest.mark.parametrize("status", [100, 101, 204, 205, 301, 302, 304])
def test_record_skips_body_for_bodyless_codes(fake_interceptor, status):
    store = FakeStore()
    api = FakeApi()
    interceptor = write_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_response_event(status=status), api)

    assert api.called("get_real_response") == []
    assert store.sets[0][1].body == ""
    assert api.called("respond_with_mock")[0][3] == status


def test_record_body_fetch_failure_is_recorded(fake_interceptor):
    store = FakeStore()
    api = FakeApi(fail_on="get_real_response")
    interceptor = write_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_response_event(), api)

    assert store.sets == []
    assert "get_real_response failed" in str(store.test.mocks_error)
    assert api.called("respond_with_mock") == []


def test_record_without_response_continues(fake_interceptor):
    store = FakeStore()
    api = FakeApi()
    interceptor = write_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(FetchEvent(request_id="id", request_url="https://x/a"), api)

    assert api.called("continue_request") == [("id",)]
    assert store.sets == []


def test_create_records_into_real_store(fake_interceptor, tmp_path):
    test = TestContext(full_title="page loads", browser_id="chrome", session_id="s1")
    store = Store(str(tmp_path), test, gzip_dumps=False)
    interceptor = write_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_response_event(), FakeApi(body=b"hello"))

    expected_hash = hashlib.md5(b"200#hello#text/plain").hexdigest()
    assert store.save_dump(overwrite=False) is True
    replay = Store(str(tmp_path), test, gzip_dumps=False)
    assert replay.get("https://x/a") == DumpResponse(200, {"content-type": "text/plain"}, "hello")
    dump = read_dump(replay.dump_path, gzip_dumps=False)
    assert dump.requests == {"https://x/a": [expected_hash]}


# ---- MockSession over the real interceptor ----


def _fulfilled(client):
    return {
        params["requestId"]: base64.b64decode(params["body"]).decode("latin-1")
        for params in client.sent("Fetch.fulfillRequest")
    }


def test_mock_session_replays_same_key_in_arrival_order(tmp_path):
    test = TestContext(full_title="ordered", browser_id="chrome", session_id="s1")
    store = Store(str(tmp_path), test, gzip_dumps=False)
    for body in ("R1", "R2", "R3"):
        store.set("https://x/a", DumpResponse(200, {}, body))

    client = FakeCDPClient()
    client.connect()
    session = MockSession(client, [MocksPattern("*")], RunMode.PLAY, lambda: store, max_workers=3)
    session.start()
    assert client.sent("Fetch.enable")[0]["patterns"][0]["requestStage"] == "Request"

    for request_id in ("1", "2", "3", "4"):
        client.emit("Fetch.requestPaused", {"requestId": request_id, "request": {"url": "https://x/a"}})

    assert _wait_for(lambda: test.mocks_error is not None and len(_fulfilled(client)) == 3)
    assert _fulfilled(client) == {"1": "R1", "2": "R2", "3": "R3"}
    assert isinstance(test.mocks_error, CacheMissError)
    session.close()


def test_mock_session_records_in_save_mode(tmp_path):
    test = TestContext(full_title="recording", browser_id="chrome", session_id="s1")
    store = Store(str(tmp_path), test, gzip_dumps=False)
    client = FakeCDPClient(responses={"Fetch.getResponseBody": {"body": "payload", "base64Encoded": False}})
    client.connect()
    session = MockSession(client, [MocksPattern("*", ["XHR"])], RunMode.SAVE, lambda: store)
    session.start()

    client.emit(
        "Fetch.requestPaused",
        {
            "requestId": "7",
            "request": {"url": "https://x/api"},
            "responseStatusCode": 200,
            "responseHeaders": [{"name": "Content-Type", "value": "application/json"}],
        },
    )

    assert _wait_for(lambda: "7" in _fulfilled(client))
    assert _fulfilled(client)["7"] == "payload"
    session.close()
    assert store.save_dump(overwrite=True) is True
    assert Store(str(tmp_path), test, gzip_dumps=False).get("https://x/api").body == "payload"


class SlowBodyClient(FakeCDPClient):
    """Serves response bodies by request id, delaying some of them."""

    def __init__(self, bodies, delays):
        super().__init__()
        self.bodies = bodies
        self.delays = delays

    def send_command(self, method, params=None):
        if method == "Fetch.getResponseBody":
            request_id = params["requestId"]
            time.sleep(self.delays.get(request_id, 0))
            self.commands.append((method, params))
            return {"body": self.bodies[request_id], "base64Encoded": False}
        return super().send_command(method, params)


def test_record_reserves_slot_before_fetching_body(fake_interceptor):
    store = FakeStore()
    interceptor = write_mode(FakeCDPClient(), [], lambda: store, executor=InlineExecutor())

    interceptor.handler(_response_event(request_id="1"), FakeApi())
    interceptor.handler(_response_event(request_id="2"), FakeApi())

    assert store.reserved == ["https://x/a", "https://x/a"]


def test_save_mode_keeps_arrival_order_when_bodies_finish_out_of_order(tmp_path):
    test = TestContext(full_title="slow first response", browser_id="chrome", session_id="s1")
    store = Store(str(tmp_path), test, gzip_dumps=False)
    client = SlowBodyClient(bodies={"1": "FIRST", "2": "SECOND"}, delays={"1": 0.3})
    client.connect()
    session = MockSession(client, [MocksPattern("*")], RunMode.SAVE, lambda: store, max_workers=2)
    session.start()

    for request_id in ("1", "2"):
        client.emit(
            "Fetch.requestPaused",
            {"requestId": request_id, "request": {"url": "https://x/a"}, "responseStatusCode": 200},
        )

    assert _wait_for(lambda: len(_fulfilled(client)) == 2)
    session.close()
    assert test.mocks_error is None
    assert store.save_dump(overwrite=True) is True

    replay = Store(str(tmp_path), test, gzip_dumps=False)
    assert [replay.get("https://x/a").body, replay.get("https://x/a").body] == ["FIRST", "SECOND"]
