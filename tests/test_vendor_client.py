from __future__ import annotations

import hashlib
import json
import threading
import time
from typing import Any, Callable, Dict, List

import httpx
import pytest

from tripsync.Core.exceptions import (
    ConfigurationError,
    RateLimitError,
    TransientUpstreamError,
    VendorApiError,
    VendorAuthError,
)
from tripsync.Services.vendor_client import Gps51Client

from conftest import at

LOGIN_OK = {"status": 0, "token": "tok-1", "serverid": "7"}


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(round(seconds, 3))
        self.now += seconds


def make_client(handler: Callable[[httpx.Request], httpx.Response], **kwargs) -> Gps51Client:
    clock = kwargs.pop("clock", FakeClock())
    return Gps51Client(
        "https://gps51.test/openapi",
        "fleet",
        "secret",
        transport=httpx.MockTransport(handler),
        sleep=clock.sleep,
        clock=clock,
        **kwargs,
    )


def recording_handler(responses: Dict[str, List[Any]], seen: List[httpx.Request]):
    """Serve queued responses per action; a dict becomes a 200 JSON body."""

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        queue = responses[request.url.params["action"]]
        reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, httpx.Response):
            return reply
        return httpx.Response(200, json=reply)

    return handler


def actions(seen: List[httpx.Request]) -> List[str]:
    return [r.url.params["action"] for r in seen]


def test_login_sends_md5_password_and_keeps_token() -> None:
    seen: List[httpx.Request] = []
    client = make_client(recording_handler({"login": [LOGIN_OK]}, seen))

    assert client.login() == "tok-1"

    body = json.loads(seen[0].content)
    assert body["password"] == hashlib.md5(b"secret").hexdigest()
    assert client.server_id == "7"


def test_query_track_formats_window_in_vendor_timezone() -> None:
    seen: List[httpx.Request] = []
    records = [{"deviceid": "V1", "gpstime": 1741593600000}]
    client = make_client(recording_handler({"login": [LOGIN_OK], "querytracks": [{"status": 0, "records": records}]}, seen))

    result = client.query_track("V1", at(0, 0), at(6, 0))

    assert result == records
    assert actions(seen) == ["login", "querytracks"]
    request = seen[1]
    assert request.url.params["token"] == "tok-1"
    assert request.url.params["serverid"] == "7"
    body = json.loads(request.content)
    assert body["begintime"] == "2025-03-10 08:00:00"
    assert body["endtime"] == "2025-03-10 14:00:00"
    assert body["timezone"] == 8


def test_last_positions_reads_nested_records() -> None:
    seen: List[httpx.Request] = []
    payload = {"status": 0, "data": {"records": [{"deviceid": "V1"}, {"deviceid": "V2"}]}}
    client = make_client(recording_handler({"login": [LOGIN_OK], "lastposition": [payload]}, seen))

    assert [r["deviceid"] for r in client.last_positions(["V1", "V2"])] == ["V1", "V2"]
    assert json.loads(seen[1].content)["deviceids"] == ["V1", "V2"]


def test_expired_token_triggers_one_relogin() -> None:
    seen: List[httpx.Request] = []
    responses = {
        "login": [LOGIN_OK, {"status": 0, "token": "tok-2", "serverid": "7"}],
        "querytracks": [{"status": 9903, "cause": "token expired"}, {"status": 0, "records": []}],
    }
    client = make_client(recording_handler(responses, seen))

    assert client.query_track("V1", at(0, 0), at(1, 0)) == []
    assert actions(seen) == ["login", "querytracks", "login", "querytracks"]
    assert seen[-1].url.params["token"] == "tok-2"


def test_token_expired_twice_surfaces_auth_error() -> None:
    seen: List[httpx.Request] = []
    responses = {"login": [LOGIN_OK], "querytracks": [{"status": 9906, "cause": "token invalid"}]}
    client = make_client(recording_handler(responses, seen))

    with pytest.raises(VendorAuthError):
        client.query_track("V1", at(0, 0), at(1, 0))
    assert actions(seen).count("login") == 2


def test_rejected_login_is_auth_error() -> None:
    client = make_client(recording_handler({"login": [{"status": 1, "cause": "bad password"}]}, []))
    with pytest.raises(VendorAuthError):
        client.login()


def test_rate_limit_status_code() -> None:
    responses = {"login": [LOGIN_OK], "querytracks": [{"status": 8902, "cause": "ip limit"}]}
    client = make_client(recording_handler(responses, []))

    with pytest.raises(RateLimitError) as exc_info:
        client.query_track("V1", at(0, 0), at(1, 0))
    assert exc_info.value.code == 8902


def test_http_429_is_rate_limit() -> None:
    responses = {"login": [LOGIN_OK], "querytracks": [httpx.Response(429, text="slow down")]}
    client = make_client(recording_handler(responses, []))

    with pytest.raises(RateLimitError):
        client.query_track("V1", at(0, 0), at(1, 0))


@pytest.mark.parametrize(
    "reply",
    [
        httpx.Response(502, text="bad gateway"),
        httpx.Response(200, text="<html>maintenance</html>"),
    ],
)
def test_server_errors_and_garbage_are_transient(reply) -> None:
    responses = {"login": [LOGIN_OK], "querytracks": [reply]}
    client = make_client(recording_handler(responses, []))

    with pytest.raises(TransientUpstreamError):
        client.query_track("V1", at(0, 0), at(1, 0))


def test_network_failure_is_transient() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    with pytest.raises(TransientUpstreamError):
        client.login()


def test_other_status_is_vendor_api_error() -> None:
    responses = {"login": [LOGIN_OK], "querytracks": [{"status": 3, "cause": "device not found"}]}
    client = make_client(recording_handler(responses, []))

    with pytest.raises(VendorApiError) as exc_info:
        client.query_track("V1", at(0, 0), at(1, 0))
    assert not isinstance(exc_info.value, (RateLimitError, VendorAuthError))
    assert exc_info.value.code == 3


def test_calls_are_paced() -> None:
    clock = FakeClock()
    responses = {"login": [LOGIN_OK], "querytracks": [{"status": 0, "records": []}]}
    client = make_client(recording_handler(responses, []), clock=clock, min_interval_s=0.5)

    client.query_track("V1", at(0, 0), at(1, 0))
    clock.now += 0.2
    client.query_track("V1", at(1, 0), at(2, 0))

    assert clock.sleeps == [0.5, 0.3]


def test_from_settings_requires_credentials() -> None:
    with pytest.raises(ConfigurationError):
        Gps51Client.from_settings()


def test_concurrent_callers_share_one_login_and_pacing() -> None:
    seen: List[httpx.Request] = []
    sent_at: List[float] = []
    lock = threading.Lock()
    responses = {"login": [LOGIN_OK], "querytracks": [{"status": 0, "records": []}]}
    serve = recording_handler(responses, seen)

    def handler(request: httpx.Request) -> httpx.Response:
        with lock:
            sent_at.append(time.monotonic())
            return serve(request)

    client = Gps51Client(
        "https://gps51.test/openapi", "fleet", "secret",
        transport=httpx.MockTransport(handler), min_interval_s=0.05,
    )
    workers = [
        threading.Thread(target=client.query_track, args=("V1", at(hour, 0), at(hour + 1, 0)))
        for hour in range(4)
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(timeout=5)

    assert actions(seen).count("login") == 1
    assert actions(seen).count("querytracks") == 4
    # login + 4 tracks: four paced intervals
    assert max(sent_at) - min(sent_at) >= 4 * 0.05 - 0.02
