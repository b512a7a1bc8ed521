from __future__ import annotations

import base64
import io
import json
from email.message import Message
from urllib import error, parse
from urllib.request import Request

import pytest

from lt_common.errors import BackendError
from lt_runner.backends import ci_trigger as ci_mod
from lt_runner.backends.ci_trigger import CiClient, CiTriggerBackend
from lt_runner.models.config import CiTriggerBackendConfig
from lt_runner.models.events import EventType


pytestmark = [pytest.mark.unit_runner]

BASE = "http://ci.local"
JOB = f"{BASE}/job/performance-test/"
BUILD = f"{JOB}12/"
QUEUE = f"{BASE}/queue/item/5/"


class DummyResponse:
    def __init__(self, status: int, body: bytes | str = b"", headers: dict | None = None) -> None:
        self.status = status
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        self.headers = headers or {}

    def read(self) -> bytes:
        return self._body

    def __enter__(self) -> "DummyResponse":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False


def _not_found(url: str) -> error.HTTPError:
    return error.HTTPError(url, 404, "Not Found", Message(), io.BytesIO(b"missing"))


class FakeCiServer:
    """Scripted responses keyed by (method, url); lists are consumed in order."""

    def __init__(self, routes: dict) -> None:
        self.routes = routes
        self.requests: list[Request] = []

    def __call__(self, req: Request, timeout: float | None = None):
        self.requests.append(req)
        key = (req.get_method(), req.full_url)
        if key not in self.routes:
            raise _not_found(req.full_url)
        value = self.routes[key]
        if isinstance(value, list):
            value = value.pop(0) if len(value) > 1 else value[0]
        if isinstance(value, Exception):
            raise value
        return value


def _json(data: dict) -> DummyResponse:
    return DummyResponse(200, json.dumps(data))


@pytest.fixture
def config() -> CiTriggerBackendConfig:
    return CiTriggerBackendConfig(base_url=f"{BASE}/", username="bot", api_token="tok")


def _backend(config, **kwargs) -> CiTriggerBackend:
    kwargs.setdefault("sleep", lambda _seconds: None)
    return CiTriggerBackend(config, **kwargs)


def _happy_routes(build_result: str = "SUCCESS") -> dict:
    return {
        ("POST", f"{JOB}buildWithParameters"): DummyResponse(201, headers={"Location": f"{BASE}/queue/item/5"}),
        ("GET", f"{QUEUE}api/json"): [_json({}), _json({"executable": {"number": 12}})],
        ("GET", f"{BUILD}logText/progressiveText?start=0"): DummyResponse(
            200, "Started\nsummary = 10", {"X-Text-Size": "20"}
        ),
        ("GET", f"{BUILD}logText/progressiveText?start=20"): DummyResponse(
            200, " in 00:01\n", {"X-Text-Size": "30"}
        ),
        ("GET", f"{BUILD}logText/progressiveText?start=30"): DummyResponse(
            200, "", {"X-Text-Size": "30"}
        ),
        ("GET", f"{BUILD}api/json"): [
            _json({"building": True}),
            _json({"building": False, "result": build_result}),
        ],
        ("GET", f"{BUILD}artifact/results.csv"): DummyResponse(200, "timeStamp,elapsed,label\n"),
    }


def test_client_requires_http_scheme() -> None:
    with pytest.raises(ValueError):
        CiClient(base_url="file:///tmp/ci")


def test_client_sends_basic_auth(monkeypatch) -> None:
    server = FakeCiServer({("GET", f"{BASE}/api/json"): _json({"ok": True})})
    monkeypatch.setattr(ci_mod.request, "urlopen", server)

    response = CiClient(base_url=BASE, username="bot", api_token="tok").request("GET", "/api/json")

    assert response.json() == {"ok": True}
    expected = "Basic " + base64.b64encode(b"bot:tok").decode("ascii")
    assert server.requests[0].get_header("Authorization") == expected


def test_client_raises_on_unexpected_status(monkeypatch) -> None:
    monkeypatch.setattr(ci_mod.request, "urlopen", FakeCiServer({}))
    with pytest.raises(BackendError, match="404"):
        CiClient(base_url=BASE).request("GET", "/missing")


def test_successful_build(monkeypatch, config, make_context, tmp_path) -> None:
    server = FakeCiServer(_happy_routes())
    monkeypatch.setattr(ci_mod.request, "urlopen", server)
    context = make_context(job_id=4, env="qa")

    events = list(_backend(config).execute(context))

    trigger = server.requests[0]
    form = dict(parse.parse_qsl(trigger.data.decode()))
    assert form["SCRIPT_PATH"] == str(context.script_path)
    assert form["USER_COUNT"] == "5"
    assert form["DURATION_SECONDS"] == "60"
    assert form["RAMP_UP_SECONDS"] == "10"
    assert form["env"] == "qa"

    messages = [e.data["message"] for e in events if e.type is EventType.LOG]
    assert "Started" in messages
    assert "summary = 10 in 00:01" in messages

    complete = events[-1]
    assert complete.type is EventType.COMPLETE
    assert complete.data["exitCode"] == 0
    assert complete.data["buildNumber"] == 12
    assert complete.data["buildResult"] == "SUCCESS"
    assert complete.data["ciUrl"] == BUILD
    assert context.result_path.read_text() == "timeStamp,elapsed,label\n"
    assert "summary = 10 in 00:01" in context.log_path.read_text()


def test_failed_build_result_maps_to_exit_one(monkeypatch, config, make_context) -> None:
    monkeypatch.setattr(ci_mod.request, "urlopen", FakeCiServer(_happy_routes("FAILURE")))
    events = list(_backend(config).execute(make_context()))
    assert events[-1].data["exitCode"] == 1
    assert events[-1].data["buildResult"] == "FAILURE"


def test_missing_artifact_is_only_a_warning(monkeypatch, config, make_context) -> None:
    routes = _happy_routes()
    del routes[("GET", f"{BUILD}artifact/results.csv")]
    monkeypatch.setattr(ci_mod.request, "urlopen", FakeCiServer(routes))

    events = list(_backend(config).execute(make_context()))

    assert events[-1].data["exitCode"] == 0
    assert events[-1].data["resultFilePath"] is None
    assert any(
        e.type is EventType.LOG and e.data["level"] == "warn" and "results.csv" in e.data["message"]
        for e in events
    )


def test_build_number_timeout(monkeypatch, config, make_context) -> None:
    routes = _happy_routes()
    routes[("GET", f"{QUEUE}api/json")] = [_json({"why": "waiting"})]
    monkeypatch.setattr(ci_mod.request, "urlopen", FakeCiServer(routes))
    ticks = iter(range(0, 10_000, 100))

    backend = _backend(config, queue_timeout=300, clock=lambda: float(next(ticks)))
    events = list(backend.execute(make_context()))

    assert events[-2].type is EventType.ERROR
    assert "did not start" in events[-2].data["message"]
    assert events[-1].data["exitCode"] == 1


def test_trigger_without_location_fails(monkeypatch, config, make_context) -> None:
    routes = {("POST", f"{JOB}buildWithParameters"): DummyResponse(201)}
    monkeypatch.setattr(ci_mod.request, "urlopen", FakeCiServer(routes))
    events = list(_backend(config).execute(make_context()))
    assert events[-1].data["exitCode"] == 1
    assert "queue item location" in events[-1].data["error"]


def test_cancel_posts_stop_for_active_build(monkeypatch, config, make_context) -> None:
    routes = _happy_routes()
    routes[("POST", f"{BUILD}stop")] = DummyResponse(200)
    server = FakeCiServer(routes)
    monkeypatch.setattr(ci_mod.request, "urlopen", server)
    backend = _backend(config)

    stream = backend.execute(make_context(job_id=9))
    for event in stream:
        if event.type is EventType.PHASE and event.data["phase"] == "executing":
            backend.cancel(9)
            break
    stream.close()

    assert ("POST", f"{BUILD}stop") in [(r.get_method(), r.full_url) for r in server.requests]


def test_console_tail_is_read_after_build_stops(monkeypatch, config, make_context) -> None:
    routes = _happy_routes()
    routes[("GET", f"{BUILD}logText/progressiveText?start=0")] = DummyResponse(
        200, "Started\n", {"X-Text-Size": "8"}
    )
    routes[("GET", f"{BUILD}logText/progressiveText?start=8")] = DummyResponse(
        200, "Finished: SUCCESS\n", {"X-Text-Size": "26"}
    )
    routes[("GET", f"{BUILD}api/json")] = [_json({"building": False, "result": "SUCCESS"})]
    monkeypatch.setattr(ci_mod.request, "urlopen", FakeCiServer(routes))
    context = make_context()

    events = list(_backend(config).execute(context))

    messages = [e.data["message"] for e in events if e.type is EventType.LOG]
    assert messages.index("Finished: SUCCESS") < messages.index("Build finished with result SUCCESS")
    assert context.log_path.read_text() == "Started\nFinished: SUCCESS\n"


def test_cancel_while_queued_drops_queue_item(monkeypatch, config, make_context) -> None:
    routes = _happy_routes()
    routes[("GET", f"{QUEUE}api/json")] = [_json({"why": "waiting"}), _json({"cancelled": True})]
    routes[("POST", f"{BASE}/queue/cancelItem?id=5")] = DummyResponse(204)
    server = FakeCiServer(routes)
    monkeypatch.setattr(ci_mod.request, "urlopen", server)
    backend = _backend(config, sleep=lambda _seconds: backend.cancel(3))

    events = list(backend.execute(make_context(job_id=3)))

    calls = [(r.get_method(), r.full_url) for r in server.requests]
    assert ("POST", f"{BASE}/queue/cancelItem?id=5") in calls
    assert ("POST", f"{BUILD}stop") not in calls
    assert "queue item was cancelled" in events[-1].data["error"]
    assert events[-1].data["exitCode"] == 1


def test_cancel_during_queue_hand_over_stops_build(monkeypatch, config, make_context) -> None:
    routes = _happy_routes()
    routes[("POST", f"{BASE}/queue/cancelItem?id=5")] = DummyResponse(302)
    routes[("POST", f"{BUILD}stop")] = DummyResponse(200)
    server = FakeCiServer(routes)
    monkeypatch.setattr(ci_mod.request, "urlopen", server)
    cancelled: list[int] = []

    def _sleep(_seconds: float) -> None:
        if not cancelled:
            cancelled.append(3)
            backend.cancel(3)

    backend = _backend(config, sleep=_sleep)
    list(backend.execute(make_context(job_id=3)))

    calls = [(r.get_method(), r.full_url) for r in server.requests]
    assert calls.count(("POST", f"{BUILD}stop")) == 1
    assert calls.index(("POST", f"{BASE}/queue/cancelItem?id=5")) < calls.index(("POST", f"{BUILD}stop"))


def test_health_check(monkeypatch, config) -> None:
    monkeypatch.setattr(
        ci_mod.request,
        "urlopen",
        FakeCiServer({("GET", f"{JOB}api/json"): _json({"name": "performance-test"})}),
    )
    status = _backend(config).health_check()
    assert status.ok
    assert "performance-test" in status.message

    monkeypatch.setattr(ci_mod.request, "urlopen", FakeCiServer({}))
    assert not _backend(config).health_check().ok
