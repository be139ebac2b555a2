import json
from datetime import datetime, timezone

import pytest

from mineosctl.client import (
    ApiError, ApiKeyInvalid, ApiKeyMissing, LogSource, ManagementClient,
    TransportError, parse_log_timestamp, parse_sse_lines,
)


def _client(api_server, key="secret") -> ManagementClient:
    return ManagementClient(api_server.base_url, key, timeout=5)


def test_list_servers_sends_key(api_server):
    api_server.add("GET", "/api/v1/servers/list", body=[
        {"name": "beta", "status": "stopped"},
        {"name": "alpha", "status": "running"},
    ])

    servers = _client(api_server).list_servers()

    assert [(s.name, s.status) for s in servers] == [("beta", "stopped"), ("alpha", "running")]
    assert api_server.requests[0]["headers"].get("X-Api-Key") == "secret"


def test_missing_key_fails_before_request(api_server):
    with pytest.raises(ApiKeyMissing):
        _client(api_server, key="  ").list_servers()
    assert api_server.requests == []


@pytest.mark.parametrize("status", [401, 403])
def test_rejected_key(api_server, status):
    api_server.add("GET", "/api/v1/servers/list", status=status, body="nope", content_type="text/plain")
    with pytest.raises(ApiKeyInvalid):
        _client(api_server).list_servers()


def test_error_body_in_message(api_server):
    api_server.add("POST", "/api/v1/servers/alpha/actions/start", status=409,
                   body="already running", content_type="text/plain")
    with pytest.raises(ApiError, match="server action failed: already running"):
        _client(api_server).server_action("alpha", "start")


def test_empty_error_body(api_server):
    api_server.add("POST", "/api/v1/servers/alpha/actions/stop", status=500, body="", content_type="text/plain")
    with pytest.raises(ApiError, match=r"\(empty response\)"):
        _client(api_server).server_action("alpha", "stop")


def test_server_action_escapes_name(api_server):
    api_server.add("POST", "/api/v1/servers/my%20world/actions/restart", body="")
    _client(api_server).server_action("my world", "restart")
    assert api_server.requests[0]["path"] == "/api/v1/servers/my%20world/actions/restart"


def test_blank_arguments_rejected_before_request(api_server):
    client = _client(api_server)
    with pytest.raises(ApiError):
        client.server_action(" ", "start")
    with pytest.raises(ApiError):
        client.send_console_command("alpha", "   ")
    assert api_server.requests == []


def test_stop_all(api_server):
    api_server.add("POST", "/api/v1/servers/actions/stop-all?timeoutSeconds=60", body={
        "total": 3,
        "running": 2,
        "stopped": 2,
        "skipped": 1,
        "results": [
            {"name": "alpha", "status": "stopped"},
            {"name": "beta", "status": "stopped"},
            {"name": "gamma", "status": "skipped"},
        ],
    })

    result = _client(api_server).stop_all(60)

    assert (result.total, result.running, result.stopped, result.skipped) == (3, 2, 2, 1)
    assert [item.name for item in result.results] == ["alpha", "beta", "gamma"]
    assert result.failures == []
    assert result.summary() == "Total: 3, running: 2, stopped: 2, skipped: 1"


def test_console_command_body(api_server):
    api_server.add("POST", "/api/v1/servers/alpha/console", body="")
    _client(api_server).send_console_command("alpha", "say hello")
    assert json.loads(api_server.requests[0]["body"]) == {"command": "say hello"}


def test_health_does_not_need_key(api_server):
    api_server.add("GET", "/api/v1/health", body={"status": "ok"})
    client = _client(api_server, key="")
    client.health()
    assert client.is_healthy()
    assert "X-Api-Key" not in api_server.requests[0]["headers"]


def test_unhealthy(api_server):
    api_server.add("GET", "/api/v1/health", status=503, body="starting", content_type="text/plain")
    assert not _client(api_server).is_healthy()


def test_invalid_json(api_server):
    api_server.add("GET", "/api/v1/servers/list", body="{not json", content_type="application/json")
    with pytest.raises(ApiError, match="Invalid JSON"):
        _client(api_server).list_servers()


def test_unreachable():
    # Port 9 (discard) is closed on test hosts
    client = ManagementClient("http://127.0.0.1:9", "key", timeout=2)
    with pytest.raises(TransportError):
        client.list_servers()
    assert not client.is_healthy()


def test_console_stream(api_server):
    body = (
        ": keep-alive\n"
        "event: log\n"
        'data: {"timestamp": "2024-05-01T12:00:00Z", "message": "Done (3.2s)!"}\n'
        "\n"
        "data: \n"
        "data: not-json\n"
        'data: {"message": "no timestamp"}\n'
    )
    api_server.add("GET", "/api/v1/servers/alpha/console/stream?source=java",
                   body=body, content_type="text/event-stream")

    client = _client(api_server)
    response = client.open_console_stream("alpha", LogSource.JAVA)
    try:
        entries = list(client.iter_console_logs(response, LogSource.JAVA))
    finally:
        response.close()

    assert [e.message for e in entries] == ["Done (3.2s)!", "no timestamp"]
    assert entries[0].timestamp == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    assert entries[0].source == LogSource.JAVA
    assert entries[0].render() == "[2024-05-01T12:00:00+00:00] Done (3.2s)!"
    assert entries[1].render() == "no timestamp"


def test_parse_sse_lines_source_override():
    lines = ['data: {"message": "x", "source": "crash"}\n']
    (entry,) = list(parse_sse_lines(lines, LogSource.COMBINED))
    assert entry.source == LogSource.CRASH


@pytest.mark.parametrize("value, expected", [
    ("2024-05-01T12:00:00.1234567Z", datetime(2024, 5, 1, 12, 0, 0, 123456, tzinfo=timezone.utc)),
    ("0001-01-01T00:00:00", None),
    ("", None),
    ("yesterday", None),
    (None, None),
])
def test_parse_log_timestamp(value, expected):
    assert parse_log_timestamp(value) == expected


def test_log_source_cycle_and_parse():
    order = [LogSource.COMBINED]
    for _ in range(4):
        order.append(order[-1].next())
    assert [s.value for s in order] == ["combined", "server", "java", "crash", "combined"]

    assert LogSource.parse("") == LogSource.COMBINED
    assert LogSource.parse(" Server ") == LogSource.SERVER
    with pytest.raises(ValueError, match="unknown log source"):
        LogSource.parse("stderr")
