import threading

import pytest

from conftest import FakeSession
from mineosctl.client import (
    ApiError, ApiKeyMissing, LogEntry, LogSource, ManagementClient, TransportError,
)
from mineosctl.logstream import LogStreamer


class FakeResponse:
    def __init__(self):
        self.closed = False
        self.interrupted = False

    def interrupt(self):
        self.interrupted = True

    def close(self):
        self.closed = True


class StreamClient:
    """Streams fixed entries; optionally waits on a gate before the last one."""

    def __init__(self, messages, error=None, gate=None):
        self.messages = messages
        self.error = error
        self.gate = gate
        self.opened = []
        self.response = FakeResponse()

    def open_console_stream(self, name, source):
        self.opened.append((name, source))
        return self.response

    def iter_console_logs(self, response, source):
        for index, message in enumerate(self.messages):
            if self.gate is not None and index == len(self.messages) - 1:
                self.gate.wait(5)
            yield LogEntry(message=message, source=source)
        if self.error is not None:
            raise self.error


def _streamer(client, error=None):
    return LogStreamer(FakeSession(client=client, error=error), poll_interval=0.01)


def test_entries_arrive_in_order_then_end():
    client = StreamClient(["A", "B", "C"])
    subscription = _streamer(client).open("alpha", LogSource.SERVER)

    assert [entry.message for entry in subscription] == ["A", "B", "C"]
    assert subscription.next_entry() is None
    assert client.opened == [("alpha", LogSource.SERVER)]


def test_generations_increase():
    streamer = _streamer(StreamClient([]))
    first = streamer.open("alpha")
    second = streamer.open("alpha")

    assert (first.generation, second.generation) == (1, 2)
    assert streamer.generation == 2


def test_transport_error_surfaces_once():
    client = StreamClient(["A"], error=TransportError("log stream failed: reset"))
    subscription = _streamer(client).open("alpha")

    assert subscription.next_entry().message == "A"
    with pytest.raises(TransportError, match="reset"):
        subscription.next_entry()
    assert subscription.next_entry() is None


def test_open_failure_surfaces_through_next_entry():
    subscription = _streamer(StreamClient(["A"]), error=ApiKeyMissing()).open("alpha")

    with pytest.raises(ApiKeyMissing):
        subscription.next_entry()
    assert subscription.next_entry() is None


def test_cancel_discards_later_entries():
    gate = threading.Event()
    client = StreamClient(["A", "B", "C"], gate=gate)
    subscription = _streamer(client).open("alpha")

    assert subscription.next_entry().message == "A"
    assert subscription.next_entry().message == "B"

    subscription.cancel()
    gate.set()

    assert subscription.cancelled
    assert client.response.interrupted
    assert subscription.next_entry() is None
    assert list(subscription) == []

    # The reader thread owns the close
    assert subscription.join(2)
    assert client.response.closed


def test_cancel_is_idempotent():
    subscription = _streamer(StreamClient(["A"])).open("alpha")
    subscription.cancel()
    subscription.cancel()
    assert subscription.cancelled
    assert subscription.next_entry() is None


def test_blank_server_name():
    with pytest.raises(ApiError):
        _streamer(StreamClient([])).open("  ")


def test_cancel_does_not_block_on_idle_stream(api_server):
    api_server.add_stream(
        "/api/v1/servers/alpha/console/stream?source=combined",
        'data: {"message": "hello"}\n\n',
    )
    client = ManagementClient(api_server.base_url, "secret", timeout=5)
    subscription = _streamer(client).open("alpha")
    assert subscription.next_entry().message == "hello"

    # The reader is now parked in a read on a quiet connection
    canceller = threading.Thread(target=subscription.cancel, daemon=True)
    canceller.start()
    canceller.join(1)

    assert not canceller.is_alive()
    assert subscription.join(2)
    assert subscription.next_entry() is None
