import pytest

from conftest import FakeClient, FakeSession
from mineosctl.client import LogEntry
from mineosctl.shell import Shell


class OneShotStreamer:
    def __init__(self, entries):
        self.entries = entries
        self.opened = []
        self.subscription = None

    def open(self, server, source):
        self.opened.append((server, source))
        streamer = self

        class Subscription:
            cancelled = False

            def __iter__(self):
                return iter(streamer.entries)

            def cancel(self):
                self.cancelled = True

        self.subscription = Subscription()
        return self.subscription


@pytest.fixture
def shell():
    client = FakeClient(servers=[("beta", "running"), ("alpha", "stopped")])
    return Shell(FakeSession(client=client), OneShotStreamer([LogEntry("hello")]))


def test_list_marks_selection(shell, capsys):
    shell.process_command("use beta")
    shell.process_command("ls")
    out = capsys.readouterr().out.splitlines()
    assert out[-2:] == ["  alpha\tstopped", "* beta\trunning"]
    assert shell.prompt == "[mineos:beta] > "


def test_use_unknown_server(shell, capsys):
    shell.process_command("use nope")
    assert shell.current is None
    assert "Unknown server" in capsys.readouterr().out


def test_action_uses_selected_server(shell):
    shell.process_command("use alpha")
    shell.process_command("start")
    shell.process_command("kill beta")
    calls = [c for c in shell.session.fake.calls if c[0] == "server_action"]
    assert calls == [("server_action", "alpha", "start"), ("server_action", "beta", "kill")]


def test_action_without_selection(shell, capsys):
    shell.process_command("restart")
    assert "No server selected" in capsys.readouterr().out
    assert not any(c[0] == "server_action" for c in shell.session.fake.calls)


def test_console_requires_selection(shell, capsys):
    shell.process_command("console say hi")
    assert "No server selected" in capsys.readouterr().out

    shell.process_command("use alpha")
    shell.process_command("console say hi there")
    assert ("console", "alpha", "say hi there") in shell.session.fake.calls


def test_stop_all_budget(shell):
    shell.process_command("stop-all")
    shell.process_command("stop-all 30")
    calls = [c for c in shell.session.fake.calls if c[0] == "stop_all"]
    assert calls == [("stop_all", 300), ("stop_all", 30)]


def test_logs_follow_and_cancel(shell, capsys):
    shell.process_command("logs alpha java")
    assert "hello" in capsys.readouterr().out
    assert shell.streamer.opened[0][0] == "alpha"
    assert shell.streamer.opened[0][1].value == "java"
    assert shell.streamer.subscription.cancelled


def test_quit(shell):
    shell._running = True
    shell.process_command("exit")
    assert not shell._running


def test_unknown_command(shell, capsys):
    shell.process_command("frobnicate")
    assert "Unknown command" in capsys.readouterr().out
