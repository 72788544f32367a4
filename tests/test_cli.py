"""
Tests for the command line front end.
"""

import io
import os
from unittest.mock import MagicMock

import pytest

from apache2buddy import VERSION, cli
from apache2buddy.cli import Apache2Buddy, Options, parse_args
from apache2buddy.console import Console
from apache2buddy.errors import ConfigurationError, MemoryDiscoveryError, StatusUnavailableError
from apache2buddy.logs import HistoryLog
from apache2buddy.models import (
    ApacheConfig,
    LogAnalysis,
    ProcessMemoryReading,
    Service,
    ServiceUsage,
    SystemMemory,
    Uptime,
)


class TestParseArgs:

    def test_defaults(self):
        options = parse_args([])
        assert options == Options()
        assert options.log_file == "/var/log/apache2buddy.log"

    def test_report_implies_quiet_flags(self):
        options = parse_args(["-r"])
        assert options.noheader and options.noinfo and options.nonews
        assert options.nowarn and options.no_ok
        assert options.skip_maxclients and options.skip_php_fatal
        assert not options.skip_status

    def test_repeatable_status_url(self):
        options = parse_args(["--status-url", "http://a/s?auto", "--status-url", "http://b/s?auto", "-p", "8080"])
        assert options.status_urls == ("http://a/s?auto", "http://b/s?auto")
        assert options.port == 8080

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc:
            parse_args(["--version"])
        assert exc.value.code == 0
        assert VERSION in capsys.readouterr().out


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr(os, "geteuid", lambda: 0)


def collaborators(readings, memory=SystemMemory(total_mb=4096, available_mb=1900),
                  config=ApacheConfig(configured_limit=40), services=()):
    system = MagicMock()
    system.missing_commands.return_value = []
    system.system_memory.return_value = memory
    system.detect_control_panel.return_value = ""
    system.detect_services.return_value = list(services)

    processes = MagicMock()
    processes.find_apache_processes.return_value = readings
    processes.find_parent_pid.return_value = 812
    processes.parent_uptime.return_value = Uptime(days=5)

    config_reader = MagicMock()
    config_reader.load.return_value = config

    status_client = MagicMock()
    status_client.fetch.side_effect = StatusUnavailableError("mod_status not accessible")

    log_scanner = MagicMock()
    log_scanner.analyze.return_value = LogAnalysis()

    return dict(system=system, processes=processes, config_reader=config_reader,
                status_client=status_client, log_scanner=log_scanner)


def buddy(tmp_path, options=None, **parts):
    options = options or Options(noheader=True, log_file=str(tmp_path / "apache2buddy.log"))
    stream = io.StringIO()
    console = Console(no_color=True, stream=stream)
    history = HistoryLog(console, options.log_file)
    return Apache2Buddy(options, console=console, history=history, **parts), stream


READINGS = [ProcessMemoryReading(1402, 30.0, "www-data"), ProcessMemoryReading(1403, 25.0, "www-data")]


class TestRun:

    def test_ok_run(self, tmp_path, as_root):
        app, stream = buddy(tmp_path, **collaborators(READINGS))
        assert app.run() == 0
        output = stream.getvalue()
        assert "within an acceptable range" in output
        assert "IMPORTANT MESSAGE" in output
        assert 'Status: "OK"' in (tmp_path / "apache2buddy.log").read_text()

    def test_services_reduce_memory(self, tmp_path, as_root):
        parts = collaborators(READINGS, services=[ServiceUsage(Service.MYSQL, 700)])
        app, stream = buddy(tmp_path, **parts)
        assert app.run() == 1
        assert "between 36 and 40" in stream.getvalue()

    def test_critical_exit_code(self, tmp_path, as_root):
        app, _ = buddy(tmp_path, **collaborators(READINGS, config=ApacheConfig(configured_limit=500)))
        assert app.run() == 2

    def test_no_processes_is_error(self, tmp_path, as_root):
        app, stream = buddy(tmp_path, **collaborators([]))
        assert app.run() == 2
        output = stream.getvalue()
        assert "No Apache worker processes found" in output
        assert "No processes to analyze" in output

    def test_config_error_uses_defaults(self, tmp_path, as_root):
        parts = collaborators(READINGS)
        parts["config_reader"].load.side_effect = ConfigurationError("Apache config file not found")
        app, stream = buddy(tmp_path, **parts)
        assert app.run() == 2
        assert "using Apache defaults" in stream.getvalue()

    def test_skip_flags(self, tmp_path, as_root):
        options = Options(noheader=True, skip_status=True, skip_maxclients=True, skip_php_fatal=True,
                          log_file=str(tmp_path / "apache2buddy.log"))
        parts = collaborators(READINGS)
        app, _ = buddy(tmp_path, options=options, **parts)
        app.run()
        parts["status_client"].fetch.assert_not_called()
        parts["log_scanner"].analyze.assert_not_called()

    def test_uptime_from_pid_file(self, tmp_path, as_root):
        pid_file = tmp_path / "apache2.pid"
        pid_file.write_text("4242\n")
        parts = collaborators(READINGS, config=ApacheConfig(configured_limit=40, pid_file=str(pid_file)))
        app, _ = buddy(tmp_path, **parts)
        app.run()
        parts["processes"].parent_uptime.assert_called_once_with(4242)
        parts["processes"].find_parent_pid.assert_not_called()

    def test_not_root(self, tmp_path, monkeypatch):
        monkeypatch.setattr(os, "geteuid", lambda: 1000)
        app, stream = buddy(tmp_path, **collaborators(READINGS))
        assert app.run() == 1
        assert "must be run as root" in stream.getvalue()

    def test_missing_commands(self, tmp_path, as_root):
        parts = collaborators(READINGS)
        parts["system"].missing_commands.return_value = ["ps"]
        app, stream = buddy(tmp_path, **parts)
        assert app.run() == 1
        assert "Required commands not found: ps" in stream.getvalue()

    def test_history(self, tmp_path):
        log = tmp_path / "apache2buddy.log"
        log.write_text("one\ntwo\nthree\n")
        options = Options(history=2, log_file=str(log))
        app, stream = buddy(tmp_path, options=options, **collaborators(READINGS))
        assert app.run() == 0
        assert stream.getvalue() == "two\nthree\n"

    def test_history_missing(self, tmp_path):
        options = Options(history=2, log_file=str(tmp_path / "missing.log"))
        app, stream = buddy(tmp_path, options=options, **collaborators(READINGS))
        assert app.run() == 1
        assert "Cannot read" in stream.getvalue()


class TestMain:

    def test_tool_error_is_reported(self, monkeypatch, capsys):
        def fail(self):
            raise MemoryDiscoveryError("Cannot read /proc/meminfo")

        monkeypatch.setattr(cli.Apache2Buddy, "run", fail)
        assert cli.main(["-n", "--skip-status"]) == 1
        assert "[ !! ] Cannot read /proc/meminfo" in capsys.readouterr().out

    def test_keyboard_interrupt(self, monkeypatch, capsys):
        def interrupt(self):
            raise KeyboardInterrupt

        monkeypatch.setattr(cli.Apache2Buddy, "run", interrupt)
        assert cli.main(["-n"]) == 1
        assert "Operation cancelled by user" in capsys.readouterr().out

    def test_unexpected_error_is_reported(self, monkeypatch, capsys):
        def fail(self):
            raise UnicodeDecodeError("utf-8", b"\xe9", 0, 1, "invalid continuation byte")

        monkeypatch.setattr(cli.Apache2Buddy, "run", fail)
        assert cli.main(["-n", "--skip-status"]) == 1
        out = capsys.readouterr()
        assert "[ !! ] Unexpected error:" in out.out
        assert "Traceback" not in out.err

    def test_unexpected_error_traceback_in_verbose_mode(self, monkeypatch, capsys):
        def fail(self):
            raise RuntimeError("boom")

        monkeypatch.setattr(cli.Apache2Buddy, "run", fail)
        assert cli.main(["-n", "-v"]) == 1
        out = capsys.readouterr()
        assert "[ !! ] Unexpected error: boom" in out.out
        assert "RuntimeError: boom" in out.err

    def test_status_session_closed(self, monkeypatch):
        closed = []
        monkeypatch.setattr(cli.Apache2Buddy, "run", lambda self: 0)
        monkeypatch.setattr(cli.StatusClient, "close", lambda self: closed.append(True))
        assert cli.main(["-n"]) == 0
        assert closed == [True]
