"""
Tests for error log scanning and the history log.
"""

import os

import pytest

from apache2buddy.logs import HistoryLog, LogScanner, format_history_entry, scan_lines
from apache2buddy.models import ApacheConfig, LogAnalysis, MemoryStats, Recommendation, Severity, SystemMemory

ERROR_LOG = [
    "[Mon Oct 13 10:00:00.000 2026] [mpm_prefork:error] [pid 812] AH00161: server reached MaxRequestWorkers setting, consider raising the MaxRequestWorkers setting\n",
    "[Mon Oct 13 10:01:00.000 2026] [php7:error] [pid 1402] PHP Fatal error:  Allowed memory size exhausted in /var/www/index.php on line 3\n",
    "[Mon Oct 13 10:02:00.000 2026] [core:notice] [pid 812] AH00094: Command line: '/usr/sbin/apache2'\n",
    "[Mon Oct 13 10:03:00.000 2026] [php7:error] [pid 1403] PHP Parse error:  syntax error in /var/www/a.php\n",
]


class TestScanLines:

    def test_counts(self):
        analysis = scan_lines(ERROR_LOG, log_file="error.log")
        assert analysis.max_clients_hits == 1
        assert analysis.php_fatal_errors == 2
        assert analysis.analyzed_lines == 4
        assert len(analysis.recent_errors) == 2
        assert analysis.recent_errors[0].endswith("on line 3")

    def test_only_last_five_errors_kept(self):
        lines = ["PHP Fatal error: number {}\n".format(i) for i in range(8)]
        analysis = scan_lines(lines)
        assert analysis.php_fatal_errors == 8
        assert analysis.recent_errors == tuple("PHP Fatal error: number {}".format(i) for i in range(3, 8))

    def test_checks_can_be_disabled(self):
        analysis = scan_lines(ERROR_LOG, check_maxclients=False, check_php=False)
        assert analysis.max_clients_hits == 0
        assert analysis.php_fatal_errors == 0

    def test_legacy_maxclients_message(self):
        line = "[error] server reached MaxClients setting, consider raising the MaxClients setting"
        assert scan_lines([line]).max_clients_hits == 1


class TestLogScanner:

    def test_first_readable_log(self, tmp_path, console):
        log = tmp_path / "error.log"
        log.write_text("".join(ERROR_LOG))
        scanner = LogScanner(console, paths=[str(tmp_path / "missing.log"), str(log)])
        analysis = scanner.analyze()
        assert analysis.log_file == str(log)
        assert analysis.max_clients_hits == 1

    def test_only_tail_scanned(self, tmp_path, console):
        log = tmp_path / "error.log"
        log.write_text(ERROR_LOG[0] + "filler\n" * 20)
        analysis = LogScanner(console, paths=[str(log)], max_lines=10).analyze()
        assert analysis.analyzed_lines == 10
        assert analysis.max_clients_hits == 0

    def test_dev_symlink_skipped(self, tmp_path, console, stream):
        link = tmp_path / "error.log"
        os.symlink("/dev/stderr", str(link))
        assert LogScanner(console, paths=[str(link)]).analyze() == LogAnalysis()
        assert "containerized" in stream.getvalue()

    def test_no_logs(self, tmp_path, console):
        assert LogScanner(console, paths=[str(tmp_path / "none")]).analyze() == LogAnalysis()


RECOMMENDATION = Recommendation(current_limit=150, min_safe_limit=45, max_safe_limit=50,
                                conservative_recommendation=45, severity=Severity.CRITICAL)
STATS = MemoryStats(smallest_mb=20.0, largest_mb=30.0, average_mb=25.0, total_mb=75.0, process_count=3)
MEMORY = SystemMemory(total_mb=4096, available_mb=1500)
CONFIG = ApacheConfig(configured_limit=150, mpm_name="prefork")


class TestHistory:

    def test_entry_format(self):
        entry = format_history_entry(RECOMMENDATION, STATS, MEMORY, CONFIG, timestamp="2026/10/17 09:30:00")
        assert entry == ('2026/10/17 09:30:00 Memory: "1500 MB" MaxClients: "150" Recommended: "45" '
                         'Status: "CRITICAL" Smallest: "20.00 MB" Avg: "25.00 MB" Largest: "30.00 MB" '
                         'MPM: "prefork"')

    def test_append_and_tail(self, tmp_path, console):
        history = HistoryLog(console, str(tmp_path / "apache2buddy.log"))
        for _ in range(7):
            assert history.append(RECOMMENDATION, STATS, MEMORY, CONFIG)
        entries = history.tail(5)
        assert len(entries) == 5
        assert all('Status: "CRITICAL"' in entry for entry in entries)
        assert history.tail(0) == []

    def test_append_failure_is_not_fatal(self, tmp_path, console, stream):
        history = HistoryLog(console, str(tmp_path / "no" / "such" / "dir.log"))
        assert history.append(RECOMMENDATION, STATS, MEMORY, CONFIG) is False
        assert "Could not write log entry" in stream.getvalue()

    def test_tail_missing_file(self, tmp_path, console):
        with pytest.raises(OSError):
            HistoryLog(console, str(tmp_path / "missing.log")).tail(5)


class TestCheckFlags:

    def test_flags_follow_enabled_checks(self):
        analysis = scan_lines(ERROR_LOG, check_maxclients=False, check_php=True)
        assert analysis.maxclients_checked is False
        assert analysis.php_checked is True

    def test_scanner_passes_flags(self, tmp_path, console):
        log = tmp_path / "error.log"
        log.write_text("".join(ERROR_LOG))
        analysis = LogScanner(console, paths=[str(log)]).analyze(check_maxclients=False)
        assert analysis.maxclients_checked is False
        assert analysis.max_clients_hits == 0
        assert analysis.php_fatal_errors == 2
