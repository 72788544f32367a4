"""
Error log scanning and the append-only history log.
"""

import os
import time
from collections import deque
from typing import List, Optional, Sequence

from apache2buddy.models import ApacheConfig, LogAnalysis, MemoryStats, Recommendation, SystemMemory

HISTORY_LOG = "/var/log/apache2buddy.log"

DEFAULT_ERROR_LOGS = [
    "/var/log/apache2/error.log",
    "/var/log/httpd/error_log",
    "/var/log/apache2/error_log",
    "/var/log/httpd24/error_log",
    "/usr/local/apache/logs/error_log",
    "/usr/local/apache2/logs/error_log",
]

MAXCLIENTS_PATTERNS = ("server reached MaxRequestWorkers", "server reached MaxClients")
PHP_ERROR_PATTERNS = ("PHP Fatal error", "PHP Parse error")

# Only the tail of each log is scanned so huge logs cannot stall the run
MAX_LINES = 1000
TIME_LIMIT_SECONDS = 5.0
RECENT_ERRORS = 5


def scan_lines(lines: Sequence[str], check_maxclients: bool = True,
               check_php: bool = True, log_file: str = "") -> LogAnalysis:
    """Count limit hits and PHP errors in a block of log lines"""
    max_clients_hits = 0
    php_errors = 0
    recent = deque(maxlen=RECENT_ERRORS)

    for line in lines:
        if check_maxclients and any(pattern in line for pattern in MAXCLIENTS_PATTERNS):
            max_clients_hits += 1
        if check_php and any(pattern in line for pattern in PHP_ERROR_PATTERNS):
            php_errors += 1
            recent.append(line.rstrip('\n'))

    return LogAnalysis(
        max_clients_hits=max_clients_hits,
        php_fatal_errors=php_errors,
        recent_errors=tuple(recent),
        analyzed_lines=len(lines),
        log_file=log_file,
        maxclients_checked=check_maxclients,
        php_checked=check_php,
    )


class LogScanner:
    """Looks through Apache error logs for signs of past trouble"""

    def __init__(self, console, paths: Optional[Sequence[str]] = None,
                 max_lines: int = MAX_LINES, time_limit: float = TIME_LIMIT_SECONDS):
        self.console = console
        self.paths = list(paths) if paths is not None else DEFAULT_ERROR_LOGS
        self.max_lines = max_lines
        self.time_limit = time_limit

    def is_readable_log(self, path: str) -> bool:
        """Regular, readable files only; container logs sent to /dev/* are skipped"""
        if not os.path.lexists(path):
            return False
        if os.path.islink(path):
            target = os.readlink(path)
            if target.startswith('/dev/'):
                self.console.show_box('info', "Apache logs are redirected to {} (containerized setup) - log analysis skipped".format(target))
                return False
        return os.path.isfile(path) and os.access(path, os.R_OK)

    def tail(self, path: str) -> List[str]:
        """Last max_lines lines of a file, giving up after time_limit seconds"""
        start = time.monotonic()
        lines = deque(maxlen=self.max_lines)
        with open(path, 'r', encoding='utf-8', errors='ignore') as f:
            for count, line in enumerate(f):
                lines.append(line)
                if count % 10000 == 0 and time.monotonic() - start > self.time_limit:
                    self.console.log_verbose("Log scan of {} hit the {}s limit".format(path, self.time_limit))
                    break
        return list(lines)

    def analyze(self, check_maxclients: bool = True, check_php: bool = True) -> LogAnalysis:
        """Scan the first readable error log"""
        for path in self.paths:
            if not self.is_readable_log(path):
                continue
            try:
                lines = self.tail(path)
            except (IOError, OSError) as e:
                self.console.log_verbose("Could not read {}: {}".format(path, e))
                continue
            self.console.log_verbose("Scanned {} lines of {}".format(len(lines), path))
            return scan_lines(lines, check_maxclients, check_php, log_file=path)
        return LogAnalysis()


def format_history_entry(recommendation: Recommendation, stats: MemoryStats,
                         memory: SystemMemory, config: ApacheConfig,
                         timestamp: Optional[str] = None) -> str:
    if timestamp is None:
        timestamp = time.strftime("%Y/%m/%d %H:%M:%S")
    return ('{} Memory: "{} MB" MaxClients: "{}" Recommended: "{}" Status: "{}" '
            'Smallest: "{:.2f} MB" Avg: "{:.2f} MB" Largest: "{:.2f} MB" MPM: "{}"').format(
        timestamp, memory.available_mb, config.configured_limit,
        recommendation.conservative_recommendation, recommendation.severity.value,
        stats.smallest_mb, stats.average_mb, stats.largest_mb, config.mpm_name)


class HistoryLog:
    """Append-only record of past runs"""

    def __init__(self, console, path: str = HISTORY_LOG):
        self.console = console
        self.path = path

    def append(self, recommendation: Recommendation, stats: MemoryStats,
               memory: SystemMemory, config: ApacheConfig) -> bool:
        """Write one entry; failures are traced, never raised"""
        entry = format_history_entry(recommendation, stats, memory, config)
        try:
            with open(self.path, 'a') as f:
                f.write(entry + "\n")
        except (IOError, OSError) as e:
            self.console.log_verbose("Could not write log entry to {}: {}".format(self.path, e))
            return False
        return True

    def tail(self, count: int) -> List[str]:
        """Last count entries, oldest first"""
        if count <= 0:
            return []
        with open(self.path, 'r', encoding='utf-8', errors='ignore') as f:
            return [line.rstrip('\n') for line in deque(f, maxlen=count)]
