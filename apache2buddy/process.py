"""
Discovery of Apache worker processes and their resident memory.
"""

import os
import re
from collections import namedtuple
from typing import List, Optional

from apache2buddy import shell
from apache2buddy.models import ProcessMemoryReading, Uptime

PROC_ROOT = "/proc"

APACHE_INDICATORS = ("httpd", "apache2")

PsEntry = namedtuple('PsEntry', ['pid', 'user', 'command'])

_ETIME_RE = re.compile(r'^(?:(\d+)-)?(?:(\d+):)?(\d+):(\d+)$')


def is_apache_command(command: str) -> bool:
    """True for httpd/apache2 command lines, but never for this tool itself"""
    if 'apache2buddy' in command:
        return False
    return any(indicator in command for indicator in APACHE_INDICATORS)


def parse_ps_aux(output: str) -> List[PsEntry]:
    """Parse `ps aux` output into entries for Apache processes.

    Handles the GNU layout (USER PID %CPU %MEM VSZ RSS TTY STAT START TIME
    COMMAND) and the BusyBox one (PID USER TIME COMMAND).
    """
    entries = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 4:
            continue
        if 'PID' in fields and 'USER' in fields:
            continue

        if len(fields) >= 11 and fields[1].isdigit():
            user, pid, command = fields[0], int(fields[1]), " ".join(fields[10:])
        elif fields[0].isdigit():
            pid, user, command = int(fields[0]), fields[1], " ".join(fields[3:])
        else:
            continue

        if is_apache_command(command):
            entries.append(PsEntry(pid, user, command))
    return entries


def parse_vmrss_mb(status_text: str) -> Optional[float]:
    """Extract VmRSS (kB) from /proc/PID/status contents as MB"""
    for line in status_text.splitlines():
        if line.startswith('VmRSS:'):
            parts = line.split()
            if len(parts) >= 2:
                try:
                    return int(parts[1]) / 1024
                except ValueError:
                    return None
    return None


def parse_etime(value: str) -> Optional[Uptime]:
    """Parse ps etime output ([[DD-]HH:]MM:SS)"""
    match = _ETIME_RE.match(value.strip())
    if not match:
        return None
    days, hours, minutes, seconds = (int(g) if g else 0 for g in match.groups())
    return Uptime(days=days, hours=hours, minutes=minutes, seconds=seconds)


class ProcessScanner:
    """Finds Apache processes and measures how much memory each worker uses"""

    def __init__(self, console, proc_root=PROC_ROOT):
        self.console = console
        self.proc_root = proc_root

    def list_apache_processes(self) -> List[PsEntry]:
        returncode, output, stderr = shell.run_command(["ps", "aux"])
        if returncode != 0:
            self.console.log_verbose("ps aux failed: {}".format(stderr))
            return []
        entries = parse_ps_aux(output)
        self.console.log_verbose("{} Apache processes in process list".format(len(entries)))
        return entries

    def process_memory_mb(self, pid: int) -> Optional[float]:
        """Resident memory of a process in MB, or None when it cannot be read"""
        status_path = os.path.join(self.proc_root, str(pid), 'status')
        try:
            with open(status_path, 'r') as f:
                memory = parse_vmrss_mb(f.read())
            if memory is not None:
                self.console.log_verbose("Memory usage by PID {} is {:.2f} MB (VmRSS)".format(pid, memory))
                return memory
        except (IOError, OSError) as e:
            self.console.log_verbose("Reading {} failed: {}".format(status_path, e))

        # BusyBox and non-Linux systems
        returncode, rss, _ = shell.run_command(["ps", "-p", str(pid), "-o", "rss="])
        if returncode == 0 and rss.strip().isdigit():
            memory = int(rss.strip()) / 1024
            self.console.log_verbose("Memory usage by PID {} is {:.2f} MB (ps rss)".format(pid, memory))
            return memory

        return None

    def find_apache_processes(self) -> List[ProcessMemoryReading]:
        """Memory readings for every non-root Apache worker"""
        readings = []
        for entry in self.list_apache_processes():
            # The parent runs as root and does not serve requests
            if entry.user == 'root':
                continue
            memory = self.process_memory_mb(entry.pid)
            if memory is None:
                self.console.log_verbose("Could not get memory for PID {}, skipping".format(entry.pid))
                continue
            readings.append(ProcessMemoryReading(pid=entry.pid, resident_memory_mb=memory,
                                                 user=entry.user))
        return readings

    def find_parent_pid(self) -> Optional[int]:
        """PID of the root-owned Apache parent process"""
        for entry in self.list_apache_processes():
            if entry.user == 'root':
                return entry.pid
        return None

    def parent_uptime(self, pid: int) -> Optional[Uptime]:
        """How long the given process has been running"""
        returncode, output, _ = shell.run_command(["ps", "-p", str(pid), "-o", "etime="])
        self.console.log_verbose("Raw uptime for PID {}: '{}'".format(pid, output))
        if returncode != 0 or not output:
            return None
        return parse_etime(output)
