"""
System memory discovery and detection of other memory-hungry services.
"""

import os
from typing import List, Optional, Sequence

from apache2buddy import shell
from apache2buddy.errors import MemoryDiscoveryError
from apache2buddy.models import Service, ServiceUsage, SystemMemory

MEMINFO_PATH = "/proc/meminfo"
CGROUP_V1_LIMIT = "/sys/fs/cgroup/memory/memory.limit_in_bytes"
CGROUP_V2_LIMIT = "/sys/fs/cgroup/memory.max"

# Container limits outside this window are treated as "unlimited"
MIN_CONTAINER_MB = 128
MAX_CONTAINER_MB = 65536

CONTROL_PANELS = [
    ("/usr/local/cpanel", "cPanel"),
    ("/usr/local/psa", "Plesk"),
    ("/etc/webmin", "Webmin"),
    ("/usr/local/directadmin", "DirectAdmin"),
]

REQUIRED_COMMANDS = ("ps",)


def parse_meminfo(text: str) -> SystemMemory:
    """Build a SystemMemory from the contents of /proc/meminfo"""
    values = {}
    for line in text.splitlines():
        parts = line.split()
        if len(parts) < 2:
            continue
        key = parts[0].rstrip(':')
        if key in ('MemTotal', 'MemAvailable', 'MemFree', 'Buffers', 'Cached'):
            try:
                values[key] = int(parts[1])
            except ValueError:
                continue

    total_kb = values.get('MemTotal', 0)
    if total_kb <= 0:
        raise MemoryDiscoveryError("Could not determine total memory from meminfo")

    # Kernels before 3.14 have no MemAvailable
    if 'MemAvailable' in values:
        available_kb = values['MemAvailable']
    else:
        available_kb = values.get('MemFree', 0) + values.get('Buffers', 0) + values.get('Cached', 0)

    return SystemMemory(total_mb=total_kb // 1024, available_mb=available_kb // 1024)


def parse_memory_limit(value: str) -> Optional[int]:
    """Parse a memory limit like '512m', '1g' or a byte count into MB"""
    value = value.strip()
    if not value or value == "max":
        return None
    try:
        if value[-1] in 'mM':
            return int(value[:-1])
        if value[-1] in 'gG':
            return int(value[:-1]) * 1024
        return int(value) // (1024 * 1024)
    except ValueError:
        return None


def parse_rss_total_mb(output: str) -> int:
    """Sum one RSS value (kB) per line and convert to MB"""
    total_kb = 0
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            total_kb += int(line)
        except ValueError:
            continue
    return round(total_kb / 1024)


def total_service_memory(services: Sequence[ServiceUsage]) -> int:
    return sum(usage.memory_mb for usage in services)


class SystemInspector:
    """Reads memory figures and looks for services sharing the host"""

    def __init__(self, console, meminfo_path=MEMINFO_PATH,
                 cgroup_paths=(CGROUP_V1_LIMIT, CGROUP_V2_LIMIT), environ=None):
        self.console = console
        self.meminfo_path = meminfo_path
        self.cgroup_paths = cgroup_paths
        self.environ = os.environ if environ is None else environ

    def container_limit_mb(self) -> Optional[int]:
        """Memory limit imposed by cgroups or MEMORY_LIMIT, if any"""
        for path in self.cgroup_paths:
            try:
                with open(path, 'r') as f:
                    limit_mb = parse_memory_limit(f.read())
            except (IOError, OSError) as e:
                self.console.log_verbose("Failed to read memory limit from {}: {}".format(path, e))
                continue
            if limit_mb and MIN_CONTAINER_MB <= limit_mb <= MAX_CONTAINER_MB:
                self.console.log_verbose("Container memory limit from {}: {} MB".format(path, limit_mb))
                return limit_mb

        env_value = self.environ.get('MEMORY_LIMIT')
        if env_value:
            limit_mb = parse_memory_limit(env_value)
            if limit_mb and MIN_CONTAINER_MB <= limit_mb <= MAX_CONTAINER_MB:
                self.console.log_verbose("Container memory from environment: {} MB".format(limit_mb))
                return limit_mb
            self.console.log_verbose("Ignoring MEMORY_LIMIT value '{}'".format(env_value))

        return None

    def system_memory(self) -> SystemMemory:
        """Total and available memory, capped by any container limit"""
        try:
            with open(self.meminfo_path, 'r') as f:
                memory = parse_meminfo(f.read())
        except (IOError, OSError) as e:
            raise MemoryDiscoveryError("Cannot read {}: {}".format(self.meminfo_path, e))

        self.console.log_verbose("meminfo reports {} MB total, {} MB available".format(
            memory.total_mb, memory.available_mb))

        limit_mb = self.container_limit_mb()
        if limit_mb is not None and limit_mb < memory.total_mb:
            memory = SystemMemory(total_mb=limit_mb,
                                  available_mb=min(memory.available_mb, limit_mb))
            self.console.log_verbose("Using container memory limit: {} MB".format(limit_mb))

        return memory

    def service_memory_mb(self, process_name: str) -> int:
        """Resident memory of all processes with the given name, in MB"""
        returncode, output, _ = shell.run_command(["ps", "-C", process_name, "-o", "rss="])
        if returncode != 0 or not output:
            return 0
        return parse_rss_total_mb(output)

    def detect_services(self) -> List[ServiceUsage]:
        """Detect additional services and their memory usage"""
        self.console.log_verbose("Begin detecting additional services...")
        found = []
        for service in Service:
            memory_mb = sum(self.service_memory_mb(name) for name in service.process_names)
            if memory_mb > 0:
                self.console.log_verbose("{} Detected using {} MB".format(service.label, memory_mb))
                found.append(ServiceUsage(service=service, memory_mb=memory_mb))
        self.console.log_verbose("End detecting additional services...")
        return found

    def detect_control_panel(self) -> str:
        for path, name in CONTROL_PANELS:
            if os.path.exists(path):
                return name
        return ""

    def missing_commands(self, commands=REQUIRED_COMMANDS) -> List[str]:
        missing = shell.missing_commands(commands)
        for name in missing:
            self.console.log_verbose("Required command '{}' not found".format(name))
        return missing

