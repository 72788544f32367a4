"""
Records passed between the collectors, the recommendation engine and
the report.

All records are immutable and built fresh on every run.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple


class Severity(Enum):
    """Verdict tiers, ordered by how urgently the operator has to act"""
    OK = "OK"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"
    ERROR = "ERROR"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {
    Severity.OK: 0,
    Severity.WARNING: 1,
    Severity.CRITICAL: 2,
    Severity.ERROR: 3,
}


class ConcurrencyModel(Enum):
    """Apache MPM families that matter for memory sizing"""
    PREFORK = "prefork"
    WORKER = "worker"
    EVENT = "event"

    @classmethod
    def from_name(cls, name: Optional[str]) -> "ConcurrencyModel":
        """Map an MPM name such as 'mpm_event_module' onto a model.

        itk forks one process per connection like prefork, and anything
        unrecognised falls back to prefork as Apache's own default does.
        """
        lowered = (name or "").lower()
        if 'worker' in lowered:
            return cls.WORKER
        if 'event' in lowered:
            return cls.EVENT
        return cls.PREFORK

    @property
    def is_threaded(self) -> bool:
        return self is not ConcurrencyModel.PREFORK


class Service(Enum):
    """Co-located services whose memory is reserved before sizing Apache"""
    MYSQL = ("MySQL", ("mysqld", "mariadbd"))
    REDIS = ("Redis", ("redis-server",))
    MEMCACHED = ("Memcached", ("memcached",))
    PHP_FPM = ("PHP-FPM", ("php-fpm", "php5-fpm", "php7.0-fpm", "php7.4-fpm",
                           "php8.0-fpm", "php8.1-fpm", "php8.2-fpm", "php8.3-fpm"))
    NGINX = ("Nginx", ("nginx",))
    VARNISH = ("Varnish", ("varnishd",))
    JAVA = ("Java", ("java",))
    POSTFIX = ("Postfix", ("master", "postfix"))
    GLUSTER = ("Gluster", ("glusterd", "glusterfs", "glusterfsd"))

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def process_names(self) -> Tuple[str, ...]:
        return self.value[1]


@dataclass(frozen=True)
class ProcessMemoryReading:
    """Resident memory of one Apache worker process"""
    pid: int
    resident_memory_mb: float
    user: str = ""


@dataclass(frozen=True)
class MemoryStats:
    smallest_mb: float = 0.0
    largest_mb: float = 0.0
    average_mb: float = 0.0
    total_mb: float = 0.0
    process_count: int = 0


@dataclass(frozen=True)
class SystemMemory:
    """Total and available memory in MB.

    reserved_mb records how much of the measured available memory has been
    set aside for other services on the host.
    """
    total_mb: int
    available_mb: int
    reserved_mb: int = 0

    def reserve(self, mb: int) -> "SystemMemory":
        """Return a copy with mb taken away from the available memory"""
        return replace(self,
                       available_mb=self.available_mb - mb,
                       reserved_mb=self.reserved_mb + mb)


@dataclass(frozen=True)
class ServiceUsage:
    service: Service
    memory_mb: int


@dataclass(frozen=True)
class ApacheConfig:
    """What the configuration collaborator learned about the running server.

    configured_limit is already resolved from whichever of MaxRequestWorkers
    or MaxClients is in effect.
    """
    configured_limit: int = 256
    concurrency_model: ConcurrencyModel = ConcurrencyModel.PREFORK
    virtual_host_count: int = 0
    mpm_name: str = "prefork"
    config_path: str = ""
    server_root: str = ""
    server_name: str = "Apache"
    version: str = ""
    max_clients: Optional[int] = None
    max_request_workers: Optional[int] = None
    server_limit: Optional[int] = None
    threads_per_child: Optional[int] = None
    user: str = ""
    pid_file: str = ""

    @property
    def limit_directive(self) -> str:
        """Name of the worker limit directive for this Apache version"""
        if self.version.startswith("2.2") or self.version.startswith("2.0"):
            return "MaxClients"
        return "MaxRequestWorkers"


@dataclass(frozen=True)
class SafeRange:
    min_safe_limit: int
    max_safe_limit: int


@dataclass(frozen=True)
class Verdict:
    severity: Severity
    message: str


@dataclass(frozen=True)
class Annotations:
    virtual_host_warning: bool = False
    concurrency_model_note: str = ""


@dataclass(frozen=True)
class Recommendation:
    current_limit: int = 0
    min_safe_limit: int = 0
    max_safe_limit: int = 0
    conservative_recommendation: int = 0
    severity: Severity = Severity.ERROR
    message: str = ""
    utilization_percent: float = 0.0
    virtual_host_warning: bool = False
    concurrency_model_note: str = ""


@dataclass(frozen=True)
class WorkerStates:
    """Scoreboard slot counts from mod_status"""
    waiting: int = 0
    starting: int = 0
    reading: int = 0
    sending: int = 0
    keepalive: int = 0
    dns_lookup: int = 0
    closing: int = 0
    logging: int = 0
    graceful_finish: int = 0
    idle_cleanup: int = 0
    open_slot: int = 0

    @property
    def total_slots(self) -> int:
        return (self.waiting + self.starting + self.reading + self.sending +
                self.keepalive + self.dns_lookup + self.closing + self.logging +
                self.graceful_finish + self.idle_cleanup + self.open_slot)


@dataclass(frozen=True)
class ClientInfo:
    ip: str
    requests: int


@dataclass(frozen=True)
class ServerStatusSnapshot:
    busy_workers: int = 0
    idle_workers: int = 0
    requests_per_sec: float = 0.0
    bytes_per_sec: float = 0.0
    bytes_per_request: float = 0.0
    duration_per_request: float = 0.0
    total_accesses: int = 0
    total_kbytes: int = 0
    uptime_seconds: int = 0
    cpu_load: float = 0.0
    load_1: float = 0.0
    load_5: float = 0.0
    load_15: float = 0.0
    server_version: str = ""
    connections_total: int = 0
    extended_enabled: bool = False
    workers: WorkerStates = field(default_factory=WorkerStates)
    top_clients: Tuple[ClientInfo, ...] = ()

    @property
    def total_workers(self) -> int:
        return self.busy_workers + self.idle_workers


@dataclass(frozen=True)
class LogAnalysis:
    max_clients_hits: int = 0
    php_fatal_errors: int = 0
    recent_errors: Tuple[str, ...] = ()
    analyzed_lines: int = 0
    log_file: str = ""
    maxclients_checked: bool = True
    php_checked: bool = True


@dataclass(frozen=True)
class Uptime:
    days: int = 0
    hours: int = 0
    minutes: int = 0
    seconds: int = 0

    def __str__(self) -> str:
        return "{}d {}h {}m {}s".format(self.days, self.hours, self.minutes, self.seconds)
