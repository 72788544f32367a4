"""
mod_status client.

Reads the machine-readable ``?auto`` page for worker counts and load, and
the HTML page for the per-client breakdown. The status page is optional:
when it cannot be reached the analysis simply goes ahead without it.
"""

import re
from collections import Counter
from dataclasses import replace
from typing import List, Optional, Sequence, Tuple

import requests

from apache2buddy.errors import StatusUnavailableError
from apache2buddy.models import ClientInfo, ServerStatusSnapshot, WorkerStates

LOADAVG_PATH = "/proc/loadavg"
DEFAULT_TIMEOUT = 5.0
TOP_CLIENTS = 10

# Scoreboard characters as documented in mod_status' "Scoreboard Key"
SCOREBOARD_FIELDS = {
    '_': 'waiting',
    'S': 'starting',
    'R': 'reading',
    'W': 'sending',
    'K': 'keepalive',
    'D': 'dns_lookup',
    'C': 'closing',
    'L': 'logging',
    'G': 'graceful_finish',
    'I': 'idle_cleanup',
    '.': 'open_slot',
}

_ROW_RE = re.compile(r'<tr[^>]*>(.*?)</tr>', re.IGNORECASE | re.DOTALL)
_CELL_RE = re.compile(r'<td[^>]*>(.*?)</td>', re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r'<[^>]+>')
_IPV4_RE = re.compile(r'^\d{1,3}(?:\.\d{1,3}){3}$')
_IPV6_RE = re.compile(r"^[0-9a-fA-F]*:[0-9a-fA-F]*:[0-9a-fA-F:]*$")


def default_status_urls(port: int = 80) -> List[str]:
    if port == 80:
        hosts = ["localhost", "127.0.0.1"]
    else:
        hosts = ["localhost:{}".format(port), "127.0.0.1:{}".format(port)]
    return ["http://{}/server-status?auto".format(host) for host in hosts]


def html_status_url(auto_url: str) -> str:
    """The HTML status page that goes with an ?auto URL"""
    return re.sub(r'[?&]auto\b', '', auto_url)


def _to_float(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        return 0.0


def _to_int(value: str) -> int:
    try:
        return int(float(value))
    except ValueError:
        return 0


def parse_scoreboard(scoreboard: str) -> WorkerStates:
    """Count scoreboard slots by state; unknown characters are open slots"""
    counts = Counter()
    for char in scoreboard:
        if char.isspace():
            continue
        counts[SCOREBOARD_FIELDS.get(char, 'open_slot')] += 1
    return WorkerStates(**counts)


def read_loadavg(path: str = LOADAVG_PATH) -> Tuple[float, float, float]:
    try:
        with open(path, 'r') as f:
            fields = f.read().split()
    except (IOError, OSError):
        return 0.0, 0.0, 0.0
    if len(fields) < 3:
        return 0.0, 0.0, 0.0
    return _to_float(fields[0]), _to_float(fields[1]), _to_float(fields[2])


def parse_auto_status(text: str, loadavg_path: str = LOADAVG_PATH) -> ServerStatusSnapshot:
    """Parse the output of /server-status?auto"""
    values = {}
    for line in text.splitlines():
        if ':' not in line:
            continue
        key, value = line.split(':', 1)
        values[key.strip()] = value.strip()

    if 'BusyWorkers' not in values and 'IdleWorkers' not in values:
        raise StatusUnavailableError("No worker data in mod_status output")

    busy = _to_int(values.get('BusyWorkers', '0'))
    idle = _to_int(values.get('IdleWorkers', '0'))
    total_accesses = _to_int(values.get('Total Accesses', '0'))
    total_kbytes = _to_int(values.get('Total kBytes', '0'))
    duration = _to_float(values.get('DurationPerReq', '0'))
    bytes_per_req = _to_float(values.get('BytesPerReq', '0'))
    if not bytes_per_req and total_accesses and total_kbytes:
        bytes_per_req = total_kbytes * 1024 / total_accesses

    has_load = any(key in values for key in ('Load1', 'Load5', 'Load15'))
    if has_load:
        load = (_to_float(values.get('Load1', '0')),
                _to_float(values.get('Load5', '0')),
                _to_float(values.get('Load15', '0')))
    else:
        load = read_loadavg(loadavg_path)

    return ServerStatusSnapshot(
        busy_workers=busy,
        idle_workers=idle,
        requests_per_sec=_to_float(values.get('ReqPerSec', '0')),
        bytes_per_sec=_to_float(values.get('BytesPerSec', '0')),
        bytes_per_request=bytes_per_req,
        duration_per_request=duration,
        total_accesses=total_accesses,
        total_kbytes=total_kbytes,
        uptime_seconds=_to_int(values.get('Uptime', values.get('ServerUptimeSeconds', '0'))),
        cpu_load=_to_float(values.get('CPULoad', '0')),
        load_1=load[0],
        load_5=load[1],
        load_15=load[2],
        server_version=values.get('ServerVersion', ''),
        connections_total=_to_int(values.get('ConnsTotal', '0')),
        extended_enabled='Total Accesses' in values or 'DurationPerReq' in values,
        workers=parse_scoreboard(values.get('Scoreboard', '')),
    )


def extract_top_clients(html: str, limit: int = TOP_CLIENTS) -> Tuple[ClientInfo, ...]:
    """Busiest clients in the ExtendedStatus worker table, by slot count"""
    counts = Counter()
    for row in _ROW_RE.findall(html):
        for cell in _CELL_RE.findall(row):
            text = _TAG_RE.sub('', cell).strip()
            if _IPV4_RE.match(text) or _IPV6_RE.match(text):
                counts[text] += 1
                break

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return tuple(ClientInfo(ip=ip, requests=requests_seen) for ip, requests_seen in ranked[:limit])


class StatusClient:
    """Fetches mod_status from the first URL that answers"""

    def __init__(self, console, urls: Optional[Sequence[str]] = None,
                 timeout: float = DEFAULT_TIMEOUT, session=None):
        self.console = console
        self.urls = list(urls) if urls else default_status_urls()
        self.timeout = timeout
        self.session = session or requests.Session()

    def close(self):
        self.session.close()

    def _get(self, url: str) -> Optional[str]:
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            self.console.log_verbose("Fetching {} failed: {}".format(url, e))
            return None
        if response.status_code != 200:
            self.console.log_verbose("Fetching {} returned HTTP {}".format(url, response.status_code))
            return None
        return response.text

    def fetch(self) -> ServerStatusSnapshot:
        """Status snapshot including the top clients when ExtendedStatus is on"""
        for url in self.urls:
            text = self._get(url)
            if text is None:
                continue
            try:
                snapshot = parse_auto_status(text)
            except StatusUnavailableError as e:
                self.console.log_verbose("{}: {}".format(url, e))
                continue

            self.console.log_verbose("mod_status read from {}".format(url))
            html = self._get(html_status_url(url))
            if html:
                clients = extract_top_clients(html)
                if clients:
                    snapshot = replace(snapshot, top_clients=clients)
            return snapshot

        raise StatusUnavailableError(
            "mod_status not accessible - enable mod_status with ExtendedStatus On")
