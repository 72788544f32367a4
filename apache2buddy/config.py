"""
Apache configuration discovery and directive lookup.

The configuration is flattened into a list of lines by following Include
and IncludeOptional directives in place, the way Apache reads them, so
that "last occurrence wins" lookups see directives in their real order.
"""

import glob
import os
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple

from apache2buddy import shell
from apache2buddy.errors import ConfigurationError
from apache2buddy.models import ApacheConfig, ConcurrencyModel

CONFIG_CANDIDATES = [
    "/etc/apache2/apache2.conf",
    "/etc/httpd/conf/httpd.conf",
    "/usr/local/apache2/conf/httpd.conf",
    "/usr/local/apache/conf/httpd.conf",
    "/etc/httpd/httpd.conf",
    "/etc/apache2/httpd.conf",
    "/opt/apache2/conf/httpd.conf",
]

SERVER_ROOT_CANDIDATES = [
    "/etc/apache2",
    "/etc/httpd",
    "/usr/local/apache2",
    "/usr/local/apache",
    "/opt/apache2",
]

BINARIES = ["apache2ctl", "apachectl", "apache2", "httpd"]

ENVVARS_PATH = "/etc/apache2/envvars"

KNOWN_MPMS = ("prefork", "worker", "event", "itk")

# Include trees deeper than this are assumed to be loops
MAX_INCLUDE_DEPTH = 16

DEFAULT_LIMIT = 256
DEFAULT_THREADED_LIMIT = 400

_INCLUDE_RE = re.compile(r'^\s*include(?:optional)?\s+(.+?)\s*$', re.IGNORECASE)
_IFMODULE_OPEN_RE = re.compile(r'^\s*<ifmodule\s+([^>]*)>', re.IGNORECASE)
_IFMODULE_CLOSE_RE = re.compile(r'^\s*</ifmodule\s*>', re.IGNORECASE)
_VHOST_OPEN_RE = re.compile(r'^\s*<virtualhost[\s>]', re.IGNORECASE)
_VHOST_CLOSE_RE = re.compile(r'^\s*</virtualhost\s*>', re.IGNORECASE)
_LOADMODULE_MPM_RE = re.compile(r'^\s*loadmodule\s+mpm_(\w+)_module', re.IGNORECASE)
_BUILD_SETTING_RE = re.compile(r'-D\s+(\w+)="([^"]*)"')
_SERVER_VERSION_RE = re.compile(r'Server version:\s*([^/\s]+)/(\S+)')

# Fallback values for the Debian envvars Apache uses for User, Group and PidFile
ENVVAR_DEFAULTS = {
    'APACHE_RUN_USER': 'www-data',
    'APACHE_RUN_GROUP': 'www-data',
    'APACHE_PID_FILE': '/var/run/apache2/apache2.pid',
    'APACHE_RUN_DIR': '/var/run/apache2',
    'APACHE_LOCK_DIR': '/var/lock/apache2',
    'APACHE_LOG_DIR': '/var/log/apache2',
}


@dataclass(frozen=True)
class BuildInfo:
    """Compile-time settings reported by `httpd -V`"""
    httpd_root: str = ""
    server_config_file: str = ""
    default_pidlog: str = ""


def parse_build_info(output: str) -> BuildInfo:
    settings = dict(_BUILD_SETTING_RE.findall(output))
    return BuildInfo(
        httpd_root=settings.get('HTTPD_ROOT', ''),
        server_config_file=settings.get('SERVER_CONFIG_FILE', ''),
        default_pidlog=settings.get('DEFAULT_PIDLOG', ''),
    )


def parse_server_version(output: str) -> Optional[Tuple[str, str]]:
    """('Apache', '2.4.41') from 'Server version: Apache/2.4.41 (Ubuntu)'"""
    match = _SERVER_VERSION_RE.search(output)
    if match:
        return match.group(1), match.group(2)
    return None


def parse_mpm_name(output: str) -> Optional[str]:
    """MPM name from `apachectl -M` or `httpd -V` output"""
    lowered = output.lower()
    for mpm in KNOWN_MPMS:
        if "mpm_{}".format(mpm) in lowered:
            return mpm
    match = re.search(r'server mpm:\s*(\w+)', lowered)
    if match and match.group(1) in KNOWN_MPMS:
        return match.group(1)
    return None


def expand_include(raw_path: str, server_root: str) -> List[str]:
    """Files an Include argument refers to, in the order Apache reads them"""
    path = raw_path.strip().strip('\'"')
    if not os.path.isabs(path):
        path = os.path.join(server_root, path)

    if os.path.isdir(path):
        path = os.path.join(path, '*')

    if glob.has_magic(path):
        candidates = sorted(glob.glob(path))
    else:
        candidates = [path]

    return [f for f in candidates if os.path.isfile(f) and os.access(f, os.R_OK)]


def build_config_lines(base_config: str, server_root: str, console=None) -> List[str]:
    """Lines of the main config file with every include expanded in place"""
    lines = []
    visited = set()
    _read_config_tree(base_config, server_root, 0, visited, lines, console)
    return lines


def _read_config_tree(path: str, server_root: str, depth: int, visited: Set[str],
                      lines: List[str], console) -> None:
    real_path = os.path.realpath(path)
    if depth > MAX_INCLUDE_DEPTH:
        _trace(console, "Include depth limit reached at {}, not following".format(path))
        return
    if real_path in visited:
        _trace(console, "{} already included, skipping".format(path))
        return
    visited.add(real_path)

    _trace(console, "Processing {}".format(path))
    try:
        with open(path, 'r', encoding='utf-8', errors='ignore') as f:
            content = f.readlines()
    except (IOError, OSError) as e:
        _trace(console, "Error processing {}: {}".format(path, e))
        return

    for line in content:
        include_match = _INCLUDE_RE.match(line)
        if include_match:
            for included in expand_include(include_match.group(1), server_root):
                _read_config_tree(included, server_root, depth + 1, visited, lines, console)
            continue
        lines.append(line.rstrip('\n'))


def _trace(console, message: str):
    if console is not None:
        console.log_verbose(message)


def _ifmodule_applies(argument: str, model: str) -> bool:
    """Whether an <IfModule> block is active for the running MPM.

    Blocks that do not mention an MPM are always considered active.
    """
    argument = argument.strip().strip('"').lower()
    negated = argument.startswith('!')
    name = argument.lstrip('!')
    for mpm in KNOWN_MPMS:
        if mpm in name:
            return (mpm == model) != negated
    return True


def find_master_value(config_lines: Sequence[str], model: str, directive: str) -> Optional[str]:
    """Server-wide value of a directive for the given MPM.

    Comments, <VirtualHost> blocks and <IfModule> blocks belonging to other
    MPMs are skipped. The last occurrence wins; None when absent.
    """
    model = model.lower()
    directive = directive.lower()
    result = None
    module_stack = []
    vhost_depth = 0

    for raw_line in config_lines:
        line = raw_line.strip()
        if not line or line.startswith('#'):
            continue

        open_match = _IFMODULE_OPEN_RE.match(line)
        if open_match:
            module_stack.append(_ifmodule_applies(open_match.group(1), model))
            continue
        if _IFMODULE_CLOSE_RE.match(line):
            if module_stack:
                module_stack.pop()
            continue

        if _VHOST_OPEN_RE.match(line):
            vhost_depth += 1
            continue
        if _VHOST_CLOSE_RE.match(line):
            vhost_depth = max(0, vhost_depth - 1)
            continue

        if vhost_depth or not all(module_stack):
            continue

        parts = line.split()
        if len(parts) >= 2 and parts[0].lower() == directive:
            result = parts[1].strip('"\'')

    return result


def count_virtual_hosts(config_lines: Sequence[str]) -> int:
    return sum(1 for line in config_lines
               if not line.lstrip().startswith('#') and _VHOST_OPEN_RE.match(line))


def mpm_from_loadmodule(config_lines: Sequence[str]) -> Optional[str]:
    """MPM named by the last LoadModule mpm_*_module line"""
    found = None
    for line in config_lines:
        if line.lstrip().startswith('#'):
            continue
        match = _LOADMODULE_MPM_RE.match(line)
        if match and match.group(1).lower() in KNOWN_MPMS:
            found = match.group(1).lower()
    return found


def resolve_envvar(value: str, envvars_path: str = ENVVARS_PATH, environ=None) -> str:
    """Resolve ${APACHE_RUN_USER} style values via Debian's envvars file"""
    if not value.startswith('$'):
        return value

    var_name = value[1:]
    if var_name.startswith('{') and var_name.endswith('}'):
        var_name = var_name[1:-1]

    try:
        with open(envvars_path, 'r', encoding='utf-8', errors='ignore') as f:
            for line in f:
                line = line.strip()
                if line.startswith('export '):
                    line = line[7:]
                if line.startswith(var_name + '='):
                    return line.split('=', 1)[1].strip().strip('"\'')
    except (IOError, OSError):
        pass

    environ = os.environ if environ is None else environ
    if environ.get(var_name):
        return environ[var_name]

    return ENVVAR_DEFAULTS.get(var_name, value)


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def default_limit(mpm_name: str) -> int:
    """Compiled-in worker limit Apache uses when none is configured"""
    if ConcurrencyModel.from_name(mpm_name).is_threaded:
        return DEFAULT_THREADED_LIMIT
    return DEFAULT_LIMIT


class ConfigReader:
    """Locates and reads the running server's configuration"""

    def __init__(self, console, candidates=None, envvars_path=ENVVARS_PATH):
        self.console = console
        self.candidates = CONFIG_CANDIDATES if candidates is None else candidates
        self.envvars_path = envvars_path

    def _query_binaries(self, flag: str) -> str:
        """Output of the first Apache binary that answers the given flag"""
        for binary in BINARIES:
            if shell.which(binary) is None:
                continue
            returncode, stdout, stderr = shell.run_command([binary, flag], timeout=10)
            self.console.log_verbose("{} {} returned {}".format(binary, flag, returncode))
            output = "\n".join(part for part in (stdout, stderr) if part)
            if returncode == 0 and output:
                return output
        return ""

    def detect_build_info(self) -> BuildInfo:
        return parse_build_info(self._query_binaries('-V'))

    def detect_version(self) -> Optional[Tuple[str, str]]:
        return parse_server_version(self._query_binaries('-v'))

    def detect_mpm(self) -> Optional[str]:
        return parse_mpm_name(self._query_binaries('-M'))

    def locate_config_file(self, build: BuildInfo) -> Tuple[str, str]:
        """(config file, server root) of the running server"""
        server_root = build.httpd_root
        if build.server_config_file:
            path = build.server_config_file
            if not os.path.isabs(path) and server_root:
                path = os.path.join(server_root, path)
            if os.path.isfile(path):
                return path, server_root or os.path.dirname(path)

        for path in self.candidates:
            if os.path.isfile(path):
                self.console.log_verbose("Found Apache config: {}".format(path))
                return path, server_root or self._guess_server_root(path)

        raise ConfigurationError("Apache config file not found")

    @staticmethod
    def _guess_server_root(config_path: str) -> str:
        for root in SERVER_ROOT_CANDIDATES:
            if config_path.startswith(root + os.sep):
                return root
        return os.path.dirname(config_path)

    def load(self) -> ApacheConfig:
        """Everything the recommendation needs from the Apache configuration"""
        build = self.detect_build_info()
        config_path, server_root = self.locate_config_file(build)
        self.console.log_verbose("Using config {} with server root {}".format(config_path, server_root))

        lines = build_config_lines(config_path, server_root, self.console)
        if not lines:
            raise ConfigurationError("Apache config file is empty or unreadable: {}".format(config_path))

        server_name, version = self.detect_version() or ("Apache", "")
        mpm_name = self.detect_mpm() or mpm_from_loadmodule(lines) or "prefork"
        self.console.log_verbose("Apache MPM model: {}".format(mpm_name))

        max_request_workers = _to_int(find_master_value(lines, mpm_name, 'MaxRequestWorkers'))
        max_clients = _to_int(find_master_value(lines, mpm_name, 'MaxClients'))
        server_limit = _to_int(find_master_value(lines, mpm_name, 'ServerLimit'))
        threads_per_child = _to_int(find_master_value(lines, mpm_name, 'ThreadsPerChild'))

        if max_request_workers is not None:
            configured_limit = max_request_workers
        elif max_clients is not None:
            configured_limit = max_clients
        elif build.httpd_root or build.server_config_file:
            configured_limit = default_limit(mpm_name)
            self.console.log_verbose("No worker limit configured, using compiled-in default {}".format(configured_limit))
        else:
            configured_limit = DEFAULT_LIMIT

        user = find_master_value(lines, mpm_name, 'User') or ""
        pid_file = find_master_value(lines, mpm_name, 'PidFile') or build.default_pidlog
        if user:
            user = resolve_envvar(user, self.envvars_path)
        if pid_file:
            pid_file = resolve_envvar(pid_file, self.envvars_path)
            if not os.path.isabs(pid_file):
                pid_file = os.path.join(server_root, pid_file)

        return ApacheConfig(
            configured_limit=configured_limit,
            concurrency_model=ConcurrencyModel.from_name(mpm_name),
            virtual_host_count=count_virtual_hosts(lines),
            mpm_name=mpm_name,
            config_path=config_path,
            server_root=server_root,
            server_name=server_name,
            version=version,
            max_clients=max_clients,
            max_request_workers=max_request_workers,
            server_limit=server_limit,
            threads_per_child=threads_per_child,
            user=user,
            pid_file=pid_file,
        )
