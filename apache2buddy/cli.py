"""
apache2buddy command line front end.

Collects memory, process, configuration, status and log data from the
running system, hands it to the recommendation engine and prints the
report. The exit status reflects the verdict: 0 OK, 1 WARNING, 2 CRITICAL
or ERROR. Tool errors and interruptions exit with 1.
"""

import argparse
import os
import socket
import sys
import traceback
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from apache2buddy import DEFAULT_PORT, VERSION, shell
from apache2buddy.analysis import aggregate, recommend
from apache2buddy.config import ConfigReader
from apache2buddy.console import Console
from apache2buddy.errors import Apache2BuddyError, ConfigurationError, StatusUnavailableError
from apache2buddy.logs import HISTORY_LOG, HistoryLog, LogScanner
from apache2buddy.models import ApacheConfig, LogAnalysis, ServerStatusSnapshot, Uptime
from apache2buddy.process import ProcessScanner
from apache2buddy.report import ReportWriter, exit_code
from apache2buddy.status import StatusClient, default_status_urls
from apache2buddy.system import SystemInspector, total_service_memory

HISTORY_ENTRIES_SHOWN = 5


@dataclass(frozen=True)
class Options:
    """Parsed command line options"""
    port: int = DEFAULT_PORT
    verbose: bool = False
    nocolor: bool = False
    light_term: bool = False
    noheader: bool = False
    noinfo: bool = False
    no_ok: bool = False
    nowarn: bool = False
    report: bool = False
    skip_maxclients: bool = False
    skip_php_fatal: bool = False
    skip_status: bool = False
    nonews: bool = False
    status_urls: Tuple[str, ...] = ()
    log_file: str = HISTORY_LOG
    history: Optional[int] = None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="apache2buddy",
        description="Apache2Buddy - Apache Performance Analysis Tool",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Key:
    [ -- ]  = Information
    [ @@ ]  = Advisory
    [ >> ]  = Warning
    [ !! ]  = Critical
        """
    )

    parser.add_argument('-p', '--port', type=int, default=DEFAULT_PORT,
                        help='Port used for the default mod_status URLs (default: 80)')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Use verbose output (noisy, for debugging)')
    parser.add_argument('-n', '--nocolor', action='store_true',
                        help='Use default terminal colors')
    parser.add_argument('-H', '--noheader', action='store_true',
                        help='Do not show header title bar')
    parser.add_argument('-N', '--noinfo', action='store_true',
                        help='Do not show informational messages')
    parser.add_argument('-K', '--no-ok', action='store_true',
                        help='Do not show OK messages')
    parser.add_argument('-W', '--nowarn', action='store_true',
                        help='Do not show warning messages')
    parser.add_argument('-L', '--light-term', action='store_true',
                        help='Show colors for light background terminal')
    parser.add_argument('-r', '--report', action='store_true',
                        help='Report mode (implies other flags)')
    parser.add_argument('--skip-maxclients', action='store_true',
                        help='Skip checking maxclients hits')
    parser.add_argument('--skip-php-fatal', action='store_true',
                        help='Skip checking for PHP fatal errors')
    parser.add_argument('--skip-status', action='store_true',
                        help='Do not query mod_status')
    parser.add_argument('--nonews', action='store_true',
                        help='Do not show news messages')
    parser.add_argument('--status-url', action='append', default=[], metavar='URL',
                        help='mod_status ?auto URL to query (repeatable)')
    parser.add_argument('--log-file', default=HISTORY_LOG, metavar='PATH',
                        help='History log to append to (default: {})'.format(HISTORY_LOG))
    parser.add_argument('--history', type=int, metavar='N',
                        help='Show the last N history log entries and exit')
    parser.add_argument('--version', action='version', version='%(prog)s {}'.format(VERSION))
    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> Options:
    args = build_parser().parse_args(argv)

    if args.report:
        args.noheader = True
        args.noinfo = True
        args.nonews = True
        args.nowarn = True
        args.no_ok = True
        args.skip_maxclients = True
        args.skip_php_fatal = True

    return Options(
        port=args.port,
        verbose=args.verbose,
        nocolor=args.nocolor,
        light_term=args.light_term,
        noheader=args.noheader,
        noinfo=args.noinfo,
        no_ok=args.no_ok,
        nowarn=args.nowarn,
        report=args.report,
        skip_maxclients=args.skip_maxclients,
        skip_php_fatal=args.skip_php_fatal,
        skip_status=args.skip_status,
        nonews=args.nonews,
        status_urls=tuple(args.status_url),
        log_file=args.log_file,
        history=args.history,
    )


def get_hostname() -> str:
    returncode, hostname, _ = shell.run_command(["hostname", "-f"])
    if returncode != 0 or not hostname:
        return socket.gethostname()
    return hostname


class Apache2Buddy:
    """Main Apache2Buddy analyzer class"""

    def __init__(self, options: Options, console: Optional[Console] = None,
                 system=None, processes=None, config_reader=None,
                 status_client=None, log_scanner=None, history=None):
        self.options = options
        self.console = console or Console(
            verbose=options.verbose,
            no_color=options.nocolor,
            light_bg=options.light_term,
            noinfo=options.noinfo,
            no_ok=options.no_ok,
            nowarn=options.nowarn,
        )
        self.system = system or SystemInspector(self.console)
        self.processes = processes or ProcessScanner(self.console)
        self.config_reader = config_reader or ConfigReader(self.console)
        self.status_client = status_client or StatusClient(
            self.console, urls=options.status_urls or default_status_urls(options.port))
        self.log_scanner = log_scanner or LogScanner(self.console)
        self.history = history or HistoryLog(self.console, options.log_file)
        self.report = ReportWriter(self.console)

    def load_config(self) -> ApacheConfig:
        try:
            return self.config_reader.load()
        except ConfigurationError as e:
            self.console.show_box('warn', "{} - using Apache defaults".format(e))
            return ApacheConfig()

    def fetch_status(self) -> Optional[ServerStatusSnapshot]:
        if self.options.skip_status:
            return None
        try:
            return self.status_client.fetch()
        except StatusUnavailableError as e:
            self.console.show_box('info', str(e))
            return None

    def apache_uptime(self, config: ApacheConfig) -> Optional[Uptime]:
        """Uptime of the parent process, found via the PidFile or the process list"""
        pid = None
        if config.pid_file:
            try:
                with open(config.pid_file, 'r') as f:
                    pid = int(f.read().strip())
            except (IOError, OSError, ValueError) as e:
                self.console.log_verbose("Could not read PID file {}: {}".format(config.pid_file, e))
        if pid is None:
            pid = self.processes.find_parent_pid()
        if pid is None:
            return None
        return self.processes.parent_uptime(pid)

    def analyze_logs(self) -> Optional[LogAnalysis]:
        if self.options.skip_maxclients and self.options.skip_php_fatal:
            return None
        return self.log_scanner.analyze(check_maxclients=not self.options.skip_maxclients,
                                        check_php=not self.options.skip_php_fatal)

    def show_history(self, count: int) -> int:
        try:
            entries = self.history.tail(count)
        except (IOError, OSError) as e:
            self.console.show_box('crit', "Cannot read {}: {}".format(self.history.path, e))
            return 1
        for entry in entries:
            self.console.echo(entry)
        return 0

    def close(self):
        self.status_client.close()

    def run(self) -> int:
        """Main execution function"""
        opts = self.options
        con = self.console

        if opts.history is not None:
            return self.show_history(opts.history)

        if not opts.noheader:
            self.report.header(get_hostname())

        if os.geteuid() != 0:
            con.show_box('crit', "This script must be run as root.")
            return 1

        missing = self.system.missing_commands()
        if missing:
            con.show_box('crit', "Required commands not found: {}".format(", ".join(missing)))
            return 1

        con.section("System memory")
        with con.timer("Memory discovery"):
            memory = self.system.system_memory()

        con.section("Apache configuration")
        with con.timer("Configuration parsing"):
            config = self.load_config()

        control_panel = self.system.detect_control_panel()

        with con.timer("Service detection"):
            services = self.system.detect_services()
        memory = memory.reserve(total_service_memory(services))

        with con.timer("mod_status"):
            snapshot = self.fetch_status()

        con.section("Apache processes")
        with con.timer("Process discovery"):
            readings = self.processes.find_apache_processes()
        if not readings:
            con.show_box('crit', "No Apache worker processes found, is Apache running?")

        uptime = self.apache_uptime(config)

        with con.timer("Log analysis"):
            log_analysis = self.analyze_logs()

        stats = aggregate(readings)
        recommendation = recommend(stats, memory, config)

        self.report.render(recommendation, stats, memory, config, services=services,
                           snapshot=snapshot, log_analysis=log_analysis, uptime=uptime,
                           control_panel=control_panel)

        if self.history.append(recommendation, stats, memory, config) and not opts.noinfo:
            try:
                entries = self.history.tail(HISTORY_ENTRIES_SHOWN)
            except (IOError, OSError) as e:
                con.log_verbose("Could not read back {}: {}".format(self.history.path, e))
                entries = []
            self.report.history(self.history.path, entries)

        if not opts.noinfo and not opts.nonews:
            self.report.news()

        return exit_code(recommendation.severity)


def main(argv: Optional[Sequence[str]] = None) -> int:
    options = parse_args(argv)
    buddy = Apache2Buddy(options)
    try:
        return buddy.run()
    except KeyboardInterrupt:
        buddy.console.echo("\nOperation cancelled by user")
        return 1
    except Apache2BuddyError as e:
        buddy.console.show_box('crit', str(e))
        return 1
    except Exception as e:
        buddy.console.show_box('crit', "Unexpected error: {}".format(e))
        if options.verbose:
            traceback.print_exc()
        return 1
    finally:
        buddy.close()


if __name__ == "__main__":
    sys.exit(main())
