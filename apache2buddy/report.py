"""
Console report for a completed analysis.
"""

from typing import List, Optional, Sequence, Tuple

from apache2buddy.models import (
    ApacheConfig,
    ConcurrencyModel,
    LogAnalysis,
    MemoryStats,
    Recommendation,
    ServerStatusSnapshot,
    ServiceUsage,
    Severity,
    SystemMemory,
    Uptime,
)

EXIT_CODES = {
    Severity.OK: 0,
    Severity.WARNING: 1,
    Severity.CRITICAL: 2,
    Severity.ERROR: 2,
}

# Apache's compiled-in ServerLimit for prefork
PREFORK_SERVER_LIMIT = 256

IMPORTANT_MESSAGE = (
    "** IMPORTANT MESSAGE **\n\n"
    "apache2buddy is not a troubleshooting tool.\n"
    "Do not use it to try and determine why your site\n"
    "went down or why it was slow.\n\n"
    "Perform some proper investigations first, and\n"
    "only if you found that you were hitting the\n"
    "MaxRequestWorkers limit, or if your server was\n"
    "running out of memory (primarily due to\n"
    "excessive memory usage by Apache), should you\n"
    "run this script and refer to its output.."
)


def exit_code(severity: Severity) -> int:
    """Process exit status for a verdict"""
    return EXIT_CODES[severity]


def projected_usage(limit: int, largest_mb: float, memory: SystemMemory) -> Tuple[float, float]:
    """Peak memory for a worker limit in MB, and its share of available memory"""
    usage = limit * largest_mb
    if memory.available_mb <= 0:
        return usage, 0.0
    return usage, usage / memory.available_mb * 100


def suggested_config(config: ApacheConfig, limit: int) -> List[str]:
    """Configuration block that applies the recommended worker limit"""
    model = config.concurrency_model
    lines = ["<IfModule mpm_{}_module>".format(model.value)]
    if model is ConcurrencyModel.PREFORK and limit > PREFORK_SERVER_LIMIT:
        lines.append("    ServerLimit {}".format(limit))
    lines.append("    {} {}".format(config.limit_directive, limit))
    lines.append("</IfModule>")
    return lines


class ReportWriter:
    """Prints the findings in the familiar apache2buddy layout"""

    def __init__(self, console):
        self.console = console

    def header(self, hostname: str):
        c = self.console.colors
        self.console.echo("{}{}{}".format(c.GREEN, '#' * 80, c.ENDC))
        self.console.echo("apache2buddy report for {}".format(hostname))
        self.console.echo("{}{}{}".format(c.GREEN, '#' * 80, c.ENDC))

    def render(self, recommendation: Recommendation, stats: MemoryStats, memory: SystemMemory,
               config: ApacheConfig, services: Sequence[ServiceUsage] = (),
               snapshot: Optional[ServerStatusSnapshot] = None,
               log_analysis: Optional[LogAnalysis] = None,
               uptime: Optional[Uptime] = None, control_panel: str = ""):
        """Print the complete report"""
        con = self.console
        c = con.colors

        con.echo()
        con.insert_hrule()
        con.echo("{}### GENERAL FINDINGS & RECOMMENDATIONS ###{}".format(c.BOLD, c.ENDC))
        con.insert_hrule()

        if uptime is not None and uptime.days == 0:
            con.show_box('crit', "{}*** LOW UPTIME ***.{}".format(c.RED, c.ENDC))
            con.show_box('advisory', "The following recommendations may be misleading - "
                         "apache has been restarted within the last 24 hours.")

        self._settings(stats, memory, config, services, control_panel)
        if snapshot is not None:
            self._status(snapshot)
        self._verdict(recommendation, stats, memory, config)
        if log_analysis is not None:
            self._logs(log_analysis)
        if config.config_path:
            con.echo("Configuration file: {}".format(config.config_path))
        if con.verbose:
            self._debug(recommendation, stats, memory, config, services, snapshot, log_analysis)
        con.insert_hrule()

    def _settings(self, stats: MemoryStats, memory: SystemMemory, config: ApacheConfig,
                  services: Sequence[ServiceUsage], control_panel: str):
        con = self.console
        c = con.colors
        con.echo("Settings considered for this report:")
        con.echo("\tYour server's physical RAM:\t\t\t\t {} MB".format(con.highlight(memory.total_mb)))
        for usage in services:
            con.echo("\t{} memory usage:\t\t\t\t\t {} MB".format(usage.service.label,
                                                             con.highlight(usage.memory_mb)))
        if memory.reserved_mb:
            con.echo("\tMemory used by other services:\t\t\t\t {} MB".format(
                con.highlight(memory.reserved_mb)))
        con.echo("{}\tRemaining Memory after other services considered:\t {}{} MB".format(
            c.BOLD, con.highlight(memory.available_mb), c.ENDC))
        con.echo("\tApache's {} directive:\t\t\t {} <--------- Current Setting".format(
            config.limit_directive, con.highlight(config.configured_limit)))
        if config.server_limit is not None:
            con.echo("\tApache's ServerLimit directive:\t\t\t\t {}".format(con.highlight(config.server_limit)))
        if config.threads_per_child is not None:
            con.echo("\tApache's ThreadsPerChild directive:\t\t\t {}".format(
                con.highlight(config.threads_per_child)))
        con.echo("\tApache MPM Model:\t\t\t\t\t {}".format(con.highlight(config.mpm_name)))
        if config.version:
            con.echo("\tApache version:\t\t\t\t\t\t {}".format(
                con.highlight("{}/{}".format(config.server_name, config.version))))
        if control_panel:
            con.show_box('info', "Control panel detected: {}".format(con.highlight(control_panel)))

        if stats.process_count:
            con.echo("\tApache worker processes analysed:\t\t\t {}".format(con.highlight(stats.process_count)))
            con.echo("\tSmallest Apache process (by memory):\t\t\t {} MB".format(
                con.highlight("{:.2f}".format(stats.smallest_mb))))
            con.echo("\tAverage Apache process (by memory):\t\t\t {} MB".format(
                con.highlight("{:.2f}".format(stats.average_mb))))
            con.echo("\tLargest Apache process (by memory):\t\t\t {} MB".format(
                con.highlight("{:.2f}".format(stats.largest_mb))))

    def _status(self, snapshot: ServerStatusSnapshot):
        con = self.console
        con.echo("Server status (mod_status):")
        if snapshot.server_version:
            con.echo("\tServer version:\t\t\t\t\t\t {}".format(con.highlight(snapshot.server_version)))
        con.echo("\tBusy / idle / total workers:\t\t\t\t {} / {} / {}".format(
            con.highlight(snapshot.busy_workers), con.highlight(snapshot.idle_workers),
            con.highlight(snapshot.total_workers)))
        if snapshot.connections_total:
            con.echo("\tOpen connections:\t\t\t\t\t {}".format(con.highlight(snapshot.connections_total)))
        con.echo("\tLoad average:\t\t\t\t\t\t {:.2f} {:.2f} {:.2f}".format(
            snapshot.load_1, snapshot.load_5, snapshot.load_15))
        if snapshot.extended_enabled:
            con.echo("\tRequests per second:\t\t\t\t\t {}".format(
                con.highlight("{:.2f}".format(snapshot.requests_per_sec))))
            con.echo("\tBytes per second / per request:\t\t\t {} / {}".format(
                con.highlight("{:.0f}".format(snapshot.bytes_per_sec)),
                con.highlight("{:.0f}".format(snapshot.bytes_per_request))))
            con.echo("\tAverage request duration:\t\t\t\t {} ms".format(
                con.highlight("{:.2f}".format(snapshot.duration_per_request))))
        else:
            con.show_box('advisory', "ExtendedStatus is off, request metrics are unavailable")

        workers = snapshot.workers
        if workers.total_slots:
            con.echo("\tScoreboard: {} waiting, {} reading, {} sending, {} keepalive, {} open".format(
                workers.waiting, workers.reading, workers.sending, workers.keepalive, workers.open_slot))

        if snapshot.top_clients:
            con.echo("\tTop clients by active requests:")
            for client in snapshot.top_clients:
                con.echo("\t\t{:<40} {}".format(client.ip, client.requests))

    def _verdict(self, recommendation: Recommendation, stats: MemoryStats, memory: SystemMemory,
                 config: ApacheConfig):
        con = self.console
        c = con.colors
        directive = config.limit_directive

        if recommendation.severity is Severity.ERROR:
            con.show_box('crit', "{}{}{}".format(c.RED, recommendation.message, c.ENDC))
            return

        if recommendation.severity is Severity.OK:
            con.show_box('shortok', "\t{}Your {} setting is within an acceptable range.{}".format(
                c.GREEN, directive, c.ENDC))
        elif recommendation.severity is Severity.WARNING:
            con.show_box('warn', "{}Your {} setting is on the high side.{} {}".format(
                c.YELLOW, directive, c.ENDC, recommendation.message))
        else:
            con.show_box('crit', "{}Your {} setting is too high.{} {}".format(
                c.RED, directive, c.ENDC, recommendation.message))

        con.echo("{}\tYour recommended {} setting (based on available memory) is between {} and {}{}. "
                 "<-- Acceptable Range (90-100% of Remaining RAM)".format(
                     c.YELLOW, directive, recommendation.min_safe_limit,
                     recommendation.max_safe_limit, c.ENDC))

        color = "RED" if recommendation.utilization_percent > 100 else "CYAN"
        current_mb, _ = projected_usage(recommendation.current_limit, stats.largest_mb, memory)
        con.echo("\tMax potential memory usage:\t\t\t\t {} MB".format(
            con.highlight("{:.1f}".format(current_mb), color)))
        con.echo("\tPercentage of REMAINING RAM allocated to Apache:\t {}%".format(
            con.highlight("{:.2f}".format(recommendation.utilization_percent), color)))

        if recommendation.conservative_recommendation != recommendation.current_limit:
            projected_mb, projected_pct = projected_usage(recommendation.conservative_recommendation,
                                                          stats.largest_mb, memory)
            con.echo("\tProjected memory usage at {} {}:\t\t\t {} MB ({}% of remaining)".format(
                directive, recommendation.conservative_recommendation,
                con.highlight("{:.1f}".format(projected_mb)), con.highlight("{:.1f}".format(projected_pct))))

        if recommendation.virtual_host_warning:
            con.show_box('warn', "There are more virtual hosts than the maximum safe worker limit; "
                         "each site may get less than one worker at peak")
        if recommendation.concurrency_model_note:
            con.show_box('advisory', recommendation.concurrency_model_note)

        if recommendation.severity is not Severity.OK and recommendation.conservative_recommendation > 0:
            con.echo("Suggested configuration:")
            for line in suggested_config(config, recommendation.conservative_recommendation):
                con.echo("\t{}".format(line))

    def _logs(self, log_analysis: LogAnalysis):
        con = self.console
        if not log_analysis.log_file:
            con.show_box('info', "No readable Apache error log found")
            return

        if log_analysis.maxclients_checked:
            if log_analysis.max_clients_hits:
                con.show_box('crit', "{} hit the worker limit {} times in the last {} lines".format(
                    log_analysis.log_file, con.highlight(log_analysis.max_clients_hits),
                    log_analysis.analyzed_lines))
            else:
                con.show_box('ok', "No worker limit hits in {}".format(log_analysis.log_file))

        if log_analysis.php_checked:
            if log_analysis.php_fatal_errors:
                con.show_box('warn', "{} PHP fatal errors found in {}".format(
                    con.highlight(log_analysis.php_fatal_errors), log_analysis.log_file))
                for line in log_analysis.recent_errors:
                    con.echo("\t{}".format(line))
            else:
                con.show_box('ok', "No PHP fatal errors in {}".format(log_analysis.log_file))

    def _debug(self, recommendation: Recommendation, stats: MemoryStats, memory: SystemMemory,
               config: ApacheConfig, services: Sequence[ServiceUsage],
               snapshot: Optional[ServerStatusSnapshot], log_analysis: Optional[LogAnalysis]):
        """Raw figures behind the report, shown in verbose mode"""
        con = self.console
        con.section("Detailed debug information")
        con.log_verbose("System: total {} MB, available {} MB, reserved {} MB".format(
            memory.total_mb, memory.available_mb, memory.reserved_mb))
        for usage in services:
            con.log_verbose("  {}: {} MB".format(usage.service.label, usage.memory_mb))
        con.log_verbose("Config: server {} {}, MPM {}, file {}".format(
            config.server_name, config.version or "unknown", config.mpm_name, config.config_path or "none"))
        con.log_verbose("Config: MaxClients {}, MaxRequestWorkers {}, ServerLimit {}, ThreadsPerChild {}, "
                        "effective limit {}".format(config.max_clients, config.max_request_workers,
                                                    config.server_limit, config.threads_per_child,
                                                    config.configured_limit))
        con.log_verbose("Processes: {} workers, smallest {:.2f} MB, average {:.2f} MB, largest {:.2f} MB, "
                        "total {:.2f} MB".format(stats.process_count, stats.smallest_mb, stats.average_mb,
                                                 stats.largest_mb, stats.total_mb))
        con.log_verbose("Recommendation: {}".format(recommendation))
        if snapshot is not None:
            con.log_verbose("Status: {}".format(snapshot))
        if log_analysis is not None:
            con.log_verbose("Logs: {}".format(log_analysis))

    def history(self, log_path: str, entries: Sequence[str]):
        con = self.console
        con.show_box('info', "A log file entry has been made in: {} for future reference.".format(log_path))
        if entries:
            con.echo("Last {} entries:".format(len(entries)))
            for entry in entries:
                con.echo(entry)
            con.echo()

    def news(self):
        c = self.console.colors
        self.console.echo("\n{}{}{}\n".format(c.RED, IMPORTANT_MESSAGE, c.ENDC))
