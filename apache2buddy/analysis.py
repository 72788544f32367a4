"""
MaxRequestWorkers recommendation engine.

Turns worker memory readings, system memory and the parsed Apache
configuration into a Recommendation. Nothing in this module performs I/O
or keeps state between calls.
"""

import math
from typing import Iterable

from apache2buddy.errors import InsufficientDataError
from apache2buddy.models import (
    Annotations,
    ApacheConfig,
    ConcurrencyModel,
    MemoryStats,
    ProcessMemoryReading,
    Recommendation,
    SafeRange,
    Severity,
    SystemMemory,
    Verdict,
)

# Fraction of the theoretical ceiling considered safe (90-100% of remaining RAM)
SAFETY_MARGIN = 0.9

NO_PROCESSES_MESSAGE = "No processes to analyze"
OK_MESSAGE = "Configuration appears acceptable"
WARNING_MESSAGE = "Configuration is on the high side but acceptable"
CRITICAL_MESSAGE = "Consider reducing MaxClients/MaxRequestWorkers to avoid memory issues"
NO_MEMORY_MESSAGE = ("No memory is left for Apache workers once other services are "
                     "accounted for, reduce MaxClients/MaxRequestWorkers or move services elsewhere")
BACKEND_NOTE = ("Apache is running in {} mode. Check manually for backend processes "
                "such as PHP-FPM and pm.max_children.")


def aggregate(readings: Iterable[ProcessMemoryReading]) -> MemoryStats:
    """Reduce worker readings to smallest, largest, average and total memory"""
    count = 0
    total = 0.0
    smallest = largest = 0.0

    for reading in readings:
        memory = reading.resident_memory_mb
        if count == 0:
            smallest = largest = memory
        else:
            smallest = min(smallest, memory)
            largest = max(largest, memory)
        total += memory
        count += 1

    if count == 0:
        return MemoryStats()

    return MemoryStats(
        smallest_mb=smallest,
        largest_mb=largest,
        average_mb=total / count,
        total_mb=total,
        process_count=count,
    )


def usable_memory_mb(memory: SystemMemory) -> int:
    """Available memory clamped to the range [0, total]"""
    available = min(memory.available_mb, memory.total_mb)
    return max(0, available)


def estimate_range(stats: MemoryStats, memory: SystemMemory) -> SafeRange:
    """Compute the safe worker limit range from the largest worker.

    The largest worker is used rather than the average because workers
    grow under load.
    """
    if stats.process_count == 0 or stats.largest_mb <= 0:
        raise InsufficientDataError(NO_PROCESSES_MESSAGE)

    available = usable_memory_mb(memory)
    if available <= 0:
        return SafeRange(min_safe_limit=0, max_safe_limit=0)

    max_safe = math.floor(available / stats.largest_mb)
    min_safe = math.floor(available / stats.largest_mb * SAFETY_MARGIN)
    return SafeRange(min_safe_limit=max(0, min_safe), max_safe_limit=max(0, max_safe))


def classify(current_limit: int, safe_range: SafeRange) -> Verdict:
    """Place the configured limit in the OK, WARNING or CRITICAL region"""
    if current_limit <= safe_range.min_safe_limit:
        return Verdict(Severity.OK, OK_MESSAGE)
    if current_limit <= safe_range.max_safe_limit:
        return Verdict(Severity.WARNING, WARNING_MESSAGE)
    if safe_range.max_safe_limit == 0:
        return Verdict(Severity.CRITICAL, NO_MEMORY_MESSAGE)
    return Verdict(Severity.CRITICAL, CRITICAL_MESSAGE)


def utilization_percent(current_limit: int, largest_mb: float, memory: SystemMemory) -> float:
    """Share of available memory the configured limit could consume at peak.

    Reported as 0.0 when no memory is available so the figure stays finite;
    the verdict already flags that case.
    """
    available = usable_memory_mb(memory)
    if available <= 0:
        return 0.0
    return current_limit * largest_mb / available * 100


def annotate(virtual_host_count: int, max_safe_limit: int,
             concurrency_model: ConcurrencyModel) -> Annotations:
    """Advisories that sit next to the verdict without changing it"""
    note = ""
    if concurrency_model.is_threaded:
        note = BACKEND_NOTE.format(concurrency_model.value)

    return Annotations(
        virtual_host_warning=virtual_host_count > max_safe_limit,
        concurrency_model_note=note,
    )


def build(current_limit: int, safe_range: SafeRange, verdict: Verdict,
          annotations: Annotations, utilization: float) -> Recommendation:
    return Recommendation(
        current_limit=current_limit,
        min_safe_limit=safe_range.min_safe_limit,
        max_safe_limit=safe_range.max_safe_limit,
        conservative_recommendation=safe_range.min_safe_limit,
        severity=verdict.severity,
        message=verdict.message,
        utilization_percent=utilization,
        virtual_host_warning=annotations.virtual_host_warning,
        concurrency_model_note=annotations.concurrency_model_note,
    )


def error_recommendation(message: str = NO_PROCESSES_MESSAGE) -> Recommendation:
    return Recommendation(severity=Severity.ERROR, message=message)


def recommend(stats: MemoryStats, memory: SystemMemory, config: ApacheConfig) -> Recommendation:
    """Run estimate, classify, annotate and build over precomputed stats.

    InsufficientDataError is turned into an ERROR recommendation here so
    callers always get a Recommendation back.
    """
    try:
        safe_range = estimate_range(stats, memory)
    except InsufficientDataError as e:
        return error_recommendation(str(e))

    current_limit = config.configured_limit
    verdict = classify(current_limit, safe_range)
    annotations = annotate(config.virtual_host_count, safe_range.max_safe_limit,
                           config.concurrency_model)
    utilization = utilization_percent(current_limit, stats.largest_mb, memory)
    return build(current_limit, safe_range, verdict, annotations, utilization)


def generate_recommendation(readings: Iterable[ProcessMemoryReading], memory: SystemMemory,
                            config: ApacheConfig) -> Recommendation:
    """Full pipeline from raw readings to a Recommendation"""
    return recommend(aggregate(readings), memory, config)
