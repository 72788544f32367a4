"""
apache2buddy - Apache memory sizing analysis.

Works out a safe MaxRequestWorkers/MaxClients range from the memory used
by the running Apache workers and the memory left on the host.

License: Apache 2.0
Github: https://github.com/richardforth/apache2buddy
"""

from apache2buddy.analysis import (
    aggregate,
    annotate,
    build,
    classify,
    estimate_range,
    generate_recommendation,
    recommend,
)
from apache2buddy.errors import Apache2BuddyError, InsufficientDataError
from apache2buddy.models import (
    ApacheConfig,
    ConcurrencyModel,
    MemoryStats,
    ProcessMemoryReading,
    Recommendation,
    SafeRange,
    Severity,
    SystemMemory,
)

VERSION = "0.1.0"
DEFAULT_PORT = 80
