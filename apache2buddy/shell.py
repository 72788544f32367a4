"""
Thin wrapper around subprocess used by every collector.
"""

import os
import shutil
import subprocess
from typing import List, Optional, Sequence, Tuple, Union

Command = Union[str, Sequence[str]]

# Exit status reported when a command overruns its timeout, as timeout(1) does
TIMEOUT_RETURNCODE = 124


def run_command(cmd: Command, timeout: Optional[float] = None) -> Tuple[int, str, str]:
    """Run a command and return returncode, stdout, stderr.

    A string is run through the shell, a sequence is executed directly.
    Commands that cannot be started report returncode 127.
    """
    shell = isinstance(cmd, str)
    try:
        result = subprocess.run(
            cmd,
            shell=shell,
            capture_output=True,
            text=True,
            timeout=timeout,
            env={**os.environ, "LANGUAGE": "en_GB.UTF-8", "LC_ALL": "C"}
        )
        return result.returncode, result.stdout.strip(), result.stderr.strip()
    except subprocess.TimeoutExpired:
        return TIMEOUT_RETURNCODE, "", "timed out after {}s".format(timeout)
    except OSError as e:
        return 127, "", str(e)


def which(name: str) -> Optional[str]:
    return shutil.which(name)


def missing_commands(names: Sequence[str]) -> List[str]:
    """Names from the list that are not on PATH"""
    return [name for name in names if which(name) is None]
