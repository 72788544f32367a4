"""
Terminal output helpers: colour palettes, message boxes and verbose tracing.

A Console is created once from the command line options and handed to
every collector, so verbose mode is never global state.
"""

import time
from contextlib import contextmanager


_BOLD = "\033[1m"
_RESET = "\033[0m"

_DARK_PALETTE = {
    'RED': "\033[91m",
    'GREEN': "\033[92m",
    'YELLOW': "\033[93m",
    'BLUE': "\033[94m",
    'CYAN': "\033[96m",
}


class Colors:
    """ANSI color codes for terminal output"""
    def __init__(self, no_color=False, light_bg=False):
        for name, code in _DARK_PALETTE.items():
            if no_color:
                code = ""
            elif light_bg:
                # Bold only, colours are unreadable on light backgrounds
                code = _BOLD
            setattr(self, name, code)
        self.BOLD = "" if no_color else _BOLD
        self.ENDC = "" if no_color else _RESET


# Box kinds silenced by each quiet flag
_INFO_BOXES = ('info', 'advisory')
_OK_BOXES = ('ok', 'shortok')
_WARN_BOXES = ('warn',)


class Console:
    """Prints report lines and verbose traces"""

    def __init__(self, verbose=False, no_color=False, light_bg=False,
                 noinfo=False, no_ok=False, nowarn=False, stream=None):
        self.verbose = verbose
        self.colors = Colors(no_color, light_bg)
        self.noinfo = noinfo
        self.no_ok = no_ok
        self.nowarn = nowarn
        self.stream = stream

    def echo(self, message: str = ""):
        print(message, file=self.stream)

    def log_verbose(self, message: str):
        """Log verbose message if verbose mode is enabled"""
        if self.verbose:
            self.echo("VERBOSE: {}".format(message))

    def show_box(self, box_type: str, message: str):
        """Show formatted message boxes"""
        if self.noinfo and box_type in _INFO_BOXES:
            return
        if self.no_ok and box_type in _OK_BOXES:
            return
        if self.nowarn and box_type in _WARN_BOXES:
            return

        c = self.colors
        boxes = {
            'advisory': "[ {}{}{} ] ".format(c.BOLD, c.YELLOW + "@@", c.ENDC),
            'info': "[ {}{}{} ] ".format(c.BOLD, c.BLUE + "--", c.ENDC),
            'ok': "[ {}{}{} ] ".format(c.BOLD, c.GREEN + "OK", c.ENDC),
            'warn': "[ {}{}{} ] ".format(c.BOLD, c.YELLOW + ">>", c.ENDC),
            'crit': "[ {}{}{} ] ".format(c.BOLD, c.RED + "!!", c.ENDC),
            'shortok': "[ {}{} ]".format(c.GREEN + "OK", c.ENDC)
        }

        if box_type in boxes:
            self.echo("{}{}".format(boxes[box_type], message))

    def highlight(self, value, color: str = "CYAN") -> str:
        """Wrap a value in a colour, e.g. for numbers inside a message"""
        return "{}{}{}".format(getattr(self.colors, color), value, self.colors.ENDC)

    def insert_hrule(self):
        """Print horizontal rule"""
        self.echo("-" * 80)

    def section(self, title: str):
        self.log_verbose("--- {} ---".format(title))

    @contextmanager
    def timer(self, name: str):
        """Trace how long a collection step took"""
        start = time.monotonic()
        try:
            yield
        finally:
            self.log_verbose("{} took {:.3f}s".format(name, time.monotonic() - start))
