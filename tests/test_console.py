"""
Tests for console output helpers.
"""

import io

from apache2buddy.console import Colors, Console


def make_console(**kwargs):
    stream = io.StringIO()
    return Console(no_color=True, stream=stream, **kwargs), stream


def test_boxes():
    console, stream = make_console()
    console.show_box('info', "hello")
    console.show_box('crit', "bad")
    console.show_box('shortok', "fine")
    assert stream.getvalue().splitlines() == ["[ -- ] hello", "[ !! ] bad", "[ OK ]fine"]


def test_unknown_box_ignored():
    console, stream = make_console()
    console.show_box('nonsense', "x")
    assert stream.getvalue() == ""


def test_quiet_flags():
    console, stream = make_console(noinfo=True, no_ok=True, nowarn=True)
    for kind in ('info', 'advisory', 'ok', 'shortok', 'warn'):
        console.show_box(kind, kind)
    console.show_box('crit', "still shown")
    assert stream.getvalue() == "[ !! ] still shown\n"


def test_verbose_only_when_enabled():
    console, stream = make_console()
    console.log_verbose("hidden")
    assert stream.getvalue() == ""

    console, stream = make_console(verbose=True)
    console.log_verbose("shown")
    assert stream.getvalue() == "VERBOSE: shown\n"


def test_timer_traces_duration():
    console, stream = make_console(verbose=True)
    with console.timer("Step"):
        pass
    assert stream.getvalue().startswith("VERBOSE: Step took ")


def test_palettes():
    assert Colors(no_color=True).RED == ""
    assert Colors(light_bg=True).RED == "\033[1m"
    assert Colors().RED == "\033[91m"


def test_highlight_and_hrule():
    console, stream = make_console()
    assert console.highlight(42) == "42"
    console.insert_hrule()
    assert stream.getvalue() == "-" * 80 + "\n"


def test_palette_members():
    colors = Colors()
    for name in ('RED', 'GREEN', 'YELLOW', 'BLUE', 'CYAN', 'BOLD', 'ENDC'):
        assert getattr(colors, name)
    assert not hasattr(colors, 'PURPLE')
    assert Colors(light_bg=True).ENDC == "\033[0m"
    assert Colors(no_color=True).BOLD == ""


def test_debug_box_removed():
    console, stream = make_console()
    console.show_box('debug', "x")
    assert stream.getvalue() == ""
