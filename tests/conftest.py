"""Shared fixtures for the apache2buddy test suite"""

import io

import pytest

from apache2buddy.console import Console


@pytest.fixture
def stream():
    return io.StringIO()


@pytest.fixture
def console(stream):
    """Colourless verbose console writing into a buffer"""
    return Console(verbose=True, no_color=True, stream=stream)


@pytest.fixture
def quiet_console(stream):
    return Console(verbose=False, no_color=True, stream=stream)
