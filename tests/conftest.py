import logging
import os
import stat
import sys
import textwrap

import pytest
from rich.logging import RichHandler


# Ensure 'src' is on sys.path for package imports in tests
TESTS_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(TESTS_DIR, os.pardir))
SRC_DIR = os.path.join(PROJECT_ROOT, "src")
if SRC_DIR not in sys.path:
    sys.path.insert(0, SRC_DIR)


@pytest.fixture
def write_script(tmp_path):
    """Write an executable shell script and return its path."""

    def _write(name: str, body: str, executable: bool = True):
        path = tmp_path / name
        path.write_text("#!/bin/sh\n" + textwrap.dedent(body), encoding="utf-8")
        if executable:
            path.chmod(path.stat().st_mode | stat.S_IXUSR)
        return path

    return _write


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo configure_logging() calls made by the code under test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    for handler in list(root.handlers):
        if handler not in handlers and type(handler) in (logging.StreamHandler, RichHandler):
            root.removeHandler(handler)
    root.setLevel(level)
