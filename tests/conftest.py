"""Pytest configuration for ttpcore."""
import os
import shlex
import sys
import textwrap

import pytest


def pytest_configure():
    # Keep test runs away from the real ~/.ttpforge and quiet by default.
    os.environ.setdefault("TTPCORE_LOG_LEVEL", "WARNING")
    os.environ.setdefault("TTPCORE_TEARDOWN_POLICY", "end_of_run")


INTERACTIVE_SCRIPT = textwrap.dedent(
    """
    name = input("Enter your name: ")
    age = input("Enter your age: ")
    print(f"Hello, {name}!")
    print(f"You are {age} years old.")
    """
)


@pytest.fixture
def python_cmd():
    """Shell-quoted interpreter for commands run through /bin/sh."""
    return shlex.quote(sys.executable)


@pytest.fixture
def interactive_script(tmp_path):
    path = tmp_path / "interactive.py"
    path.write_text(INTERACTIVE_SCRIPT)
    return path


@pytest.fixture
def write_script(tmp_path):
    """Write a helper script into the test's temp dir and return its path."""
    def _write(name, content, mode=0o755):
        path = tmp_path / name
        path.write_text(textwrap.dedent(content))
        path.chmod(mode)
        return path
    return _write
