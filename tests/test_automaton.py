"""
Test the interactive pseudo-terminal automaton.

Covers the prompt/response dialogue, timeout and early-exit classification,
process teardown, write failures, and cancellation.
"""

import asyncio
import errno
import os
import shutil
import time

import pytest

from ttpcore.base.errors import (
    EarlyExitError,
    ExecutionAbortedError,
    ExpectTimeoutError,
    SendError,
    ValidationError,
)
from ttpcore.engine.automaton import InteractiveAutomaton, compile_prompt
from ttpcore.executor.models import Response


def _responses(*pairs):
    return [Response(prompt=p, response=r) for p, r in pairs]


@pytest.mark.asyncio
async def test_dialogue_answers_prompts_in_order(tmp_path, python_cmd, interactive_script):
    automaton = InteractiveAutomaton(
        f"{python_cmd} -u {interactive_script}",
        _responses(("Enter your name:", "John"), ("Enter your age:", "30")),
        cwd=tmp_path,
        ceiling_timeout=15,
    )
    result = await automaton.run()

    assert result.exit_code == 0
    assert "Hello, John!" in result.output
    assert "You are 30 years old." in result.output
    assert result.matched == ("Enter your name:", "Enter your age:")
    assert "\r\n" not in result.output
    print("✓ Dialogue completed with both responses")


@pytest.mark.asyncio
async def test_nonzero_exit_is_reported(tmp_path):
    automaton = InteractiveAutomaton(
        "printf 'q: '; read x; exit 3",
        _responses(("q: ", "anything")),
        cwd=tmp_path,
        ceiling_timeout=10,
    )
    result = await automaton.run()
    assert result.exit_code == 3


@pytest.mark.asyncio
async def test_timeout_terminates_process(tmp_path):
    automaton = InteractiveAutomaton(
        "sleep 30",
        _responses(("never printed", "x")),
        cwd=tmp_path,
        ceiling_timeout=0.5,
        terminate_grace=1.0,
    )
    started = time.monotonic()
    with pytest.raises(ExpectTimeoutError) as excinfo:
        await automaton.run()

    assert time.monotonic() - started < 10
    assert excinfo.value.details["pattern"] == "never printed"
    assert automaton.returncode is not None
    assert not automaton.running
    with pytest.raises(ProcessLookupError):
        os.kill(automaton.pid, 0)
    print("✓ Timed-out process was terminated and reaped")


@pytest.mark.asyncio
async def test_early_exit_is_distinct_from_timeout(tmp_path):
    automaton = InteractiveAutomaton(
        "echo bye",
        _responses(("Password:", "secret")),
        cwd=tmp_path,
        ceiling_timeout=10,
    )
    started = time.monotonic()
    with pytest.raises(EarlyExitError) as excinfo:
        await automaton.run()

    assert not isinstance(excinfo.value, ExpectTimeoutError)
    assert time.monotonic() - started < 5
    assert "bye" in excinfo.value.details["output"]
    assert excinfo.value.details["pattern"] == "Password:"


@pytest.mark.asyncio
async def test_matched_text_is_not_matched_again(tmp_path):
    automaton = InteractiveAutomaton(
        "printf 'Password: '; read x; echo done",
        _responses(("Password: ", "a"), ("Password: ", "b")),
        cwd=tmp_path,
        ceiling_timeout=10,
    )
    with pytest.raises(EarlyExitError):
        await automaton.run()
    assert automaton.matched == ["Password: "]


@pytest.mark.asyncio
async def test_prompt_matching_sees_normalized_newlines(tmp_path):
    automaton = InteractiveAutomaton(
        "printf 'done\\nnext: '; read x; echo \"got $x\"",
        _responses((r"done\nnext: ", "yes")),
        cwd=tmp_path,
        ceiling_timeout=10,
    )
    result = await automaton.run()
    assert "got yes" in result.output


@pytest.mark.asyncio
async def test_per_prompt_timeout(tmp_path):
    automaton = InteractiveAutomaton(
        "printf 'a: '; read x; sleep 30",
        _responses(("a: ", "1"), ("b: ", "2")),
        cwd=tmp_path,
        ceiling_timeout=30,
        prompt_timeout=0.5,
        terminate_grace=1.0,
    )
    started = time.monotonic()
    with pytest.raises(ExpectTimeoutError) as excinfo:
        await automaton.run()
    assert time.monotonic() - started < 10
    assert excinfo.value.details["pattern"] == "b: "
    assert excinfo.value.details["matched"] == ["a: "]


def _fail_writes_to_pty(monkeypatch, automaton, exc):
    real_write = os.write

    def write(fd, data):
        if fd == automaton._master_fd:
            raise exc
        return real_write(fd, data)

    monkeypatch.setattr(os, "write", write)


@pytest.mark.asyncio
async def test_failed_write_raises_send_error(tmp_path, monkeypatch):
    automaton = InteractiveAutomaton(
        "printf 'name: '; read x; echo \"hi $x\"",
        _responses(("name: ", "John")),
        cwd=tmp_path,
        ceiling_timeout=10,
        terminate_grace=1.0,
    )
    _fail_writes_to_pty(monkeypatch, automaton, OSError(errno.EIO, "Input/output error"))

    with pytest.raises(SendError) as excinfo:
        await automaton.run()

    assert excinfo.value.details["pattern"] == "name: "
    assert "name: " in excinfo.value.details["output"]
    assert automaton.returncode is not None
    assert not automaton.running
    print("✓ Write failure surfaced as SendError and the process was reaped")


@pytest.mark.asyncio
async def test_full_input_buffer_until_deadline_raises_send_error(tmp_path, monkeypatch):
    automaton = InteractiveAutomaton(
        "printf 'name: '; read x",
        _responses(("name: ", "John")),
        cwd=tmp_path,
        ceiling_timeout=1.0,
        terminate_grace=1.0,
    )
    _fail_writes_to_pty(monkeypatch, automaton, BlockingIOError(errno.EAGAIN, "Resource temporarily unavailable"))

    started = time.monotonic()
    with pytest.raises(SendError, match="stayed full") as excinfo:
        await automaton.run()

    assert time.monotonic() - started < 10
    assert excinfo.value.details["pattern"] == "name: "
    assert automaton.returncode is not None


def test_empty_prompt_is_rejected(tmp_path):
    with pytest.raises(ValidationError):
        compile_prompt("")
    with pytest.raises(ValidationError):
        InteractiveAutomaton("true", _responses(("", "x")), cwd=tmp_path)


def test_invalid_prompt_regex_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        compile_prompt("([unclosed")
    assert excinfo.value.details["pattern"] == "([unclosed"


@pytest.mark.asyncio
async def test_cancel_aborts_dialogue(tmp_path):
    cancel = asyncio.Event()
    automaton = InteractiveAutomaton(
        "sleep 30",
        _responses(("never", "x")),
        cwd=tmp_path,
        ceiling_timeout=30,
        terminate_grace=1.0,
        cancel_event=cancel,
    )
    asyncio.get_running_loop().call_later(0.3, cancel.set)
    started = time.monotonic()
    with pytest.raises(ExecutionAbortedError):
        await automaton.run()
    assert time.monotonic() - started < 10
    assert automaton.returncode is not None


@pytest.mark.asyncio
async def test_child_sees_a_terminal(tmp_path):
    automaton = InteractiveAutomaton(
        "if [ -t 0 ]; then echo tty-yes; else echo tty-no; fi",
        [],
        cwd=tmp_path,
        ceiling_timeout=10,
    )
    result = await automaton.run()
    assert "tty-yes" in result.output


@pytest.mark.asyncio
@pytest.mark.skipif(shutil.which("bash") is None, reason="bash not available")
async def test_ssh_like_session(tmp_path, write_script):
    script = write_script(
        "fake_ssh.sh",
        """\
        #!/bin/bash
        echo -n "bobbo@k8s6's password: "
        read -r pwd
        if [ "$pwd" == "Password123!" ]; then
            while true; do
                echo -n "bobbo@k8s6:~$ "
                read -r cmd
                if [ "$cmd" == "whoami" ]; then
                    echo "bobbo"
                    exit 0
                else
                    echo "Unknown command"
                fi
            done
        else
            echo "Authentication failed."
            exit 1
        fi
        """,
    )
    automaton = InteractiveAutomaton(
        f"bash {script}",
        _responses(("bobbo@k8s6's password: ", "Password123!"), (r"bobbo@k8s6:~\$ ", "whoami")),
        cwd=tmp_path,
        ceiling_timeout=15,
    )
    result = await automaton.run()
    assert result.exit_code == 0
    assert "bobbo\n" in result.output
    assert "Authentication failed." not in result.output
    print("✓ Password prompt and shell prompt both answered")
