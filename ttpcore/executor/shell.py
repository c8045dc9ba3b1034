"""
ttpcore/executor/shell.py
Non-interactive command execution and process-group teardown.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from ttpcore.base.errors import CommandTimeoutError, ExecutionAbortedError, SpawnError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandOutcome:
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: float


def normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n")


def _signal_group(pid: int, sig: int) -> None:
    # Children run in their own session, so the pid is also the group id
    try:
        os.killpg(pid, sig)
    except ProcessLookupError:
        pass
    except PermissionError:
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            pass


async def terminate_process(proc: asyncio.subprocess.Process, grace: float = 2.0) -> int:
    """SIGTERM the process group, then SIGKILL it if it outlives the grace period."""
    if proc.returncode is not None:
        return proc.returncode
    _signal_group(proc.pid, signal.SIGTERM)
    try:
        return await asyncio.wait_for(proc.wait(), timeout=grace)
    except asyncio.TimeoutError:
        logger.warning(f"[Shell] pid {proc.pid} ignored SIGTERM; killing process group")
        _signal_group(proc.pid, signal.SIGKILL)
        return await proc.wait()


async def run_command(
    command: str,
    *,
    cwd: Path,
    env: Dict[str, str],
    shell: str = "/bin/sh",
    timeout: float = 60.0,
    cancel_event: Optional[asyncio.Event] = None,
    terminate_grace: float = 2.0,
    on_spawn: Optional[Callable[[], None]] = None,
) -> CommandOutcome:
    """
    Run `<shell> -c <command>` with captured stdout/stderr.

    Raises:
        SpawnError: the shell could not be started (bad cwd, missing shell)
        CommandTimeoutError: the command outlived `timeout`
        ExecutionAbortedError: `cancel_event` was set while the command ran
    """
    loop = asyncio.get_running_loop()
    start = loop.time()
    try:
        proc = await asyncio.create_subprocess_exec(
            shell, "-c", command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd),
            env=env,
            start_new_session=True,
        )
    except OSError as exc:
        raise SpawnError(
            f"failed to start command: {exc}",
            details={"command": command, "cwd": str(cwd)},
        ) from exc

    logger.debug(f"[Shell] Started pid {proc.pid}: {command.strip()}")
    if on_spawn is not None:
        on_spawn()

    communicate = asyncio.ensure_future(proc.communicate())
    cancel_wait = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None
    waiters = {communicate} if cancel_wait is None else {communicate, cancel_wait}
    try:
        done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        if communicate not in done:
            await terminate_process(proc, terminate_grace)
            if cancel_wait is not None and cancel_wait in done:
                raise ExecutionAbortedError(
                    "run cancelled while command was running",
                    details={"command": command},
                )
            raise CommandTimeoutError(
                f"command did not finish within {timeout}s",
                details={"command": command, "timeout": timeout},
            )
        stdout, stderr = communicate.result()
    finally:
        if cancel_wait is not None:
            cancel_wait.cancel()
        if proc.returncode is None:
            await terminate_process(proc, terminate_grace)
        if not communicate.done():
            communicate.cancel()

    return CommandOutcome(
        stdout=normalize_newlines(stdout.decode("utf-8", errors="replace")),
        stderr=normalize_newlines(stderr.decode("utf-8", errors="replace")),
        exit_code=proc.returncode,
        duration_ms=(loop.time() - start) * 1000,
    )
