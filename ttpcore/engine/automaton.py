"""
ttpcore/engine/automaton.py
Drives an interactive program through a pseudo-terminal.
"""
#
# PURPOSE:
# Emulates a human operator typing into a terminal. Many programs (ssh, su,
# passwd, line-editing shells) check isatty() or open /dev/tty and behave
# differently on a plain pipe, so the child gets a real pty as its
# stdin/stdout/stderr and controlling terminal.
#
# HOW IT WORKS:
# 1. spawn(): openpty(), start `<shell> -c <command>` on the slave side in its
#    own session, register a reader for the master side on the event loop.
# 2. Two tasks run side by side:
#    - dialogue: for each (prompt, response) pair in order, wait until the
#      output seen since the previous match contains the prompt, then write
#      the response plus a newline. Sets the completion event at the end.
#    - waiter: waits for the completion event, then for end-of-stream on the
#      pty, then for the exit status.
#    Both share one ceiling deadline and the run's cancellation event.
# 3. close(): terminate the process group if still alive, unregister the
#    reader, close the master fd. Always runs, whatever happened.
#
# FAILURES:
# - prompt not seen before the deadline -> ExpectTimeoutError
# - pty reached end-of-stream first      -> EarlyExitError
# - write to the pty failed              -> SendError
# - cancellation event set               -> ExecutionAbortedError
#

from __future__ import annotations

import asyncio
import codecs
import fcntl
import logging
import os
import pty
import re
import struct
import termios
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Pattern, Sequence, Tuple

from ttpcore.base.errors import (
    EarlyExitError,
    ExecutionAbortedError,
    ExpectTimeoutError,
    SendError,
    SpawnError,
    ValidationError,
)
from ttpcore.executor.models import Response
from ttpcore.executor.shell import normalize_newlines, terminate_process

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DialogueResult:
    output: str
    exit_code: int
    matched: Tuple[str, ...]
    duration_ms: float


def compile_prompt(prompt: str) -> Pattern[str]:
    """Compile a prompt pattern, rejecting empty or malformed ones up front."""
    if not prompt:
        raise ValidationError("prompt pattern must not be empty", details={"pattern": prompt})
    try:
        return re.compile(prompt)
    except re.error as exc:
        raise ValidationError(
            f"invalid prompt pattern {prompt!r}: {exc}",
            details={"pattern": prompt},
        ) from exc


def _acquire_controlling_tty() -> None:
    # Runs in the child after setsid(); fd 0 is already the pty slave
    try:
        fcntl.ioctl(0, termios.TIOCSCTTY, 0)
    except OSError:
        pass


class InteractiveAutomaton:
    """
    One scripted dialogue with one subprocess.

    The pty and the process handle are owned exclusively by this instance
    from spawn() until close().
    """

    def __init__(
        self,
        command: str,
        responses: Sequence[Response],
        *,
        cwd: Path,
        env: Optional[Dict[str, str]] = None,
        shell: str = "/bin/sh",
        ceiling_timeout: float = 60.0,
        prompt_timeout: Optional[float] = None,
        terminate_grace: float = 2.0,
        rows: int = 24,
        cols: int = 80,
        cancel_event: Optional[asyncio.Event] = None,
        on_spawn: Optional[Callable[[], None]] = None,
        read_size: int = 4096,
    ):
        self.command = command
        self.responses = list(responses)
        self.patterns = [compile_prompt(r.prompt) for r in self.responses]
        self.cwd = Path(cwd)
        self.env = dict(os.environ if env is None else env)
        self.env.setdefault("TERM", "dumb")
        self.shell = shell
        self.ceiling_timeout = ceiling_timeout
        self.prompt_timeout = prompt_timeout
        self.terminate_grace = terminate_grace
        self.rows = rows
        self.cols = cols
        self.read_size = read_size
        self.on_spawn = on_spawn

        self.pid: Optional[int] = None
        self.returncode: Optional[int] = None
        self.matched: List[str] = []

        self._cancel = cancel_event if cancel_event is not None else asyncio.Event()
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._master_fd: Optional[int] = None
        self._reading = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        # Output produced since the last prompt match
        self._pending = ""
        self._transcript: List[str] = []
        self._wakeup = asyncio.Event()
        self._eof = asyncio.Event()
        self._completed = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def output(self) -> str:
        return normalize_newlines("".join(self._transcript))

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def __aenter__(self) -> "InteractiveAutomaton":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def spawn(self) -> None:
        if self._proc is not None:
            raise SpawnError("automaton already spawned", details={"command": self.command})

        master_fd, slave_fd = pty.openpty()
        try:
            winsize = struct.pack("HHHH", self.rows, self.cols, 0, 0)
            fcntl.ioctl(slave_fd, termios.TIOCSWINSZ, winsize)
            self._proc = await asyncio.create_subprocess_exec(
                self.shell, "-c", self.command,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=str(self.cwd),
                env=self.env,
                start_new_session=True,
                preexec_fn=_acquire_controlling_tty,
            )
        except OSError as exc:
            os.close(master_fd)
            raise SpawnError(
                f"failed to start command: {exc}",
                details={"command": self.command, "cwd": str(self.cwd)},
            ) from exc
        finally:
            # Only the child keeps the slave open, so its exit yields EOF on the master
            os.close(slave_fd)

        self.pid = self._proc.pid
        self._master_fd = master_fd
        fl = fcntl.fcntl(master_fd, fcntl.F_GETFL)
        fcntl.fcntl(master_fd, fcntl.F_SETFL, fl | os.O_NONBLOCK)
        asyncio.get_running_loop().add_reader(master_fd, self._on_readable)
        self._reading = True
        logger.info(f"[Automaton] PTY started. PID: {self.pid}, FD: {master_fd}")

    async def close(self) -> None:
        """Terminate the subprocess if needed and release the pty. Idempotent."""
        self._stop_reading()
        if self._proc is not None:
            if self._proc.returncode is None:
                logger.info(f"[Automaton] Terminating PID {self._proc.pid}")
            self.returncode = await terminate_process(self._proc, self.terminate_grace)
        if self._master_fd is not None:
            try:
                os.close(self._master_fd)
            except OSError:
                pass
            self._master_fd = None

    async def run(self) -> DialogueResult:
        """
        Spawn, run the dialogue and wait for the process to exit.
        The pty is always released and the process always reaped on return.
        """
        loop = asyncio.get_running_loop()
        start = loop.time()
        await self.spawn()
        deadline = start + self.ceiling_timeout
        if self.on_spawn is not None:
            self.on_spawn()

        dialogue = asyncio.create_task(self._dialogue(deadline), name=f"expect-dialogue-{self.pid}")
        waiter = asyncio.create_task(self._wait_for_exit(deadline), name=f"expect-waiter-{self.pid}")
        try:
            done, _ = await asyncio.wait({dialogue, waiter}, return_when=asyncio.FIRST_EXCEPTION)
            # The dialogue's failure is the root cause when both failed
            for task in (dialogue, waiter):
                if task in done and task.exception() is not None:
                    raise task.exception()
            exit_code = waiter.result()
        finally:
            for task in (dialogue, waiter):
                if not task.done():
                    task.cancel()
            await asyncio.gather(dialogue, waiter, return_exceptions=True)
            await self.close()

        return DialogueResult(
            output=self.output,
            exit_code=exit_code,
            matched=tuple(self.matched),
            duration_ms=(loop.time() - start) * 1000,
        )

    # ------------------------------------------------------------------
    # Reader callback (event loop thread)
    # ------------------------------------------------------------------

    def _on_readable(self) -> None:
        try:
            data = os.read(self._master_fd, self.read_size)
        except BlockingIOError:
            return
        except OSError:
            # EIO on Linux once every slave handle is closed
            data = b""
        if not data:
            self._mark_eof()
            return
        text = self._decoder.decode(data)
        self._pending += text
        self._transcript.append(text)
        self._wakeup.set()

    def _mark_eof(self) -> None:
        self._stop_reading()
        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._pending += tail
            self._transcript.append(tail)
        self._eof.set()
        self._wakeup.set()

    def _stop_reading(self) -> None:
        if self._reading and self._master_fd is not None:
            asyncio.get_running_loop().remove_reader(self._master_fd)
        self._reading = False

    # ------------------------------------------------------------------
    # Dialogue task
    # ------------------------------------------------------------------

    async def _dialogue(self, deadline: float) -> None:
        total = len(self.responses)
        for index, (pair, pattern) in enumerate(zip(self.responses, self.patterns), 1):
            await self._expect(pattern, deadline)
            logger.debug(f"[Automaton] Matched prompt {index}/{total}: {pair.prompt!r}")
            await self._send_line(pair.response, pair.prompt, deadline)
        self._completed.set()

    async def _expect(self, pattern: Pattern[str], deadline: float) -> None:
        loop = asyncio.get_running_loop()
        if self.prompt_timeout is not None:
            deadline = min(deadline, loop.time() + self.prompt_timeout)

        while True:
            normalized = normalize_newlines(self._pending)
            match = pattern.search(normalized)
            if match:
                self._pending = normalized[match.end():]
                self.matched.append(pattern.pattern)
                return
            if self._eof.is_set():
                raise EarlyExitError(
                    "process exited before the dialogue completed",
                    details=self._diagnostics(pattern.pattern),
                )
            if self._cancel.is_set():
                raise ExecutionAbortedError(
                    "run cancelled while waiting for prompt",
                    details=self._diagnostics(pattern.pattern),
                )
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ExpectTimeoutError(
                    f"timed out waiting for prompt {pattern.pattern!r}",
                    details=self._diagnostics(pattern.pattern),
                )
            self._wakeup.clear()
            await self._wait_any(self._wakeup.wait(), remaining)

    async def _send_line(self, text: str, prompt: str, deadline: float) -> None:
        loop = asyncio.get_running_loop()
        view = memoryview((text + "\n").encode("utf-8"))
        while view:
            try:
                written = os.write(self._master_fd, view)
            except BlockingIOError:
                if loop.time() >= deadline:
                    raise SendError(
                        "terminal input buffer stayed full until the deadline",
                        details=self._diagnostics(prompt),
                    )
                await asyncio.sleep(0.01)
                continue
            except (OSError, TypeError) as exc:
                raise SendError(
                    f"failed to send response: {exc}",
                    details=self._diagnostics(prompt),
                ) from exc
            view = view[written:]

    # ------------------------------------------------------------------
    # Waiter task
    # ------------------------------------------------------------------

    async def _wait_for_exit(self, deadline: float) -> int:
        await self._completed.wait()
        await self._wait_stage("end of output", self._eof.is_set, self._eof.wait, deadline)
        await self._wait_stage("process exit", lambda: self._proc.returncode is not None, self._proc.wait, deadline)
        self.returncode = self._proc.returncode
        logger.info(f"[Automaton] PID {self.pid} exited with status {self.returncode}")
        return self.returncode

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _wait_stage(
        self,
        stage: str,
        ready: Callable[[], bool],
        wait: Callable[[], Awaitable[object]],
        deadline: float,
    ) -> None:
        loop = asyncio.get_running_loop()
        while not ready():
            if self._cancel.is_set():
                raise ExecutionAbortedError(
                    f"run cancelled while waiting for {stage}",
                    details=self._diagnostics(None),
                )
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ExpectTimeoutError(
                    f"dialogue completed but timed out waiting for {stage}",
                    details=self._diagnostics(None),
                )
            await self._wait_any(wait(), remaining)

    async def _wait_any(self, aw: Awaitable[object], timeout: float) -> None:
        """Wait for `aw`, the cancel token, or the timeout, whichever comes first."""
        primary = asyncio.ensure_future(aw)
        cancel = asyncio.ensure_future(self._cancel.wait())
        try:
            await asyncio.wait({primary, cancel}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for fut in (primary, cancel):
                if not fut.done():
                    fut.cancel()

    def _diagnostics(self, pattern: Optional[str]) -> Dict[str, object]:
        details: Dict[str, object] = {
            "command": self.command,
            "output": self.output,
            "matched": list(self.matched),
            "pid": self.pid,
        }
        if pattern is not None:
            details["pattern"] = pattern
        return details
