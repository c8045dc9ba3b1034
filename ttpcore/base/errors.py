"""
ttpcore/base/errors.py
Structured error taxonomy for the TTP engine.
"""
#
# PURPOSE:
# Every failure the engine can surface has a stable error code, a human
# message, and a details dictionary with diagnostic context (the prompt that
# was expected, the output seen so far, the exit code...).
#
# ERROR CODE FORMAT:
# - STEP_XXX: Structural / templating problems with a step definition
# - PROC_XXX: Subprocess lifecycle (spawn, exit, non-zero status)
# - EXPECT_XXX: Interactive dialogue failures
# - CLEANUP_XXX: Teardown failures
# - LOAD_XXX / BRIDGE_XXX: Collaborators (loader, ART bridge)
# - RUN_XXX: Run-level conditions (abort)
#
# USAGE:
#   from ttpcore.base.errors import ExpectTimeoutError
#
#   raise ExpectTimeoutError(
#       "timed out waiting for prompt",
#       details={"pattern": "Password:", "output": buffer},
#   )
#

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    # Step definition errors
    STEP_INVALID = "STEP_001"
    STEP_TEMPLATE = "STEP_002"

    # Process errors
    PROC_SPAWN_FAILED = "PROC_001"
    PROC_EARLY_EXIT = "PROC_002"
    PROC_NONZERO_EXIT = "PROC_003"
    PROC_TIMEOUT = "PROC_004"

    # Expect/send errors
    EXPECT_TIMEOUT = "EXPECT_001"
    EXPECT_SEND_FAILED = "EXPECT_002"

    # Cleanup errors
    CLEANUP_FAILED = "CLEANUP_001"
    CLEANUP_AGGREGATE = "CLEANUP_002"

    # Collaborator errors
    LOAD_INVALID = "LOAD_001"
    LOAD_FILE_NOT_FOUND = "LOAD_002"
    BRIDGE_INVALID = "BRIDGE_001"

    # Run errors
    RUN_ABORTED = "RUN_001"


class TTPError(Exception):
    """
    Base exception for the engine with structured error information.

    Attributes:
        code: ErrorCode enum value
        message: Human-readable error message
        details: Dictionary with additional context
    """

    code: ErrorCode = ErrorCode.STEP_INVALID

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        code: Optional[ErrorCode] = None,
    ):
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def describe(self) -> str:
        """Render the message plus the diagnostic context worth showing a user."""
        lines = [f"[{self.code.value}] {self.message}"]
        if "step" in self.details:
            lines.append(f"  step:    {self.details['step']}")
        if "pattern" in self.details:
            lines.append(f"  expected: {self.details['pattern']!r}")
        if "exit_code" in self.details:
            lines.append(f"  exit code: {self.details['exit_code']}")
        output = self.details.get("output")
        if output:
            lines.append("  output so far:")
            lines.extend(f"    | {line}" for line in str(output).splitlines())
        return "\n".join(lines)


class ValidationError(TTPError):
    """A step is structurally invalid and must not be executed."""

    code = ErrorCode.STEP_INVALID


class TemplateRenderError(TTPError):
    """A templated field referenced an unknown argument or step output."""

    code = ErrorCode.STEP_TEMPLATE


class SpawnError(TTPError):
    """The subprocess could not be started."""

    code = ErrorCode.PROC_SPAWN_FAILED


class ExpectTimeoutError(TTPError):
    """The ceiling or per-prompt deadline expired before a prompt appeared."""

    code = ErrorCode.EXPECT_TIMEOUT


class EarlyExitError(TTPError):
    """The subprocess closed its terminal before the dialogue completed."""

    code = ErrorCode.PROC_EARLY_EXIT


class SendError(TTPError):
    """Writing a response to the subprocess failed."""

    code = ErrorCode.EXPECT_SEND_FAILED


class CommandFailedError(TTPError):
    """The command ran to completion but exited with a non-zero status."""

    code = ErrorCode.PROC_NONZERO_EXIT

    def __init__(self, message: str, result: Any = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.result = result


class CommandTimeoutError(TTPError):
    """A non-interactive command outlived the ceiling timeout."""

    code = ErrorCode.PROC_TIMEOUT


class ExecutionAbortedError(TTPError):
    """The run was cancelled before the step could finish."""

    code = ErrorCode.RUN_ABORTED


class CleanupError(TTPError):
    """A single teardown action failed."""

    code = ErrorCode.CLEANUP_FAILED


class CleanupAggregateError(TTPError):
    """One or more teardown actions failed; carries every failure, not just the first."""

    code = ErrorCode.CLEANUP_AGGREGATE

    def __init__(self, failures: List[CleanupError]):
        self.failures = list(failures)
        names = ", ".join(str(f.details.get("step", "?")) for f in self.failures)
        super().__init__(
            f"{len(self.failures)} cleanup action(s) failed: {names}",
            details={"failures": [f.to_dict() for f in self.failures]},
        )


class LoaderError(TTPError):
    """A procedure definition could not be parsed or resolved."""

    code = ErrorCode.LOAD_INVALID


class BridgeError(TTPError):
    """An imported technique corpus could not be converted."""

    code = ErrorCode.BRIDGE_INVALID


def handle_error(error: Exception, context: Optional[str] = None) -> TTPError:
    """
    Convert a generic exception to a TTPError.

    Args:
        error: The original exception
        context: Optional context string (e.g., "while running cleanup")

    Returns:
        TTPError wrapping the original exception
    """
    if isinstance(error, TTPError):
        return error

    message = str(error) or type(error).__name__
    if context:
        message = f"{context}: {message}"
    return TTPError(
        message,
        details={
            "original_type": type(error).__name__,
            "original_message": str(error),
        },
    )


__all__ = [
    "ErrorCode",
    "TTPError",
    "ValidationError",
    "TemplateRenderError",
    "SpawnError",
    "ExpectTimeoutError",
    "EarlyExitError",
    "SendError",
    "CommandFailedError",
    "CommandTimeoutError",
    "ExecutionAbortedError",
    "CleanupError",
    "CleanupAggregateError",
    "LoaderError",
    "BridgeError",
    "handle_error",
]
