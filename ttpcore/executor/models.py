"""
ttpcore/executor/models.py

Purpose:
    Data structures shared by every step variant.

Semantics:
    - Response / ExpectSpec / ArgSpec: declarative input, validated by pydantic
      when a procedure is loaded. Immutable after construction.
    - StepResult: the outcome of one execute or cleanup call.
    - StepState: where a step sits in its lifecycle during a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class StepState(str, Enum):
    UNVALIDATED = "unvalidated"
    VALIDATED = "validated"
    VALIDATION_FAILED = "validation_failed"
    EXECUTED = "executed"
    EXECUTE_FAILED = "execute_failed"
    CLEANED_UP = "cleaned_up"
    CLEANUP_FAILED = "cleanup_failed"
    SKIPPED = "skipped"


Platform = Literal["windows", "linux", "macos"]

_TRUE_WORDS = {"true", "yes", "1", "on"}
_FALSE_WORDS = {"false", "no", "0", "off"}


class ArgSpec(BaseModel):
    """A named, typed, optionally defaulted argument of a procedure or step."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(min_length=1)
    type: Literal["string", "int", "float", "bool", "path"] = "string"
    default: Any = None
    description: str = ""

    def coerce(self, value: Any) -> Any:
        """Convert a raw (usually string) value to this argument's type."""
        if self.type == "int":
            return int(value)
        if self.type == "float":
            return float(value)
        if self.type == "bool":
            if isinstance(value, bool):
                return value
            word = str(value).strip().lower()
            if word in _TRUE_WORDS:
                return True
            if word in _FALSE_WORDS:
                return False
            raise ValueError(f"not a boolean: {value!r}")
        if self.type == "path":
            return str(Path(str(value)).expanduser())
        return str(value)


class Response(BaseModel):
    """One prompt/response pair. Order within ExpectSpec.responses is significant."""
    model_config = ConfigDict(frozen=True, extra="forbid")

    prompt: str
    response: str = ""

    @field_validator("prompt", "response", mode="before")
    @classmethod
    def _scalar_to_text(cls, value: Any) -> Any:
        # YAML hands over `response: 30` as an int
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


class ExpectSpec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    inline: str = ""
    chdir: Optional[str] = None
    responses: List[Response] = Field(default_factory=list)
    cleanup: Optional[str] = None
    # Per-step overrides of the engine's ceiling and per-prompt timeouts
    timeout: Optional[float] = Field(default=None, gt=0)
    prompt_timeout: Optional[float] = Field(default=None, gt=0)


@dataclass(frozen=True)
class StepResult:
    """
    The outcome of an execute or cleanup call.
    Terminal output is captured with CRLF already normalised to LF.
    """
    step_name: str
    status: StepStatus
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = None
    duration_ms: float = 0.0
    timestamp: float = field(default_factory=lambda: datetime.now().timestamp())

    @property
    def output(self) -> str:
        if self.stderr:
            return f"{self.stdout}{self.stderr}"
        return self.stdout

    @property
    def succeeded(self) -> bool:
        return self.status is StepStatus.SUCCEEDED
