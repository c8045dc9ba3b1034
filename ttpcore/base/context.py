"""
ttpcore/base/context.py
Per-run execution context.
"""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from ttpcore.base.config import EngineConfig
from ttpcore.base.ledger import CleanupLedger

if TYPE_CHECKING:
    from ttpcore.executor.models import StepResult


@dataclass
class ExecutionContext:
    """
    Created once per procedure run. Steps never run concurrently, so the
    context has a single writer: outputs are appended by the runner after a
    step completes and read by later steps and cleanups.
    """
    work_dir: Path = field(default_factory=Path.cwd)
    env: Dict[str, str] = field(default_factory=lambda: dict(os.environ))
    args: Dict[str, Any] = field(default_factory=dict)
    outputs: Dict[str, "StepResult"] = field(default_factory=dict)
    ledger: CleanupLedger = field(default_factory=CleanupLedger)
    engine: EngineConfig = field(default_factory=EngineConfig)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def cancel(self) -> None:
        self.cancel_event.set()

    def with_env(self, overrides: Optional[Mapping[str, str]]) -> "ExecutionContext":
        if overrides:
            self.env.update({k: str(v) for k, v in overrides.items()})
        return self

    def record_output(self, step_name: str, result: "StepResult") -> None:
        self.outputs[step_name] = result

    def resolve_dir(self, chdir: Optional[str]) -> Path:
        """Working directory for a command: chdir overrides, relative to work_dir."""
        if not chdir:
            return self.work_dir
        path = Path(chdir).expanduser()
        return path if path.is_absolute() else self.work_dir / path

    def template_vars(self, step_args: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        args = dict(step_args or {})
        args.update(self.args)
        steps = {
            name: {
                "stdout": result.stdout,
                "stderr": result.stderr,
                "output": result.output,
                "exit_code": result.exit_code,
            }
            for name, result in self.outputs.items()
        }
        return {"args": args, "steps": steps, "env": dict(self.env)}
