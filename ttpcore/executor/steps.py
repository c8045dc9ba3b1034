"""
ttpcore/executor/steps.py

Purpose:
    The closed set of step variants a procedure can contain.

Semantics:
    Every step implements the same contract:
    - validate(ctx): structural check only, no side effects. Must pass
      before execute is attempted.
    - execute(ctx): performs the action exactly once. Registers the step's
      cleanup on ctx.ledger as soon as the process has been spawned.
    - cleanup(ctx): runs the declared teardown command, if any, whether or
      not execute succeeded.

    The variant is chosen by which block a step definition carries
    (`inline:` or `expect:`), see decode_step().
"""

from __future__ import annotations

import logging
import sys
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from ttpcore.base.context import ExecutionContext
from ttpcore.base.errors import CleanupError, CommandFailedError, TTPError, ValidationError
from ttpcore.engine.automaton import InteractiveAutomaton, compile_prompt
from ttpcore.executor.models import ArgSpec, ExpectSpec, Platform, Response, StepResult, StepStatus
from ttpcore.executor.shell import CommandOutcome, run_command
from ttpcore.executor.templates import render

logger = logging.getLogger(__name__)


def current_platform() -> str:
    if sys.platform.startswith("win"):
        return "windows"
    if sys.platform == "darwin":
        return "macos"
    return "linux"


class BaseStep(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    kind: ClassVar[str] = ""

    name: str = Field(min_length=1)
    description: str = ""
    supported_platforms: List[Platform] = Field(default_factory=list)
    args: List[ArgSpec] = Field(default_factory=list)

    # -- contract ---------------------------------------------------------

    def validate(self, ctx: ExecutionContext) -> None:  # type: ignore[override]
        raise NotImplementedError

    async def execute(self, ctx: ExecutionContext) -> StepResult:
        raise NotImplementedError

    async def cleanup(self, ctx: ExecutionContext) -> Optional[StepResult]:
        command = self._cleanup_text()
        if not command:
            return None

        variables = self._variables(ctx)
        rendered = render(command, variables, field="cleanup", step=self.name)
        cwd = ctx.resolve_dir(render(self._chdir(), variables, field="chdir", step=self.name))
        logger.info(f"[Step:{self.name}] Running cleanup")
        try:
            # No cancel_event: an aborted run still tears down
            outcome = await run_command(
                rendered,
                cwd=cwd,
                env=ctx.env,
                shell=ctx.engine.shell,
                timeout=ctx.engine.ceiling_timeout,
                terminate_grace=ctx.engine.terminate_grace,
            )
        except TTPError as exc:
            raise CleanupError(
                f"cleanup for step '{self.name}' failed: {exc.message}",
                details={"step": self.name, "command": rendered, **exc.details},
            ) from exc

        result = self._result(outcome)
        if outcome.exit_code != 0:
            raise CleanupError(
                f"cleanup for step '{self.name}' exited with status {outcome.exit_code}",
                details={"step": self.name, "exit_code": outcome.exit_code, "output": result.output},
            )
        return result

    # -- helpers ----------------------------------------------------------

    @property
    def has_cleanup(self) -> bool:
        return bool(self._cleanup_text())

    def supports(self, platform: str) -> bool:
        return not self.supported_platforms or platform in self.supported_platforms

    def arg_defaults(self) -> Dict[str, Any]:
        return {spec.name: spec.coerce(spec.default) for spec in self.args if spec.default is not None}

    def _cleanup_text(self) -> Optional[str]:
        return None

    def _chdir(self) -> Optional[str]:
        return None

    def _variables(self, ctx: ExecutionContext) -> Dict[str, Any]:
        return ctx.template_vars(self.arg_defaults())

    def _register_cleanup(self, ctx: ExecutionContext) -> None:
        if self.has_cleanup:
            ctx.ledger.register(self.name, lambda: self.cleanup(ctx))

    def _result(self, outcome: CommandOutcome) -> StepResult:
        return StepResult(
            step_name=self.name,
            status=StepStatus.SUCCEEDED if outcome.exit_code == 0 else StepStatus.FAILED,
            stdout=outcome.stdout,
            stderr=outcome.stderr,
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
        )

    def _check_exit(self, result: StepResult) -> StepResult:
        if result.exit_code != 0:
            raise CommandFailedError(
                f"step '{self.name}' exited with status {result.exit_code}",
                result=result,
                details={"step": self.name, "exit_code": result.exit_code, "output": result.output},
            )
        return result


class InlineStep(BaseStep):
    """Runs a command once through the configured shell."""

    kind: ClassVar[str] = "inline"

    inline: str = ""
    chdir: Optional[str] = None
    cleanup_inline: Optional[str] = Field(default=None, alias="cleanup")

    def validate(self, ctx: ExecutionContext) -> None:  # type: ignore[override]
        if not self.inline.strip():
            raise ValidationError("inline must be provided", details={"step": self.name})

    async def execute(self, ctx: ExecutionContext) -> StepResult:
        variables = self._variables(ctx)
        command = render(self.inline, variables, field="inline", step=self.name)
        cwd = ctx.resolve_dir(render(self.chdir, variables, field="chdir", step=self.name))
        logger.info(f"[Step:{self.name}] Executing inline command")
        try:
            outcome = await run_command(
                command,
                cwd=cwd,
                env=ctx.env,
                shell=ctx.engine.shell,
                timeout=ctx.engine.ceiling_timeout,
                cancel_event=ctx.cancel_event,
                terminate_grace=ctx.engine.terminate_grace,
                on_spawn=lambda: self._register_cleanup(ctx),
            )
        except TTPError as exc:
            exc.details.setdefault("step", self.name)
            raise
        return self._check_exit(self._result(outcome))

    def _cleanup_text(self) -> Optional[str]:
        return self.cleanup_inline

    def _chdir(self) -> Optional[str]:
        return self.chdir


class ExpectStep(BaseStep):
    """Runs a command on a pseudo-terminal and answers its prompts in order."""

    kind: ClassVar[str] = "expect"

    expect: Optional[ExpectSpec] = None

    def validate(self, ctx: ExecutionContext) -> None:  # type: ignore[override]
        if self.expect is None:
            raise ValidationError("expect block must be provided", details={"step": self.name})
        if not self.expect.inline.strip():
            raise ValidationError("inline must be provided", details={"step": self.name})
        for response in self.expect.responses:
            try:
                compile_prompt(response.prompt)
            except ValidationError as exc:
                exc.details["step"] = self.name
                raise

    async def execute(self, ctx: ExecutionContext) -> StepResult:
        spec = self.expect
        variables = self._variables(ctx)
        command = render(spec.inline, variables, field="inline", step=self.name)
        cwd = ctx.resolve_dir(render(spec.chdir, variables, field="chdir", step=self.name))
        responses = [
            Response(prompt=r.prompt, response=render(r.response, variables, field="response", step=self.name))
            for r in spec.responses
        ]

        automaton = InteractiveAutomaton(
            command,
            responses,
            cwd=cwd,
            env=ctx.env,
            shell=ctx.engine.shell,
            ceiling_timeout=spec.timeout or ctx.engine.ceiling_timeout,
            prompt_timeout=spec.prompt_timeout or ctx.engine.prompt_timeout,
            terminate_grace=ctx.engine.terminate_grace,
            rows=ctx.engine.terminal_rows,
            cols=ctx.engine.terminal_cols,
            cancel_event=ctx.cancel_event,
            on_spawn=lambda: self._register_cleanup(ctx),
        )
        logger.info(f"[Step:{self.name}] Starting dialogue ({len(responses)} prompt(s))")
        try:
            dialogue = await automaton.run()
        except TTPError as exc:
            exc.details.setdefault("step", self.name)
            raise

        result = StepResult(
            step_name=self.name,
            status=StepStatus.SUCCEEDED if dialogue.exit_code == 0 else StepStatus.FAILED,
            stdout=dialogue.output,
            exit_code=dialogue.exit_code,
            duration_ms=dialogue.duration_ms,
        )
        return self._check_exit(result)

    def _cleanup_text(self) -> Optional[str]:
        return self.expect.cleanup if self.expect is not None else None

    def _chdir(self) -> Optional[str]:
        return self.expect.chdir if self.expect is not None else None


Step = Union[InlineStep, ExpectStep]

STEP_TYPES: Dict[str, Type[BaseStep]] = {
    ExpectStep.kind: ExpectStep,
    InlineStep.kind: InlineStep,
}


def step_kind(raw: Mapping[str, Any]) -> str:
    """Pick the variant by which action block is present."""
    present = [kind for kind in STEP_TYPES if kind in raw]
    if len(present) != 1:
        name = raw.get("name", "?")
        if not present:
            raise ValidationError(
                f"step '{name}' must define one of: {', '.join(STEP_TYPES)}",
                details={"step": name},
            )
        raise ValidationError(
            f"step '{name}' defines more than one action: {', '.join(present)}",
            details={"step": name},
        )
    return present[0]


def decode_step(raw: Mapping[str, Any]) -> Step:
    return STEP_TYPES[step_kind(raw)].model_validate(dict(raw))
