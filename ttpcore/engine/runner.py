"""
ttpcore/engine/runner.py
Walks a procedure's steps in order and tears down what they left behind.
"""
#
# PURPOSE:
# One forward pass over the steps, validate-then-execute each, followed by
# teardown through the cleanup ledger.
#
# RULES:
# - Strictly sequential: a step starts only after the previous one finished.
# - A step's output becomes visible to later steps once it completes.
# - The first blocking error (validation, spawn, timeout, early exit, non-zero
#   exit, abort) stops the forward pass.
# - Teardown always runs, including after an error or a cancellation. With
#   TeardownPolicy.IMMEDIATE the ledger is drained after every step; with
#   END_OF_RUN it is drained once, in reverse, after the forward pass.
#

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ttpcore.base.config import EngineConfig, TeardownPolicy
from ttpcore.base.context import ExecutionContext
from ttpcore.base.errors import CleanupError, ExecutionAbortedError, TTPError, ValidationError, handle_error
from ttpcore.base.ledger import EntryState, TeardownReport
from ttpcore.executor.models import StepResult, StepState
from ttpcore.executor.procedure import Procedure
from ttpcore.executor.steps import Step, current_platform

logger = logging.getLogger(__name__)


@dataclass
class StepRecord:
    name: str
    state: StepState = StepState.UNVALIDATED
    result: Optional[StepResult] = None
    error: Optional[TTPError] = None
    cleanup_result: Optional[StepResult] = None
    cleanup_error: Optional[CleanupError] = None


@dataclass
class RunReport:
    procedure: str
    steps: List[StepRecord] = field(default_factory=list)
    teardown: TeardownReport = field(default_factory=TeardownReport)
    first_error: Optional[TTPError] = None
    aborted: bool = False

    @property
    def succeeded(self) -> bool:
        return self.first_error is None and self.teardown.succeeded

    @property
    def cleanup_failures(self) -> List[CleanupError]:
        return self.teardown.failures

    def record(self, name: str) -> StepRecord:
        for rec in self.steps:
            if rec.name == name:
                return rec
        raise KeyError(name)

    def raise_for_status(self) -> None:
        """Raise the first blocking error, else the aggregate of cleanup failures."""
        if self.first_error is not None:
            raise self.first_error
        self.teardown.raise_if_failed()


class ProcedureRunner:
    """Executes procedures with one engine configuration."""

    def __init__(self, engine: Optional[EngineConfig] = None, *, platform: Optional[str] = None):
        self.engine = engine or EngineConfig()
        self.platform = platform or current_platform()

    def new_context(
        self,
        procedure: Procedure,
        arg_values: Optional[Mapping[str, Any]] = None,
        *,
        work_dir: Optional[Path] = None,
    ) -> ExecutionContext:
        ctx = ExecutionContext(
            work_dir=work_dir or procedure.work_dir or Path.cwd(),
            args=procedure.resolve_args(arg_values),
            engine=self.engine,
        )
        return ctx.with_env(procedure.env)

    async def run(
        self,
        procedure: Procedure,
        arg_values: Optional[Mapping[str, Any]] = None,
        *,
        ctx: Optional[ExecutionContext] = None,
    ) -> RunReport:
        ctx = ctx or self.new_context(procedure, arg_values)
        return await self.run_steps(procedure.steps, ctx, name=procedure.name or "procedure")

    async def run_steps(self, steps: Sequence[Step], ctx: ExecutionContext, *, name: str = "procedure") -> RunReport:
        report = RunReport(procedure=name, steps=[StepRecord(step.name) for step in steps])
        logger.info(f"[Runner] Starting '{name}' ({len(steps)} step(s), teardown={self.engine.teardown_policy.value})")

        cancelled = False
        try:
            for step, record in zip(steps, report.steps):
                error = await self._run_step(step, record, ctx)
                if self.engine.teardown_policy is TeardownPolicy.IMMEDIATE:
                    report.teardown = report.teardown.merge(await ctx.ledger.drain())
                if error is not None:
                    report.first_error = error
                    report.aborted = isinstance(error, ExecutionAbortedError)
                    break
        except asyncio.CancelledError:
            cancelled = True
            ctx.cancel()
            report.aborted = True
            report.first_error = report.first_error or ExecutionAbortedError("run cancelled", details={"procedure": name})
            logger.warning(f"[Runner] '{name}' cancelled; running teardown")
        finally:
            report.teardown = report.teardown.merge(await ctx.ledger.drain())
            self._apply_teardown(report)

        self._log_summary(report)
        if cancelled:
            raise asyncio.CancelledError()
        return report

    async def _run_step(self, step: Step, record: StepRecord, ctx: ExecutionContext) -> Optional[TTPError]:
        if ctx.cancelled:
            record.error = ExecutionAbortedError("run cancelled before step started", details={"step": step.name})
            return record.error

        if not step.supports(self.platform):
            record.state = StepState.SKIPPED
            logger.info(f"[Runner] Skipping '{step.name}': not supported on {self.platform}")
            return None

        try:
            step.validate(ctx)
        except ValidationError as exc:
            record.state = StepState.VALIDATION_FAILED
            record.error = exc
            logger.error(f"[Runner] Step '{step.name}' failed validation: {exc}")
            return exc
        record.state = StepState.VALIDATED

        try:
            result = await step.execute(ctx)
        except TTPError as exc:
            record.state = StepState.EXECUTE_FAILED
            record.error = exc
            record.result = getattr(exc, "result", None)
        except Exception as exc:
            record.state = StepState.EXECUTE_FAILED
            record.error = handle_error(exc, f"step '{step.name}'")
            record.error.details.setdefault("step", step.name)
        else:
            record.state = StepState.EXECUTED
            record.result = result

        if record.result is not None:
            ctx.record_output(step.name, record.result)
        if record.error is not None:
            logger.error(f"[Runner] Step '{step.name}' failed: {record.error}")
        else:
            logger.info(f"[Runner] Step '{step.name}' completed")
        return record.error

    @staticmethod
    def _apply_teardown(report: RunReport) -> None:
        records: Dict[str, StepRecord] = {rec.name: rec for rec in report.steps}
        for entry in report.teardown.entries:
            rec = records.get(entry.step_name)
            if rec is None:
                continue
            if entry.state is EntryState.DONE:
                rec.state = StepState.CLEANED_UP
                rec.cleanup_result = entry.result
            elif entry.state is EntryState.FAILED:
                rec.state = StepState.CLEANUP_FAILED
                rec.cleanup_error = entry.error

    @staticmethod
    def _log_summary(report: RunReport) -> None:
        failures = report.cleanup_failures
        if report.first_error is None and not failures:
            logger.info(f"[Runner] '{report.procedure}' completed successfully")
            return
        if report.first_error is not None:
            logger.error(f"[Runner] '{report.procedure}' stopped: {report.first_error}")
        if failures:
            logger.error(f"[Runner] {len(failures)} cleanup action(s) failed")
