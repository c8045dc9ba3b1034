"""
Test the step variants: validation rules, execution, and cleanup registration.
"""

import pytest

from ttpcore.base.context import ExecutionContext
from ttpcore.base.errors import (
    CommandFailedError,
    EarlyExitError,
    SpawnError,
    TemplateRenderError,
    ValidationError,
)
from ttpcore.executor.models import StepStatus
from ttpcore.executor.steps import ExpectStep, InlineStep, decode_step, step_kind


def _expect_step(**expect):
    return decode_step({"name": "interactive", "expect": expect})


# ============================================================================
# Validation
# ============================================================================

def test_expect_block_required(tmp_path):
    step = ExpectStep(name="no-block")
    with pytest.raises(ValidationError, match="expect block must be provided"):
        step.validate(ExecutionContext(work_dir=tmp_path))


def test_expect_inline_required(tmp_path):
    step = _expect_step(responses=[{"prompt": "x", "response": "y"}])
    with pytest.raises(ValidationError, match="inline must be provided"):
        step.validate(ExecutionContext(work_dir=tmp_path))


def test_expect_empty_prompt_fails_validation(tmp_path):
    step = _expect_step(inline="cat", responses=[{"prompt": "", "response": "y"}])
    with pytest.raises(ValidationError) as excinfo:
        step.validate(ExecutionContext(work_dir=tmp_path))
    assert excinfo.value.details["step"] == "interactive"


def test_inline_required(tmp_path):
    with pytest.raises(ValidationError, match="inline must be provided"):
        InlineStep(name="empty", inline="   ").validate(ExecutionContext(work_dir=tmp_path))


def test_step_kind_is_chosen_by_block():
    assert step_kind({"name": "a", "inline": "true"}) == "inline"
    assert step_kind({"name": "a", "expect": {"inline": "true"}}) == "expect"
    with pytest.raises(ValidationError):
        step_kind({"name": "a"})
    with pytest.raises(ValidationError):
        step_kind({"name": "a", "inline": "true", "expect": {"inline": "true"}})


def test_numeric_response_is_accepted():
    step = _expect_step(inline="cat", responses=[{"prompt": "age:", "response": 30}])
    assert step.expect.responses[0].response == "30"


# ============================================================================
# Expect execution
# ============================================================================

@pytest.mark.asyncio
async def test_expect_step_runs_dialogue(tmp_path, python_cmd, interactive_script):
    step = _expect_step(
        inline=f"{python_cmd} -u {interactive_script}",
        responses=[
            {"prompt": "Enter your name:", "response": "John"},
            {"prompt": "Enter your age:", "response": "30"},
        ],
    )
    ctx = ExecutionContext(work_dir=tmp_path)
    step.validate(ctx)
    result = await step.execute(ctx)

    assert result.status is StepStatus.SUCCEEDED
    assert result.exit_code == 0
    assert "Hello, John!" in result.stdout
    assert "You are 30 years old." in result.stdout
    print("✓ Expect step answered both prompts")


@pytest.mark.asyncio
async def test_expect_step_honours_chdir(tmp_path):
    (tmp_path / "sub").mkdir()
    step = _expect_step(
        inline="printf 'go: '; read x; pwd",
        chdir="sub",
        responses=[{"prompt": "go: ", "response": "now"}],
    )
    result = await step.execute(ExecutionContext(work_dir=tmp_path))
    assert result.stdout.rstrip().endswith("/sub")


@pytest.mark.asyncio
async def test_expect_step_cleanup_is_registered(tmp_path):
    step = _expect_step(
        inline="printf 'go: '; read x; touch created",
        responses=[{"prompt": "go: ", "response": "y"}],
        cleanup="rm created && touch removed",
    )
    ctx = ExecutionContext(work_dir=tmp_path)
    await step.execute(ctx)
    assert (tmp_path / "created").exists()
    assert len(ctx.ledger) == 1

    report = await ctx.ledger.drain()
    assert report.succeeded
    assert not (tmp_path / "created").exists()
    assert (tmp_path / "removed").exists()


@pytest.mark.asyncio
async def test_expect_failure_keeps_cleanup(tmp_path):
    step = _expect_step(
        inline="echo nope",
        responses=[{"prompt": "Password:", "response": "x"}],
        cleanup="touch cleaned",
    )
    ctx = ExecutionContext(work_dir=tmp_path)
    with pytest.raises(EarlyExitError) as excinfo:
        await step.execute(ctx)
    assert excinfo.value.details["step"] == "interactive"

    await ctx.ledger.drain()
    assert (tmp_path / "cleaned").exists()


@pytest.mark.asyncio
async def test_expect_responses_are_templated(tmp_path):
    step = decode_step({
        "name": "templated",
        "args": [{"name": "who", "default": "Alice"}],
        "expect": {
            "inline": "printf 'name: '; read n; echo \"hi $n\"",
            "responses": [{"prompt": "name: ", "response": "{{ args.who }}"}],
        },
    })
    result = await step.execute(ExecutionContext(work_dir=tmp_path))
    assert "hi Alice" in result.stdout


# ============================================================================
# Inline execution
# ============================================================================

@pytest.mark.asyncio
async def test_inline_step_captures_output(tmp_path):
    step = InlineStep(name="echo", inline="echo out; echo err >&2")
    result = await step.execute(ExecutionContext(work_dir=tmp_path))
    assert result.stdout == "out\n"
    assert result.stderr == "err\n"
    assert result.succeeded


@pytest.mark.asyncio
async def test_inline_nonzero_exit_raises_with_result(tmp_path):
    step = decode_step({"name": "fails", "inline": "echo partial; exit 2", "cleanup": "touch undone"})
    ctx = ExecutionContext(work_dir=tmp_path)
    with pytest.raises(CommandFailedError) as excinfo:
        await step.execute(ctx)

    assert excinfo.value.result.exit_code == 2
    assert excinfo.value.result.stdout == "partial\n"
    assert len(ctx.ledger) == 1


@pytest.mark.asyncio
async def test_unknown_template_variable(tmp_path):
    step = InlineStep(name="bad", inline="echo {{ args.missing }}", cleanup="true")
    ctx = ExecutionContext(work_dir=tmp_path)
    with pytest.raises(TemplateRenderError):
        await step.execute(ctx)
    assert len(ctx.ledger) == 0


@pytest.mark.asyncio
async def test_spawn_failure_registers_no_cleanup(tmp_path):
    step = InlineStep(name="nowhere", inline="true", chdir="does-not-exist", cleanup="true")
    ctx = ExecutionContext(work_dir=tmp_path)
    with pytest.raises(SpawnError):
        await step.execute(ctx)
    assert len(ctx.ledger) == 0
