"""Test the cleanup ledger: reverse replay and best-effort failure handling."""

import pytest

from ttpcore.base.errors import CleanupAggregateError, CleanupError
from ttpcore.base.ledger import CleanupLedger, EntryState


@pytest.mark.asyncio
async def test_drain_runs_in_reverse_order():
    ledger = CleanupLedger()
    ran = []
    for name in ("first", "second", "third"):
        async def action(name=name):
            ran.append(name)
        ledger.register(name, action)

    report = await ledger.drain()

    assert ran == ["third", "second", "first"]
    assert report.order == ["third", "second", "first"]
    assert report.succeeded
    assert ledger.pending() == []


@pytest.mark.asyncio
async def test_failure_does_not_block_remaining_entries():
    ledger = CleanupLedger()
    ran = []

    async def ok_a():
        ran.append("a")

    async def boom():
        raise RuntimeError("disk on fire")

    async def failing_cleanup():
        raise CleanupError("cleanup command failed", details={"exit_code": 1})

    async def ok_d():
        ran.append("d")

    ledger.register("a", ok_a)
    ledger.register("b", boom)
    ledger.register("c", failing_cleanup)
    ledger.register("d", ok_d)

    report = await ledger.drain()

    assert ran == ["d", "a"]
    assert len(report.failures) == 2
    assert {f.details["step"] for f in report.failures} == {"b", "c"}
    assert all(isinstance(f, CleanupError) for f in report.failures)
    states = {e.step_name: e.state for e in ledger}
    assert states == {
        "a": EntryState.DONE,
        "b": EntryState.FAILED,
        "c": EntryState.FAILED,
        "d": EntryState.DONE,
    }

    with pytest.raises(CleanupAggregateError) as excinfo:
        report.raise_if_failed()
    assert len(excinfo.value.failures) == 2


@pytest.mark.asyncio
async def test_entries_run_once():
    ledger = CleanupLedger()
    count = [0]

    async def action():
        count[0] += 1

    ledger.register("only", action)
    first = await ledger.drain()
    second = await ledger.drain()

    assert count[0] == 1
    assert first.order == ["only"]
    assert second.entries == ()
