import asyncio

from mockup_engine.framework.concurrency import BoundedExecutor


def test_at_most_limit_units_in_flight():
    executor = BoundedExecutor(3)
    current = 0
    observed = []

    async def unit(idx):
        nonlocal current
        current += 1
        observed.append(current)
        await asyncio.sleep(0.01)
        current -= 1
        return idx

    outcomes = asyncio.run(executor.run_all(lambda idx=idx: unit(idx) for idx in range(10)))

    assert [o.value for o in outcomes] == list(range(10))
    assert max(observed) == 3
    assert executor.peak_in_flight == 3
    assert executor.in_flight == 0


def test_failures_do_not_cancel_siblings():
    executor = BoundedExecutor(2)
    finished = []

    async def unit(idx):
        await asyncio.sleep(0.005 * idx)
        if idx == 1:
            raise RuntimeError("unit 1 failed")
        finished.append(idx)
        return idx

    outcomes = asyncio.run(executor.run_all(lambda idx=idx: unit(idx) for idx in range(5)))

    assert [o.ok for o in outcomes] == [True, False, True, True, True]
    assert str(outcomes[1].error) == "unit 1 failed"
    assert sorted(finished) == [0, 2, 3, 4]


def test_rejects_non_positive_limit():
    import pytest

    with pytest.raises(ValueError):
        BoundedExecutor(0)
