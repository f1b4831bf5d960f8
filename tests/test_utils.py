import asyncio

import pytest

from services.locks import OrderLocks
from services.utils import calculate_weight, retry_async


def test_calculate_weight_accepts_dicts_and_objects():
    class Item:
        grams = 250
        quantity = 4

    assert calculate_weight([{"grams": 500, "quantity": 2}, Item()]) == 2.0
    assert calculate_weight([{"grams": None, "quantity": 3}]) == 0.0
    assert calculate_weight([]) == 0.0


def test_retry_succeeds_after_failures():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise ConnectionError("reset")
        return "ok"

    assert asyncio.run(retry_async(flaky, max_retries=3, delay=0)) == "ok"
    assert len(calls) == 3


def test_retry_gives_up_with_the_last_error():
    calls = []

    async def broken():
        calls.append(1)
        raise ConnectionError(f"attempt {len(calls)}")

    with pytest.raises(ConnectionError, match="attempt 2"):
        asyncio.run(retry_async(broken, max_retries=2, delay=0))


def test_retry_only_on_listed_errors():
    calls = []

    async def bad_input():
        calls.append(1)
        raise KeyError("id")

    with pytest.raises(KeyError):
        asyncio.run(retry_async(bad_input, max_retries=3, delay=0, retry_on=(ConnectionError,)))
    assert len(calls) == 1


def test_order_locks_serialize_the_same_order():
    locks = OrderLocks()
    events = []

    async def worker(name, order_id):
        async with locks.hold(order_id):
            events.append(f"{name}-in")
            await asyncio.sleep(0.01)
            events.append(f"{name}-out")

    async def main():
        await asyncio.gather(worker("a", "1001"), worker("b", "1001"))
        assert not locks.is_locked("1001")
        assert locks._locks == {}

    asyncio.run(main())
    assert events == ["a-in", "a-out", "b-in", "b-out"]


def test_order_locks_do_not_block_other_orders():
    locks = OrderLocks()

    async def main():
        async with locks.hold("1001"):
            assert locks.is_locked("1001")
            async with locks.hold("1002"):
                assert locks.is_locked("1002")

    asyncio.run(main())
