import asyncio

import pytest

from offline_rag.memory.rag.errors import PoolTimeout
from offline_rag.memory.rag.pool import ModelPool


def test_pool_bounds_concurrency_and_reuses_contexts():
    created = []

    def factory():
        created.append(object())
        return created[-1]

    pool = ModelPool(factory, size=2)
    active = 0
    peak = 0

    async def worker():
        nonlocal active, peak
        async with pool.acquire() as ctx:
            assert ctx in created
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

    async def main():
        await asyncio.gather(*(worker() for _ in range(6)))

    asyncio.run(main())

    assert peak == 2
    assert len(created) == 2
    assert pool.available == 2


def test_pool_timeout_when_exhausted():
    pool = ModelPool(object, size=1)

    async def main():
        async with pool.acquire():
            with pytest.raises(PoolTimeout):
                async with pool.acquire(timeout=0.01):
                    pass
        async with pool.acquire(timeout=0.01):
            pass

    asyncio.run(main())


def test_context_returned_after_failure():
    pool = ModelPool(object, size=1)

    async def main():
        with pytest.raises(RuntimeError):
            async with pool.acquire():
                raise RuntimeError("inference crashed")
        async with pool.acquire(timeout=0.01) as ctx:
            return ctx

    assert asyncio.run(main()) is not None
    assert pool.available == 1


def test_pool_rejects_empty_size():
    with pytest.raises(ValueError):
        ModelPool(object, size=0)


def test_timed_out_waiters_do_not_shrink_pool():
    pool = ModelPool(object, size=2)

    async def waiter():
        with pytest.raises(PoolTimeout):
            async with pool.acquire(timeout=0.005):
                pass

    async def hold(release):
        async with pool.acquire():
            await release.wait()

    async def both_at_once():
        async with pool.acquire(timeout=0.05):
            async with pool.acquire(timeout=0.05):
                return True

    async def main():
        release = asyncio.Event()
        holders = [asyncio.create_task(hold(release)) for _ in range(2)]
        await asyncio.sleep(0)
        await asyncio.gather(*(waiter() for _ in range(20)))
        release.set()
        await asyncio.gather(*holders)
        return await both_at_once()

    assert asyncio.run(main()) is True
    assert pool.available == 2
