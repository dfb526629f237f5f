"""
Tests for the per-tenant concurrency gate.
"""

import asyncio

import pytest

from app.jobs.errors import ConflictError
from app.jobs.gate import ConcurrencyGate


class TestConcurrencyGate:

    @pytest.mark.asyncio
    async def test_admits_up_to_limit(self):
        gate = ConcurrencyGate(max_concurrent_jobs=2)

        assert await gate.try_acquire("t1", "j1")
        assert await gate.try_acquire("t1", "j2")
        assert not await gate.try_acquire("t1", "j3")
        assert gate.in_flight("t1") == 2

    @pytest.mark.asyncio
    async def test_limits_are_per_tenant(self):
        gate = ConcurrencyGate(max_concurrent_jobs=1)

        assert await gate.try_acquire("t1", "j1")
        assert await gate.try_acquire("t2", "j2")
        assert gate.snapshot() == {"t1": 1, "t2": 1}

    @pytest.mark.asyncio
    async def test_release_frees_slot(self):
        gate = ConcurrencyGate(max_concurrent_jobs=1)
        await gate.try_acquire("t1", "j1")
        gate.release("t1", "j1")

        assert gate.in_flight("t1") == 0
        assert await gate.try_acquire("t1", "j2")

    @pytest.mark.asyncio
    async def test_release_unknown_job_is_noop(self):
        gate = ConcurrencyGate(max_concurrent_jobs=1)
        await gate.try_acquire("t1", "j1")
        gate.release("t1", "other")
        gate.release("t9", "j1")

        assert gate.in_flight("t1") == 1

    @pytest.mark.asyncio
    async def test_override_admits_past_limit(self):
        gate = ConcurrencyGate(max_concurrent_jobs=1)
        await gate.try_acquire("t1", "j1")

        assert await gate.try_acquire("t1", "j2", override=True)
        assert gate.in_flight("t1") == 2

    @pytest.mark.asyncio
    async def test_same_job_cannot_hold_two_slots(self):
        gate = ConcurrencyGate(max_concurrent_jobs=3)
        await gate.try_acquire("t1", "j1")

        with pytest.raises(ConflictError):
            await gate.try_acquire("t1", "j1")

    @pytest.mark.asyncio
    async def test_concurrent_acquires_never_exceed_limit(self):
        """Simultaneous requests for the last slots admit exactly the limit."""
        gate = ConcurrencyGate(max_concurrent_jobs=3)

        results = await asyncio.gather(*(gate.try_acquire("t1", f"j{i}") for i in range(10)))

        assert sum(results) == 3
        assert gate.in_flight("t1") == 3
