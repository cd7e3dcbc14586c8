"""Tests for the tool confirmation gate."""

import asyncio

import pytest

from confirmations import ConfirmationGate


# =============================================================================
# request / resolve
# =============================================================================


class TestRequest:

    async def test_resolve_approves_waiter(self):
        gate = ConfirmationGate(default_timeout=5)
        task = asyncio.create_task(gate.request("c1"))
        await asyncio.sleep(0)

        assert gate.pending_ids == ["c1"]
        assert gate.resolve("c1", True) is True
        assert await task is True
        assert gate.pending_ids == []

    async def test_resolve_rejects_waiter(self):
        gate = ConfirmationGate(default_timeout=5)
        task = asyncio.create_task(gate.request("c1"))
        await asyncio.sleep(0)

        gate.resolve("c1", False)
        assert await task is False

    async def test_zero_timeout_resolves_false_and_forgets_id(self):
        gate = ConfirmationGate()
        assert await gate.request("c1", timeout=0) is False
        assert gate.resolve("c1", True) is False
        assert gate.pending_ids == []

    async def test_timeout_resolves_false(self):
        gate = ConfirmationGate(default_timeout=0.02)
        assert await gate.request("c1") is False

    def test_resolve_unknown_id_is_not_found(self):
        gate = ConfirmationGate()
        assert gate.resolve("missing", True) is False

    async def test_same_id_supersedes_previous_waiter(self):
        gate = ConfirmationGate(default_timeout=5)
        first = asyncio.create_task(gate.request("c1"))
        await asyncio.sleep(0)
        second = asyncio.create_task(gate.request("c1"))
        await asyncio.sleep(0)

        assert await first is False
        assert gate.pending_ids == ["c1"]
        gate.resolve("c1", True)
        assert await second is True

    async def test_cancelled_waiter_leaves_no_entry(self):
        gate = ConfirmationGate(default_timeout=5)
        task = asyncio.create_task(gate.request("c1"))
        await asyncio.sleep(0)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert gate.pending_ids == []


# =============================================================================
# Bulk resolution
# =============================================================================


class TestBulk:

    async def test_reject_all(self):
        gate = ConfirmationGate(default_timeout=5)
        tasks = [asyncio.create_task(gate.request(f"c{i}")) for i in range(3)]
        await asyncio.sleep(0)

        rejected = gate.reject_all()
        assert sorted(rejected) == ["c0", "c1", "c2"]
        assert await asyncio.gather(*tasks) == [False, False, False]
        assert gate.pending_ids == []

    async def test_approve_all(self):
        gate = ConfirmationGate(default_timeout=5)
        tasks = [asyncio.create_task(gate.request(f"c{i}")) for i in range(2)]
        await asyncio.sleep(0)

        gate.approve_all()
        assert await asyncio.gather(*tasks) == [True, True]

    def test_bulk_on_empty_gate(self):
        gate = ConfirmationGate()
        assert gate.reject_all() == []
        assert gate.approve_all() == []


# =============================================================================
# Auto-approve flags
# =============================================================================


class TestAutoApprove:

    def test_flags_are_independent(self):
        gate = ConfirmationGate()
        gate.set_auto_approve("bash", True)
        assert gate.is_auto_approved("bash")
        assert not gate.is_auto_approved("file_writes")

    def test_unknown_category_raises(self):
        gate = ConfirmationGate()
        with pytest.raises(ValueError):
            gate.set_auto_approve("network", True)

    async def test_reset_clears_flags_and_rejects_pending(self):
        gate = ConfirmationGate(default_timeout=5)
        gate.set_auto_approve("bash", True)
        gate.set_auto_approve("file_writes", True)
        task = asyncio.create_task(gate.request("c1"))
        await asyncio.sleep(0)

        gate.reset()
        assert await task is False
        assert not gate.is_auto_approved("bash")
        assert not gate.is_auto_approved("file_writes")
