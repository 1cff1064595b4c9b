"""
test_timer_registry.py — Tests for per-alert countdowns.

Covers:
    • Firing after the duration elapses
    • Disarm before / after firing
    • Double-arm rejection and re-arm after resolution
    • Coroutine callbacks, drain(), failing callbacks
    • cancel_all() at shutdown
    • Disarm from worker threads racing the event loop's timer callbacks

Run with:
    pytest tests/test_timer_registry.py -v
"""

from __future__ import annotations

import asyncio
import logging
import random
from concurrent.futures import ThreadPoolExecutor

import pytest

from sosguard.app.core.errors import AlreadyArmedError
from sosguard.app.sos.timer_registry import TimerRegistry


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Arm / Fire
# ═══════════════════════════════════════════════════════════════════════════

class TestArmAndFire:

    @pytest.mark.asyncio
    async def test_fires_after_duration(self):
        registry = TimerRegistry()
        fired = []
        registry.arm("SOS-A", 0.01, fired.append)
        assert registry.is_armed("SOS-A")
        assert fired == []

        await asyncio.sleep(0.05)
        assert fired == ["SOS-A"]
        assert not registry.is_armed("SOS-A")
        assert registry.armed_count == 0

    @pytest.mark.asyncio
    async def test_zero_duration_fires_on_next_loop_turn(self):
        registry = TimerRegistry()
        fired = []
        registry.arm("SOS-A", 0, fired.append)
        await asyncio.sleep(0.01)
        assert fired == ["SOS-A"]

    @pytest.mark.asyncio
    async def test_double_arm_rejected(self):
        registry = TimerRegistry()
        fired = []
        registry.arm("SOS-A", 0.02, fired.append)
        with pytest.raises(AlreadyArmedError) as exc_info:
            registry.arm("SOS-A", 0.01, fired.append)
        assert exc_info.value.error_code == "TIMER_ALREADY_ARMED"

        await asyncio.sleep(0.06)
        # Only the original countdown ran
        assert fired == ["SOS-A"]

    @pytest.mark.asyncio
    async def test_rearm_allowed_after_resolution(self):
        registry = TimerRegistry()
        fired = []
        registry.arm("SOS-A", 0.01, fired.append)
        assert registry.disarm("SOS-A") is True
        registry.arm("SOS-A", 0.01, fired.append)
        await asyncio.sleep(0.04)
        assert fired == ["SOS-A"]

    @pytest.mark.asyncio
    async def test_negative_duration_rejected(self):
        registry = TimerRegistry()
        with pytest.raises(ValueError):
            registry.arm("SOS-A", -1, lambda _: None)
        assert registry.armed_count == 0

    def test_arm_requires_running_loop(self):
        registry = TimerRegistry()
        with pytest.raises(RuntimeError):
            registry.arm("SOS-A", 1.0, lambda _: None)
        assert registry.armed_count == 0


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Disarm
# ═══════════════════════════════════════════════════════════════════════════

class TestDisarm:

    @pytest.mark.asyncio
    async def test_disarm_before_fire_wins(self):
        registry = TimerRegistry()
        fired = []
        registry.arm("SOS-A", 0.02, fired.append)
        assert registry.disarm("SOS-A") is True
        assert registry.armed_count == 0

        await asyncio.sleep(0.05)
        assert fired == []

    @pytest.mark.asyncio
    async def test_disarm_after_fire_loses(self):
        registry = TimerRegistry()
        fired = []
        registry.arm("SOS-A", 0.0, fired.append)
        await asyncio.sleep(0.01)
        assert fired == ["SOS-A"]
        assert registry.disarm("SOS-A") is False

    def test_disarm_unknown_returns_false(self):
        assert TimerRegistry().disarm("SOS-NOPE") is False

    @pytest.mark.asyncio
    async def test_second_disarm_returns_false(self):
        registry = TimerRegistry()
        registry.arm("SOS-A", 1.0, lambda _: None)
        assert registry.disarm("SOS-A") is True
        assert registry.disarm("SOS-A") is False

    @pytest.mark.asyncio
    async def test_on_loop_disarm_cancels_handle_immediately(self):
        registry = TimerRegistry()
        registry.arm("SOS-A", 1.0, lambda _: None)
        handle = registry._countdowns["SOS-A"].handle

        assert registry.disarm("SOS-A") is True
        assert handle.cancelled()

    @pytest.mark.asyncio
    async def test_off_loop_disarm_cancels_handle_on_owning_loop(self, monkeypatch):
        registry = TimerRegistry()
        fired = []
        registry.arm("SOS-A", 1.0, fired.append)
        countdown = registry._countdowns["SOS-A"]
        calls = []
        real_call_soon_threadsafe = countdown.loop.call_soon_threadsafe

        def spy(callback, *args):
            calls.append(callback)
            return real_call_soon_threadsafe(callback, *args)

        monkeypatch.setattr(countdown.loop, "call_soon_threadsafe", spy)
        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor(max_workers=1) as pool:
            won = await loop.run_in_executor(pool, registry.disarm, "SOS-A")
        await asyncio.sleep(0)

        assert won is True
        assert countdown.handle.cancel in calls
        assert countdown.handle.cancelled()
        assert fired == []

    @pytest.mark.asyncio
    async def test_unrelated_alerts_independent(self):
        registry = TimerRegistry()
        fired = []
        registry.arm("SOS-A", 0.01, fired.append)
        registry.arm("SOS-B", 0.01, fired.append)
        assert registry.disarm("SOS-A") is True
        await asyncio.sleep(0.04)
        assert fired == ["SOS-B"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Callbacks
# ═══════════════════════════════════════════════════════════════════════════

class TestCallbacks:

    @pytest.mark.asyncio
    async def test_coroutine_callback_awaited_by_drain(self):
        registry = TimerRegistry()
        done = []

        async def on_fire(alert_id: str) -> None:
            await asyncio.sleep(0.02)
            done.append(alert_id)

        registry.arm("SOS-A", 0.0, on_fire)
        await asyncio.sleep(0.005)
        await registry.drain()
        assert done == ["SOS-A"]

    @pytest.mark.asyncio
    async def test_failing_sync_callback_logged(self, caplog):
        registry = TimerRegistry()

        def boom(alert_id: str) -> None:
            raise RuntimeError("kaboom")

        with caplog.at_level(logging.ERROR):
            registry.arm("SOS-A", 0.0, boom)
            await asyncio.sleep(0.01)
        assert "Fire callback failed" in caplog.text
        assert registry.armed_count == 0

    @pytest.mark.asyncio
    async def test_failing_coroutine_callback_logged(self, caplog):
        registry = TimerRegistry()

        async def boom(alert_id: str) -> None:
            raise RuntimeError("kaboom")

        with caplog.at_level(logging.ERROR):
            registry.arm("SOS-A", 0.0, boom)
            await asyncio.sleep(0.01)
            await registry.drain()
            await asyncio.sleep(0)
        assert "kaboom" in caplog.text

    @pytest.mark.asyncio
    async def test_cancel_all_stops_everything(self):
        registry = TimerRegistry()
        fired = []
        for i in range(5):
            registry.arm(f"SOS-{i}", 0.01, fired.append)
        assert registry.cancel_all() == 5
        assert registry.armed_count == 0
        await asyncio.sleep(0.04)
        assert fired == []


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Fire vs. disarm race
# ═══════════════════════════════════════════════════════════════════════════

class TestRace:

    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [1, 7, 42])
    async def test_exactly_one_winner_per_countdown(self, seed):
        """Worker threads disarm while the loop fires; no double, no lost."""
        rng = random.Random(seed)
        registry = TimerRegistry()
        fired = []
        ids = [f"SOS-{i:04d}" for i in range(200)]

        for alert_id in ids:
            registry.arm(alert_id, rng.uniform(0.0, 0.01), fired.append)

        loop = asyncio.get_running_loop()
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = await asyncio.gather(
                *(loop.run_in_executor(pool, registry.disarm, a) for a in ids)
            )
        await asyncio.sleep(0.03)

        disarmed = {a for a, won in zip(ids, results) if won}
        assert len(fired) == len(set(fired))
        assert disarmed.isdisjoint(fired)
        assert disarmed | set(fired) == set(ids)
        assert registry.armed_count == 0
