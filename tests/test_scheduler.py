"""Unit tests for core/scheduler.py -- per-collector cycles and isolation.

Collectors are ScriptedCollector fakes; async code is driven with asyncio.run.
"""

import asyncio
import threading
import time

from conftest import ScriptedCollector, make_connection, make_process, snapshot

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.event_queue import EventQueue
from soc_agent.core.scheduler import Scheduler, next_cycle_start
from soc_agent.detection.analyzer import BehaviorAnalyzer
from soc_agent.schemas.snapshots import SnapshotCategory

PROCESS = SnapshotCategory.PROCESS
NETWORK = SnapshotCategory.NETWORK


def make_scheduler(collectors, rules, queue=None, interval=60.0, poll_timeout=5.0):
    return Scheduler(collectors, BehaviorAnalyzer(rules), queue if queue is not None else EventQueue(max_size=100),
                     lambda category: interval, poll_timeout=poll_timeout)


class HangingCollector(BaseCollector):
    """poll() never completes until cancelled."""

    category = PROCESS

    def __init__(self, config):
        super().__init__(config, "HangingCollector")
        self.never = None

    async def poll(self):
        self.polls += 1
        self.never = asyncio.Event()
        await self.never.wait()

    def _collect_snapshot(self):
        raise AssertionError("not used")


class SlowCollector(BaseCollector):
    """Blocking collection that counts how many copies of itself run at once.

    A cooperative collection returns early once cancel() is called.
    """

    category = PROCESS

    def __init__(self, config, duration=0.5, cooperative=False):
        super().__init__(config, "SlowCollector")
        self.duration = duration
        self.cooperative = cooperative
        self.active = 0
        self.max_active = 0
        self.cancel_seen = 0
        self._lock = threading.Lock()

    def _collect_snapshot(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            deadline = time.monotonic() + self.duration
            while time.monotonic() < deadline:
                if self.cooperative and self.cancelled:
                    self.cancel_seen += 1
                    break
                time.sleep(0.01)
            return snapshot(PROCESS)
        finally:
            with self._lock:
                self.active -= 1


# ---------------------------------------------------------------------------
# TestNextCycleStart
# ---------------------------------------------------------------------------


class TestNextCycleStart:
    def test_on_time_cycle(self):
        assert next_cycle_start(100.0, 103.0, 10.0) == (110.0, 0)

    def test_overrun_skips_missed_ticks(self):
        assert next_cycle_start(100.0, 125.0, 10.0) == (130.0, 2)

    def test_grid_anchored_to_cycle_start(self):
        start, missed = next_cycle_start(100.0, 110.5, 10.0)
        assert start == 120.0 and missed == 1


# ---------------------------------------------------------------------------
# TestRunCycle
# ---------------------------------------------------------------------------


class TestRunCycle:
    def test_identical_connection_polls_yield_no_new_events(self, config, rules):
        conns = snapshot(NETWORK, make_connection(remote_port=4444), make_connection(remote_port=443, local_port=2))
        collector = ScriptedCollector(config, NETWORK, [conns])
        scheduler = make_scheduler([collector], rules)

        async def scenario():
            first = await scheduler.run_cycle(collector)
            second = await scheduler.run_cycle(collector)
            return first, second

        first, second = asyncio.run(scenario())
        assert first == 1
        assert second == 0

    def test_failure_keeps_previous_snapshot(self, config, rules):
        good = snapshot(PROCESS, make_process(1))
        later = snapshot(PROCESS, make_process(1), make_process(2, name='psexec', path='/tmp/psexec'))
        collector = ScriptedCollector(config, PROCESS, [good, RuntimeError("probe broke"), later])
        queue = EventQueue(max_size=100)
        scheduler = make_scheduler([collector], rules, queue)

        async def scenario():
            await scheduler.run_cycle(collector)
            assert await scheduler.run_cycle(collector) == 0
            assert scheduler.previous_snapshot(collector.collector_name) is good
            return await scheduler.run_cycle(collector)

        assert asyncio.run(scenario()) == 1
        assert scheduler.stats[collector.collector_name].failures == 1
        assert scheduler.previous_snapshot(collector.collector_name) is later

    def test_poll_timeout_is_contained(self, config, rules):
        collector = HangingCollector(config)
        scheduler = make_scheduler([collector], rules, poll_timeout=0.05)
        assert asyncio.run(scheduler.run_cycle(collector)) == 0
        assert scheduler.stats[collector.collector_name].failures == 1

    def test_cycle_skipped_while_abandoned_collection_runs(self, config, rules):
        collector = SlowCollector(config, duration=0.3)
        scheduler = make_scheduler([collector], rules, poll_timeout=0.05)

        async def scenario():
            await scheduler.run_cycle(collector)
            return await scheduler.run_cycle(collector)

        assert asyncio.run(scenario()) == 0
        stats = scheduler.stats[collector.collector_name]
        assert stats.failures == 1
        assert stats.skipped_cycles == 1
        assert collector.polls == 1


# ---------------------------------------------------------------------------
# TestIsolation
# ---------------------------------------------------------------------------


class TestIsolation:
    def test_failing_collector_does_not_affect_others_in_same_tick(self, config, rules):
        broken = ScriptedCollector(config, NETWORK, [RuntimeError("netstat failed")])
        healthy = ScriptedCollector(config, PROCESS,
                                    [snapshot(PROCESS, make_process(9, name='psexec', path='/tmp/psexec'))])
        queue = EventQueue(max_size=100)
        scheduler = make_scheduler([broken, healthy], rules, queue)

        assert asyncio.run(scheduler.run_once()) == 1
        assert len(queue) == 1
        stats = scheduler.get_stats()
        assert stats[broken.collector_name]['failures'] == 1
        assert stats[healthy.collector_name]['failures'] == 0
        assert scheduler.previous_snapshot(broken.collector_name) is None


# ---------------------------------------------------------------------------
# TestStartStop
# ---------------------------------------------------------------------------


class TestStartStop:
    def test_stop_during_inflight_poll_is_bounded(self, config, rules):
        collector = HangingCollector(config)
        scheduler = make_scheduler([collector], rules, interval=0.01, poll_timeout=60)

        async def scenario():
            await scheduler.start()
            await asyncio.sleep(0.05)
            started = time.monotonic()
            await scheduler.stop(grace_period=1.0)
            elapsed = time.monotonic() - started
            polls_at_stop = collector.polls
            await asyncio.sleep(0.05)
            return elapsed, polls_at_stop

        elapsed, polls_at_stop = asyncio.run(scenario())
        assert elapsed < 1.0
        assert polls_at_stop == 1
        assert collector.polls == 1
        assert collector.cancelled

    def test_overrunning_collection_never_overlaps_itself(self, config, rules):
        collector = SlowCollector(config, duration=0.5)
        scheduler = make_scheduler([collector], rules, interval=0.05, poll_timeout=0.1)

        async def scenario():
            await scheduler.start()
            await asyncio.sleep(0.45)
            await scheduler.stop(grace_period=1.0)

        asyncio.run(scenario())
        assert collector.max_active == 1
        assert collector.polls == 1
        assert scheduler.stats[collector.collector_name].skipped_cycles >= 1

    def test_timeout_cancels_cooperative_collection(self, config, rules):
        collector = SlowCollector(config, duration=5.0, cooperative=True)
        scheduler = make_scheduler([collector], rules, interval=0.05, poll_timeout=0.1)

        async def scenario():
            await scheduler.start()
            await asyncio.sleep(0.45)
            await scheduler.stop(grace_period=1.0)

        asyncio.run(scenario())
        assert collector.cancel_seen >= 1
        assert collector.polls >= 2
        assert collector.max_active == 1

    def test_loop_repeats_on_interval(self, config, rules):
        collector = ScriptedCollector(config, PROCESS, [snapshot(PROCESS, make_process(1))])
        scheduler = make_scheduler([collector], rules, interval=0.02)

        async def scenario():
            await scheduler.start()
            await asyncio.sleep(0.15)
            await scheduler.stop(grace_period=1.0)

        asyncio.run(scenario())
        assert collector.polls >= 3
        assert not scheduler.is_running

    def test_stop_is_idempotent(self, rules):
        scheduler = make_scheduler([], rules)

        async def scenario():
            await scheduler.start()
            await scheduler.stop(0.5)
            await scheduler.stop(0.5)

        asyncio.run(scenario())
        assert not scheduler.is_running
