# soc_agent/core/scheduler.py
"""
Scheduler - One periodic detection cycle per collector

A cycle is poll -> diff -> analyze -> enqueue. Cycles run at a fixed rate
measured from cycle start; a cycle that overruns skips the ticks it missed
instead of queuing them. Each collector keeps exactly one previous
snapshot, replaced only after a successful poll.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.differ import diff
from soc_agent.core.event_queue import EventQueue
from soc_agent.core.exceptions import CollectorError
from soc_agent.detection.analyzer import BehaviorAnalyzer
from soc_agent.schemas.snapshots import SnapshotSet


def next_cycle_start(started: float, now: float, interval: float) -> Tuple[float, int]:
    """Next tick on the fixed-rate grid, and how many ticks were skipped"""
    elapsed = max(0.0, now - started)
    ticks = max(1, math.ceil(elapsed / interval))
    return started + ticks * interval, ticks - 1


@dataclass
class CycleStats:
    """Per-collector cycle counters"""
    cycles: int = 0
    failures: int = 0
    events: int = 0
    skipped_cycles: int = 0
    last_duration: float = 0.0
    last_cycle_time: Optional[datetime] = None


class Scheduler:
    """Drives collectors on their own intervals"""

    def __init__(self, collectors: List[BaseCollector], analyzer: BehaviorAnalyzer,
                 event_queue: EventQueue, interval_for: Callable[[str], float],
                 poll_timeout: float = 60, clock: Callable[[], float] = time.monotonic):
        self.logger = logging.getLogger(__name__)
        self.collectors = list(collectors)
        self.analyzer = analyzer
        self.event_queue = event_queue
        self.interval_for = interval_for
        self.poll_timeout = poll_timeout
        self.clock = clock

        self.is_running = False
        self.stats: Dict[str, CycleStats] = {c.collector_name: CycleStats() for c in self.collectors}
        self._previous: Dict[str, SnapshotSet] = {}
        self._tasks: List[asyncio.Task] = []
        self._stop_event: Optional[asyncio.Event] = None

    def previous_snapshot(self, collector_name: str) -> Optional[SnapshotSet]:
        return self._previous.get(collector_name)

    async def run_cycle(self, collector: BaseCollector) -> int:
        """One poll/diff/analyze/enqueue pass; returns the number of events enqueued

        Failures are logged and contained; the previous snapshot is kept.
        """
        name = collector.collector_name
        stats = self.stats.setdefault(name, CycleStats())
        if collector.collection_in_flight:
            stats.skipped_cycles += 1
            self.logger.warning(f"⚠️ {name} is still collecting from an earlier cycle, cycle skipped")
            return 0

        started = self.clock()
        stats.cycles += 1

        try:
            snapshot = await asyncio.wait_for(collector.poll(), timeout=self.poll_timeout)
        except asyncio.TimeoutError:
            collector.cancel()
            stats.failures += 1
            self.logger.error(f"⏰ {name} poll timed out after {self.poll_timeout}s")
            return 0
        except CollectorError as e:
            stats.failures += 1
            self.logger.error(f"❌ Collector error: {e}")
            return 0
        except Exception as e:
            stats.failures += 1
            self.logger.error(f"❌ Unexpected error polling {name}: {e}", exc_info=True)
            return 0

        previous = self._previous.get(name)
        try:
            delta = diff(previous, snapshot)
            events = self.analyzer.analyze(collector.category, delta, baseline=previous is None)
        except Exception as e:
            stats.failures += 1
            self.logger.error(f"❌ Analysis failed for {name}: {e}", exc_info=True)
            return 0

        self._previous[name] = snapshot

        enqueued = sum(1 for event in events if self.event_queue.enqueue(event))
        stats.events += enqueued
        stats.last_duration = self.clock() - started
        stats.last_cycle_time = datetime.now()
        if delta.added or delta.removed or delta.changed:
            self.logger.debug(f"{name}: +{len(delta.added)} -{len(delta.removed)} "
                              f"~{len(delta.changed)} -> {enqueued} events")
        return enqueued

    async def run_once(self) -> int:
        """One cycle of every collector, concurrently"""
        results = await asyncio.gather(*(self.run_cycle(c) for c in self.collectors))
        return sum(results)

    async def _collector_loop(self, collector: BaseCollector):
        name = collector.collector_name
        interval = self.interval_for(collector.category)
        self.logger.info(f"🔄 Scheduling {name} every {interval}s")

        while not self._stop_event.is_set():
            started = self.clock()
            await self.run_cycle(collector)
            if self._stop_event.is_set():
                break

            next_start, missed = next_cycle_start(started, self.clock(), interval)
            if missed:
                self.stats[name].skipped_cycles += missed
                self.logger.warning(f"⚠️ {name} cycle overran its {interval}s interval, skipped {missed} cycle(s)")

            delay = next_start - self.clock()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                except asyncio.TimeoutError:
                    pass

    async def start(self):
        """Start one task per collector"""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._tasks = [
            asyncio.create_task(self._collector_loop(collector), name=f"cycle-{collector.collector_name}")
            for collector in self.collectors
        ]
        self.is_running = True
        self.logger.info(f"🚀 Scheduler started with {len(self._tasks)} collectors")

    async def stop(self, grace_period: float = 5):
        """Stop all cycles; in-flight polls are cancelled within ``grace_period``"""
        if not self.is_running:
            return
        self.is_running = False
        self._stop_event.set()
        for collector in self.collectors:
            collector.cancel()
        for task in self._tasks:
            task.cancel()

        if self._tasks:
            done, pending = await asyncio.wait(self._tasks, timeout=grace_period)
            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    self.logger.error(f"❌ {task.get_name()} ended with error: {task.exception()}")
            if pending:
                self.logger.warning(f"⚠️ {len(pending)} collector task(s) did not stop within {grace_period}s")
        self._tasks = []
        self.logger.info("🛑 Scheduler stopped")

    def get_stats(self) -> Dict[str, Dict]:
        return {
            name: {
                'cycles': s.cycles,
                'failures': s.failures,
                'events': s.events,
                'skipped_cycles': s.skipped_cycles,
                'last_duration': s.last_duration,
                'last_cycle_time': s.last_cycle_time.isoformat() if s.last_cycle_time else None,
            }
            for name, s in self.stats.items()
        }
