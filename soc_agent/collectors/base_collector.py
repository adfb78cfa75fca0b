# soc_agent/collectors/base_collector.py
"""
Base Collector - Contract shared by every snapshot producer

A collector produces one category of snapshot per ``poll()``. Blocking
probes live in ``_collect_snapshot`` and run on a worker thread so a slow
system call never stalls the event loop. Long probes check ``cancelled``
and return early once ``cancel()`` has been called.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from soc_agent.core.config_manager import AgentConfig
from soc_agent.core.exceptions import CollectorError
from soc_agent.schemas.events import Event
from soc_agent.schemas.snapshots import SnapshotSet

EventSink = Callable[[Event], Any]


class BaseCollector(ABC):
    """Abstract base class for snapshot collectors"""

    category: str = ""

    def __init__(self, config: AgentConfig, collector_name: str):
        self.config = config
        self.collector_name = collector_name
        self.logger = logging.getLogger(f"collector.{collector_name}")

        self.is_running = False
        self.start_time: Optional[datetime] = None
        self._cancel_event = threading.Event()
        self._event_sink: Optional[EventSink] = None
        self._pending: Optional[asyncio.Future] = None

        self.polls = 0
        self.poll_errors = 0
        self.events_pushed = 0
        self.last_poll_time: Optional[datetime] = None

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def cancel(self):
        """Ask an in-flight collection to return as soon as possible"""
        self._cancel_event.set()

    async def start(self):
        """Start the collector; calling it again while running is a no-op"""
        if self.is_running:
            return
        self._cancel_event.clear()
        try:
            await self._collector_specific_init()
        except CollectorError:
            raise
        except Exception as e:
            self.logger.error(f"❌ {self.collector_name} start failed: {e}")
            raise CollectorError(self.collector_name, f"start failed: {e}") from e

        self.is_running = True
        self.start_time = datetime.now()
        self.logger.info(f"✅ Collector started: {self.collector_name}")

    async def stop(self):
        """Stop the collector; safe after a partial or failed start"""
        self.cancel()
        try:
            await self._collector_specific_cleanup()
        except Exception as e:
            self.logger.error(f"❌ {self.collector_name} cleanup error: {e}")
        if self.is_running:
            self.logger.info(f"🛑 Collector stopped: {self.collector_name}")
        self.is_running = False

    @property
    def collection_in_flight(self) -> bool:
        """True while a worker thread from an earlier poll is still running"""
        return self._pending is not None and not self._pending.done()

    async def poll(self) -> SnapshotSet:
        """Take one snapshot; any failure surfaces as CollectorError

        The worker thread cannot be interrupted, so a caller that stops
        waiting (timeout, cancellation) leaves the collection running until it
        returns; ``collection_in_flight`` reports that and a new poll is refused.
        """
        if self.collection_in_flight:
            raise CollectorError(self.collector_name, "previous collection still running")
        self.polls += 1
        self._cancel_event.clear()
        self._pending = asyncio.ensure_future(self._run_collection())
        self._pending.add_done_callback(self._collection_finished)
        return await asyncio.shield(self._pending)

    async def _run_collection(self) -> SnapshotSet:
        try:
            snapshot = await asyncio.to_thread(self._collect_snapshot)
        except CollectorError:
            self.poll_errors += 1
            raise
        except Exception as e:
            self.poll_errors += 1
            raise CollectorError(self.collector_name, f"poll failed: {e}") from e

        self.last_poll_time = datetime.now()
        return snapshot

    def _collection_finished(self, pending: asyncio.Future):
        # Retrieve the result of abandoned collections so asyncio does not report it
        if not pending.cancelled() and pending.exception() is not None:
            self.logger.debug(f"{self.collector_name} collection ended with: {pending.exception()}")

    @abstractmethod
    def _collect_snapshot(self) -> SnapshotSet:
        """Blocking probe - runs on a worker thread"""

    async def _collector_specific_init(self):
        """Collector-specific initialization - override in subclasses if needed"""

    async def _collector_specific_cleanup(self):
        """Collector-specific cleanup - override in subclasses if needed"""

    def set_event_sink(self, sink: Optional[EventSink]):
        """Route pushed events (outside the poll cycle) to ``sink``"""
        self._event_sink = sink

    def push_event(self, event: Event) -> bool:
        """Send a self-generated event straight to the event queue"""
        if self._event_sink is None:
            self.logger.debug(f"No event sink for {self.collector_name}, event dropped: {event.message}")
            return False
        self._event_sink(event)
        self.events_pushed += 1
        return True

    def get_stats(self) -> Dict[str, Any]:
        """Get collector statistics"""
        uptime = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0
        return {
            'collector_name': self.collector_name,
            'category': self.category,
            'is_running': self.is_running,
            'uptime_seconds': uptime,
            'polls': self.polls,
            'poll_errors': self.poll_errors,
            'events_pushed': self.events_pushed,
            'last_poll_time': self.last_poll_time.isoformat() if self.last_poll_time else None,
        }
