# soc_agent/core/event_processor.py
"""
Event Processor - Delivers queued events and heartbeats to the central service

Uploads run every ``dataUploadInterval`` or as soon as ``uploadBatchSize``
events are pending. An event counts as delivered only after the server
accepts its batch; a failed batch goes back to the head of the queue.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from soc_agent.collectors.system_collector import SystemProbe
from soc_agent.core.communication import ServerCommunication
from soc_agent.core.config_manager import AgentConfig
from soc_agent.core.event_queue import EventQueue
from soc_agent.core.exceptions import DeliveryError
from soc_agent.schemas.agent_data import AgentHeartbeatData


@dataclass
class EventStats:
    """Delivery statistics"""
    batches_sent: int = 0
    batches_failed: int = 0
    events_sent: int = 0
    heartbeats_sent: int = 0
    heartbeats_failed: int = 0
    last_event_sent: Optional[datetime] = None
    last_heartbeat: Optional[datetime] = None


class EventProcessor:
    """Upload and heartbeat loops"""

    def __init__(self, config: AgentConfig, event_queue: EventQueue,
                 communication: ServerCommunication, probe: Optional[SystemProbe] = None):
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.event_queue = event_queue
        self.communication = communication
        self.probe = probe or SystemProbe()
        self.stats = EventStats()

        self.is_running = False
        self._stop_event: Optional[asyncio.Event] = None
        self._wake_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks = []
        self._upload_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------

    async def upload_batch(self) -> int:
        """Send one batch; returns the number of events delivered"""
        async with self._upload_lock:
            batch = self.event_queue.drain_batch(self.config.upload_batch_size)
            if not batch:
                return 0
            try:
                await self.communication.send_events(batch)
            except DeliveryError as e:
                restored = self.event_queue.requeue(batch)
                self.stats.batches_failed += 1
                self.logger.warning(f"⚠️ Upload of {len(batch)} events failed ({e}); {restored} requeued")
                return 0
            except asyncio.CancelledError:
                self.event_queue.requeue(batch)
                raise
            except Exception as e:
                # Requeue so the retry limit eventually releases the dedup keys
                restored = self.event_queue.requeue(batch)
                self.stats.batches_failed += 1
                self.logger.error(f"❌ Unexpected upload error for {len(batch)} events: {e}; "
                                  f"{restored} requeued", exc_info=True)
                return 0

            self.event_queue.ack(batch)
            self.stats.batches_sent += 1
            self.stats.events_sent += len(batch)
            self.stats.last_event_sent = datetime.now()
            self.logger.info(f"📤 Delivered {len(batch)} events")
            return len(batch)

    async def flush(self) -> int:
        """Upload until the queue is empty or a batch fails"""
        delivered = 0
        while len(self.event_queue):
            sent = await self.upload_batch()
            if not sent:
                break
            delivered += sent
        return delivered

    def _on_enqueue(self, pending: int):
        # Called from whichever thread enqueued
        if pending >= self.config.upload_batch_size and self._loop and self._wake_event:
            self._loop.call_soon_threadsafe(self._wake_event.set)

    async def _upload_loop(self):
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._wake_event.wait(), timeout=self.config.data_upload_interval)
            except asyncio.TimeoutError:
                pass
            self._wake_event.clear()
            if self._stop_event.is_set():
                break
            try:
                await self.flush()
            except Exception as e:
                self.logger.error(f"❌ Upload loop error: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    async def send_heartbeat(self) -> bool:
        """Collect metrics and send one heartbeat"""
        metrics = await asyncio.to_thread(self.probe.get_metrics)
        heartbeat = AgentHeartbeatData.from_metrics(self.config.agent_id, metrics)
        try:
            await self.communication.send_heartbeat(heartbeat)
        except DeliveryError as e:
            self.stats.heartbeats_failed += 1
            self.logger.warning(f"⚠️ Heartbeat failed: {e}")
            return False

        self.stats.heartbeats_sent += 1
        self.stats.last_heartbeat = datetime.now()
        self.logger.debug(f"💓 Heartbeat sent ({heartbeat.status})")
        return True

    async def _heartbeat_loop(self):
        while not self._stop_event.is_set():
            try:
                await self.send_heartbeat()
            except Exception as e:
                self.logger.error(f"❌ Heartbeat loop error: {e}", exc_info=True)
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.config.heartbeat_interval)
            except asyncio.TimeoutError:
                pass

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._wake_event = asyncio.Event()
        self.event_queue.add_listener(self._on_enqueue)
        self._tasks = [
            asyncio.create_task(self._upload_loop(), name='upload'),
            asyncio.create_task(self._heartbeat_loop(), name='heartbeat'),
        ]
        self.is_running = True
        self.logger.info("🚀 Event processor started")

    async def stop(self, grace_period: float = 5):
        """Stop loops, then make one bounded attempt to flush pending events"""
        if not self.is_running:
            return
        self.is_running = False
        self._stop_event.set()
        for task in self._tasks:
            task.cancel()
        await asyncio.wait(self._tasks, timeout=grace_period)
        self._tasks = []

        pending = len(self.event_queue)
        if pending:
            try:
                delivered = await asyncio.wait_for(self.flush(), timeout=grace_period)
                self.logger.info(f"📤 Final flush delivered {delivered}/{pending} events")
            except asyncio.TimeoutError:
                self.logger.warning(f"⚠️ Final flush timed out; {len(self.event_queue)} events left in queue")
        self.logger.info("🛑 Event processor stopped")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'batches_sent': self.stats.batches_sent,
            'batches_failed': self.stats.batches_failed,
            'events_sent': self.stats.events_sent,
            'heartbeats_sent': self.stats.heartbeats_sent,
            'heartbeats_failed': self.stats.heartbeats_failed,
            'last_event_sent': self.stats.last_event_sent.isoformat() if self.stats.last_event_sent else None,
            'last_heartbeat': self.stats.last_heartbeat.isoformat() if self.stats.last_heartbeat else None,
            'queue': self.event_queue.get_stats(),
        }
