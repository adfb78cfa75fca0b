# soc_agent/core/agent_manager.py
"""
Agent Manager - Lifecycle controller for the monitoring agent

States: UNINITIALIZED -> INITIALIZED -> RUNNING -> STOPPED. The manager owns
the configuration, the event queue, every collector, the scheduler and the
event processor; nothing else starts or stops them.
"""

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.collectors.plugin_loader import create_builtin_collectors, load_plugin_collector
from soc_agent.collectors.system_collector import SystemProbe
from soc_agent.core.communication import ServerCommunication
from soc_agent.core.config_manager import AgentConfig, ConfigManager
from soc_agent.core.event_processor import EventProcessor
from soc_agent.core.event_queue import EventQueue
from soc_agent.core.exceptions import AgentError, AgentStateError, CollectorError
from soc_agent.core.scheduler import Scheduler
from soc_agent.detection.analyzer import BehaviorAnalyzer
from soc_agent.detection.local_rules import DetectionRules
from soc_agent.schemas.agent_data import AgentRegistrationData
from soc_agent.schemas.server_responses import RegistrationResponse
from soc_agent.security.signing import EventSigner


class AgentState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    RUNNING = "running"
    STOPPED = "stopped"


class AgentManager:
    """Owns configuration, collectors, scheduler and delivery"""

    def __init__(self, config_path: Optional[str] = None, probe: Optional[SystemProbe] = None,
                 communication: Optional[ServerCommunication] = None):
        self.logger = logging.getLogger(__name__)
        self.config_manager = ConfigManager(config_path)
        self.probe = probe or SystemProbe()
        self.communication = communication

        self.state = AgentState.UNINITIALIZED
        self.config: Optional[AgentConfig] = None
        self.rules: Optional[DetectionRules] = None
        self.event_queue: Optional[EventQueue] = None
        self.scheduler: Optional[Scheduler] = None
        self.event_processor: Optional[EventProcessor] = None

        self.collectors: List[BaseCollector] = []
        self.active_collectors: List[BaseCollector] = []
        self._registered_collectors: List[BaseCollector] = []
        self._stop_lock = asyncio.Lock()
        self.start_time: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    def register_collector(self, collector: BaseCollector):
        """Add a third-party collector; must happen before start()"""
        if self.state not in (AgentState.UNINITIALIZED, AgentState.INITIALIZED):
            raise AgentStateError(f"Cannot register collectors while {self.state.value}")
        if not collector.category:
            raise CollectorError(collector.collector_name, "collector does not declare a category")

        if self.state == AgentState.INITIALIZED:
            self._attach(collector)
        else:
            self._registered_collectors.append(collector)
        self.logger.info(f"🔌 Collector registered: {collector.collector_name} ({collector.category})")

    def _attach(self, collector: BaseCollector):
        collector.set_event_sink(self.event_queue.enqueue)
        self.collectors.append(collector)

    async def initialize(self):
        """Load config, register if needed and build collectors

        Raises ConfigError or RegistrationError; the caller decides whether
        to retry or exit.
        """
        if self.state != AgentState.UNINITIALIZED:
            raise AgentStateError(f"initialize() called while {self.state.value}")

        self.logger.info("🔧 Starting Agent Manager initialization...")
        self.config = await self.config_manager.load_config()
        self.rules = DetectionRules.from_config(self.config)

        if self.communication is None:
            signer = EventSigner.from_file(self.config.private_key_path) if self.config.sign_messages else None
            self.communication = ServerCommunication(self.config, signer)

        try:
            await self.communication.initialize()
            if not self.config.agent_id:
                await self.register()
            else:
                self.logger.info(f"🆔 Using existing agent ID: {self.config.agent_id}")
        except AgentError:
            await self.communication.close()
            raise

        self.event_queue = EventQueue(
            max_size=self.config.max_storage_size,
            max_retries=self.config.max_delivery_retries,
            spool_path=self.config.spool_path,
        )
        self._build_collectors()

        self.scheduler = Scheduler(
            self.collectors,
            BehaviorAnalyzer(self.rules),
            self.event_queue,
            self.config.interval_for,
            poll_timeout=self.config.poll_timeout,
        )
        self.event_processor = EventProcessor(self.config, self.event_queue, self.communication, self.probe)

        self.state = AgentState.INITIALIZED
        self.logger.info(f"🎉 Agent Manager initialized with {len(self.collectors)} collectors")

    def _build_collectors(self):
        for collector in create_builtin_collectors(self.config, self.rules):
            self._attach(collector)

        for plugin_path in self.config.plugin_collectors:
            try:
                self._attach(load_plugin_collector(plugin_path, self.config))
            except CollectorError as e:
                self.logger.error(f"❌ Plugin collector skipped: {e}")

        for collector in self._registered_collectors:
            self._attach(collector)
        self._registered_collectors = []

    async def register(self) -> RegistrationResponse:
        """Register with the central service and persist the issued identity"""
        info = await asyncio.to_thread(self.probe.get_system_info)
        registration = AgentRegistrationData(
            hostname=info.hostname,
            ip_address=info.ip_address,
            operating_system=info.operating_system,
            os_version=info.os_version,
            architecture=info.architecture,
            capabilities=self.config.capability_list(),
        )
        self.logger.info(f"📡 Registering {info.hostname} ({info.ip_address}) with {self.config.server_url}")
        response = await self.communication.register_agent(registration)

        self.config_manager.update_identity(response.agent_id, response.token)
        self.config_manager.update_from_server({
            'heartbeatInterval': response.heartbeat_interval,
            'endpoints': {'data': response.data_endpoint, 'heartbeat': response.heartbeat_endpoint},
        })
        self.config_manager.save_config()
        return response

    # ------------------------------------------------------------------
    # Running
    # ------------------------------------------------------------------

    async def _start_collectors(self):
        self.active_collectors = []
        for collector in self.collectors:
            try:
                await collector.start()
                self.active_collectors.append(collector)
            except CollectorError as e:
                self.logger.error(f"❌ Collector excluded: {e}")

        if self.collectors and not self.active_collectors:
            raise AgentStateError("No collector could be started")
        self.scheduler.collectors = list(self.active_collectors)
        self.logger.info(f"📊 {len(self.active_collectors)}/{len(self.collectors)} collectors started")

    async def start(self):
        """Start collectors, the scheduler and the delivery loops"""
        if self.state == AgentState.RUNNING:
            return
        if self.state != AgentState.INITIALIZED:
            raise AgentStateError(f"start() called while {self.state.value}")

        try:
            await self._start_collectors()
        except AgentStateError:
            await self._stop_collectors()
            raise

        await self.scheduler.start()
        await self.event_processor.start()
        self.state = AgentState.RUNNING
        self.start_time = datetime.now()
        self.logger.info("🚀 Agent started")

    async def scan_once(self) -> int:
        """One detection cycle across every collector, then flush; returns events enqueued"""
        if self.state != AgentState.INITIALIZED:
            raise AgentStateError(f"scan_once() called while {self.state.value}")

        try:
            await self._start_collectors()
            enqueued = await self.scheduler.run_once()
            self.logger.info(f"🔍 Scan complete: {enqueued} events")
        finally:
            await self._stop_collectors()

        try:
            delivered = await asyncio.wait_for(self.event_processor.flush(), timeout=self.config.poll_timeout)
            self.logger.info(f"📤 Delivered {delivered}/{enqueued} events")
        except asyncio.TimeoutError:
            self.logger.warning(f"⚠️ Flush timed out; {len(self.event_queue)} events not delivered")
        await self._shutdown_delivery()
        self.state = AgentState.STOPPED
        return enqueued

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def _stop_collectors(self):
        for collector in reversed(self.collectors):
            await collector.stop()

    async def _shutdown_delivery(self):
        if self.event_queue is not None:
            self.event_queue.close()
        if self.communication is not None:
            await self.communication.close()

    async def stop(self):
        """Stop scheduler, then collectors in reverse start order, then flush

        Safe to call more than once and from signal handlers.
        """
        async with self._stop_lock:
            if self.state == AgentState.STOPPED:
                return
            if self.state == AgentState.UNINITIALIZED:
                self.state = AgentState.STOPPED
                return

            self.logger.info("🛑 Stopping agent...")
            grace = self.config.stop_grace_period
            if self.scheduler is not None:
                await self.scheduler.stop(grace)
            await self._stop_collectors()

            if self.event_processor is not None:
                if self.event_processor.is_running:
                    await self.event_processor.stop(grace)
                elif len(self.event_queue):
                    try:
                        await asyncio.wait_for(self.event_processor.flush(), timeout=grace)
                    except asyncio.TimeoutError:
                        self.logger.warning(f"⚠️ Flush timed out; {len(self.event_queue)} events not delivered")

            await self._shutdown_delivery()
            self.state = AgentState.STOPPED
            self.logger.info("✅ Agent stopped")

    def get_status(self) -> Dict[str, Any]:
        uptime = (datetime.now() - self.start_time).total_seconds() if self.start_time else 0
        return {
            'state': self.state.value,
            'agent_id': self.config.agent_id if self.config else None,
            'uptime_seconds': uptime,
            'collectors': [c.get_stats() for c in self.collectors],
            'scheduler': self.scheduler.get_stats() if self.scheduler else {},
            'delivery': self.event_processor.get_stats() if self.event_processor else {},
        }
