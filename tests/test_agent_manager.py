"""Lifecycle tests for core/agent_manager.py.

The central service is a MagicMock with AsyncMock methods and host probes
are either ScriptedCollector fakes or psutil patched with fixed process
lists, so these tests exercise the whole poll -> diff -> classify ->
enqueue -> upload path without touching the host.
"""

import asyncio
import json
import time
from unittest.mock import MagicMock, patch

import pytest
from conftest import FailingStartCollector, ScriptedCollector, make_process, snapshot

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.agent_manager import AgentManager, AgentState
from soc_agent.core.exceptions import AgentStateError, ConfigError, RegistrationError
from soc_agent.schemas.events import Severity
from soc_agent.schemas.server_responses import RegistrationResponse
from soc_agent.schemas.snapshots import SnapshotCategory


def fake_process(info):
    proc = MagicMock()
    proc.info = info
    return proc


PSEXEC = {
    'pid': 4242, 'ppid': 1, 'name': 'psexec', 'exe': '/tmp/psexec', 'cmdline': ['/tmp/psexec'],
    'create_time': 1700000000.0, 'username': 'root', 'cpu_percent': 0.0, 'memory_percent': 0.1,
}
SSHD = {
    'pid': 812, 'ppid': 1, 'name': 'sshd', 'exe': '/usr/sbin/sshd', 'cmdline': ['/usr/sbin/sshd', '-D'],
    'create_time': 1690000000.0, 'username': 'root', 'cpu_percent': 0.0, 'memory_percent': 0.2,
}


class HangingCollector(BaseCollector):
    category = SnapshotCategory.PROCESS

    def __init__(self, config):
        super().__init__(config, "HangingCollector")

    async def poll(self):
        self.polls += 1
        await asyncio.Event().wait()

    def _collect_snapshot(self):
        raise AssertionError("not used")


# ---------------------------------------------------------------------------
# TestInitialize
# ---------------------------------------------------------------------------


class TestInitialize:
    def test_registers_when_no_agent_id(self, write_config, communication, probe):
        path = write_config(agentId=None, agentToken=None)
        communication.register_agent.return_value = RegistrationResponse(
            success=True, agent_id='agent-new', token='tok-new', heartbeat_interval=20)
        agent = AgentManager(path, probe=probe, communication=communication)

        asyncio.run(agent.initialize())

        assert agent.state == AgentState.INITIALIZED
        assert agent.config.agent_id == 'agent-new'
        assert agent.config.heartbeat_interval == 20
        registration = communication.register_agent.call_args.args[0]
        assert registration.hostname == 'host-1'
        assert registration.to_payload('key')['architecture'] == 'x86_64'
        with open(path, encoding='utf-8') as f:
            assert json.load(f)['agentId'] == 'agent-new'

    def test_skips_registration_when_registered(self, write_config, communication, probe):
        agent = AgentManager(write_config(), probe=probe, communication=communication)
        asyncio.run(agent.initialize())
        communication.register_agent.assert_not_awaited()

    def test_rejected_registration_propagates(self, write_config, communication, probe):
        communication.register_agent.side_effect = RegistrationError("rejected")
        agent = AgentManager(write_config(agentId=None), probe=probe, communication=communication)

        with pytest.raises(RegistrationError):
            asyncio.run(agent.initialize())
        assert agent.state == AgentState.UNINITIALIZED
        communication.close.assert_awaited()

    def test_invalid_config_propagates(self, write_config, communication, probe):
        agent = AgentManager(write_config(heartbeatInterval=0), probe=probe, communication=communication)
        with pytest.raises(ConfigError):
            asyncio.run(agent.initialize())

    @pytest.mark.parametrize('overrides', [{'maxStorageSize': 0.5}, {'suspiciousPorts': ['ssh']}])
    def test_malformed_sizes_and_rules_are_config_errors(self, write_config, communication, probe, overrides):
        agent = AgentManager(write_config(**overrides), probe=probe, communication=communication)
        with pytest.raises(ConfigError):
            asyncio.run(agent.initialize())
        assert agent.state == AgentState.UNINITIALIZED

    def test_collectors_follow_capabilities(self, write_config, communication, probe):
        path = write_config(capabilities={'processMonitoring': True, 'networkMonitoring': True})
        agent = AgentManager(path, probe=probe, communication=communication)
        asyncio.run(agent.initialize())
        assert [c.category for c in agent.collectors] == [SnapshotCategory.PROCESS, SnapshotCategory.NETWORK]

    def test_bad_plugin_is_skipped(self, write_config, communication, probe):
        path = write_config(pluginCollectors=['no_such_module:Collector'])
        agent = AgentManager(path, probe=probe, communication=communication)
        asyncio.run(agent.initialize())
        assert agent.collectors == []


# ---------------------------------------------------------------------------
# TestScanOnce
# ---------------------------------------------------------------------------


class TestScanOnce:
    def test_psexec_in_temp_yields_one_high_event(self, write_config, communication, probe):
        path = write_config(capabilities={'processMonitoring': True})
        agent = AgentManager(path, probe=probe, communication=communication)

        async def scenario():
            await agent.initialize()
            return await agent.scan_once()

        with patch('soc_agent.collectors.process_collector.psutil.process_iter',
                   return_value=[fake_process(SSHD), fake_process(PSEXEC)]):
            assert asyncio.run(scenario()) == 1

        sent = communication.send_events.call_args.args[0]
        assert len(sent) == 1
        event = sent[0]
        assert event.severity == Severity.HIGH
        assert event.details['process']['name'] == 'psexec'
        reasons = event.details['reasons']
        assert any('psexec' in r for r in reasons)
        assert any('/tmp' in r for r in reasons)
        assert agent.state == AgentState.STOPPED


# ---------------------------------------------------------------------------
# TestStartStop
# ---------------------------------------------------------------------------


class TestStartStop:
    def test_failed_collector_excluded_others_run(self, write_config, communication, probe):
        agent = AgentManager(write_config(), probe=probe, communication=communication)

        async def scenario():
            await agent.initialize()
            broken = FailingStartCollector(agent.config, SnapshotCategory.NETWORK,
                                           [snapshot(SnapshotCategory.NETWORK)])
            healthy = ScriptedCollector(agent.config, SnapshotCategory.PROCESS,
                                        [snapshot(SnapshotCategory.PROCESS, make_process(1))])
            agent.register_collector(broken)
            agent.register_collector(healthy)
            await agent.start()
            running = list(agent.active_collectors)
            await agent.stop()
            return healthy, running

        healthy, running = asyncio.run(scenario())
        assert running == [healthy]
        assert agent.state == AgentState.STOPPED

    def test_start_fails_when_no_collector_starts(self, write_config, communication, probe):
        agent = AgentManager(write_config(), probe=probe, communication=communication)

        async def scenario():
            await agent.initialize()
            agent.register_collector(FailingStartCollector(agent.config, SnapshotCategory.PROCESS,
                                                           [snapshot(SnapshotCategory.PROCESS)]))
            try:
                await agent.start()
            finally:
                await agent.stop()

        with pytest.raises(AgentStateError):
            asyncio.run(scenario())

    def test_stop_during_inflight_poll_returns_within_grace(self, write_config, communication, probe):
        agent = AgentManager(write_config(stopGracePeriod=1), probe=probe, communication=communication)
        hanging = HangingCollector(None)

        async def scenario():
            await agent.initialize()
            agent.register_collector(hanging)
            await agent.start()
            await asyncio.sleep(0.05)
            started = time.monotonic()
            await agent.stop()
            elapsed = time.monotonic() - started
            polls_at_stop = hanging.polls
            await asyncio.sleep(0.05)
            return elapsed, polls_at_stop

        elapsed, polls_at_stop = asyncio.run(scenario())
        assert elapsed < 1.0
        assert polls_at_stop == 1
        assert hanging.polls == 1
        assert agent.state == AgentState.STOPPED

    def test_stop_is_idempotent_and_flushes(self, write_config, communication, probe):
        agent = AgentManager(write_config(), probe=probe, communication=communication)

        async def scenario():
            await agent.initialize()
            agent.register_collector(ScriptedCollector(
                agent.config, SnapshotCategory.PROCESS,
                [snapshot(SnapshotCategory.PROCESS, make_process(7, name='psexec', path='/tmp/psexec'))]))
            await agent.start()
            await asyncio.sleep(0.1)
            await agent.stop()
            await agent.stop()

        asyncio.run(scenario())
        delivered = [e for call in communication.send_events.call_args_list for e in call.args[0]]
        assert len(delivered) == 1
        communication.close.assert_awaited()

    def test_cannot_register_collectors_while_running(self, write_config, communication, probe):
        agent = AgentManager(write_config(), probe=probe, communication=communication)

        async def scenario():
            await agent.initialize()
            agent.register_collector(ScriptedCollector(agent.config, SnapshotCategory.PROCESS,
                                                       [snapshot(SnapshotCategory.PROCESS)]))
            await agent.start()
            try:
                agent.register_collector(ScriptedCollector(agent.config, SnapshotCategory.NETWORK,
                                                           [snapshot(SnapshotCategory.NETWORK)]))
            finally:
                await agent.stop()

        with pytest.raises(AgentStateError):
            asyncio.run(scenario())
