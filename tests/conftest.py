"""
tests/conftest.py -- Shared fixtures and fakes for the agent test suite.

Collectors are replaced by ScriptedCollector, which returns a fixed sequence
of snapshots, so scheduler and lifecycle tests never touch the host. The
central service is either a MagicMock with AsyncMock methods or, in
test_communication.py, a real aiohttp TestServer.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.config_manager import config_from_dict
from soc_agent.detection.local_rules import DetectionRules
from soc_agent.schemas.agent_data import SystemInfo, SystemMetrics
from soc_agent.schemas.snapshots import (
    NetworkConnectionItem, ProcessSnapshotItem, SnapshotCategory, SnapshotSet,
)

ALL_CAPABILITIES_OFF = {
    'fileSystemMonitoring': False,
    'processMonitoring': False,
    'networkMonitoring': False,
    'registryMonitoring': False,
    'securityLogsMonitoring': False,
    'malwareScanning': False,
    'vulnerabilityScanning': False,
}

# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------


def make_process(pid=100, name='bash', path='/usr/bin/bash', **kwargs) -> ProcessSnapshotItem:
    kwargs.setdefault('start_time', 1700000000.0 + pid)
    return ProcessSnapshotItem(pid=pid, name=name, executable_path=path, **kwargs)


def make_connection(remote_ip='93.184.216.34', remote_port=443, local_port=50000,
                    **kwargs) -> NetworkConnectionItem:
    kwargs.setdefault('state', 'ESTABLISHED')
    return NetworkConnectionItem(protocol='tcp', local_ip='10.0.0.5', local_port=local_port,
                                 remote_ip=remote_ip, remote_port=remote_port, **kwargs)


def snapshot(category, *items) -> SnapshotSet:
    return SnapshotSet(category=category, items=tuple(items))


# ---------------------------------------------------------------------------
# Fake collectors
# ---------------------------------------------------------------------------


class ScriptedCollector(BaseCollector):
    """Returns scripted snapshots in order; the last one repeats.

    An Exception instance in the script is raised instead of returned.
    """

    def __init__(self, config, category, script, name=None):
        self.category = category
        super().__init__(config, name or f"Scripted{category.title()}Collector")
        self._script = list(script)

    def _collect_snapshot(self):
        step = self._script.pop(0) if len(self._script) > 1 else self._script[0]
        if isinstance(step, Exception):
            raise step
        return step


class FailingStartCollector(ScriptedCollector):
    async def _collector_specific_init(self):
        raise RuntimeError("probe unavailable")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config():
    return config_from_dict({'agentId': 'agent-1', 'agentToken': 'token-1'})


@pytest.fixture
def rules():
    return DetectionRules()


@pytest.fixture
def probe():
    fake = MagicMock()
    fake.get_system_info.return_value = SystemInfo(
        hostname='host-1', ip_address='10.0.0.5', operating_system='Linux', os_version='6.1',
        architecture='x86_64')
    fake.get_metrics.return_value = SystemMetrics(cpu_usage=10.0, memory_usage=20.0, disk_usage=30.0)
    return fake


@pytest.fixture
def communication():
    fake = MagicMock()
    fake.initialize = AsyncMock()
    fake.close = AsyncMock()
    fake.register_agent = AsyncMock()
    fake.send_heartbeat = AsyncMock(return_value=MagicMock(success=True))
    fake.send_events = AsyncMock(return_value={'success': True})
    return fake


@pytest.fixture
def write_config(tmp_path):
    """Write a JSON config file merged over a registered, all-off baseline."""

    def _write(**overrides):
        data = {
            'agentId': 'agent-1',
            'agentToken': 'token-1',
            'logFilePath': str(tmp_path / 'agent.log'),
            'stopGracePeriod': 1,
            'capabilities': dict(ALL_CAPABILITIES_OFF),
        }
        capabilities = overrides.pop('capabilities', {})
        data['capabilities'].update(capabilities)
        data.update(overrides)
        path = tmp_path / 'agent_config.json'
        path.write_text(json.dumps(data), encoding='utf-8')
        return str(path)

    return _write


