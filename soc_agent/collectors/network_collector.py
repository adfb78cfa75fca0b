# soc_agent/collectors/network_collector.py
"""
Network Collector - Snapshot of open sockets
"""

from typing import Dict, List

import psutil

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.config_manager import AgentConfig
from soc_agent.core.exceptions import CollectorError
from soc_agent.schemas.snapshots import NetworkConnectionItem, SnapshotCategory, SnapshotSet
from soc_agent.utils.network_utils import connection_item


class NetworkCollector(BaseCollector):
    """Enumerates inet sockets with psutil"""

    category = SnapshotCategory.NETWORK

    def __init__(self, config: AgentConfig):
        super().__init__(config, "NetworkCollector")

    def _process_names(self) -> Dict[int, str]:
        names: Dict[int, str] = {}
        for proc in psutil.process_iter(['pid', 'name'], ad_value=None):
            info = proc.info
            if info.get('name'):
                names[info['pid']] = info['name']
        return names

    def _collect_snapshot(self) -> SnapshotSet:
        try:
            connections = psutil.net_connections(kind='inet')
        except psutil.AccessDenied as e:
            raise CollectorError(self.collector_name, f"access denied listing connections: {e}") from e

        names = self._process_names()
        items: List[NetworkConnectionItem] = [connection_item(conn, names) for conn in connections]
        self.logger.debug(f"Collected {len(items)} connections")
        return SnapshotSet(category=self.category, items=tuple(items))
