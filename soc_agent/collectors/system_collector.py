# soc_agent/collectors/system_collector.py
"""
System Probe - Platform hooks for host identity and heartbeat metrics
"""

import logging
import os
import platform
import time

import psutil

from soc_agent.schemas.agent_data import SystemInfo, SystemMetrics
from soc_agent.utils.network_utils import get_hostname, get_primary_ipv4


class SystemProbe:
    """Host information and metrics via psutil"""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def get_system_info(self) -> SystemInfo:
        """Hostname, primary IPv4 and OS identification"""
        return SystemInfo(
            hostname=get_hostname(),
            ip_address=get_primary_ipv4(),
            operating_system=platform.system(),
            os_version=platform.release(),
            architecture=platform.machine() or None,
        )

    def _disk_root(self) -> str:
        if platform.system() == 'Windows':
            return os.environ.get('SystemDrive', 'C:') + '\\'
        return '/'

    def get_metrics(self) -> SystemMetrics:
        """Current resource usage; unavailable values are reported as 0"""
        metrics = SystemMetrics()
        try:
            metrics.cpu_usage = psutil.cpu_percent(interval=None)
            metrics.memory_usage = psutil.virtual_memory().percent
            metrics.uptime = max(0.0, time.time() - psutil.boot_time())
            metrics.process_count = len(psutil.pids())
        except (OSError, psutil.Error) as e:
            self.logger.debug(f"Metric collection incomplete: {e}")

        try:
            metrics.disk_usage = psutil.disk_usage(self._disk_root()).percent
        except OSError as e:
            self.logger.debug(f"Disk usage unavailable: {e}")

        try:
            metrics.network_connections = len(psutil.net_connections(kind='inet'))
        except (OSError, psutil.Error) as e:
            self.logger.debug(f"Connection count unavailable: {e}")

        return metrics
