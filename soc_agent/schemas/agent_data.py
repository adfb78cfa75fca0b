# soc_agent/schemas/agent_data.py
"""
Agent Data Schemas - Data structures for agent communication
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class SystemInfo:
    """Static host information reported at registration"""
    hostname: str
    ip_address: str
    operating_system: str
    os_version: str = ""
    architecture: Optional[str] = None


@dataclass
class SystemMetrics:
    """Point-in-time host metrics reported with each heartbeat"""
    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    disk_usage: float = 0.0
    uptime: float = 0.0
    process_count: int = 0
    network_connections: int = 0
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cpuUsage': self.cpu_usage,
            'memoryUsage': self.memory_usage,
            'diskUsage': self.disk_usage,
            'uptime': self.uptime,
            'processCount': self.process_count,
            'networkConnections': self.network_connections,
            'timestamp': self.timestamp.isoformat(),
        }


@dataclass
class AgentRegistrationData:
    """Agent registration data"""
    hostname: str
    ip_address: str
    operating_system: str
    os_version: str = ""
    architecture: Optional[str] = None
    capabilities: List[str] = field(default_factory=list)
    agent_version: str = "1.0.0"

    def to_payload(self, registration_key: str) -> Dict[str, Any]:
        return {
            'hostname': self.hostname,
            'ip': self.ip_address,
            'os': self.operating_system,
            'version': self.os_version,
            'architecture': self.architecture,
            'capabilities': self.capabilities,
            'agentVersion': self.agent_version,
            'registrationKey': registration_key,
        }


@dataclass
class AgentHeartbeatData:
    """Agent heartbeat data"""
    agent_id: str
    metrics: SystemMetrics
    status: str = "active"

    @classmethod
    def from_metrics(cls, agent_id: str, metrics: SystemMetrics) -> 'AgentHeartbeatData':
        """Derive status from resource pressure: >90% is error, >80% is warning"""
        peak = max(metrics.cpu_usage, metrics.memory_usage, metrics.disk_usage)
        if peak > 90:
            status = "error"
        elif peak > 80:
            status = "warning"
        else:
            status = "active"
        return cls(agent_id=agent_id, metrics=metrics, status=status)

    def to_payload(self) -> Dict[str, Any]:
        return {
            'agentId': self.agent_id,
            'status': self.status,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'metrics': self.metrics.to_dict(),
        }
