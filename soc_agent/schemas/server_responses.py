# soc_agent/schemas/server_responses.py
"""
Server Response Schemas - Data structures for server responses
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ServerResponse:
    """Base server response"""
    success: bool
    message: str = ""
    data: Optional[Dict[str, Any]] = None


@dataclass
class RegistrationResponse(ServerResponse):
    """Agent registration response"""
    agent_id: Optional[str] = None
    token: Optional[str] = None
    heartbeat_interval: Optional[int] = None
    data_endpoint: Optional[str] = None
    heartbeat_endpoint: Optional[str] = None

    @classmethod
    def from_json(cls, body: Dict[str, Any]) -> 'RegistrationResponse':
        """Accept both ``{"data": {"agentId": ...}}`` and a flat ``{"agentId": ...}``"""
        data = body.get('data') if isinstance(body.get('data'), dict) else body
        config = data.get('config') or {}
        endpoints = config.get('endpoints') or {}
        agent_id = data.get('agentId') or data.get('agent_id')
        return cls(
            success=bool(body.get('success', agent_id is not None)),
            message=body.get('message', ''),
            data=data,
            agent_id=str(agent_id) if agent_id is not None else None,
            token=data.get('token'),
            heartbeat_interval=config.get('heartbeatInterval'),
            data_endpoint=endpoints.get('data'),
            heartbeat_endpoint=endpoints.get('heartbeat'),
        )


@dataclass
class HeartbeatResponse(ServerResponse):
    """Heartbeat response"""
    config: Optional[Dict[str, Any]] = None

    @classmethod
    def from_json(cls, body: Dict[str, Any]) -> 'HeartbeatResponse':
        return cls(
            success=bool(body.get('success', True)),
            message=body.get('message', ''),
            data=body,
            config=body.get('config') or None,
        )
