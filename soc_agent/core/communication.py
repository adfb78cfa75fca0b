# soc_agent/core/communication.py
"""
Server Communication - HTTP client for registration, heartbeat and data upload
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

import aiohttp

from soc_agent.core.config_manager import AgentConfig
from soc_agent.core.exceptions import DeliveryError, RegistrationError
from soc_agent.schemas.agent_data import AgentHeartbeatData, AgentRegistrationData
from soc_agent.schemas.events import Event
from soc_agent.schemas.server_responses import HeartbeatResponse, RegistrationResponse
from soc_agent.security.signing import EventSigner

AGENT_USER_AGENT = 'SOC-Agent/1.0'


class ServerCommunication:
    """aiohttp client bound to the configured central service"""

    def __init__(self, config: AgentConfig, signer: Optional[EventSigner] = None,
                 total_timeout: float = 30, connect_timeout: float = 10):
        self.logger = logging.getLogger(__name__)
        self.config = config
        self.signer = signer
        self.total_timeout = total_timeout
        self.connect_timeout = connect_timeout
        self.session: Optional[aiohttp.ClientSession] = None

        self.requests_sent = 0
        self.requests_failed = 0

    @property
    def base_url(self) -> str:
        return self.config.server_url

    def _url(self, endpoint: str) -> str:
        if endpoint.startswith(('http://', 'https://')):
            return endpoint
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    def _headers(self) -> Dict[str, str]:
        headers = {'Content-Type': 'application/json', 'Accept': 'application/json'}
        if self.config.agent_token:
            headers['Authorization'] = f"Bearer {self.config.agent_token}"
        return headers

    async def initialize(self):
        """Create the HTTP session"""
        if self.session and not self.session.closed:
            return
        timeout = aiohttp.ClientTimeout(
            total=self.total_timeout,
            connect=self.connect_timeout,
            sock_connect=self.connect_timeout,
        )
        connector = aiohttp.TCPConnector(limit=10, ttl_dns_cache=300, enable_cleanup_closed=True)
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            connector=connector,
            headers={'User-Agent': AGENT_USER_AGENT},
            raise_for_status=False,
        )
        self.logger.debug(f"HTTP session ready for {self.base_url}")

    async def close(self):
        """Close communication session"""
        if self.session and not self.session.closed:
            await self.session.close()
        self.session = None

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST JSON; returns the decoded body, raises DeliveryError on failure"""
        if self.session is None or self.session.closed:
            await self.initialize()
        url = self._url(endpoint)
        try:
            data = json.dumps(payload, default=str)
        except (TypeError, ValueError) as e:
            self.requests_failed += 1
            raise DeliveryError(f"Cannot serialize payload for {url}: {e}") from e

        self.requests_sent += 1
        try:
            async with self.session.post(url, data=data, headers=self._headers()) as response:
                text = await response.text()
                if not 200 <= response.status < 300:
                    self.requests_failed += 1
                    raise DeliveryError(f"HTTP {response.status} from {url}: {text[:200]}",
                                        status=response.status)
                if not text:
                    return {}
                try:
                    body = json.loads(text)
                except json.JSONDecodeError:
                    return {'success': True, 'message': text[:200]}
                return body if isinstance(body, dict) else {'data': body}
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.requests_failed += 1
            raise DeliveryError(f"Request to {url} failed: {e!r}") from e

    async def register_agent(self, registration: AgentRegistrationData) -> RegistrationResponse:
        """Register with the central service; raises RegistrationError"""
        payload = registration.to_payload(self.config.registration_key)
        try:
            body = await self._post(self.config.registration_endpoint, payload)
        except DeliveryError as e:
            raise RegistrationError(f"Registration request failed: {e}") from e

        response = RegistrationResponse.from_json(body)
        if not response.success:
            raise RegistrationError(f"Registration rejected: {response.message or 'no reason given'}")
        if not response.agent_id:
            raise RegistrationError("Registration response missing agent ID")

        self.logger.info(f"✅ Agent registered successfully: {response.agent_id}")
        return response

    async def send_heartbeat(self, heartbeat: AgentHeartbeatData) -> HeartbeatResponse:
        """Send heartbeat to server; raises DeliveryError"""
        body = await self._post(self.config.heartbeat_endpoint, heartbeat.to_payload())
        return HeartbeatResponse.from_json(body)

    def _event_payload(self, event: Event) -> Dict[str, Any]:
        payload = event.to_dict()
        payload['agentId'] = self.config.agent_id
        if self.signer is not None:
            payload['signature'] = self.signer.sign(payload)
        return payload

    async def send_events(self, events: List[Event]) -> Dict[str, Any]:
        """Upload a batch of events; raises DeliveryError on any non-2xx"""
        if not self.config.agent_id:
            raise DeliveryError("Agent not registered (missing agent ID)")
        payload = {
            'agentId': self.config.agent_id,
            'events': [self._event_payload(event) for event in events],
        }
        body = await self._post(self.config.data_endpoint, payload)
        if body.get('success') is False:
            raise DeliveryError(f"Server rejected batch: {body.get('message', 'no reason given')}")
        self.logger.debug(f"📤 Uploaded {len(events)} events")
        return body

    def get_stats(self) -> Dict[str, Any]:
        return {
            'server_url': self.base_url,
            'requests_sent': self.requests_sent,
            'requests_failed': self.requests_failed,
        }
