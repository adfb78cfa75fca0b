# soc_agent/core/exceptions.py
"""
Agent Exceptions - Error taxonomy shared by every component
"""

from typing import Optional


class AgentError(Exception):
    """Base class for all agent errors"""


class ConfigError(AgentError):
    """Missing or invalid configuration"""


class CollectorError(AgentError):
    """A collector failed to start or poll; isolated to its category"""

    def __init__(self, collector_name: str, message: str):
        super().__init__(f"{collector_name}: {message}")
        self.collector_name = collector_name


class ClassificationError(AgentError):
    """A classification rule could not be evaluated"""


class DeliveryError(AgentError):
    """The central service did not accept an upload"""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RegistrationError(AgentError):
    """Registration with the central service was rejected or failed"""


class AgentStateError(AgentError):
    """Lifecycle operation called in the wrong state"""
