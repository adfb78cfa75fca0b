# soc_agent/core/config_manager.py
"""
Configuration Manager - Load, validate and persist agent configuration

The on-disk format is JSON (camelCase keys) or YAML with the same keys.
File values are merged over ``DEFAULT_CONFIG``; ``capabilities`` and
``collectorIntervals`` are merged key by key.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from soc_agent.core.exceptions import ConfigError
from soc_agent.schemas.snapshots import SnapshotCategory

DEFAULT_CONFIG_PATH = 'agent_config.json'

DEFAULT_CONFIG: Dict[str, Any] = {
    # Server connection
    'serverUrl': 'http://localhost:5000',
    'registrationKey': 'default-registration-key',
    'agentId': None,
    'agentToken': None,

    # Intervals (seconds)
    'heartbeatInterval': 60,
    'dataUploadInterval': 300,
    'scanInterval': 3600,
    'collectorIntervals': {
        SnapshotCategory.PROCESS: 60,
        SnapshotCategory.NETWORK: 60,
        SnapshotCategory.AUTH: 30,
    },
    'pollTimeout': 60,
    'stopGracePeriod': 5,

    # Endpoints
    'registrationEndpoint': '/api/agents/register',
    'dataEndpoint': '/api/agents/data',
    'heartbeatEndpoint': '/api/agents/heartbeat',

    # Security
    'signMessages': False,
    'privateKeyPath': None,

    # Capabilities
    'capabilities': {
        'fileSystemMonitoring': True,
        'processMonitoring': True,
        'networkMonitoring': True,
        'registryMonitoring': False,
        'securityLogsMonitoring': True,
        'malwareScanning': False,
        'vulnerabilityScanning': False,
    },

    # Storage and logging
    'logFilePath': './agent.log',
    'logLevel': 'info',
    'maxStorageSize': 1000,
    'uploadBatchSize': 100,
    'maxDeliveryRetries': 5,
    'spoolPath': None,

    # Detection tuning
    'directoriesToScan': ['/tmp', '/var/tmp', '/dev/shm', '/home'],
    'cpuAlertThreshold': 90,
    'suspiciousDirectories': None,
    'suspiciousProcessNames': None,
    'suspiciousPorts': None,
    'persistenceLocations': None,
    'securityLogFiles': None,
    'pluginCollectors': [],
}

# Capability flag -> collector category
CAPABILITY_CATEGORIES = {
    'processMonitoring': SnapshotCategory.PROCESS,
    'networkMonitoring': SnapshotCategory.NETWORK,
    'registryMonitoring': SnapshotCategory.PERSISTENCE,
    'fileSystemMonitoring': SnapshotCategory.FILE,
    'malwareScanning': SnapshotCategory.MALWARE,
    'vulnerabilityScanning': SnapshotCategory.VULNERABILITY,
    'securityLogsMonitoring': SnapshotCategory.AUTH,
}

LOG_LEVELS = ('debug', 'info', 'warn', 'warning', 'error')


@dataclass
class AgentConfig:
    """Validated, typed view of the configuration"""
    server_url: str
    registration_key: str
    heartbeat_interval: float
    data_upload_interval: float
    scan_interval: float
    registration_endpoint: str
    data_endpoint: str
    heartbeat_endpoint: str
    capabilities: Dict[str, bool]
    log_file_path: str
    log_level: str
    max_storage_size: int
    directories_to_scan: List[str]
    cpu_alert_threshold: float
    collector_intervals: Dict[str, float] = field(default_factory=dict)
    poll_timeout: float = 60
    stop_grace_period: float = 5
    upload_batch_size: int = 100
    max_delivery_retries: int = 5
    spool_path: Optional[str] = None
    agent_id: Optional[str] = None
    agent_token: Optional[str] = None
    sign_messages: bool = False
    private_key_path: Optional[str] = None
    suspicious_directories: Optional[List[str]] = None
    suspicious_process_names: Optional[List[str]] = None
    suspicious_ports: Optional[List[int]] = None
    persistence_locations: Optional[List[str]] = None
    security_log_files: Optional[List[str]] = None
    plugin_collectors: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AgentConfig':
        return cls(
            server_url=str(data['serverUrl']).rstrip('/'),
            registration_key=str(data['registrationKey']),
            heartbeat_interval=data['heartbeatInterval'],
            data_upload_interval=data['dataUploadInterval'],
            scan_interval=data['scanInterval'],
            registration_endpoint=data['registrationEndpoint'],
            data_endpoint=data['dataEndpoint'],
            heartbeat_endpoint=data['heartbeatEndpoint'],
            capabilities=dict(data['capabilities']),
            log_file_path=data['logFilePath'],
            log_level=str(data['logLevel']).lower(),
            max_storage_size=int(data['maxStorageSize']),
            directories_to_scan=list(data.get('directoriesToScan') or []),
            cpu_alert_threshold=data['cpuAlertThreshold'],
            collector_intervals=dict(data.get('collectorIntervals') or {}),
            poll_timeout=data['pollTimeout'],
            stop_grace_period=data['stopGracePeriod'],
            upload_batch_size=int(data['uploadBatchSize']),
            max_delivery_retries=int(data['maxDeliveryRetries']),
            spool_path=data.get('spoolPath'),
            agent_id=data.get('agentId'),
            agent_token=data.get('agentToken'),
            sign_messages=bool(data.get('signMessages')),
            private_key_path=data.get('privateKeyPath'),
            suspicious_directories=data.get('suspiciousDirectories'),
            suspicious_process_names=data.get('suspiciousProcessNames'),
            suspicious_ports=data.get('suspiciousPorts'),
            persistence_locations=data.get('persistenceLocations'),
            security_log_files=data.get('securityLogFiles'),
            plugin_collectors=list(data.get('pluginCollectors') or []),
        )

    def interval_for(self, category: str) -> float:
        """Polling interval for a category; falls back to scanInterval"""
        return self.collector_intervals.get(category, self.scan_interval)

    def enabled_categories(self) -> List[str]:
        """Categories whose capability flag is on, in collector start order"""
        return [category for flag, category in CAPABILITY_CATEGORIES.items()
                if self.capabilities.get(flag)]

    def capability_list(self) -> List[str]:
        return [flag for flag, enabled in self.capabilities.items() if enabled]


class ConfigManager:
    """Manage agent configuration"""

    def __init__(self, config_path: Optional[str] = None):
        self.logger = logging.getLogger(__name__)
        self.config_file = Path(config_path or DEFAULT_CONFIG_PATH)
        self.config: Dict[str, Any] = {}
        self.agent_config: Optional[AgentConfig] = None

    async def load_config(self) -> AgentConfig:
        """Load configuration from file, writing defaults if the file is missing"""
        if self.config_file.exists():
            file_config = self._load_from_file(self.config_file)
            self.config = self._merge(file_config)
            self.logger.info(f"✅ Configuration loaded from: {self.config_file}")
        else:
            self.config = copy.deepcopy(DEFAULT_CONFIG)
            self.logger.info(f"Configuration file not found at {self.config_file}, creating default")
            self.save_config()

        self.agent_config = self._validate_config(self.config)
        return self.agent_config

    def _load_from_file(self, file_path: Path) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                content = f.read()
        except OSError as e:
            raise ConfigError(f"Cannot read config file {file_path}: {e}") from e

        try:
            if file_path.suffix.lower() in ('.yaml', '.yml'):
                data = yaml.safe_load(content)
            else:
                data = json.loads(content) if content.strip() else {}
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigError(f"Malformed config file {file_path}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {file_path} must contain a mapping")
        return data

    def _merge(self, file_config: Dict[str, Any]) -> Dict[str, Any]:
        """Merge file values over defaults"""
        merged = copy.deepcopy(DEFAULT_CONFIG)
        for key, value in file_config.items():
            if key in ('capabilities', 'collectorIntervals') and isinstance(value, dict):
                merged[key].update(value)
            else:
                merged[key] = value
        return merged

    def _validate_config(self, config: Dict[str, Any]) -> AgentConfig:
        """Validate configuration values; raises ConfigError"""
        if not config.get('serverUrl'):
            raise ConfigError("serverUrl is required")

        for key in ('heartbeatInterval', 'dataUploadInterval', 'scanInterval', 'pollTimeout'):
            self._validate_positive(key, config.get(key))
        for key in ('maxStorageSize', 'uploadBatchSize'):
            if not self._is_integer(config.get(key)) or config[key] <= 0:
                raise ConfigError(f"Invalid {key}: {config.get(key)!r} (must be a positive integer)")

        if not self._is_number(config.get('stopGracePeriod')) or config['stopGracePeriod'] < 0:
            raise ConfigError(f"Invalid stopGracePeriod: {config.get('stopGracePeriod')!r}")
        if not self._is_integer(config.get('maxDeliveryRetries')) or config['maxDeliveryRetries'] < 0:
            raise ConfigError(f"Invalid maxDeliveryRetries: {config.get('maxDeliveryRetries')!r}")

        intervals = config.get('collectorIntervals')
        if not isinstance(intervals, dict):
            raise ConfigError("collectorIntervals must be a mapping")
        for category, value in intervals.items():
            self._validate_positive(f"collectorIntervals.{category}", value)

        capabilities = config.get('capabilities')
        if not isinstance(capabilities, dict):
            raise ConfigError("capabilities must be a mapping")
        for flag, enabled in capabilities.items():
            if not isinstance(enabled, bool):
                raise ConfigError(f"Capability {flag} must be true or false, got {enabled!r}")
        unknown = set(capabilities) - set(CAPABILITY_CATEGORIES)
        if unknown:
            self.logger.warning(f"⚠️ Unknown capabilities ignored: {sorted(unknown)}")

        threshold = config.get('cpuAlertThreshold')
        if not self._is_number(threshold) or not 0 < threshold <= 100:
            raise ConfigError(f"Invalid cpuAlertThreshold: {threshold!r}")

        if str(config.get('logLevel', '')).lower() not in LOG_LEVELS:
            raise ConfigError(f"Invalid logLevel: {config.get('logLevel')!r}")

        if config.get('signMessages') and not config.get('privateKeyPath'):
            raise ConfigError("signMessages requires privateKeyPath")

        for key in ('directoriesToScan', 'pluginCollectors', 'suspiciousDirectories',
                    'suspiciousProcessNames', 'persistenceLocations', 'securityLogFiles'):
            value = config.get(key)
            if value is None:
                continue
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                raise ConfigError(f"{key} must be a list of strings")

        ports = config.get('suspiciousPorts')
        if ports is not None:
            if not isinstance(ports, list) or not all(self._is_integer(p) and 0 < p < 65536 for p in ports):
                raise ConfigError(f"suspiciousPorts must be a list of port numbers, got {ports!r}")

        self.logger.debug("Configuration validated")
        return AgentConfig.from_dict(config)

    @staticmethod
    def _is_number(value: Any) -> bool:
        return isinstance(value, (int, float)) and not isinstance(value, bool)

    @staticmethod
    def _is_integer(value: Any) -> bool:
        return isinstance(value, int) and not isinstance(value, bool)

    def _validate_positive(self, key: str, value: Any):
        if not self._is_number(value) or value <= 0:
            raise ConfigError(f"Invalid {key}: {value!r} (must be a positive number)")

    def get_value(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        try:
            value = self.config
            for part in key.split('.'):
                value = value[part]
            return value
        except (KeyError, TypeError):
            return default

    def set_value(self, key: str, value: Any):
        """Set configuration value using dot notation"""
        parts = key.split('.')
        section = self.config
        for part in parts[:-1]:
            section = section.setdefault(part, {})
        section[parts[-1]] = value
        self.logger.debug(f"Config updated: {key}")

    def update_identity(self, agent_id: str, token: Optional[str]):
        """Record the identity issued at registration and persist it"""
        self.set_value('agentId', agent_id)
        self.set_value('agentToken', token)
        if self.agent_config:
            self.agent_config.agent_id = agent_id
            self.agent_config.agent_token = token
        self.save_config()

    def update_from_server(self, server_config: Dict[str, Any]):
        """Apply settings pushed by the server at registration"""
        interval = server_config.get('heartbeatInterval')
        if self._is_number(interval) and interval > 0:
            self.set_value('heartbeatInterval', interval)
            if self.agent_config:
                self.agent_config.heartbeat_interval = interval

        endpoints = server_config.get('endpoints') or {}
        for name, key, attr in (('data', 'dataEndpoint', 'data_endpoint'),
                                ('heartbeat', 'heartbeatEndpoint', 'heartbeat_endpoint')):
            if endpoints.get(name):
                self.set_value(key, endpoints[name])
                if self.agent_config:
                    setattr(self.agent_config, attr, endpoints[name])

    def save_config(self, file_path: Optional[str] = None):
        """Save current configuration to file"""
        output_file = Path(file_path) if file_path else self.config_file
        output_file.parent.mkdir(parents=True, exist_ok=True)

        with open(output_file, 'w', encoding='utf-8') as f:
            if output_file.suffix.lower() in ('.yaml', '.yml'):
                yaml.safe_dump(self.config, f, default_flow_style=False, indent=2)
            else:
                json.dump(self.config, f, indent=2)

        self.logger.info(f"✅ Configuration saved to: {output_file}")


def config_from_dict(overrides: Optional[Dict[str, Any]] = None) -> AgentConfig:
    """Merge ``overrides`` over defaults and validate, without touching disk"""
    manager = ConfigManager()
    manager.config = manager._merge(overrides or {})
    manager.agent_config = manager._validate_config(manager.config)
    return manager.agent_config
