# soc_agent/collectors/plugin_loader.py
"""
Collector Factory - Built-in collectors by category and third-party plugins

Plugins are named ``"package.module:ClassName"``; the class must subclass
BaseCollector and accept the AgentConfig as its only required argument.
"""

import importlib
import logging
from typing import Dict, List, Type

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.collectors.file_collector import FileCollector
from soc_agent.collectors.malware_collector import MalwareCollector
from soc_agent.collectors.network_collector import NetworkCollector
from soc_agent.collectors.process_collector import ProcessCollector
from soc_agent.collectors.registry_collector import PersistenceCollector
from soc_agent.collectors.security_log_collector import SecurityLogCollector
from soc_agent.collectors.software_collector import SoftwareCollector
from soc_agent.core.config_manager import AgentConfig
from soc_agent.core.exceptions import CollectorError
from soc_agent.detection.local_rules import DetectionRules
from soc_agent.schemas.snapshots import SnapshotCategory

logger = logging.getLogger(__name__)

BUILTIN_COLLECTORS: Dict[str, Type[BaseCollector]] = {
    SnapshotCategory.PROCESS: ProcessCollector,
    SnapshotCategory.NETWORK: NetworkCollector,
    SnapshotCategory.PERSISTENCE: PersistenceCollector,
    SnapshotCategory.FILE: FileCollector,
    SnapshotCategory.MALWARE: MalwareCollector,
    SnapshotCategory.VULNERABILITY: SoftwareCollector,
    SnapshotCategory.AUTH: SecurityLogCollector,
}

RULE_AWARE_COLLECTORS = (FileCollector, MalwareCollector)


def create_builtin_collectors(config: AgentConfig, rules: DetectionRules) -> List[BaseCollector]:
    """One collector per enabled capability, in capability order"""
    collectors: List[BaseCollector] = []
    for category in config.enabled_categories():
        collector_class = BUILTIN_COLLECTORS[category]
        if issubclass(collector_class, RULE_AWARE_COLLECTORS):
            collectors.append(collector_class(config, rules=rules))
        else:
            collectors.append(collector_class(config))
    return collectors


def load_plugin_collector(plugin_path: str, config: AgentConfig) -> BaseCollector:
    """Import and instantiate ``module:ClassName``; raises CollectorError"""
    module_name, sep, class_name = plugin_path.partition(':')
    if not sep or not module_name or not class_name:
        raise CollectorError(plugin_path, "plugin must be given as 'module:ClassName'")

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise CollectorError(plugin_path, f"cannot import {module_name}: {e}") from e

    collector_class = getattr(module, class_name, None)
    if not isinstance(collector_class, type) or not issubclass(collector_class, BaseCollector):
        raise CollectorError(plugin_path, f"{class_name} is not a BaseCollector subclass")
    if not collector_class.category:
        raise CollectorError(plugin_path, f"{class_name} does not declare a category")

    try:
        collector = collector_class(config)
    except Exception as e:
        raise CollectorError(plugin_path, f"cannot instantiate {class_name}: {e}") from e

    logger.info(f"🔌 Loaded plugin collector {plugin_path} ({collector.category})")
    return collector
