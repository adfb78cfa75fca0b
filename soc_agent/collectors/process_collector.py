# soc_agent/collectors/process_collector.py
"""
Process Collector - Snapshot of running processes
"""

import platform
from typing import Dict, List, Optional

import psutil

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.config_manager import AgentConfig
from soc_agent.schemas.snapshots import ProcessSnapshotItem, SnapshotCategory, SnapshotSet
from soc_agent.utils.process_utils import PROCESS_ATTRS, get_signature_status, process_item_from_info


class ProcessCollector(BaseCollector):
    """Enumerates processes with psutil"""

    category = SnapshotCategory.PROCESS

    def __init__(self, config: AgentConfig, check_signatures: Optional[bool] = None):
        super().__init__(config, "ProcessCollector")
        if check_signatures is None:
            check_signatures = platform.system() == 'Windows'
        self.check_signatures = check_signatures
        # executable path -> signature status; executables rarely change under a path
        self._signature_cache: Dict[str, Optional[str]] = {}

    def _signature_for(self, executable_path: Optional[str]) -> Optional[str]:
        if not self.check_signatures or not executable_path:
            return None
        if executable_path not in self._signature_cache:
            self._signature_cache[executable_path] = get_signature_status(executable_path)
        return self._signature_cache[executable_path]

    def _collect_snapshot(self) -> SnapshotSet:
        items: List[ProcessSnapshotItem] = []
        for proc in psutil.process_iter(PROCESS_ATTRS, ad_value=None):
            if self.cancelled:
                break
            try:
                info = proc.info
            except (psutil.NoSuchProcess, psutil.ZombieProcess):
                continue
            item = process_item_from_info(info, self._signature_for(info.get('exe')))
            if item is not None:
                items.append(item)

        self.logger.debug(f"Collected {len(items)} processes")
        return SnapshotSet(category=self.category, items=tuple(items))

    async def _collector_specific_cleanup(self):
        self._signature_cache.clear()
