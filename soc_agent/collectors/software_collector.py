# soc_agent/collectors/software_collector.py
"""
Software Collector - Installed package inventory for vulnerability scanning
"""

import shutil
import subprocess
from typing import List, Optional, Tuple

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.config_manager import AgentConfig
from soc_agent.core.exceptions import CollectorError
from soc_agent.schemas.snapshots import SnapshotCategory, SnapshotSet, SoftwareItem

PACKAGE_MANAGERS = (
    ('dpkg', ['dpkg-query', '-W', '-f=${Package}\t${Version}\n']),
    ('rpm', ['rpm', '-qa', '--qf', '%{NAME}\t%{VERSION}\n']),
)

QUERY_TIMEOUT = 120


def parse_package_list(output: str, source: str) -> List[SoftwareItem]:
    """Parse ``name<TAB>version`` lines"""
    items = []
    for line in output.splitlines():
        name, sep, version = line.strip().partition('\t')
        if sep and name:
            items.append(SoftwareItem(name=name.lower(), version=version.strip(), source=source))
    return items


class SoftwareCollector(BaseCollector):
    """Queries dpkg or rpm for installed packages"""

    category = SnapshotCategory.VULNERABILITY

    def __init__(self, config: AgentConfig):
        super().__init__(config, "SoftwareCollector")
        self.package_manager: Optional[Tuple[str, List[str]]] = None

    async def _collector_specific_init(self):
        for source, command in PACKAGE_MANAGERS:
            if shutil.which(command[0]):
                self.package_manager = (source, command)
                self.logger.info(f"📦 Using {source} for software inventory")
                return
        raise CollectorError(self.collector_name, "no supported package manager found")

    def _collect_snapshot(self) -> SnapshotSet:
        if self.package_manager is None:
            raise CollectorError(self.collector_name, "collector not started")
        source, command = self.package_manager
        try:
            result = subprocess.run(command, capture_output=True, text=True,
                                    timeout=QUERY_TIMEOUT, check=True)
        except (OSError, subprocess.SubprocessError) as e:
            raise CollectorError(self.collector_name, f"{source} query failed: {e}") from e

        items = parse_package_list(result.stdout, source)
        self.logger.debug(f"Collected {len(items)} packages from {source}")
        return SnapshotSet(category=self.category, items=tuple(items))
