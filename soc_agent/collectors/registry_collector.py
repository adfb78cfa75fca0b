# soc_agent/collectors/registry_collector.py
"""
Persistence Collector - Autorun locations and their content

Windows: registry Run/RunOnce keys. Elsewhere: cron tables, systemd units,
rc.local, init scripts, launchd agents and XDG autostart entries.
"""

import os
import platform
from typing import List, Optional

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.config_manager import AgentConfig
from soc_agent.schemas.snapshots import PersistencePointItem, SnapshotCategory, SnapshotSet
from soc_agent.utils.file_utils import read_sample
from soc_agent.utils.registry_utils import WINREG_AVAILABLE, read_autorun_entries

DEFAULT_PERSISTENCE_LOCATIONS = (
    '/etc/crontab',
    '/etc/cron.d',
    '/var/spool/cron',
    '/var/spool/cron/crontabs',
    '/etc/systemd/system',
    '/etc/rc.local',
    '/etc/init.d',
    '/Library/LaunchAgents',
    '/Library/LaunchDaemons',
    '~/Library/LaunchAgents',
    '~/.config/autostart',
)

MAX_ENTRY_BYTES = 16 * 1024


def persistence_source(path: str) -> str:
    """Short label for the mechanism a location belongs to"""
    lowered = path.lower()
    for marker, source in (('cron', 'cron'), ('systemd', 'systemd'), ('rc.local', 'rc'),
                           ('init.d', 'init'), ('launch', 'launchd'), ('autostart', 'autostart')):
        if marker in lowered:
            return source
    return 'file'


class PersistenceCollector(BaseCollector):
    """Snapshots persistence points; one item per autorun entry"""

    category = SnapshotCategory.PERSISTENCE

    def __init__(self, config: AgentConfig, locations: Optional[List[str]] = None,
                 use_registry: Optional[bool] = None):
        super().__init__(config, "PersistenceCollector")
        if use_registry is None:
            use_registry = platform.system() == 'Windows' and WINREG_AVAILABLE
        self.use_registry = use_registry
        configured = locations if locations is not None else config.persistence_locations
        self.locations = [os.path.expanduser(p) for p in (configured or DEFAULT_PERSISTENCE_LOCATIONS)]

    def _collect_snapshot(self) -> SnapshotSet:
        if self.use_registry:
            items = [PersistencePointItem(key_path=key, content=value, source='registry')
                     for key, value in sorted(read_autorun_entries().items())]
        else:
            items = self._collect_files()
        self.logger.debug(f"Collected {len(items)} persistence points")
        return SnapshotSet(category=self.category, items=tuple(items))

    def _collect_files(self) -> List[PersistencePointItem]:
        items: List[PersistencePointItem] = []
        seen = set()
        for location in self.locations:
            if self.cancelled:
                break
            for path in self._entries(location):
                if path in seen:
                    continue
                seen.add(path)
                item = self._read_entry(path)
                if item is not None:
                    items.append(item)
        return items

    def _entries(self, location: str) -> List[str]:
        if os.path.isdir(location):
            try:
                return sorted(os.path.join(location, name) for name in os.listdir(location))
            except OSError as e:
                self.logger.debug(f"Cannot list {location}: {e}")
                return []
        if os.path.lexists(location):
            return [location]
        return []

    def _read_entry(self, path: str) -> Optional[PersistencePointItem]:
        source = persistence_source(path)
        if os.path.islink(path):
            # systemd enablement links: the target is the content
            try:
                content = f"-> {os.readlink(path)}"
            except OSError as e:
                self.logger.debug(f"Cannot read link {path}: {e}")
                return None
        elif os.path.isdir(path):
            try:
                content = '\n'.join(sorted(os.listdir(path)))
            except OSError as e:
                self.logger.debug(f"Cannot list {path}: {e}")
                return None
        else:
            content = read_sample(path, MAX_ENTRY_BYTES)
            if content is None:
                return None
        return PersistencePointItem(key_path=path, content=content, source=source)
