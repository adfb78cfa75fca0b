# soc_agent/collectors/file_collector.py
"""
File Collector - Inventory of files in the configured scan directories
"""

import os
from typing import List, Optional

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.config_manager import AgentConfig
from soc_agent.detection.local_rules import DetectionRules
from soc_agent.schemas.snapshots import FileArtifact, SnapshotCategory, SnapshotSet
from soc_agent.utils.file_utils import MAX_SCAN_DEPTH, is_executable_mode, walk_files

MAX_FILES_PER_SCAN = 20000


def file_tags(path: str, mode: int, rules: DetectionRules) -> tuple:
    """Classification tags derived from name and permissions"""
    tags = []
    name = os.path.basename(path).lower()
    extension = os.path.splitext(name)[1]
    if extension in rules.executable_extensions or is_executable_mode(mode):
        tags.append('executable')
    if extension in rules.script_extensions:
        tags.append('script')
    if name.startswith('.'):
        tags.append('hidden')
    return tuple(tags)


class FileCollector(BaseCollector):
    """Walks ``directoriesToScan`` down to a fixed depth"""

    category = SnapshotCategory.FILE

    def __init__(self, config: AgentConfig, rules: Optional[DetectionRules] = None,
                 max_depth: int = MAX_SCAN_DEPTH):
        super().__init__(config, "FileCollector")
        self.rules = rules or DetectionRules.from_config(config)
        self.directories = list(config.directories_to_scan)
        self.max_depth = max_depth

    def _collect_snapshot(self) -> SnapshotSet:
        items: List[FileArtifact] = []
        for directory in self.directories:
            if self.cancelled:
                break
            if not os.path.isdir(directory):
                self.logger.debug(f"Scan directory not found: {directory}")
                continue
            for path, st in walk_files(directory, self.max_depth, lambda: self.cancelled):
                items.append(FileArtifact(
                    path=path,
                    size=st.st_size,
                    modified_time=st.st_mtime,
                    tags=file_tags(path, st.st_mode, self.rules),
                ))
                if len(items) >= MAX_FILES_PER_SCAN:
                    self.logger.warning(f"⚠️ File scan truncated at {MAX_FILES_PER_SCAN} files")
                    return SnapshotSet(category=self.category, items=tuple(items))

        self.logger.debug(f"Collected {len(items)} files")
        return SnapshotSet(category=self.category, items=tuple(items))
