# soc_agent/collectors/malware_collector.py
"""
Malware Collector - Content-pattern scan of scripts and executables

Only files that match at least one pattern enter the snapshot, so a new
match shows up as an added item and a cleaned file as a removed one.
"""

import os
from typing import List, Optional

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.collectors.file_collector import file_tags
from soc_agent.core.config_manager import AgentConfig
from soc_agent.detection.local_rules import DetectionRules
from soc_agent.schemas.snapshots import FileArtifact, SnapshotCategory, SnapshotSet
from soc_agent.utils.file_utils import MAX_SCAN_DEPTH, calculate_file_hash, read_sample, walk_files

MAX_SCANNED_FILE_SIZE = 5 * 1024 * 1024


class MalwareCollector(BaseCollector):
    """Scans script and executable content for known-bad patterns"""

    category = SnapshotCategory.MALWARE

    def __init__(self, config: AgentConfig, rules: Optional[DetectionRules] = None):
        super().__init__(config, "MalwareCollector")
        self.rules = rules or DetectionRules.from_config(config)
        self.directories = list(config.directories_to_scan)

    def scan_file(self, path: str, size: int, modified_time: float, mode: int) -> Optional[FileArtifact]:
        """Return an artifact tagged with every matched pattern, or None"""
        tags = file_tags(path, mode, self.rules)
        if not ('script' in tags or 'executable' in tags) or size > MAX_SCANNED_FILE_SIZE:
            return None

        content = read_sample(path)
        if not content:
            return None
        lowered = content.lower()
        patterns = [p for p in self.rules.malware_content_patterns if p.lower() in lowered]
        if not patterns:
            return None

        return FileArtifact(
            path=path,
            size=size,
            modified_time=modified_time,
            tags=tags + ('suspicious_content',) + tuple(f"pattern:{p}" for p in patterns),
            sha256=calculate_file_hash(path),
        )

    def _collect_snapshot(self) -> SnapshotSet:
        items: List[FileArtifact] = []
        for directory in self.directories:
            if self.cancelled:
                break
            if not os.path.isdir(directory):
                continue
            for path, st in walk_files(directory, MAX_SCAN_DEPTH, lambda: self.cancelled):
                artifact = self.scan_file(path, st.st_size, st.st_mtime, st.st_mode)
                if artifact is not None:
                    items.append(artifact)

        self.logger.debug(f"Malware scan flagged {len(items)} files")
        return SnapshotSet(category=self.category, items=tuple(items))
