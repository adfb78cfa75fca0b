# soc_agent/detection/analyzer.py
"""
Behavior Analyzer - Turns a snapshot diff into classified events

Added items are classified; changed persistence points and software
packages are re-classified; removed items are only logged, except the
termination of an important service which yields an ``info`` event.
"""

import logging
from typing import Callable, Dict, List, Optional

from soc_agent.core.differ import SnapshotDiff
from soc_agent.core.exceptions import ClassificationError
from soc_agent.detection.classifier import (
    NOT_SUSPICIOUS, Verdict, classify_connection, classify_file, classify_malware,
    classify_persistence, classify_process, classify_software,
)
from soc_agent.detection.local_rules import DetectionRules
from soc_agent.schemas.events import (
    Event, Severity, create_file_event, create_malware_event, create_network_event,
    create_persistence_event, create_process_event, create_vulnerability_event,
)
from soc_agent.schemas.snapshots import (
    FileArtifact, NetworkConnectionItem, PersistencePointItem, ProcessSnapshotItem,
    SnapshotCategory, SoftwareItem,
)


class BehaviorAnalyzer:
    """Classifies diff deltas against the loaded detection rules"""

    def __init__(self, rules: DetectionRules):
        self.logger = logging.getLogger(__name__)
        self.rules = rules
        self._handlers: Dict[str, Callable[[SnapshotDiff, bool], List[Event]]] = {
            SnapshotCategory.PROCESS: self._analyze_processes,
            SnapshotCategory.NETWORK: self._analyze_connections,
            SnapshotCategory.PERSISTENCE: self._analyze_persistence,
            SnapshotCategory.FILE: self._analyze_files,
            SnapshotCategory.MALWARE: self._analyze_malware,
            SnapshotCategory.VULNERABILITY: self._analyze_software,
        }

    def analyze(self, category: str, delta: SnapshotDiff, baseline: bool = False) -> List[Event]:
        """Events for one category's diff; ``baseline`` marks the first snapshot"""
        self._log_removed(category, delta)
        handler = self._handlers.get(category)
        if handler is None:
            if delta.added:
                self.logger.debug(f"No classifier for category {category}; {len(delta.added)} items added")
            return []
        return handler(delta, baseline)

    def _verdict(self, classify, item) -> Verdict:
        try:
            return classify(item, self.rules)
        except ClassificationError as e:
            self.logger.warning(f"⚠️ Classification failed, treating as not suspicious: {e}")
            return NOT_SUSPICIOUS

    def _log_removed(self, category: str, delta: SnapshotDiff):
        if not delta.removed:
            return
        self.logger.info(f"{category}: {len(delta.removed)} items no longer present")
        for item in delta.removed:
            self.logger.debug(f"{category} removed: {item.identity_key!r}")

    # ------------------------------------------------------------------
    # Processes
    # ------------------------------------------------------------------

    def _analyze_processes(self, delta: SnapshotDiff, baseline: bool) -> List[Event]:
        events = []
        # A pid reused by a different process is a new process
        candidates = list(delta.added) + [new for _, new in delta.changed]
        for item in candidates:
            verdict = self._verdict(classify_process, item)
            if verdict.suspicious:
                events.append(self._process_event(item, verdict))

        for item in delta.removed:
            if self._is_important(item):
                events.append(create_process_event(
                    Severity.INFO,
                    f"Important process terminated: {item.name} (PID: {item.pid})",
                    item.to_dict(),
                    dedup_key=f"process:{item.pid}:{item.start_time}:terminated",
                ))
        return events

    def _process_event(self, item: ProcessSnapshotItem, verdict: Verdict) -> Event:
        self.logger.warning(f"🚨 Suspicious process: {item.name} (PID: {item.pid}) - {verdict.reason}")
        return create_process_event(
            verdict.severity,
            f"Suspicious process detected: {item.name} (PID: {item.pid}) - {verdict.reason}",
            item.to_dict(),
            list(verdict.reasons),
            dedup_key=f"process:{item.pid}:{item.start_time}",
        )

    def _is_important(self, item: ProcessSnapshotItem) -> bool:
        name = (item.name or '').lower()
        if name.endswith('.exe'):
            name = name[:-4]
        return name in self.rules.important_processes

    # ------------------------------------------------------------------
    # Network
    # ------------------------------------------------------------------

    def _analyze_connections(self, delta: SnapshotDiff, baseline: bool) -> List[Event]:
        events = []
        for item in delta.added:
            verdict = self._verdict(classify_connection, item)
            if verdict.suspicious:
                events.append(self._connection_event(item, verdict))
        return events

    def _connection_event(self, item: NetworkConnectionItem, verdict: Verdict) -> Event:
        self.logger.warning(f"🚨 Suspicious connection: {item.remote_ip}:{item.remote_port} "
                            f"({item.process_name or item.pid}) - {verdict.reason}")
        return create_network_event(
            verdict.severity,
            f"Suspicious network connection detected from {item.local_ip}:{item.local_port} to "
            f"{item.remote_ip}:{item.remote_port} ({item.protocol}) - {verdict.reason}",
            item.to_dict(),
            list(verdict.reasons),
            dedup_key=(f"network:{item.protocol}:{item.local_ip}:{item.local_port}:"
                       f"{item.remote_ip}:{item.remote_port}"),
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _analyze_persistence(self, delta: SnapshotDiff, baseline: bool) -> List[Event]:
        events = []
        for item in delta.added:
            verdict = self._verdict(classify_persistence, item)
            if verdict.suspicious:
                events.append(self._persistence_event(
                    item, verdict.severity,
                    f"Suspicious persistence point: {item.key_path} - {verdict.reason}",
                    verdict))
            elif not baseline:
                events.append(self._persistence_event(
                    item, Severity.LOW, f"New persistence point: {item.key_path}", verdict))

        for old, new in delta.changed:
            verdict = self._verdict(classify_persistence, new)
            severity = verdict.severity if verdict.suspicious else Severity.MEDIUM
            message = f"Persistence point modified: {new.key_path}"
            if verdict.suspicious:
                message += f" - {verdict.reason}"
            events.append(self._persistence_event(new, severity, message, verdict, previous=old))
        return events

    def _persistence_event(self, item: PersistencePointItem, severity: Severity, message: str,
                           verdict: Verdict, previous: Optional[PersistencePointItem] = None) -> Event:
        details = {'persistence': item.to_dict()}
        if previous is not None:
            details['previousHash'] = previous.content_hash
        if verdict.reasons:
            details['reason'] = verdict.reason
            details['reasons'] = list(verdict.reasons)
        self.logger.info(f"🔁 {message}")
        return create_persistence_event(severity, message, details,
                                        dedup_key=f"persistence:{item.key_path}:{item.content_hash}")

    # ------------------------------------------------------------------
    # Files and malware
    # ------------------------------------------------------------------

    def _analyze_files(self, delta: SnapshotDiff, baseline: bool) -> List[Event]:
        events = []
        for item in delta.added:
            verdict = self._verdict(classify_file, item)
            if verdict.suspicious:
                events.append(self._file_event(item, verdict))
        return events

    def _file_event(self, item: FileArtifact, verdict: Verdict) -> Event:
        self.logger.warning(f"🚨 Suspicious file: {item.path} - {verdict.reason}")
        return create_file_event(
            verdict.severity,
            f"Suspicious file detected: {item.path} - {verdict.reason}",
            item.to_dict(),
            list(verdict.reasons),
            dedup_key=f"file:{item.path}:{item.modified_time}",
        )

    def _analyze_malware(self, delta: SnapshotDiff, baseline: bool) -> List[Event]:
        events = []
        candidates = list(delta.added) + [new for _, new in delta.changed]
        for item in candidates:
            verdict = self._verdict(classify_malware, item)
            if not verdict.suspicious:
                continue
            patterns = [tag.split(':', 1)[1] for tag in item.tags if tag.startswith('pattern:')]
            detection = {
                'filePath': item.path,
                'fileHash': item.sha256,
                'malwareName': f"Suspicious.Script.{patterns[0]}" if patterns else "Suspicious.Content",
                'patterns': patterns,
                'confidence': verdict.confidence,
                'reasons': list(verdict.reasons),
                'quarantined': False,
                'deleted': False,
            }
            self.logger.warning(f"🦠 Possible malware: {item.path} ({', '.join(patterns)})")
            events.append(create_malware_event(detection, dedup_key=f"malware:{item.path}:{item.sha256}"))
        return events

    # ------------------------------------------------------------------
    # Software vulnerabilities
    # ------------------------------------------------------------------

    def _analyze_software(self, delta: SnapshotDiff, baseline: bool) -> List[Event]:
        events = []
        # An upgrade can introduce or clear a vulnerable version
        candidates = list(delta.added) + [new for _, new in delta.changed]
        for item in candidates:
            verdict = self._verdict(classify_software, item)
            for entry in verdict.matches:
                events.append(self._vulnerability_event(item, entry, verdict.confidence))
        return events

    def _vulnerability_event(self, item: SoftwareItem, entry, confidence: float) -> Event:
        vulnerability = {
            'softwareName': item.name,
            'version': item.version,
            'cveId': entry.cve_id,
            'description': entry.description,
            'severity': entry.severity.value,
            'fixAvailable': entry.fix_version is not None,
            'fixVersion': entry.fix_version,
            'confidence': confidence,
            'source': item.source,
        }
        self.logger.warning(f"🩹 Vulnerable package: {item.name} {item.version} ({entry.cve_id})")
        return create_vulnerability_event(
            vulnerability, dedup_key=f"vulnerability:{item.name}:{item.version}:{entry.cve_id}")
