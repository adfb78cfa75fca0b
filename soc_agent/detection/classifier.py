# soc_agent/detection/classifier.py
"""
Heuristic Classifier - Pure functions that score one snapshot item

Each ``classify_*`` function runs its category's rules in order. The first
matching rule sets the severity; the reasons of every matching rule are kept.
A rule that cannot be evaluated raises ClassificationError.
"""

import os
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Tuple

from soc_agent.core.exceptions import ClassificationError
from soc_agent.detection.local_rules import (
    DetectionRules, LocalRule, VulnerableSoftware, normalize_path,
)
from soc_agent.schemas.events import Severity, severity_from_confidence
from soc_agent.schemas.snapshots import (
    FileArtifact, NetworkConnectionItem, PersistencePointItem,
    ProcessSnapshotItem, SoftwareItem,
)

UNTRUSTED_SIGNATURE_STATES = ('unsigned', 'notsigned', 'invalid', 'hashmismatch', 'unknownerror')


@dataclass(frozen=True)
class Verdict:
    """Classification result for one item"""
    suspicious: bool
    severity: Severity = Severity.INFO
    reasons: Tuple[str, ...] = ()
    confidence: Optional[float] = None
    matches: Tuple[Any, ...] = ()

    @property
    def reason(self) -> str:
        return '; '.join(self.reasons)


NOT_SUSPICIOUS = Verdict(suspicious=False)


def _basename(path: Optional[str]) -> str:
    return normalize_path(path or '').rsplit('/', 1)[-1]


def _extension(path: Optional[str]) -> str:
    return os.path.splitext(_basename(path))[1]


def _evaluate(rule_list: Iterable[LocalRule], item: Any, rules: DetectionRules) -> Verdict:
    severity = None
    reasons: List[str] = []
    for rule in rule_list:
        try:
            reason = rule.match(item, rules)
        except Exception as e:
            raise ClassificationError(f"Rule '{rule.name}' failed: {e}") from e
        if reason:
            if severity is None:
                severity = rule.severity
            reasons.append(reason)

    if severity is None:
        return NOT_SUSPICIOUS
    return Verdict(suspicious=True, severity=severity, reasons=tuple(reasons))


# ---------------------------------------------------------------------------
# Process rules
# ---------------------------------------------------------------------------

def _process_name(item: ProcessSnapshotItem, rules: DetectionRules) -> Optional[str]:
    name = (item.name or '').lower()
    for token in rules.suspicious_process_names:
        if token in name:
            return f"Suspicious process name matches '{token}'"
    return None


def _process_directory(item: ProcessSnapshotItem, rules: DetectionRules) -> Optional[str]:
    directory = rules.is_suspicious_directory(item.executable_path)
    if directory is None:
        return None
    extension = _extension(item.executable_path)
    if extension:
        return f"Executable ({extension}) running from suspicious directory {directory}"
    return f"Executable running from suspicious directory {directory}"


def _process_command_line(item: ProcessSnapshotItem, rules: DetectionRules) -> Optional[str]:
    if not item.command_line:
        return None
    command = f" {item.command_line} "
    for pattern in rules.command_line_patterns:
        if pattern.search(command):
            return f"Suspicious command line pattern '{pattern.pattern}'"
    return None


def _process_signature(item: ProcessSnapshotItem, rules: DetectionRules) -> Optional[str]:
    status = (item.signature_status or '').replace(' ', '').lower()
    if status in UNTRUSTED_SIGNATURE_STATES and not rules.is_system_path(item.executable_path):
        return f"Code signature status '{item.signature_status}' outside system directories"
    return None


def _process_cpu(item: ProcessSnapshotItem, rules: DetectionRules) -> Optional[str]:
    if item.cpu_percent > rules.cpu_alert_threshold:
        return f"High CPU usage: {item.cpu_percent:.1f}%"
    return None


PROCESS_RULES = (
    LocalRule('suspicious_process_name', Severity.HIGH, _process_name),
    LocalRule('suspicious_directory', Severity.HIGH, _process_directory),
    LocalRule('suspicious_command_line', Severity.HIGH, _process_command_line),
    LocalRule('untrusted_signature', Severity.MEDIUM, _process_signature),
    LocalRule('high_cpu', Severity.MEDIUM, _process_cpu),
)


def classify_process(item: ProcessSnapshotItem, rules: DetectionRules) -> Verdict:
    """Classify a newly observed process"""
    return _evaluate(PROCESS_RULES, item, rules)


# ---------------------------------------------------------------------------
# Network rules
# ---------------------------------------------------------------------------

def _connection_port(item: NetworkConnectionItem, rules: DetectionRules) -> Optional[str]:
    if item.has_remote and item.remote_port in rules.suspicious_ports:
        return f"Connection to suspicious port {item.remote_port}"
    return None


def _connection_address(item: NetworkConnectionItem, rules: DetectionRules) -> Optional[str]:
    if not item.has_remote:
        return None
    for prefix in rules.suspicious_ip_prefixes:
        if item.remote_ip.startswith(prefix):
            return f"Connection to suspicious address range {prefix}*"
    return None


def _connection_shell(item: NetworkConnectionItem, rules: DetectionRules) -> Optional[str]:
    name = (item.process_name or '').lower()
    if name in rules.shell_process_names and item.state.upper() == 'ESTABLISHED' and item.has_remote:
        return f"Shell process '{item.process_name}' holds an established connection"
    return None


def _connection_powershell(item: NetworkConnectionItem, rules: DetectionRules) -> Optional[str]:
    name = (item.process_name or '').lower()
    if name in rules.powershell_process_names and item.has_remote and item.remote_port not in (80, 443):
        return f"PowerShell connection on non-web port {item.remote_port}"
    return None


NETWORK_RULES = (
    LocalRule('suspicious_port', Severity.HIGH, _connection_port),
    LocalRule('suspicious_address', Severity.HIGH, _connection_address),
    LocalRule('shell_connection', Severity.MEDIUM, _connection_shell),
    LocalRule('powershell_connection', Severity.MEDIUM, _connection_powershell),
)


def classify_connection(item: NetworkConnectionItem, rules: DetectionRules) -> Verdict:
    """Classify a newly observed connection"""
    return _evaluate(NETWORK_RULES, item, rules)


# ---------------------------------------------------------------------------
# Persistence rules
# ---------------------------------------------------------------------------

def _persistence_directory(item: PersistencePointItem, rules: DetectionRules) -> Optional[str]:
    content = normalize_path(item.content)
    for directory in rules.suspicious_directories:
        root = normalize_path(directory)
        if root and root != '/' and root + '/' in content:
            return f"Autorun entry references suspicious directory {directory}"
    return None


def _persistence_command(item: PersistencePointItem, rules: DetectionRules) -> Optional[str]:
    content = f" {item.content} "
    for pattern in rules.command_line_patterns:
        if pattern.search(content):
            return f"Autorun entry contains suspicious command '{pattern.pattern}'"
    return None


def _persistence_name(item: PersistencePointItem, rules: DetectionRules) -> Optional[str]:
    content = item.content.lower()
    for token in rules.suspicious_process_names:
        if token in content:
            return f"Autorun entry references suspicious tool '{token}'"
    return None


PERSISTENCE_RULES = (
    LocalRule('persistence_suspicious_directory', Severity.HIGH, _persistence_directory),
    LocalRule('persistence_suspicious_command', Severity.HIGH, _persistence_command),
    LocalRule('persistence_suspicious_tool', Severity.HIGH, _persistence_name),
)


def classify_persistence(item: PersistencePointItem, rules: DetectionRules) -> Verdict:
    """Classify a new or modified persistence point"""
    return _evaluate(PERSISTENCE_RULES, item, rules)


# ---------------------------------------------------------------------------
# File rules
# ---------------------------------------------------------------------------

def _file_name(item: FileArtifact, rules: DetectionRules) -> Optional[str]:
    name = _basename(item.path)
    for token in rules.suspicious_file_names:
        if token in name:
            return f"Suspicious file name matches '{token}'"
    return None


def _file_content(item: FileArtifact, rules: DetectionRules) -> Optional[str]:
    if item.has_tag('suspicious_content'):
        return "File contains suspicious content"
    return None


def _file_directory(item: FileArtifact, rules: DetectionRules) -> Optional[str]:
    if not (item.has_tag('executable') or item.has_tag('script')):
        return None
    directory = rules.is_suspicious_directory(item.path)
    if directory:
        return f"Executable file in suspicious directory {directory}"
    return None


def _file_small_executable(item: FileArtifact, rules: DetectionRules) -> Optional[str]:
    if _extension(item.path) in rules.small_executable_extensions and item.size < rules.small_executable_size:
        return f"Executable smaller than {rules.small_executable_size} bytes ({item.size})"
    return None


def _file_unsigned(item: FileArtifact, rules: DetectionRules) -> Optional[str]:
    if item.has_tag('unsigned') and not rules.is_system_path(item.path):
        return "Unsigned executable outside system directories"
    return None


FILE_RULES = (
    LocalRule('suspicious_file_name', Severity.HIGH, _file_name),
    LocalRule('suspicious_file_content', Severity.HIGH, _file_content),
    LocalRule('executable_in_suspicious_directory', Severity.HIGH, _file_directory),
    LocalRule('small_executable', Severity.MEDIUM, _file_small_executable),
    LocalRule('unsigned_executable', Severity.MEDIUM, _file_unsigned),
)


def classify_file(item: FileArtifact, rules: DetectionRules) -> Verdict:
    """Classify a newly observed file"""
    return _evaluate(FILE_RULES, item, rules)


# ---------------------------------------------------------------------------
# Malware and vulnerability
# ---------------------------------------------------------------------------

def classify_malware(item: FileArtifact, rules: DetectionRules) -> Verdict:
    """Content-pattern hit from the malware scanner; confidence is fixed"""
    patterns = [tag.split(':', 1)[1] for tag in item.tags if tag.startswith('pattern:')]
    if not patterns and not item.has_tag('suspicious_content'):
        return NOT_SUSPICIOUS

    reasons = tuple(f"Matched pattern '{p}'" for p in patterns) or ("File contains suspicious content",)
    confidence = rules.malware_confidence
    return Verdict(suspicious=True, severity=severity_from_confidence(confidence),
                   reasons=reasons, confidence=confidence)


def _version_matches(installed: str, vulnerable: str) -> bool:
    """Exact match, or prefix match ending on a version boundary"""
    if installed == vulnerable:
        return True
    if not installed.startswith(vulnerable):
        return False
    return not installed[len(vulnerable)].isdigit()


def classify_software(item: SoftwareItem, rules: DetectionRules) -> Verdict:
    """Look an installed package up in the vulnerable software table"""
    name = item.name.lower()
    version = (item.version or '').strip()
    matches: List[VulnerableSoftware] = [
        entry for entry in rules.vulnerable_software
        if entry.package == name and version != entry.fix_version and _version_matches(version, entry.version)
    ]
    if not matches:
        return NOT_SUSPICIOUS

    return Verdict(
        suspicious=True,
        severity=matches[0].severity,
        reasons=tuple(f"{entry.cve_id}: {entry.description}" for entry in matches),
        confidence=rules.vulnerability_confidence,
        matches=tuple(matches),
    )
