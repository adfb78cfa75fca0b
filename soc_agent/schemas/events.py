# soc_agent/schemas/events.py
"""
Event Data Schemas - Classified units of information sent to the central service
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class EventCategory(str, Enum):
    """Event category enumeration"""
    PROCESS = "process"
    NETWORK = "network"
    PERSISTENCE = "persistence"
    FILE = "file"
    MALWARE = "malware"
    VULNERABILITY = "vulnerability"
    AUTH = "auth"


class Severity(str, Enum):
    """Event severity enumeration - lowercase matches the server schema"""
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def normalize_severity(severity: Any) -> Severity:
    """Normalize any severity spelling ('High', 'HIGH', Severity.HIGH) to Severity"""
    if isinstance(severity, Severity):
        return severity
    try:
        return Severity(str(severity).strip().lower())
    except ValueError:
        return Severity.INFO


def severity_from_confidence(confidence: float) -> Severity:
    """Map a detection confidence in [0, 1] to severity"""
    if confidence >= 0.9:
        return Severity.CRITICAL
    if confidence >= 0.7:
        return Severity.HIGH
    if confidence >= 0.5:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass(frozen=True)
class Event:
    """A classified event; immutable once created"""
    category: EventCategory
    severity: Severity
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    dedup_key: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self):
        object.__setattr__(self, 'category', EventCategory(self.category))
        object.__setattr__(self, 'severity', normalize_severity(self.severity))
        if not self.dedup_key:
            object.__setattr__(self, 'dedup_key', f"{self.category.value}:{self.event_id}")

    def to_dict(self) -> Dict[str, Any]:
        """Wire format for the data endpoint"""
        return {
            'eventId': self.event_id,
            'eventType': self.category.value,
            'severity': self.severity.value,
            'timestamp': self.timestamp.isoformat(),
            'message': self.message,
            'details': self.details,
            'dedupKey': self.dedup_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Event':
        """Rebuild an event from its wire format (used by the disk spool)"""
        timestamp = data.get('timestamp')
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            category=EventCategory(data['eventType']),
            severity=normalize_severity(data.get('severity')),
            message=data.get('message', ''),
            details=data.get('details') or {},
            dedup_key=data.get('dedupKey', ''),
            timestamp=timestamp or datetime.now(timezone.utc),
            event_id=data.get('eventId') or uuid.uuid4().hex,
        )


# Helper functions for creating events
def create_process_event(severity: Any, message: str, process: Dict[str, Any],
                         reasons: Optional[list] = None, dedup_key: str = "") -> Event:
    """Create a process event"""
    details: Dict[str, Any] = {'process': process}
    if reasons:
        details['reason'] = '; '.join(reasons)
        details['reasons'] = list(reasons)
    return Event(EventCategory.PROCESS, normalize_severity(severity), message, details, dedup_key)


def create_network_event(severity: Any, message: str, connection: Dict[str, Any],
                         reasons: Optional[list] = None, dedup_key: str = "") -> Event:
    """Create a network event"""
    details: Dict[str, Any] = {'connection': connection}
    if reasons:
        details['reason'] = '; '.join(reasons)
        details['reasons'] = list(reasons)
    return Event(EventCategory.NETWORK, normalize_severity(severity), message, details, dedup_key)


def create_persistence_event(severity: Any, message: str, details: Dict[str, Any],
                             dedup_key: str = "") -> Event:
    """Create a persistence-point event"""
    return Event(EventCategory.PERSISTENCE, normalize_severity(severity), message, details, dedup_key)


def create_file_event(severity: Any, message: str, file: Dict[str, Any],
                      reasons: Optional[list] = None, dedup_key: str = "") -> Event:
    """Create a file event"""
    details: Dict[str, Any] = {'file': file}
    if reasons:
        details['reason'] = '; '.join(reasons)
        details['reasons'] = list(reasons)
    return Event(EventCategory.FILE, normalize_severity(severity), message, details, dedup_key)


def create_malware_event(detection: Dict[str, Any], dedup_key: str = "") -> Event:
    """Create a malware event; severity follows the detection confidence"""
    confidence = float(detection.get('confidence', 0.0))
    message = (f"Possible malware detected: {detection.get('malwareName')} in "
               f"{detection.get('filePath')} (Confidence: {confidence * 100:.1f}%)")
    return Event(EventCategory.MALWARE, severity_from_confidence(confidence), message,
                 {'detection': detection, 'confidence': confidence}, dedup_key)


def create_vulnerability_event(vulnerability: Dict[str, Any], dedup_key: str = "") -> Event:
    """Create a vulnerability event"""
    message = (f"Vulnerability detected in {vulnerability.get('softwareName')} "
               f"{vulnerability.get('version')}: {vulnerability.get('cveId')}")
    return Event(EventCategory.VULNERABILITY, normalize_severity(vulnerability.get('severity', 'high')),
                 message,
                 {
                     'vulnerability': vulnerability,
                     'cveId': vulnerability.get('cveId'),
                     'packageName': vulnerability.get('softwareName'),
                     'confidence': vulnerability.get('confidence'),
                 },
                 dedup_key)


def create_authentication_event(severity: Any, message: str, details: Dict[str, Any],
                                dedup_key: str = "") -> Event:
    """Create an authentication (security log) event"""
    return Event(EventCategory.AUTH, normalize_severity(severity), message, details, dedup_key)
