# soc_agent/schemas/snapshots.py
"""
Snapshot Schemas - Point-in-time observations produced by collectors

Every item exposes ``identity_key`` (used by the differ to match items across
two snapshots) and ``content_key`` (used to decide whether a matched item
changed). Items are frozen: a poll builds fresh items, never mutates old ones.
"""

import hashlib
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Hashable, Optional, Tuple


class SnapshotCategory:
    """Collector categories"""
    PROCESS = "process"
    NETWORK = "network"
    PERSISTENCE = "persistence"
    FILE = "file"
    MALWARE = "malware"
    VULNERABILITY = "vulnerability"
    AUTH = "auth"

    ALL = (PROCESS, NETWORK, PERSISTENCE, FILE, MALWARE, VULNERABILITY, AUTH)


@dataclass(frozen=True)
class ProcessSnapshotItem:
    """One running process"""
    pid: int
    name: str
    executable_path: Optional[str] = None
    username: Optional[str] = None
    command_line: Optional[str] = None
    start_time: Optional[float] = None
    ppid: Optional[int] = None
    cpu_percent: float = 0.0
    memory_percent: float = 0.0
    signature_status: Optional[str] = None

    @property
    def identity_key(self) -> Hashable:
        return self.pid

    @property
    def content_key(self) -> Hashable:
        # A recycled pid shows up as a different name/start time
        return (self.name, self.executable_path, self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pid': self.pid,
            'ppid': self.ppid,
            'name': self.name,
            'path': self.executable_path,
            'user': self.username,
            'command': self.command_line,
            'startTime': datetime.fromtimestamp(self.start_time).isoformat() if self.start_time else None,
            'cpuUsage': self.cpu_percent,
            'memoryUsage': self.memory_percent,
            'signatureStatus': self.signature_status,
        }


@dataclass(frozen=True)
class NetworkConnectionItem:
    """One socket as reported by the OS"""
    protocol: str
    local_ip: str
    local_port: int
    remote_ip: str = ""
    remote_port: int = 0
    state: str = ""
    pid: Optional[int] = None
    process_name: Optional[str] = None

    @property
    def identity_key(self) -> Hashable:
        return (self.protocol, (self.local_ip, self.local_port), (self.remote_ip, self.remote_port))

    @property
    def content_key(self) -> Hashable:
        return (self.state, self.pid)

    @property
    def has_remote(self) -> bool:
        return bool(self.remote_ip) and self.remote_port > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'protocol': self.protocol,
            'localAddress': self.local_ip,
            'localPort': self.local_port,
            'remoteAddress': self.remote_ip,
            'remotePort': self.remote_port,
            'state': self.state,
            'processId': self.pid,
            'processName': self.process_name,
        }


def content_hash(content: str) -> str:
    """sha256 of serialized persistence content"""
    return hashlib.sha256(content.encode('utf-8', errors='replace')).hexdigest()


@dataclass(frozen=True)
class PersistencePointItem:
    """An autorun-equivalent location and its serialized content"""
    key_path: str
    content: str
    content_hash: str = ""
    source: str = ""

    def __post_init__(self):
        if not self.content_hash:
            object.__setattr__(self, 'content_hash', content_hash(self.content))

    @property
    def identity_key(self) -> Hashable:
        return self.key_path

    @property
    def content_key(self) -> Hashable:
        return self.content_hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            'key': self.key_path,
            'source': self.source,
            'hash': self.content_hash,
            'value': self.content,
        }


@dataclass(frozen=True)
class FileArtifact:
    """A file found while scanning a directory"""
    path: str
    size: int
    modified_time: float
    tags: Tuple[str, ...] = ()
    sha256: Optional[str] = None

    @property
    def identity_key(self) -> Hashable:
        return self.path

    @property
    def content_key(self) -> Hashable:
        return (self.size, self.modified_time)

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'size': self.size,
            'modified': datetime.fromtimestamp(self.modified_time).isoformat(),
            'tags': list(self.tags),
            'hash': self.sha256,
        }


@dataclass(frozen=True)
class SoftwareItem:
    """An installed package and its version"""
    name: str
    version: str
    source: str = ""

    @property
    def identity_key(self) -> Hashable:
        return self.name

    @property
    def content_key(self) -> Hashable:
        return self.version

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'version': self.version, 'source': self.source}


@dataclass(frozen=True)
class SnapshotSet:
    """Complete set of observed items for one category at one poll instant"""
    category: str
    items: Tuple[Any, ...] = ()
    taken_at: float = field(default_factory=time.time)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @classmethod
    def empty(cls, category: str) -> 'SnapshotSet':
        return cls(category=category, items=())
