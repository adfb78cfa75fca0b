# soc_agent/collectors/security_log_collector.py
"""
Security Log Collector - Tails authentication logs and pushes events

This collector produces no snapshot items. Each poll reads the lines
appended since the previous poll and pushes one event per interesting line
straight to the event queue.
"""

import os
import re
from collections import Counter
from dataclasses import dataclass
from typing import Dict, List, Optional, Pattern, Tuple

from soc_agent.collectors.base_collector import BaseCollector
from soc_agent.core.config_manager import AgentConfig
from soc_agent.core.exceptions import CollectorError
from soc_agent.schemas.events import Severity, create_authentication_event
from soc_agent.schemas.snapshots import SnapshotCategory, SnapshotSet

DEFAULT_SECURITY_LOG_FILES = ('/var/log/auth.log', '/var/log/secure')

MAX_READ_BYTES = 1024 * 1024
BRUTE_FORCE_THRESHOLD = 5

IP_PATTERN = r'(?P<ip>[0-9a-fA-F:.]+)'


@dataclass(frozen=True)
class LogPattern:
    name: str
    regex: Pattern
    severity: Severity
    message: str


LOG_PATTERNS = (
    LogPattern('failed_password',
               re.compile(r'Failed password for (?:invalid user )?(?P<user>\S+) from ' + IP_PATTERN),
               Severity.MEDIUM, "Failed login for {user} from {ip}"),
    LogPattern('invalid_user',
               re.compile(r'Invalid user (?P<user>\S+) from ' + IP_PATTERN),
               Severity.MEDIUM, "Login attempt for unknown user {user} from {ip}"),
    LogPattern('auth_failure',
               re.compile(r'authentication failure;.*\brhost=(?P<ip>\S*)(?:\s+user=(?P<user>\S+))?'),
               Severity.MEDIUM, "Authentication failure for {user}"),
    LogPattern('accepted_login',
               re.compile(r'Accepted (?:password|publickey|keyboard-interactive/pam) for (?P<user>\S+) from ' + IP_PATTERN),
               Severity.INFO, "Successful login for {user} from {ip}"),
    LogPattern('sudo_command',
               re.compile(r'sudo:\s+(?P<user>\S+) : .*COMMAND=(?P<command>.+)$'),
               Severity.LOW, "sudo by {user}: {command}"),
    LogPattern('su_session',
               re.compile(r'su(?:\[\d+\])?: .*session opened for user (?P<user>\S+)'),
               Severity.LOW, "su session opened for {user}"),
)

FAILURE_PATTERNS = ('failed_password', 'invalid_user', 'auth_failure')


def match_line(line: str) -> Optional[Tuple[LogPattern, Dict[str, str]]]:
    """First pattern matching ``line`` and its named groups"""
    for pattern in LOG_PATTERNS:
        match = pattern.regex.search(line)
        if match:
            fields = {k: (v or 'unknown') for k, v in match.groupdict().items()}
            return pattern, fields
    return None


class SecurityLogCollector(BaseCollector):
    """Push-only watcher over auth logs"""

    category = SnapshotCategory.AUTH

    def __init__(self, config: AgentConfig, log_files: Optional[List[str]] = None):
        super().__init__(config, "SecurityLogCollector")
        configured = log_files if log_files is not None else config.security_log_files
        self.log_files = list(configured or DEFAULT_SECURITY_LOG_FILES)
        # path -> (inode, offset)
        self._positions: Dict[str, Tuple[int, int]] = {}

    async def _collector_specific_init(self):
        self._positions.clear()
        for path in self.log_files:
            try:
                st = os.stat(path)
                with open(path, 'rb'):
                    pass
            except OSError as e:
                self.logger.debug(f"Security log not readable: {path}: {e}")
                continue
            # Only lines written after start are reported
            self._positions[path] = (st.st_ino, st.st_size)

        if not self._positions:
            raise CollectorError(self.collector_name, f"no readable security log in {self.log_files}")
        self.logger.info(f"📜 Watching security logs: {', '.join(self._positions)}")

    def _read_new_lines(self, path: str) -> List[str]:
        inode, offset = self._positions.get(path, (None, 0))
        try:
            st = os.stat(path)
        except OSError as e:
            self.logger.debug(f"Security log vanished: {path}: {e}")
            return []
        if st.st_ino != inode or st.st_size < offset:
            # rotated or truncated
            offset = 0

        try:
            with open(path, 'rb') as f:
                f.seek(offset)
                data = f.read(MAX_READ_BYTES)
        except OSError as e:
            self.logger.debug(f"Cannot read {path}: {e}")
            return []

        # Keep an unterminated last line for the next poll
        end = data.rfind(b'\n') + 1
        if end == 0 and len(data) >= MAX_READ_BYTES:
            self.logger.warning(f"⚠️ Skipping {len(data)} bytes without a line break in {path}")
            self._positions[path] = (st.st_ino, offset + len(data))
            return []
        self._positions[path] = (st.st_ino, offset + end)
        return data[:end].decode('utf-8', errors='replace').splitlines()

    def _collect_snapshot(self) -> SnapshotSet:
        failures: Counter = Counter()
        for path in list(self._positions):
            if self.cancelled:
                break
            for line in self._read_new_lines(path):
                result = match_line(line)
                if result is None:
                    continue
                pattern, fields = result
                if pattern.name in FAILURE_PATTERNS and fields.get('ip', 'unknown') != 'unknown':
                    failures[fields['ip']] += 1
                self.push_event(create_authentication_event(
                    pattern.severity,
                    pattern.message.format_map(_Default(fields)),
                    {'source': path, 'pattern': pattern.name, 'line': line.strip(), **fields},
                ))

        for ip, count in failures.items():
            if count >= BRUTE_FORCE_THRESHOLD:
                self.push_event(create_authentication_event(
                    Severity.HIGH,
                    f"Possible brute force: {count} failed logins from {ip}",
                    {'ip': ip, 'failures': count},
                ))

        return SnapshotSet.empty(self.category)


class _Default(dict):
    def __missing__(self, key):
        return 'unknown'
