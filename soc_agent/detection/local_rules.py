# soc_agent/detection/local_rules.py
"""
Local Rules - Detection rule data and the rule primitive used by the classifier

Rule data is loaded once at initialize time (``DetectionRules.from_config``)
and is immutable afterwards; every classifier call reads the same instance.
"""

import re
import tempfile
from dataclasses import dataclass, field
from typing import Any, Callable, FrozenSet, Optional, Pattern, Tuple

from soc_agent.schemas.events import Severity

WINDOWS_SUSPICIOUS_PROCESS_NAMES = (
    'mimikatz', 'psexec', 'procdump', 'pwdump', 'gsecdump', 'lsassdump',
    'ntdsdump', 'fgdump', 'cachedump', 'hack', 'crack', 'exploit', 'payload',
)

# Short tokens such as 'nc' are left out: as substrings they hit benign names
LINUX_SUSPICIOUS_PROCESS_NAMES = (
    'netcat', 'ncat', 'nmap', 'tcpdump', 'ettercap', 'meterpreter',
    'msfconsole', 'msfvenom', 'metasploit', 'hashcat', 'hydra', 'responder',
    'backdoor', 'trojan',
)

DEFAULT_SUSPICIOUS_DIRECTORIES = (
    'C:\\Windows\\Temp', 'C:\\Temp', 'C:\\Users\\Public',
    '/tmp', '/var/tmp', '/dev/shm', '/private/tmp',
)

SYSTEM_DIRECTORIES = (
    'C:\\Windows\\System32', 'C:\\Windows\\SysWOW64', 'C:\\Program Files',
    'C:\\Program Files (x86)', '/bin', '/sbin', '/usr/bin', '/usr/sbin',
    '/usr/lib', '/lib', '/lib64', '/boot', '/System', '/Applications',
)

DEFAULT_SUSPICIOUS_PORTS = (
    4444, 4445, 5555, 6666, 6667, 6668, 6669, 6697, 31337, 12345, 54321,
    9001, 9002, 1080, 3128, 8888, 9999,
)

DEFAULT_SUSPICIOUS_IP_PREFIXES = ('185.', '194.', '5.188.', '5.45.')

COMMAND_LINE_PATTERNS = (
    r'(?:^|\s)-enc(?:odedcommand)?\s',
    r'-windowstyle\s+hidden',
    r'downloadstring|downloadfile',
    r'invoke-expression|\biex\s*\(',
    r'/dev/tcp/',
    r'\bnc(?:at)?\s+(?:.*\s)?-e\s',
    r'\bnetcat\s+(?:.*\s)?-e\s',
    r'base64\s+(?:-d|--decode)',
    r'\bbash\s+-i\b',
    r'(?:curl|wget)\s+\S+\s*\|\s*(?:ba)?sh',
)

SHELL_PROCESS_NAMES = (
    'sh', 'bash', 'zsh', 'dash', 'ksh', 'csh', 'tcsh', 'fish',
    'cmd', 'cmd.exe', 'powershell', 'powershell.exe', 'pwsh', 'pwsh.exe',
)

POWERSHELL_PROCESS_NAMES = ('powershell', 'powershell.exe', 'pwsh', 'pwsh.exe')
WEB_PORTS = (80, 443)

IMPORTANT_PROCESSES = (
    'sshd', 'httpd', 'apache2', 'nginx', 'mysql', 'mysqld', 'postgresql',
    'postgres', 'mongod', 'redis-server', 'firewalld', 'systemd', 'init',
    'docker', 'containerd', 'dockerd', 'kubelet',
)

SMALL_EXECUTABLE_EXTENSIONS = ('.exe', '.dll', '.bin', '.elf')
SMALL_EXECUTABLE_SIZE = 20000

SUSPICIOUS_FILE_NAMES = (
    'backdoor', 'hack', 'rootkit', 'exploit', 'miner', 'crack', 'trojan',
    'virus', 'malware', 'payload', 'mimikatz', 'psexec', 'netcat', 'keylogger',
)

EXECUTABLE_EXTENSIONS = (
    '.exe', '.dll', '.scr', '.pif', '.msi', '.bin', '.elf', '.jar', '.hta',
)

SCRIPT_EXTENSIONS = (
    '.ps1', '.bat', '.vbs', '.js', '.wsf', '.reg', '.sh', '.py', '.pl', '.rb',
)

MALWARE_CONTENT_PATTERNS = (
    'wget http', 'curl http', 'base64 -d', '| bash', 'nc -e', 'netcat -e',
    '/dev/tcp/', 'eval $(', 'socat', 'reverse shell', 'backdoor', 'xmrig',
    'stratum+tcp://', 'invoke-mimikatz', 'frombase64string',
)

MALWARE_CONFIDENCE = 0.7
VULNERABILITY_CONFIDENCE = 0.8


@dataclass(frozen=True)
class VulnerableSoftware:
    """A known-vulnerable package version"""
    package: str
    version: str
    cve_id: str
    description: str
    severity: Severity = Severity.HIGH
    fix_version: Optional[str] = None


VULNERABLE_SOFTWARE = (
    VulnerableSoftware('openssl', '1.0.1', 'CVE-2014-0160', 'Heartbleed', fix_version='1.0.1g'),
    VulnerableSoftware('openssl', '1.0.2', 'CVE-2016-0800', 'DROWN', fix_version='1.0.2g'),
    VulnerableSoftware('bash', '4.3', 'CVE-2014-6271', 'Shellshock', fix_version='4.3-7'),
    VulnerableSoftware('openssh-server', '7.2', 'CVE-2016-6210', 'User enumeration via timing',
                       Severity.MEDIUM, '7.3'),
    VulnerableSoftware('apache2', '2.4.0', 'CVE-2021-44790', 'mod_lua buffer overflow',
                       Severity.CRITICAL, '2.4.52'),
    VulnerableSoftware('nginx', '1.13', 'CVE-2017-7529', 'Range filter integer overflow',
                       fix_version='1.13.3'),
)


def normalize_path(path: str) -> str:
    """Lowercase, forward slashes, no trailing separator"""
    normalized = path.replace('\\', '/').lower()
    if len(normalized) > 1:
        normalized = normalized.rstrip('/')
    return normalized


def path_under(path: Optional[str], directory: str) -> bool:
    """Case-insensitive prefix match that respects path boundaries"""
    if not path:
        return False
    candidate = normalize_path(path)
    root = normalize_path(directory)
    if not root:
        return False
    if root == '/':
        return candidate.startswith('/')
    return candidate == root or candidate.startswith(root + '/')


def _as_tuple(values: Any, default: Tuple) -> Tuple:
    if values is None:
        return default
    return tuple(values)


@dataclass(frozen=True)
class DetectionRules:
    """All data the classifier rules consult"""
    suspicious_process_names: Tuple[str, ...] = WINDOWS_SUSPICIOUS_PROCESS_NAMES + LINUX_SUSPICIOUS_PROCESS_NAMES
    suspicious_directories: Tuple[str, ...] = DEFAULT_SUSPICIOUS_DIRECTORIES + (tempfile.gettempdir(),)
    system_directories: Tuple[str, ...] = SYSTEM_DIRECTORIES
    suspicious_ports: FrozenSet[int] = frozenset(DEFAULT_SUSPICIOUS_PORTS)
    suspicious_ip_prefixes: Tuple[str, ...] = DEFAULT_SUSPICIOUS_IP_PREFIXES
    command_line_patterns: Tuple[Pattern, ...] = tuple(re.compile(p, re.IGNORECASE) for p in COMMAND_LINE_PATTERNS)
    shell_process_names: FrozenSet[str] = frozenset(SHELL_PROCESS_NAMES)
    powershell_process_names: FrozenSet[str] = frozenset(POWERSHELL_PROCESS_NAMES)
    important_processes: FrozenSet[str] = frozenset(IMPORTANT_PROCESSES)
    small_executable_extensions: Tuple[str, ...] = SMALL_EXECUTABLE_EXTENSIONS
    small_executable_size: int = SMALL_EXECUTABLE_SIZE
    suspicious_file_names: Tuple[str, ...] = SUSPICIOUS_FILE_NAMES
    executable_extensions: Tuple[str, ...] = EXECUTABLE_EXTENSIONS
    script_extensions: Tuple[str, ...] = SCRIPT_EXTENSIONS
    malware_content_patterns: Tuple[str, ...] = MALWARE_CONTENT_PATTERNS
    vulnerable_software: Tuple[VulnerableSoftware, ...] = VULNERABLE_SOFTWARE
    cpu_alert_threshold: float = 90.0
    malware_confidence: float = MALWARE_CONFIDENCE
    vulnerability_confidence: float = VULNERABILITY_CONFIDENCE

    @classmethod
    def from_config(cls, config) -> 'DetectionRules':
        """Build rules from an AgentConfig; unset overrides keep the built-in lists"""
        defaults = cls()
        ports = config.suspicious_ports
        return cls(
            suspicious_process_names=tuple(
                name.lower() for name in _as_tuple(config.suspicious_process_names,
                                                   defaults.suspicious_process_names)),
            suspicious_directories=_as_tuple(config.suspicious_directories,
                                             defaults.suspicious_directories),
            suspicious_ports=frozenset(int(p) for p in ports) if ports is not None else defaults.suspicious_ports,
            cpu_alert_threshold=float(config.cpu_alert_threshold),
        )

    def is_suspicious_directory(self, path: Optional[str]) -> Optional[str]:
        """Return the matching suspicious directory, if any"""
        for directory in self.suspicious_directories:
            if path_under(path, directory):
                return directory
        return None

    def is_system_path(self, path: Optional[str]) -> bool:
        return any(path_under(path, directory) for directory in self.system_directories)


@dataclass(frozen=True)
class LocalRule:
    """One ordered detection rule

    ``condition`` receives the item and the rule data and returns a reason
    string when it matches, ``None`` otherwise.
    """
    name: str
    severity: Severity
    condition: Callable[[Any, DetectionRules], Optional[str]] = field(compare=False)

    def match(self, item: Any, rules: DetectionRules) -> Optional[str]:
        return self.condition(item, rules)
