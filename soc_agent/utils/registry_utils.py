# soc_agent/utils/registry_utils.py
"""
Registry Utilities - Read autorun values from the Windows registry
"""

import logging
from typing import Dict, List, Tuple

try:
    import winreg
    WINREG_AVAILABLE = True
except ImportError:
    winreg = None
    WINREG_AVAILABLE = False

logger = logging.getLogger(__name__)

AUTORUN_KEYS = (
    ('HKEY_LOCAL_MACHINE', r'SOFTWARE\Microsoft\Windows\CurrentVersion\Run'),
    ('HKEY_LOCAL_MACHINE', r'SOFTWARE\Microsoft\Windows\CurrentVersion\RunOnce'),
    ('HKEY_LOCAL_MACHINE', r'SOFTWARE\WOW6432Node\Microsoft\Windows\CurrentVersion\Run'),
    ('HKEY_CURRENT_USER', r'SOFTWARE\Microsoft\Windows\CurrentVersion\Run'),
    ('HKEY_CURRENT_USER', r'SOFTWARE\Microsoft\Windows\CurrentVersion\RunOnce'),
    ('HKEY_CURRENT_USER', r'SOFTWARE\Microsoft\Windows\CurrentVersion\Explorer\StartupApproved\Run'),
)


def _hive(name: str):
    return getattr(winreg, name)


def read_key_values(hive_name: str, subkey: str) -> List[Tuple[str, str]]:
    """All ``(value name, data)`` pairs of one key; empty if the key is missing"""
    if not WINREG_AVAILABLE:
        return []
    values: List[Tuple[str, str]] = []
    try:
        with winreg.OpenKey(_hive(hive_name), subkey, 0, winreg.KEY_READ) as key:
            index = 0
            while True:
                try:
                    name, data, _ = winreg.EnumValue(key, index)
                except OSError:
                    break
                if isinstance(data, bytes):
                    data = data.hex()
                values.append((name, str(data)))
                index += 1
    except OSError as e:
        logger.debug(f"Cannot open {hive_name}\\{subkey}: {e}")
    return values


def read_autorun_entries() -> Dict[str, str]:
    """Map ``HIVE\\key\\value`` to its data for every autorun key"""
    entries: Dict[str, str] = {}
    for hive_name, subkey in AUTORUN_KEYS:
        for name, data in read_key_values(hive_name, subkey):
            entries[f"{hive_name}\\{subkey}\\{name or '(Default)'}"] = data
    return entries
