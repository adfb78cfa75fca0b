# soc_agent/utils/process_utils.py
"""
Process Utilities - Helper functions for process monitoring
"""

import logging
import os
import platform
import subprocess
from typing import Any, Dict, Optional

import psutil

from soc_agent.schemas.snapshots import ProcessSnapshotItem

logger = logging.getLogger(__name__)

PROCESS_ATTRS = ['pid', 'ppid', 'name', 'exe', 'cmdline', 'create_time', 'username',
                 'cpu_percent', 'memory_percent']

SIGNATURE_TIMEOUT = 10
SIGNATURE_PATH_VAR = "SOC_AGENT_SIGNATURE_PATH"


def process_item_from_info(info: Dict[str, Any], signature_status: Optional[str] = None) -> Optional[ProcessSnapshotItem]:
    """Build a snapshot item from ``psutil.Process.info``"""
    pid = info.get('pid')
    name = info.get('name')
    if pid is None or not name:
        return None

    cmdline = info.get('cmdline')
    if isinstance(cmdline, (list, tuple)):
        cmdline = ' '.join(cmdline)

    return ProcessSnapshotItem(
        pid=pid,
        name=name,
        executable_path=info.get('exe') or None,
        username=info.get('username'),
        command_line=cmdline or None,
        start_time=info.get('create_time'),
        ppid=info.get('ppid'),
        cpu_percent=info.get('cpu_percent') or 0.0,
        memory_percent=round(info.get('memory_percent') or 0.0, 2),
        signature_status=signature_status,
    )


def get_signature_status(executable_path: Optional[str]) -> Optional[str]:
    """Authenticode status on Windows; None where code signing is not checked

    The path reaches PowerShell through an environment variable, never
    through the command text.
    """
    if not executable_path or platform.system() != 'Windows':
        return None
    command = [
        'powershell', '-NoProfile', '-NonInteractive', '-Command',
        f"(Get-AuthenticodeSignature -LiteralPath $env:{SIGNATURE_PATH_VAR}).Status",
    ]
    env = dict(os.environ, **{SIGNATURE_PATH_VAR: executable_path})
    try:
        result = subprocess.run(command, capture_output=True, text=True, env=env,
                                timeout=SIGNATURE_TIMEOUT, check=False)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"Signature check failed for {executable_path}: {e}")
        return None
    status = result.stdout.strip()
    return status or None
