# soc_agent/utils/file_utils.py
"""
File Utilities - Bounded directory walks and file tagging
"""

import hashlib
import logging
import os
import stat
from typing import Callable, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

MAX_SCAN_DEPTH = 3
CONTENT_SAMPLE_BYTES = 64 * 1024


def walk_files(root: str, max_depth: int = MAX_SCAN_DEPTH,
               should_stop: Optional[Callable[[], bool]] = None) -> Iterator[Tuple[str, os.stat_result]]:
    """Yield ``(path, stat)`` for regular files under ``root`` down to ``max_depth``

    Symlinks are not followed. Unreadable directories are skipped and logged
    at debug level.
    """
    stack = [(root, 0)]
    while stack:
        if should_stop and should_stop():
            return
        directory, depth = stack.pop()
        try:
            entries = list(os.scandir(directory))
        except OSError as e:
            logger.debug(f"Cannot read directory {directory}: {e}")
            continue

        for entry in entries:
            if should_stop and should_stop():
                return
            try:
                if entry.is_dir(follow_symlinks=False):
                    if depth + 1 < max_depth:
                        stack.append((entry.path, depth + 1))
                elif entry.is_file(follow_symlinks=False):
                    yield entry.path, entry.stat(follow_symlinks=False)
            except OSError as e:
                logger.debug(f"Cannot stat {entry.path}: {e}")


def is_executable_mode(mode: int) -> bool:
    return bool(mode & (stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH))


def read_sample(path: str, limit: int = CONTENT_SAMPLE_BYTES) -> Optional[str]:
    """First ``limit`` bytes of a file decoded leniently, or None if unreadable"""
    try:
        with open(path, 'rb') as f:
            data = f.read(limit)
    except OSError as e:
        logger.debug(f"Cannot read {path}: {e}")
        return None
    return data.decode('utf-8', errors='ignore')


def calculate_file_hash(path: str) -> Optional[str]:
    """SHA-256 of a file, or None if it cannot be read"""
    digest = hashlib.sha256()
    try:
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(65536), b''):
                digest.update(chunk)
    except OSError as e:
        logger.debug(f"Cannot hash {path}: {e}")
        return None
    return digest.hexdigest()
