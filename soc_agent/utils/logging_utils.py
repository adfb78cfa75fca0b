# soc_agent/utils/logging_utils.py
"""
Logging Utilities - Setup and configure logging for the agent
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
MAX_LOG_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ('aiohttp', 'asyncio', 'urllib3')


def parse_log_level(level: Optional[str]) -> int:
    """Map a config log level ('debug', 'info', 'warn', 'error') to a logging level"""
    name = (level or 'info').strip().upper()
    if name == 'WARN':
        name = 'WARNING'
    return getattr(logging, name, logging.INFO)


def setup_logging(level: Optional[str] = 'info', log_file: Optional[str] = None,
                  console_enabled: bool = True) -> logging.Logger:
    """Setup logging configuration for the agent"""
    logger = logging.getLogger()
    logger.setLevel(parse_log_level(level))

    # Clear existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    if console_enabled:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=MAX_LOG_BYTES,
            backupCount=BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    agent_logger = logging.getLogger('SOCAgent')
    agent_logger.debug("🛡️ Agent logging initialized")
    return agent_logger
