# soc_agent/cli.py
"""
SOC Agent - Command line entry point
"""

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from soc_agent.core.agent_manager import AgentManager
from soc_agent.core.exceptions import AgentError
from soc_agent.utils.logging_utils import setup_logging

EXIT_OK = 0
EXIT_FATAL = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='soc-agent',
        description='Endpoint monitoring agent: samples host state and reports suspicious changes',
    )
    parser.add_argument('--config', metavar='PATH', default=None,
                        help='configuration file (JSON or YAML); created with defaults if missing')
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument('--register', action='store_true', help='register with the server, then exit')
    mode.add_argument('--scan', action='store_true', help='run one detection cycle, then exit')
    mode.add_argument('--daemon', action='store_true', help='run in the foreground until stopped (default)')
    parser.add_argument('--log-level', choices=['debug', 'info', 'warning', 'error'], default=None,
                        help='override logLevel from the configuration')
    return parser


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop_event: asyncio.Event):
    logger = logging.getLogger(__name__)

    def _request_stop(signum=None, frame=None):
        logger.info(f"🛑 Received signal {signum}, stopping agent...")
        loop.call_soon_threadsafe(stop_event.set)

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, sig)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler
            signal.signal(sig, _request_stop)


async def run(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    agent = AgentManager(args.config)

    try:
        await agent.initialize()
    except AgentError as e:
        logger.error(f"❌ Agent initialization failed: {e}")
        await agent.stop()
        return EXIT_FATAL

    config = agent.config
    setup_logging(args.log_level or config.log_level, config.log_file_path)

    try:
        if args.register:
            logger.info(f"✅ Agent registered: {config.agent_id}")
            return EXIT_OK

        if args.scan:
            try:
                await agent.scan_once()
            except AgentError as e:
                logger.error(f"❌ Scan failed: {e}")
                return EXIT_FATAL
            return EXIT_OK

        stop_event = asyncio.Event()
        _install_signal_handlers(asyncio.get_running_loop(), stop_event)
        try:
            await agent.start()
        except AgentError as e:
            logger.error(f"❌ Agent start failed: {e}")
            return EXIT_FATAL

        logger.info("🛡️ Agent running, press Ctrl+C to stop")
        await stop_event.wait()
        return EXIT_OK
    finally:
        await agent.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level or 'info')
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return EXIT_OK


if __name__ == '__main__':
    sys.exit(main())
