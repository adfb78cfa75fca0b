#!/usr/bin/env python3
"""
SOC Agent - Main Entry Point
"""

import sys

from soc_agent.cli import main

if __name__ == '__main__':
    sys.exit(main())
