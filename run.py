#!/usr/bin/env python3
"""
Whale Transfer Monitor - Entry Point
This script ensures proper module paths before importing the main application.
"""
import asyncio
import sys
from pathlib import Path

# Get the absolute path to the project root directory
project_root = Path(__file__).parent.resolve()

# Add to Python path if not already there
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

from main import main  # noqa: E402


def cli():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nMonitor stopped by user")


if __name__ == "__main__":
    cli()
