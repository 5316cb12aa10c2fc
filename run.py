#!/usr/bin/env python3
"""
Outflow Watcher launcher.
Puts the project root on sys.path so `python run.py` works from any directory.
"""
import asyncio
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent.resolve()

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


def launch():
    from main import main

    print(f"Starting Outflow Watcher from {PROJECT_ROOT}...\n")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nWatcher stopped by user")


if __name__ == "__main__":
    launch()
