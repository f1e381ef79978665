#!/usr/bin/env python3
"""
Flower Care Exporter - Main Entry Point

Usage:
    python main.py --help                       # Show help
    python main.py run -s basil=C4:7C:8D:6A:3E:11  # Run the exporter
    python main.py read C4:7C:8D:6A:3E:11       # Read one sensor once
    python main.py config                       # Show configuration

Environment Setup:
    Settings can be given on the command line, as environment variables or
    in a .env file in the working directory.

Requirements:
    - Python 3.10+
    - Bluetooth adapter available
    - Permissions for BLE access
"""

import sys

from flowercare.cli.commands import cli


def main():
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    main()
