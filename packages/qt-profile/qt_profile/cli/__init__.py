"""QueryTorque Profile CLI.

Usage: qt-profile <command> [options]
"""

from .main import cli, main

__all__ = ["cli", "main"]
