"""
Interface module - External interfaces to the memory store.

This module contains:
- api.py: FastAPI REST API
- cli.py: Command-line interface
"""

from amem.interface.api import create_app

__all__ = [
    "create_app",
]
