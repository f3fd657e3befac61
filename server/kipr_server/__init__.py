"""
KIPR reference service.

Serves the KIPR REST wire protocol over a MemoryStore. Used to exercise the
REST backend end to end and for local development.
"""

from .app import create_app
from .config import Settings

__all__ = ["create_app", "Settings"]
