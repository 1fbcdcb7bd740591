"""
API module for TagScan.

Provides:
- FastAPI server over the scan pipeline
- REST endpoints for capture, selection, Ghost Mode and submission
"""

from .server import create_app, set_components, start_server

__all__ = ["create_app", "set_components", "start_server"]
