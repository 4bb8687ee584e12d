"""
Cora Assistant Gateway

FastAPI service exposing the assistant to the app and to messaging channels.
"""

from .app import app, create_app
from .config import Settings, get_settings
from .dependencies import Services, build_services

__all__ = ["app", "create_app", "Settings", "get_settings", "Services", "build_services"]
