"""Servicetop application package."""

from .main import create_app
from .settings import ServicetopSettings

__all__ = ["create_app", "ServicetopSettings"]
