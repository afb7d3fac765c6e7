"""
Adapters

Framework integrations on top of the application services.
"""

from .fasthtml import create_app

__all__ = ['create_app']
