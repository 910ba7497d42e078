"""
Configuration for the reminder service.
"""

from medreminder.config.settings import Settings, get_settings

__all__ = ['Settings', 'get_settings']
