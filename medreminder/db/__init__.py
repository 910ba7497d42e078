"""
PostgreSQL persistence for reminders and delivery destinations.
"""

from medreminder.db.connect import Database, db

__all__ = ['Database', 'db']
