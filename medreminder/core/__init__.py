"""
Core scheduling and delivery logic for medication reminders.
"""

from medreminder.core.dispatcher import NotificationDispatcher
from medreminder.core.scheduler import ReminderPoller, TickSummary
from medreminder.core.service import ReminderService

__all__ = ['NotificationDispatcher', 'ReminderPoller', 'ReminderService', 'TickSummary']
