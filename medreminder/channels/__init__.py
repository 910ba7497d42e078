"""
Delivery channels (email, browser push) sharing one send contract.
"""

from medreminder.channels.base import Channel
from medreminder.channels.email import EmailChannel, create_email_channel
from medreminder.channels.push import PushChannel, create_push_channel

__all__ = [
    'Channel',
    'EmailChannel',
    'PushChannel',
    'create_email_channel',
    'create_push_channel',
]
