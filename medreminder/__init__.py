"""
Medication reminder scheduling and multi-channel delivery.
"""

__version__ = "0.1.0"
