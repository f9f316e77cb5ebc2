"""
Support SLA
===========

SLA deadline tracking and notification service for support tickets.
"""

__version__ = "1.0.0"
