"""
SLA Tracking Module
===================

Bounded Context for support ticket Service Level Agreements.

Responsibilities:
- Compute response and resolution deadlines from priority budgets
- Pause the SLA clocks while a ticket waits on the user
- Derive on_track / approaching / critical / breached per SLA type
- Persist status changes and notify on worsening transitions
- Periodically re-evaluate active tickets
"""

__version__ = "1.0.0"
