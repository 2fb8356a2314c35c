"""
Helpdesk Work Item Engine

Partial updates to helpdesk tickets and tasks:
- Value-diffed updates (no-op requests write nothing)
- Closed status and closed_at kept in lockstep
- Auto-close on resolution notes
- One audit comment per committed change
- Post-commit e-mail notifications
"""

__version__ = "0.1.0"
