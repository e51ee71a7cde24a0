"""
Compliance Module
=================

Background-check compliance tracking: status ledger, SLA clocks,
escalation rules and the dashboard query surface.

Structure:
- domain/: Entities, value objects, SLA calculation
- application/: Services, store interfaces, DTOs
- infrastructure/: In-memory and SQLAlchemy stores, config watcher, notifications, scheduler
- interfaces/: API controllers
"""

__version__ = "1.0.0"
