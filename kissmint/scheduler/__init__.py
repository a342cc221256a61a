"""
Background settlement scheduling.
"""

from .settlement_scheduler import SettlementScheduler, ScheduledTask

__all__ = ["SettlementScheduler", "ScheduledTask"]
