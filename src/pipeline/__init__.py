"""
Pipeline Module
"""
from .daily import DailyJob, DailyJobReport, StepOutcome

__all__ = ["DailyJob", "DailyJobReport", "StepOutcome"]
