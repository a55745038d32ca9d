"""Scheduling utilities for recurring loyalty maintenance."""

from .config import JobDefinition, RetryPolicy, ScheduleConfig, load_job_definitions
from .runner import LoyaltyJobScheduler

__all__ = ["JobDefinition", "LoyaltyJobScheduler", "RetryPolicy", "ScheduleConfig", "load_job_definitions"]
