"""
Utils package
"""

from .dates import add_month, clamp_day, compute_due_date, local_today, next_month_label, next_period_start

__all__ = [
    "add_month",
    "clamp_day",
    "compute_due_date",
    "local_today",
    "next_month_label",
    "next_period_start",
]
