"""
Utility helpers shared by services.
"""

from .money import ZERO, percent_of, ratio_percent, to_money, to_percent
from .schedule import add_months, advance_date, iter_months, month_bounds
from .text import names_match, normalize_name

__all__ = [
    "ZERO",
    "percent_of",
    "ratio_percent",
    "to_money",
    "to_percent",
    "add_months",
    "advance_date",
    "iter_months",
    "month_bounds",
    "names_match",
    "normalize_name",
]
