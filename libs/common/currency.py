"""Currency conversion utilities for the marketplace.

Internal storage unit: paise (smallest INR unit, 100 paise = ₹1).
API / display unit: rupees, only ever produced for human-facing text.

Money is never stored or summed as a float; conversions to rupees happen
at the edge (notification templates, logs).
"""

from __future__ import annotations

PAISE_PER_RUPEE: int = 100


def rupees_to_paise(rupees: float) -> int:
    """Convert rupees to paise (round half-up). ₹1 = 100 paise."""
    return round(rupees * PAISE_PER_RUPEE)


def paise_to_rupees(paise: int) -> float:
    """Convert paise to rupees. 100 paise = ₹1."""
    return paise / PAISE_PER_RUPEE


def format_inr(paise: int) -> str:
    """Render paise as a rupee string, e.g. ``123450 -> "₹1,234.50"``."""
    sign = "-" if paise < 0 else ""
    rupees, remainder = divmod(abs(paise), PAISE_PER_RUPEE)
    return f"{sign}₹{rupees:,}.{remainder:02d}"
