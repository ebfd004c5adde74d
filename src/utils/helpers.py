"""
Helper Utilities
Common helper functions
"""

from datetime import datetime
from typing import Optional
import uuid

from src.config.settings import settings


def generate_report_number(prefix: Optional[str] = None) -> str:
    """
    Generate unique report number

    Returns:
        str: Report number in format EXR-YYYYMMDD-XXXXXX
    """
    timestamp = datetime.now().strftime("%Y%m%d")
    unique_id = uuid.uuid4().hex[:6].upper()
    return f"{prefix or settings.REPORT_NUMBER_PREFIX}-{timestamp}-{unique_id}"


def format_currency(amount: float, currency: str = "INR") -> str:
    """
    Format amount as currency

    Args:
        amount: Amount to format
        currency: Currency code

    Returns:
        str: Formatted currency string
    """
    if currency == "INR":
        return f"₹{amount:,.2f}"
    return f"{currency} {amount:,.2f}"
