"""
Helper utility functions for display.
"""
import re
from datetime import datetime
from typing import Optional


def validate_email(email: str) -> bool:
    """Validate email address format"""
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email or ""))


def format_short_date(date_obj: Optional[datetime]) -> str:
    """Format an envelope date as month/day/2-digit year"""
    if not isinstance(date_obj, datetime):
        return ""
    return f"{date_obj.month}/{date_obj.day}/{date_obj:%y}"

