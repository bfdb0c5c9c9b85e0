"""
Helper Utilities
Common helper functions
"""

from typing import Optional
from datetime import datetime
import re


def format_request_number(prefix: str, date: datetime, sequence: int) -> str:
    """
    Format a request number

    Args:
        prefix: Workflow prefix (PAY, PR, SR)
        date: Creation date
        sequence: Per-day sequence, starting at 1

    Returns:
        str: e.g. PR-20250114-003
    """
    return f"{prefix}-{date.strftime('%Y%m%d')}-{sequence:03d}"


def next_request_sequence(last_number: Optional[str]) -> int:
    """
    Get the next per-day sequence from the highest request number of that day

    Args:
        last_number: Highest existing number with the same prefix and date, or None

    Returns:
        int: Next sequence number
    """
    if not last_number:
        return 1
    match = re.search(r"-(\d+)$", last_number)
    if not match:
        return 1
    return int(match.group(1)) + 1
