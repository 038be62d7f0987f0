"""
Reseller Validity Tracker

Keeps one current subscription window per reseller and an append-only
history row for every change to that window.
"""

from .models import (
    ValidityAction,
    ValidityChange,
    ValidityHistory,
    ValidityRecord,
    ValidityStatus,
)
from .service import ValidityService

__all__ = [
    "ValidityAction",
    "ValidityChange",
    "ValidityHistory",
    "ValidityRecord",
    "ValidityStatus",
    "ValidityService",
]
