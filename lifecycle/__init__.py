"""
Reseller Lifecycle State Machine

This module provides:
- Approval, rejection, suspension and reactivation of resellers
- Orchestration of wallet credits and validity windows on approval and recharge
- Number-limit register consulted by provisioning
- Result envelopes at the component boundary
"""

from .models import (
    ApprovalOutcome,
    ApproveResellerRequest,
    ChargeRequest,
    NumberLimit,
    RechargeOutcome,
    RechargeRequest,
    Reseller,
    ResellerCreate,
    ResellerState,
)
from .number_limits import NumberLimitRegister
from .service import LifecycleService

__all__ = [
    "ApprovalOutcome",
    "ApproveResellerRequest",
    "ChargeRequest",
    "NumberLimit",
    "RechargeOutcome",
    "RechargeRequest",
    "Reseller",
    "ResellerCreate",
    "ResellerState",
    "NumberLimitRegister",
    "LifecycleService",
]
