"""Quota accounting, registry, classification and enforcement."""

from .accountant import UsageAccountant, directory_size
from .classifier import classify, classify_percentage, usage_percentage
from .enforcement import EnforcementController
from .manager import QuotaManager, QuotaSummary
from .registry import QuotaChange, QuotaRegistry
from .state_recorder import StateRecorder

__all__ = [
    "UsageAccountant",
    "directory_size",
    "classify",
    "classify_percentage",
    "usage_percentage",
    "EnforcementController",
    "QuotaManager",
    "QuotaSummary",
    "QuotaChange",
    "QuotaRegistry",
    "StateRecorder",
]
