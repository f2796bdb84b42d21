"""
HRFlow - Services Package

Business logic services.
"""

from app.services.salary_advance import (
    AdvanceAnalyticsService,
    AdvancePolicyService,
    SalaryAdvanceService,
)

__all__ = [
    "SalaryAdvanceService",
    "AdvancePolicyService",
    "AdvanceAnalyticsService",
]
