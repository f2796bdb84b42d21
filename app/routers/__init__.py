"""
HRFlow - Routers Package

FastAPI route handlers.

Routers:
- salary_advances: eligibility, requests, decisions, disbursement,
  repayments, payroll deductions, lending policies and analytics
"""

from app.routers import salary_advances

__all__ = ["salary_advances"]
