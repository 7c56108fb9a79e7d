"""
Cooperative Banking Core

Savings and loans core for a member cooperative: loan applications and
approvals, annuity installment schedules, installment repayments and
period financial reports. All money is handled as Decimal.
"""

__version__ = "1.0.0"
