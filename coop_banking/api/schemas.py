"""
Pydantic schemas for API requests and response helpers
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..loans import Loan, LoanInstallment
from ..reporting import FinancialReport


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


# Loan schemas
class LoanApplicationRequest(BaseModel):
    user_id: str
    amount: str = Field(..., description="Principal as decimal string")
    term_months: int = Field(..., description="Number of monthly installments")
    purpose: Optional[str] = None


class LoanDecisionRequest(BaseModel):
    status: str = Field(..., description="Decision (approved, rejected)")
    approved_by: str
    interest_rate: Optional[str] = Field(None, description="Annual rate in percent, required for approval")


# Installment schemas
class LoanPaymentRequest(BaseModel):
    paid_amount: str = Field(..., description="Amount received as decimal string")
    recorded_by: str


def loan_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "user_id": loan.user_id,
        "amount": str(loan.amount),
        "term_months": loan.term_months,
        "status": loan.status.value,
        "interest_rate": str(loan.interest_rate),
        "monthly_payment": str(loan.monthly_payment),
        "total_amount": str(loan.total_amount),
        "remaining_balance": str(loan.remaining_balance),
        "purpose": loan.purpose,
        "approved_by": loan.approved_by,
        "approved_at": _iso(loan.approved_at),
        "disbursed_at": _iso(loan.disbursed_at),
        "created_at": _iso(loan.created_at),
        "updated_at": _iso(loan.updated_at)
    }


def installment_response(installment: LoanInstallment, as_of: Optional[datetime] = None) -> Dict[str, Any]:
    result = {
        "id": installment.id,
        "loan_id": installment.loan_id,
        "installment_number": installment.installment_number,
        "due_date": _iso(installment.due_date),
        "amount": str(installment.amount),
        "principal_amount": str(installment.principal_amount),
        "interest_amount": str(installment.interest_amount),
        "paid_amount": str(installment.paid_amount),
        "remaining_amount": str(installment.remaining_amount),
        "is_paid": installment.is_paid,
        "paid_at": _iso(installment.paid_at),
        "recorded_by": installment.recorded_by
    }
    if as_of is not None:
        result["is_overdue"] = installment.is_overdue(as_of)
    return result


def report_response(report: FinancialReport) -> Dict[str, Any]:
    """Report dict with money as decimal strings"""
    data = report.to_dict()
    for section in ("savings", "loans", "installments"):
        data[section] = {
            name: str(value) if isinstance(value, Decimal) else value
            for name, value in data[section].items()
        }
    return data
