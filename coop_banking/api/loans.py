"""
Loan endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, Query, status

from .dependencies import get_coop_system, to_http_error
from .schemas import LoanApplicationRequest, LoanDecisionRequest, loan_response, installment_response
from ..errors import CoopBankingError
from ..loans import LoanStatus
from ..system import CoopBankingSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def apply_for_loan(
    request: LoanApplicationRequest,
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """Submit a loan application"""
    try:
        loan = system.apply_for_loan(
            user_id=request.user_id,
            amount=request.amount,
            term_months=request.term_months,
            purpose=request.purpose
        )
    except CoopBankingError as e:
        raise to_http_error(e)

    return loan_response(loan)


@router.get("")
async def list_loans(
    loan_status: Optional[str] = Query(None, alias="status"),
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """List loan applications, optionally filtered by status"""
    status_filter = None
    if loan_status:
        try:
            status_filter = LoanStatus(loan_status)
        except ValueError:
            raise HTTPException(
                status_code=400,
                detail={"kind": "ValidationError", "message": f"Unknown loan status '{loan_status}'"}
            )

    loans = system.get_loan_applications(status_filter)
    return {"loans": [loan_response(loan) for loan in loans], "count": len(loans)}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """Get loan details"""
    try:
        loan = system.get_loan(loan_id)
    except CoopBankingError as e:
        raise to_http_error(e)

    return loan_response(loan)


@router.get("/{loan_id}/installments")
async def get_loan_installments(
    loan_id: str,
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """Get the installment schedule of a loan"""
    try:
        system.get_loan(loan_id)
    except CoopBankingError as e:
        raise to_http_error(e)

    installments = system.get_loan_installments(loan_id)
    return {
        "loan_id": loan_id,
        "installments": [installment_response(x) for x in installments]
    }


@router.post("/{loan_id}/decision")
async def process_loan_application(
    loan_id: str,
    request: LoanDecisionRequest,
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """Approve or reject a pending application"""
    try:
        loan = system.process_loan_application(
            loan_id=loan_id,
            status=request.status,
            approved_by=request.approved_by,
            interest_rate=request.interest_rate
        )
    except CoopBankingError as e:
        raise to_http_error(e)

    return loan_response(loan)
