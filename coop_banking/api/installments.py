"""
Installment endpoints
"""

from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends

from .dependencies import get_coop_system, to_http_error
from .schemas import LoanPaymentRequest, installment_response
from ..errors import CoopBankingError
from ..storage import ensure_utc
from ..system import CoopBankingSystem


router = APIRouter()


@router.get("/pending")
async def get_pending_installments(system: CoopBankingSystem = Depends(get_coop_system)):
    """Unpaid installments of active loans"""
    installments = system.get_pending_installments()
    return {
        "installments": [installment_response(x) for x in installments],
        "count": len(installments)
    }


@router.get("/overdue")
async def get_overdue_installments(
    as_of: Optional[datetime] = None,
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """Unpaid installments of active loans past their due date"""
    as_of = ensure_utc(as_of) if as_of else None
    installments = system.get_overdue_installments(as_of)
    return {
        "installments": [installment_response(x) for x in installments],
        "count": len(installments)
    }


@router.post("/{installment_id}/payments")
async def record_loan_payment(
    installment_id: str,
    request: LoanPaymentRequest,
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """Record a (possibly partial) payment on an installment"""
    try:
        installment = system.record_loan_payment(
            installment_id=installment_id,
            paid_amount=request.paid_amount,
            recorded_by=request.recorded_by
        )
    except CoopBankingError as e:
        raise to_http_error(e)

    return installment_response(installment)
