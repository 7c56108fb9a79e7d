"""
Member endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import get_coop_system
from .schemas import loan_response
from ..system import CoopBankingSystem


router = APIRouter()


@router.get("/{user_id}/loans")
async def get_user_loans(
    user_id: str,
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """Get all loans of a member"""
    loans = system.get_user_loans(user_id)
    return {"user_id": user_id, "loans": [loan_response(loan) for loan in loans]}
