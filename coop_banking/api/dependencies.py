"""
Shared API dependencies
"""

from typing import Optional

from fastapi import HTTPException, status

from ..errors import CoopBankingError
from ..system import CoopBankingSystem


_STATUS_BY_KIND = {
    "NotFound": status.HTTP_404_NOT_FOUND,
    "InvalidState": status.HTTP_409_CONFLICT,
    "Conflict": status.HTTP_409_CONFLICT,
}


# Created on first request so importing the app does not open the database
coop_system: Optional[CoopBankingSystem] = None


def get_coop_system() -> CoopBankingSystem:
    global coop_system
    if coop_system is None:
        coop_system = CoopBankingSystem()
    return coop_system


def set_coop_system(system: Optional[CoopBankingSystem]) -> None:
    """Replace the system served by the API (None resets to lazy creation)"""
    global coop_system
    coop_system = system


def to_http_error(error: CoopBankingError) -> HTTPException:
    """Map a domain error to an HTTP error carrying its kind and message"""
    return HTTPException(
        status_code=_STATUS_BY_KIND.get(error.kind, status.HTTP_400_BAD_REQUEST),
        detail=error.to_dict()
    )
