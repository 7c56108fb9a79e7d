"""
Reporting endpoints
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse

from .dependencies import get_coop_system, to_http_error
from .schemas import report_response
from ..errors import CoopBankingError, ValidationError
from ..reporting import ReportFormat, export_report
from ..system import CoopBankingSystem


router = APIRouter()


@router.get("/financial")
async def get_financial_report(
    start_date: date = Query(..., description="Window start, inclusive (YYYY-MM-DD)"),
    end_date: date = Query(..., description="Window end, inclusive (YYYY-MM-DD)"),
    format: Optional[str] = Query(None, description="dict, json or csv"),
    system: CoopBankingSystem = Depends(get_coop_system)
):
    """Savings, loan portfolio and installment collection statistics"""
    try:
        try:
            report_format = ReportFormat(format or system.config.report_default_format)
        except ValueError:
            raise ValidationError(f"Unsupported report format '{format}'")

        report = system.generate_financial_report(start_date, end_date)
    except CoopBankingError as e:
        raise to_http_error(e)

    if report_format == ReportFormat.CSV:
        return PlainTextResponse(export_report(report, report_format), media_type="text/csv")
    if report_format == ReportFormat.JSON:
        return PlainTextResponse(export_report(report, report_format), media_type="application/json")
    return report_response(report)
