"""
Financial Reporting Module

Aggregates savings, loan-portfolio and installment-collection statistics over
a date window. Each section is computed independently but all of them read
from the same storage snapshot.

Some figures are point-in-time snapshots rather than windowed:
the savings ``total_balance``, the loans ``outstanding_principal`` and the
active/completed loan counts always describe the current state.
"""

from decimal import Decimal
from datetime import date, datetime, time, timezone
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from enum import Enum
import csv
import io
import json

from .collaborators import AccountLedger, TransactionType
from .currency import ZERO, HUNDRED, round_money
from .errors import ValidationError
from .loans import LoanStatus, LoanStore
from .logging_config import get_logger, log_action
from .storage import StorageInterface, ensure_utc


DateLike = Union[date, datetime]


class ReportFormat(Enum):
    """Output formats for reports"""
    DICT = "dict"
    CSV = "csv"
    JSON = "json"


@dataclass
class SavingsSummary:
    total_deposits: Decimal = ZERO
    total_withdrawals: Decimal = ZERO
    net_savings: Decimal = ZERO
    total_balance: Decimal = ZERO       # Current, not windowed


@dataclass
class LoanPortfolioSummary:
    total_disbursed: Decimal = ZERO
    total_repaid: Decimal = ZERO
    outstanding_principal: Decimal = ZERO   # Current, not windowed
    interest_earned: Decimal = ZERO
    active_loans: int = 0                   # Current, not windowed
    completed_loans: int = 0                # Current, not windowed


@dataclass
class InstallmentCollectionSummary:
    total_expected: Decimal = ZERO
    total_collected: Decimal = ZERO
    overdue_amount: Decimal = ZERO          # Everything unpaid and due by period end
    collection_rate: Decimal = ZERO         # Percentage, 2 dp


@dataclass
class FinancialReport:
    """Result of a financial report run"""
    period_start: datetime
    period_end: datetime
    savings: SavingsSummary
    loans: LoanPortfolioSummary
    installments: InstallmentCollectionSummary

    def to_dict(self) -> Dict[str, Any]:
        """Presentation form: money rounded to cents, counts as ints"""
        def money_section(section) -> Dict[str, Any]:
            result = {}
            for name, value in vars(section).items():
                result[name] = round_money(value) if isinstance(value, Decimal) else value
            return result

        return {
            'period': {
                'start_date': self.period_start.isoformat(),
                'end_date': self.period_end.isoformat()
            },
            'savings': money_section(self.savings),
            'loans': money_section(self.loans),
            'installments': money_section(self.installments)
        }


def normalize_window(start_date: DateLike, end_date: DateLike):
    """
    Turn report bounds into an inclusive UTC datetime window

    Plain dates cover whole days: the start date from midnight, the end date
    up to its last microsecond.
    """
    if start_date is None or end_date is None:
        raise ValidationError("Both start_date and end_date are required")

    if isinstance(start_date, datetime):
        start = ensure_utc(start_date)
    elif isinstance(start_date, date):
        start = datetime.combine(start_date, time.min, tzinfo=timezone.utc)
    else:
        raise ValidationError(f"Invalid start_date: {start_date!r}")

    if isinstance(end_date, datetime):
        end = ensure_utc(end_date)
    elif isinstance(end_date, date):
        end = datetime.combine(end_date, time.max, tzinfo=timezone.utc)
    else:
        raise ValidationError(f"Invalid end_date: {end_date!r}")

    if start > end:
        raise ValidationError("start_date must not be after end_date")

    return start, end


class FinancialReportGenerator:
    """
    Read-only financial report engine for the cooperative
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_ledger: AccountLedger,
        store: Optional[LoanStore] = None
    ):
        self.storage = storage
        self.account_ledger = account_ledger
        self.store = store or LoanStore(storage)
        self.logger = get_logger("coop_banking.reporting")

    def generate_financial_report(self, start_date: DateLike, end_date: DateLike) -> FinancialReport:
        """
        Generate the savings / loans / installments report for a window

        Args:
            start_date: Window start (inclusive)
            end_date: Window end (inclusive)

        Returns:
            FinancialReport

        Raises:
            ValidationError: Missing bounds or start after end
        """
        start, end = normalize_window(start_date, end_date)

        with self.storage.snapshot():
            savings = self._savings_statistics(start, end)
            loans = self._loan_statistics(start, end)
            installments = self._installment_statistics(start, end)

        log_action(
            self.logger, "info", "Financial report generated",
            action="generate_financial_report", resource="financial_report",
            extra={"start_date": start.isoformat(), "end_date": end.isoformat()}
        )

        return FinancialReport(
            period_start=start,
            period_end=end,
            savings=savings,
            loans=loans,
            installments=installments
        )

    def _savings_statistics(self, start: datetime, end: datetime) -> SavingsSummary:
        totals = self.account_ledger.sum_transactions_by_type_in_range(start, end)
        deposits = totals.get(TransactionType.DEPOSIT, ZERO)
        withdrawals = totals.get(TransactionType.WITHDRAWAL, ZERO)

        return SavingsSummary(
            total_deposits=deposits,
            total_withdrawals=withdrawals,
            net_savings=deposits - withdrawals,
            total_balance=self.account_ledger.sum_balances()
        )

    def _loan_statistics(self, start: datetime, end: datetime) -> LoanPortfolioSummary:
        summary = LoanPortfolioSummary()

        for loan in self.store.find_loans():
            if loan.status == LoanStatus.ACTIVE:
                summary.active_loans += 1
                summary.outstanding_principal += loan.remaining_balance
                if loan.disbursed_at and start <= loan.disbursed_at <= end:
                    summary.total_disbursed += loan.amount
            elif loan.status == LoanStatus.COMPLETED:
                summary.completed_loans += 1

        for installment in self.store.find_installments({"is_paid": True}):
            if installment.paid_at and start <= installment.paid_at <= end:
                summary.total_repaid += installment.paid_amount
                summary.interest_earned += installment.interest_amount

        return summary

    def _installment_statistics(self, start: datetime, end: datetime) -> InstallmentCollectionSummary:
        summary = InstallmentCollectionSummary()

        for installment in self.store.find_installments():
            if start <= installment.due_date <= end:
                summary.total_expected += installment.amount

            if (installment.paid_amount > ZERO and installment.paid_at
                    and start <= installment.paid_at <= end):
                summary.total_collected += installment.paid_amount

            if not installment.is_paid and installment.due_date <= end:
                summary.overdue_amount += installment.amount - installment.paid_amount

        if summary.total_expected > ZERO:
            summary.collection_rate = round_money(summary.total_collected / summary.total_expected * HUNDRED)

        return summary


def export_report(report: FinancialReport, format: ReportFormat) -> Union[Dict, str]:
    """
    Export report in specified format
    """
    format = ReportFormat(format)

    if format == ReportFormat.DICT:
        return report.to_dict()

    elif format == ReportFormat.JSON:
        return json.dumps(report.to_dict(), indent=2, default=str)

    elif format == ReportFormat.CSV:
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(['section', 'metric', 'value'])

        data = report.to_dict()
        writer.writerow(['period', 'start_date', data['period']['start_date']])
        writer.writerow(['period', 'end_date', data['period']['end_date']])
        for section in ('savings', 'loans', 'installments'):
            for metric, value in data[section].items():
                writer.writerow([section, metric, value])

        csv_content = output.getvalue()
        output.close()
        return csv_content

    else:
        raise ValueError(f"Unsupported export format: {format}")
