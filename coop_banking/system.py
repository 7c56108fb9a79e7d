"""
Cooperative Banking System

Wires storage, audit trail, collaborators and the loan, payment and reporting
components together. Nothing here is process-global: every dependency is
passed in (or built from the given configuration), so several independent
systems can coexist, e.g. one per test.
"""

from datetime import datetime
from typing import Any, Callable, List, Optional, Union

from .audit import AuditTrail
from .collaborators import (
    AccountLedger, StorageAccountLedger, StorageUserDirectory, UserDirectory
)
from .config import CoopConfig, get_config
from .loans import Loan, LoanDecision, LoanInstallment, LoanManager, LoanStatus, LoanStore, utc_now
from .payments import InstallmentPaymentProcessor
from .reporting import DateLike, FinancialReport, FinancialReportGenerator
from .storage import StorageInterface, create_storage


class CoopBankingSystem:
    """Savings and loans cooperative core with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        user_directory: Optional[UserDirectory] = None,
        account_ledger: Optional[AccountLedger] = None,
        config: Optional[CoopConfig] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)
        self.user_directory = user_directory or StorageUserDirectory(self.storage)
        self.account_ledger = account_ledger or StorageAccountLedger(self.storage)

        self.audit_trail = AuditTrail(self.storage) if self.config.enable_audit_logging else None
        self.loan_store = LoanStore(self.storage, clock)

        self.loan_manager = LoanManager(
            self.storage, self.user_directory, self.audit_trail,
            store=self.loan_store, clock=clock
        )
        self.payment_processor = InstallmentPaymentProcessor(
            self.storage, self.audit_trail, store=self.loan_store, clock=clock,
            max_retries=self.config.payment_max_retries
        )
        self.report_generator = FinancialReportGenerator(
            self.storage, self.account_ledger, store=self.loan_store
        )

    def apply_for_loan(self, user_id: str, amount: Any, term_months: int,
                       purpose: Optional[str] = None) -> Loan:
        return self.loan_manager.apply_for_loan(user_id, amount, term_months, purpose)

    def process_loan_application(self, loan_id: str, status: Union[LoanDecision, str],
                                 approved_by: str, interest_rate: Optional[Any] = None) -> Loan:
        return self.loan_manager.process_loan_application(loan_id, status, approved_by, interest_rate)

    def record_loan_payment(self, installment_id: str, paid_amount: Any,
                            recorded_by: str) -> LoanInstallment:
        return self.payment_processor.record_loan_payment(installment_id, paid_amount, recorded_by)

    def generate_financial_report(self, start_date: DateLike, end_date: DateLike) -> FinancialReport:
        return self.report_generator.generate_financial_report(start_date, end_date)

    def get_loan(self, loan_id: str) -> Loan:
        return self.loan_manager.get_loan(loan_id)

    def get_loan_applications(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        return self.loan_manager.get_loan_applications(status)

    def get_user_loans(self, user_id: str) -> List[Loan]:
        return self.loan_manager.get_user_loans(user_id)

    def get_loan_installments(self, loan_id: str) -> List[LoanInstallment]:
        return self.payment_processor.get_loan_installments(loan_id)

    def get_pending_installments(self) -> List[LoanInstallment]:
        return self.payment_processor.get_pending_installments()

    def get_overdue_installments(self, as_of: Optional[datetime] = None) -> List[LoanInstallment]:
        return self.payment_processor.get_overdue_installments(as_of)

    def close(self) -> None:
        self.storage.close()
