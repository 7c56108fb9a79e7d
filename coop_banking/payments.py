"""
Installment Payment Module

Records member repayments against individual installments and propagates
each payment to the parent loan's remaining balance.

The installment update and the loan update are written in one atomic block,
each guarded by a version check. When another writer got there first the
whole unit of work is rolled back and re-read, so concurrent payments to the
same installment can never overwrite each other's paid amount.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, List, Optional

from .audit import AuditTrail, AuditEventType
from .currency import ZERO, format_money
from .errors import (
    ConcurrentModificationError, InvalidStateError, NotFoundError, OverpaymentError
)
from .loans import LoanInstallment, LoanStatus, LoanStore, utc_now, validate_positive_amount
from .logging_config import get_logger, log_action
from .storage import StorageInterface, ensure_utc


class InstallmentPaymentProcessor:
    """
    Applies payments to loan installments
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        store: Optional[LoanStore] = None,
        clock: Callable[[], datetime] = utc_now,
        max_retries: int = 3
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.clock = clock
        self.store = store or LoanStore(storage, clock)
        self.max_retries = max(1, max_retries)
        self.logger = get_logger("coop_banking.payments")

    def record_loan_payment(
        self,
        installment_id: str,
        paid_amount: Any,
        recorded_by: str
    ) -> LoanInstallment:
        """
        Record a (possibly partial) payment on an installment

        Args:
            installment_id: Installment being paid
            paid_amount: Amount received now, > 0
            recorded_by: Staff member recording the payment

        Returns:
            The updated installment

        Raises:
            ValidationError: Non-positive amount
            NotFoundError: Unknown installment
            InvalidStateError: Parent loan is not active
            OverpaymentError: Cumulative payment would exceed the installment amount
            ConcurrentModificationError: Lost every retry to concurrent writers
        """
        amount = validate_positive_amount(paid_amount, "Payment amount")

        for attempt in range(1, self.max_retries + 1):
            try:
                installment = self._apply_payment(installment_id, amount, recorded_by)
            except ConcurrentModificationError:
                self.logger.warning(
                    f"Concurrent update on installment {installment_id}, "
                    f"attempt {attempt}/{self.max_retries}"
                )
                continue

            log_action(
                self.logger, "info", "Installment payment recorded",
                user_id=str(recorded_by), action="record_loan_payment", resource=installment.id,
                extra={
                    "loan_id": installment.loan_id,
                    "paid_amount": str(amount),
                    "total_paid": str(installment.paid_amount),
                    "is_paid": installment.is_paid
                }
            )
            return installment

        raise ConcurrentModificationError(
            f"Installment {installment_id} is being updated concurrently; "
            f"gave up after {self.max_retries} attempts"
        )

    def _apply_payment(self, installment_id: str, amount: Decimal, recorded_by: str) -> LoanInstallment:
        with self.storage.atomic():
            installment = self.store.get_installment(installment_id)
            if not installment:
                raise NotFoundError(f"Installment with ID {installment_id} not found")

            loan = self.store.get_loan(installment.loan_id)
            if not loan:
                raise NotFoundError(f"Loan with ID {installment.loan_id} not found")
            if loan.status != LoanStatus.ACTIVE:
                raise InvalidStateError(
                    f"Payments can only be recorded on active loans. Current status: {loan.status.value}"
                )

            new_paid = installment.paid_amount + amount
            if new_paid > installment.amount:
                raise OverpaymentError(
                    f"Payment of {format_money(amount)} would bring installment {installment.installment_number} "
                    f"to {format_money(new_paid)}, exceeding its amount of {format_money(installment.amount)} "
                    f"(remaining {format_money(installment.remaining_amount)})"
                )

            now = self.clock()
            was_paid = installment.is_paid
            installment.paid_amount = new_paid
            installment.is_paid = new_paid >= installment.amount
            installment.recorded_by = str(recorded_by) if recorded_by is not None else None
            if installment.is_paid and not was_paid and installment.paid_at is None:
                installment.paid_at = now

            if not self.store.update_installment(installment):
                raise ConcurrentModificationError(f"Installment {installment_id} was modified concurrently")

            # Decrement by the increment just applied, never below zero
            loan.remaining_balance = max(ZERO, loan.remaining_balance - amount)
            if not self.store.update_loan(loan):
                raise ConcurrentModificationError(f"Loan {loan.id} was modified concurrently")

            if self.audit_trail:
                self.audit_trail.log_event(
                    event_type=AuditEventType.INSTALLMENT_PAYMENT_RECORDED,
                    entity_type="installment",
                    entity_id=installment.id,
                    metadata={
                        "loan_id": loan.id,
                        "paid_amount": amount,
                        "total_paid": installment.paid_amount,
                        "loan_remaining_balance": loan.remaining_balance
                    },
                    user_id=installment.recorded_by
                )
                if installment.is_paid and not was_paid:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.INSTALLMENT_PAID,
                        entity_type="installment",
                        entity_id=installment.id,
                        metadata={"loan_id": loan.id, "paid_at": installment.paid_at},
                        user_id=installment.recorded_by
                    )

        return installment

    def get_installment(self, installment_id: str) -> LoanInstallment:
        installment = self.store.get_installment(installment_id)
        if not installment:
            raise NotFoundError(f"Installment with ID {installment_id} not found")
        return installment

    def get_loan_installments(self, loan_id: str) -> List[LoanInstallment]:
        """Schedule of one loan, ordered by installment number"""
        return self.store.find_installments({"loan_id": loan_id})

    def get_pending_installments(self) -> List[LoanInstallment]:
        """Unpaid installments of active loans, earliest due first"""
        active_ids = {loan.id for loan in self.store.find_loans({"status": LoanStatus.ACTIVE.value})}
        pending = [
            installment for installment in self.store.find_installments({"is_paid": False})
            if installment.loan_id in active_ids
        ]
        pending.sort(key=lambda x: (x.due_date, x.installment_number))
        return pending

    def get_overdue_installments(self, as_of: Optional[datetime] = None) -> List[LoanInstallment]:
        """Unpaid installments of active loans whose due date has passed"""
        as_of = ensure_utc(as_of) if as_of else self.clock()
        return [x for x in self.get_pending_installments() if x.is_overdue(as_of)]
