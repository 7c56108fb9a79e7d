"""
Loan Module

Handles loan applications, the approval/rejection state machine, installment
schedule persistence and loan queries.

State machine:
    pending -> active     (approved; schedule generated, loan disbursed)
    pending -> rejected
    active  -> completed  (not automatic: a zero remaining balance does not
                           close the loan by itself)
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union
from enum import Enum
import uuid

from .amortization import calculate_amortization
from .audit import AuditTrail, AuditEventType
from .collaborators import UserDirectory
from .currency import ZERO, has_sub_cent_digits, round_money, to_decimal
from .errors import (
    ConcurrentModificationError, InvalidStateError, MissingArgumentError,
    NotFoundError, ValidationError
)
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, parse_timestamp


class LoanStatus(Enum):
    """Loan lifecycle states"""
    PENDING = "pending"        # Application awaiting a decision
    APPROVED = "approved"      # Kept for compatibility; approval activates immediately
    REJECTED = "rejected"
    ACTIVE = "active"          # Approved, disbursed and in repayment
    COMPLETED = "completed"


class LoanDecision(Enum):
    """Management decision on a pending application"""
    APPROVED = "approved"
    REJECTED = "rejected"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _money_fields(data: Dict[str, Any], fields) -> None:
    for name in fields:
        if name in data:
            data[name] = to_decimal(data[name])


def _time_fields(data: Dict[str, Any], fields) -> None:
    for name in fields:
        if name in data:
            data[name] = parse_timestamp(data[name])


@dataclass
class Loan(StorageRecord):
    """A member's loan, from application to repayment"""
    user_id: str
    amount: Decimal                     # Principal
    term_months: int
    status: LoanStatus = LoanStatus.PENDING
    interest_rate: Decimal = ZERO       # Annual %, set on approval
    monthly_payment: Decimal = ZERO
    total_amount: Decimal = ZERO        # Principal + interest
    remaining_balance: Decimal = ZERO
    purpose: Optional[str] = None
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    disbursed_at: Optional[datetime] = None
    version: int = 0

    MONEY_FIELDS = ('amount', 'interest_rate', 'monthly_payment', 'total_amount', 'remaining_balance')
    TIME_FIELDS = ('created_at', 'updated_at', 'approved_at', 'disbursed_at')

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        data = dict(data)
        data['status'] = LoanStatus(data['status'])
        _money_fields(data, cls.MONEY_FIELDS)
        _time_fields(data, cls.TIME_FIELDS)
        return cls(**data)


@dataclass
class LoanInstallment(StorageRecord):
    """One scheduled monthly obligation of a loan"""
    loan_id: str
    installment_number: int
    due_date: datetime
    amount: Decimal                     # Total due: principal + interest
    principal_amount: Decimal
    interest_amount: Decimal
    paid_amount: Decimal = ZERO
    is_paid: bool = False
    paid_at: Optional[datetime] = None  # Set once, when first fully paid
    recorded_by: Optional[str] = None
    version: int = 0

    MONEY_FIELDS = ('amount', 'principal_amount', 'interest_amount', 'paid_amount')
    TIME_FIELDS = ('created_at', 'updated_at', 'due_date', 'paid_at')

    @property
    def remaining_amount(self) -> Decimal:
        return self.amount - self.paid_amount

    def is_overdue(self, as_of: datetime) -> bool:
        """Overdue-ness is derived, never stored"""
        return not self.is_paid and self.due_date < as_of

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LoanInstallment':
        data = dict(data)
        _money_fields(data, cls.MONEY_FIELDS)
        _time_fields(data, cls.TIME_FIELDS)
        return cls(**data)


class LoanStore:
    """
    Persistence for loans and installments on top of a StorageInterface.

    Updates are version-checked: ``update_loan`` / ``update_installment``
    only write if the stored version still equals the one that was read,
    and bump the version on success.
    """

    def __init__(self, storage: StorageInterface, clock: Callable[[], datetime] = utc_now):
        self.storage = storage
        self.clock = clock
        self.loans_table = "loans"
        self.installments_table = "loan_installments"

    # Loans

    def insert_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, loan.to_dict())

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return Loan.from_dict(data)
        return None

    def update_loan(self, loan: Loan) -> bool:
        return self._update(self.loans_table, loan)

    def find_loans(self, filters: Optional[Dict[str, Any]] = None) -> List[Loan]:
        loans = [Loan.from_dict(data) for data in self.storage.find(self.loans_table, filters or {})]
        loans.sort(key=lambda x: x.created_at)
        return loans

    # Installments

    def insert_installments(self, installments: List[LoanInstallment]) -> None:
        self.storage.save_many(
            self.installments_table,
            [(installment.id, installment.to_dict()) for installment in installments]
        )

    def get_installment(self, installment_id: str) -> Optional[LoanInstallment]:
        data = self.storage.load(self.installments_table, installment_id)
        if data:
            return LoanInstallment.from_dict(data)
        return None

    def update_installment(self, installment: LoanInstallment) -> bool:
        return self._update(self.installments_table, installment)

    def find_installments(self, filters: Optional[Dict[str, Any]] = None) -> List[LoanInstallment]:
        installments = [
            LoanInstallment.from_dict(data)
            for data in self.storage.find(self.installments_table, filters or {})
        ]
        installments.sort(key=lambda x: (x.loan_id, x.installment_number))
        return installments

    def _update(self, table: str, record: Union[Loan, LoanInstallment]) -> bool:
        expected_version = record.version
        previous_updated_at = record.updated_at
        record.version = expected_version + 1
        record.updated_at = self.clock()
        written = self.storage.save_if(
            table, record.id, record.to_dict(), 'version', expected_version
        )
        if not written:
            record.version = expected_version
            record.updated_at = previous_updated_at
        return written


class LoanManager:
    """
    Manages loan applications from submission through approval or rejection
    """

    def __init__(
        self,
        storage: StorageInterface,
        user_directory: UserDirectory,
        audit_trail: Optional[AuditTrail] = None,
        store: Optional[LoanStore] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.storage = storage
        self.user_directory = user_directory
        self.audit_trail = audit_trail
        self.clock = clock
        self.store = store or LoanStore(storage, clock)
        self.logger = get_logger("coop_banking.loans")

    def apply_for_loan(
        self,
        user_id: str,
        amount: Any,
        term_months: int,
        purpose: Optional[str] = None
    ) -> Loan:
        """
        Submit a loan application

        The loan starts ``pending`` with every financial field at zero; rate
        and payment terms are fixed when management approves it.

        Raises:
            ValidationError: Non-positive amount or term
            NotFoundError: Unknown user
        """
        amount = validate_positive_amount(amount, "Loan amount")
        if isinstance(term_months, bool) or not isinstance(term_months, int) or term_months < 1:
            raise ValidationError("Loan term must be a positive whole number of months")

        if not self.user_directory.user_exists(user_id):
            raise NotFoundError(f"User with ID {user_id} not found")

        now = self.clock()
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=str(user_id),
            amount=amount,
            term_months=term_months,
            purpose=purpose
        )

        with self.storage.atomic():
            self.store.insert_loan(loan)
            self._audit(
                AuditEventType.LOAN_APPLIED, loan.id, user_id,
                amount=loan.amount, term_months=term_months, purpose=purpose
            )

        log_action(
            self.logger, "info", "Loan application submitted",
            user_id=str(user_id), action="apply_for_loan", resource=loan.id,
            extra={"amount": str(loan.amount), "term_months": term_months}
        )
        return loan

    def process_loan_application(
        self,
        loan_id: str,
        status: Union[LoanDecision, str],
        approved_by: str,
        interest_rate: Optional[Any] = None
    ) -> Loan:
        """
        Approve or reject a pending application

        Approval computes the payment terms, activates the loan and writes
        the full installment schedule in the same transaction as the loan
        update. Rejection records the decision maker but no approval time.

        Raises:
            NotFoundError: Unknown loan
            InvalidStateError: Loan is not pending
            MissingArgumentError: Approval without an interest rate
            ValidationError: Unknown decision or negative rate
        """
        decision = _parse_decision(status)

        with self.storage.atomic():
            loan = self.store.get_loan(loan_id)
            if not loan:
                raise NotFoundError(f"Loan application with ID {loan_id} not found")

            if loan.status != LoanStatus.PENDING:
                raise InvalidStateError(
                    f"Loan application is not in pending status. Current status: {loan.status.value}"
                )

            loan.approved_by = str(approved_by) if approved_by is not None else None

            if decision == LoanDecision.REJECTED:
                loan.status = LoanStatus.REJECTED
                loan.approved_at = None
                self._write_loan(loan)
                self._audit(AuditEventType.LOAN_REJECTED, loan.id, approved_by)
            else:
                if interest_rate is None:
                    raise MissingArgumentError("Interest rate is required for loan approval")
                try:
                    rate = to_decimal(interest_rate)
                except ValueError as e:
                    raise ValidationError(str(e))

                now = self.clock()
                terms = calculate_amortization(loan.amount, rate, loan.term_months, now)

                loan.status = LoanStatus.ACTIVE
                loan.interest_rate = rate
                loan.monthly_payment = terms.monthly_payment
                loan.total_amount = terms.total_amount
                loan.remaining_balance = terms.total_amount
                loan.approved_at = now
                loan.disbursed_at = now
                self._write_loan(loan)

                installments = [
                    LoanInstallment(
                        id=str(uuid.uuid4()),
                        created_at=now,
                        updated_at=now,
                        loan_id=loan.id,
                        installment_number=entry.installment_number,
                        due_date=entry.due_date,
                        amount=entry.amount,
                        principal_amount=entry.principal_amount,
                        interest_amount=entry.interest_amount
                    )
                    for entry in terms.schedule
                ]
                self.store.insert_installments(installments)

                self._audit(
                    AuditEventType.LOAN_APPROVED, loan.id, approved_by,
                    interest_rate=rate,
                    monthly_payment=loan.monthly_payment,
                    total_amount=loan.total_amount
                )
                self._audit(
                    AuditEventType.INSTALLMENTS_SCHEDULED, loan.id, approved_by,
                    count=len(installments),
                    first_due_date=installments[0].due_date
                )

        log_action(
            self.logger, "info", f"Loan application {decision.value}",
            user_id=str(approved_by), action="process_loan_application", resource=loan.id,
            extra={"status": loan.status.value, "monthly_payment": str(loan.monthly_payment)}
        )
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        """Get loan by ID"""
        loan = self.store.get_loan(loan_id)
        if not loan:
            raise NotFoundError(f"Loan with ID {loan_id} not found")
        return loan

    def get_loan_applications(self, status: Optional[LoanStatus] = None) -> List[Loan]:
        """All loans, optionally restricted to one status"""
        filters = {"status": LoanStatus(status).value} if status else {}
        return self.store.find_loans(filters)

    def get_user_loans(self, user_id: str) -> List[Loan]:
        """Get all loans for a member"""
        return self.store.find_loans({"user_id": str(user_id)})

    def _write_loan(self, loan: Loan) -> None:
        if not self.store.update_loan(loan):
            raise ConcurrentModificationError(f"Loan {loan.id} was modified concurrently")

    def _audit(self, event_type: AuditEventType, loan_id: str, user_id, **metadata) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type="loan",
                entity_id=loan_id,
                metadata=metadata,
                user_id=str(user_id) if user_id is not None else None
            )


def validate_positive_amount(value: Any, label: str) -> Decimal:
    """Parse a money amount, rejecting values that would need rounding"""
    try:
        amount = to_decimal(value)
        if has_sub_cent_digits(amount):
            raise ValidationError(f"{label} cannot have more than 2 decimal places")
        amount = round_money(amount)
    except ValidationError:
        raise
    except ValueError as e:
        raise ValidationError(f"{label} is not a valid number: {e}")
    if amount <= ZERO:
        raise ValidationError(f"{label} must be positive")
    return amount


def _parse_decision(status: Union[LoanDecision, str]) -> LoanDecision:
    if isinstance(status, LoanDecision):
        return status
    try:
        return LoanDecision(str(status).lower())
    except ValueError:
        raise ValidationError(f"Invalid decision '{status}': expected 'approved' or 'rejected'")
