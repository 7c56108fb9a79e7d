"""
Amortization Module

Fixed-rate annuity (equal installment) schedule generation. Pure functions:
no storage access, no clock reads. All arithmetic is Decimal; the rounded
monthly payment is the value used for every installment row and for the
published total amount.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Union
import calendar

from .currency import ZERO, HUNDRED, to_decimal, round_money, sum_money
from .errors import ValidationError


MONTHS_PER_YEAR = Decimal('12')

DateLike = Union[date, datetime]


@dataclass
class ScheduleEntry:
    """Single row of an amortization schedule"""
    installment_number: int
    due_date: DateLike
    amount: Decimal
    principal_amount: Decimal
    interest_amount: Decimal
    remaining_balance: Decimal  # Principal still owed after this row


@dataclass
class AmortizationResult:
    """Payment terms and full installment schedule for a loan"""
    monthly_payment: Decimal
    total_amount: Decimal
    schedule: List[ScheduleEntry] = field(default_factory=list)

    @property
    def total_interest(self) -> Decimal:
        return sum_money(entry.interest_amount for entry in self.schedule)

    @property
    def total_principal(self) -> Decimal:
        return sum_money(entry.principal_amount for entry in self.schedule)


def monthly_rate(annual_rate: Decimal) -> Decimal:
    """Convert an annual percentage rate (12 for 12%) to a monthly fraction"""
    return to_decimal(annual_rate) / HUNDRED / MONTHS_PER_YEAR


def add_months(start: DateLike, months: int) -> DateLike:
    """Add calendar months, clamping the day to the target month's length"""
    month = start.month - 1 + months
    year = start.year + month // 12
    month = month % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def calculate_monthly_payment(principal: Decimal, annual_rate: Decimal, term_months: int) -> Decimal:
    """
    Equal monthly payment rounded to cents

    Standard loan payment formula: P * [r(1+r)^n] / [(1+r)^n - 1]
    where P = principal, r = monthly rate, n = number of payments.
    A zero rate divides the principal evenly.
    """
    principal, annual_rate = _validate(principal, annual_rate, term_months)
    rate = monthly_rate(annual_rate)

    try:
        if rate == ZERO:
            payment = principal / Decimal(term_months)
        else:
            factor = (Decimal('1') + rate) ** term_months
            payment = principal * (rate * factor) / (factor - Decimal('1'))
    except ArithmeticError:
        raise ValidationError("Loan terms produce a payment outside the supported range")

    return _cents(payment)


def calculate_amortization(
    principal: Decimal,
    annual_rate: Decimal,
    term_months: int,
    start_date: DateLike
) -> AmortizationResult:
    """
    Compute monthly payment, total amount and the installment schedule

    Args:
        principal: Amount borrowed, > 0
        annual_rate: Annual interest rate as a percentage, >= 0
        term_months: Number of monthly installments, >= 1
        start_date: Approval date; installment i falls due i months later

    Returns:
        AmortizationResult

    Raises:
        ValidationError: For a non-positive principal or term, a negative rate,
            or terms whose amounts cannot be held in cents
    """
    principal, annual_rate = _validate(principal, annual_rate, term_months)
    rate = monthly_rate(annual_rate)
    payment = calculate_monthly_payment(principal, annual_rate, term_months)
    total_amount = _cents(payment * term_months)

    schedule = []
    balance = principal
    for number in range(1, term_months + 1):
        interest = _cents(balance * rate)

        if number == term_months:
            # Last row absorbs the rounding drift so principal reconciles exactly
            principal_part = balance
            amount = balance + interest
        else:
            principal_part = payment - interest
            amount = payment

        balance = balance - principal_part

        schedule.append(ScheduleEntry(
            installment_number=number,
            due_date=add_months(start_date, number),
            amount=_cents(amount),
            principal_amount=_cents(principal_part),
            interest_amount=interest,
            remaining_balance=_cents(balance)
        ))

    return AmortizationResult(
        monthly_payment=payment,
        total_amount=total_amount,
        schedule=schedule
    )


def _validate(principal, annual_rate, term_months):
    if isinstance(term_months, bool) or not isinstance(term_months, int):
        raise ValidationError(f"Term must be a whole number of months, got {term_months!r}")
    if term_months < 1:
        raise ValidationError("Term must be at least 1 month")

    try:
        principal = to_decimal(principal)
        annual_rate = to_decimal(annual_rate)
    except ValueError as e:
        raise ValidationError(str(e))

    if principal <= ZERO:
        raise ValidationError("Principal must be positive")
    if annual_rate < ZERO:
        raise ValidationError("Interest rate cannot be negative")

    return principal, annual_rate


def _cents(value: Decimal) -> Decimal:
    try:
        return round_money(value)
    except ValueError:
        raise ValidationError(f"Loan terms produce an amount outside the supported range: {value}")
