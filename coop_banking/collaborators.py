"""
External Collaborators

Contracts for the parts of the cooperative the loan core consumes but does not
own: the member directory and the savings account ledger. Storage-backed,
read-only implementations are provided for wiring and tests; user and account
maintenance happens elsewhere.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict

from .currency import ZERO, to_decimal
from .storage import StorageInterface, parse_timestamp


class TransactionType(Enum):
    """Savings ledger transaction types"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class UserDirectory(ABC):
    """Resolves member and staff ids"""

    @abstractmethod
    def user_exists(self, user_id: str) -> bool:
        pass


class AccountLedger(ABC):
    """Read-only aggregate queries over savings accounts"""

    @abstractmethod
    def sum_balances(self) -> Decimal:
        """Current balance summed over every account"""
        pass

    @abstractmethod
    def sum_transactions_by_type_in_range(
        self,
        start: datetime,
        end: datetime
    ) -> Dict[TransactionType, Decimal]:
        """Transaction totals per type with ``start <= created_at <= end``"""
        pass


class StorageUserDirectory(UserDirectory):
    """User directory over the ``users`` table"""

    def __init__(self, storage: StorageInterface, table_name: str = "users"):
        self.storage = storage
        self.table_name = table_name

    def user_exists(self, user_id: str) -> bool:
        if user_id is None:
            return False
        return self.storage.exists(self.table_name, str(user_id))


class StorageAccountLedger(AccountLedger):
    """
    Savings ledger over the ``accounts`` and ``transactions`` tables.

    Account rows carry a decimal-string ``balance``; transaction rows carry
    ``type``, a decimal-string ``amount`` and an ISO ``created_at``.
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts_table: str = "accounts",
        transactions_table: str = "transactions"
    ):
        self.storage = storage
        self.accounts_table = accounts_table
        self.transactions_table = transactions_table

    def sum_balances(self) -> Decimal:
        total = ZERO
        for account in self.storage.load_all(self.accounts_table):
            total += to_decimal(account.get('balance', '0'))
        return total

    def sum_transactions_by_type_in_range(
        self,
        start: datetime,
        end: datetime
    ) -> Dict[TransactionType, Decimal]:
        totals = {tx_type: ZERO for tx_type in TransactionType}
        for record in self.storage.load_all(self.transactions_table):
            created_at = parse_timestamp(record.get('created_at'))
            if created_at is None or not (start <= created_at <= end):
                continue
            tx_type = TransactionType(record['type'])
            totals[tx_type] += to_decimal(record['amount'])
        return totals
