from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Protocol

from .models import Deposit, User, Withdraw


class UserRepository(Protocol):
    """
    Abstraction over user persistence.

    Implementations are responsible for:
    - Mapping between database rows and the `User` domain model.
    - Hiding any SQL / driver details from the application layer.
    - Raising `StorageError` when the driver fails.
    """

    def find_user_by_id(self, uid: int) -> Optional[User]:
        """Return the user with the given platform id, or None if not found."""

        ...

    def find_user_by_username(self, username: str) -> Optional[User]:
        ...

    def count_users(self) -> int:
        ...

    def count_referrals(self, uid: int) -> int:
        """Return how many users registered with `uid` as their referrer."""

        ...

    def create_user(self, user: User) -> None:
        """
        Persist a new user.

        Raises `DuplicateIdentityError` if the uid or username is taken.
        """

        ...

    def save_user(self, user: User) -> None:
        """Overwrite the stored balances, status and check-in time of `user`."""

        ...


class DepositRepository(Protocol):
    """Persistence abstraction for plan purchases and re-activations."""

    def count_deposits(self, uid: int) -> int:
        ...

    def find_oldest_deposit(self, uid: int) -> Optional[Deposit]:
        ...

    def delete_deposit(self, deposit_id: int) -> None:
        ...

    def create_deposit(self, deposit: Deposit) -> Deposit:
        """Insert a deposit and return it with its id assigned."""

        ...

    def find_deposits_by_user(self, uid: int) -> List[Deposit]:
        """Return the user's deposits, oldest first."""

        ...

    def add_deposit(self, deposit: Deposit, retain: int) -> Deposit:
        """
        Insert `deposit` and evict the user's oldest deposits so that at
        most `retain` remain.

        Implementations must apply both steps in a single transaction.
        """

        ...


class WithdrawRepository(Protocol):
    """Persistence abstraction for payout requests."""

    def find_withdraws_by_user_in_range(
        self,
        uid: int,
        start: datetime,
        end: datetime,
    ) -> List[Withdraw]:
        """Return withdrawals with `start <= date < end`, oldest first."""

        ...

    def find_withdraws_by_user(
        self,
        uid: int,
        sort_desc: bool = True,
        limit: Optional[int] = None,
    ) -> List[Withdraw]:
        ...

    def create_withdraw(self, withdraw: Withdraw) -> Withdraw:
        ...

    def record_withdrawal(self, withdraw: Withdraw) -> User:
        """
        Debit the owner's balance by `withdraw.amount` and insert the record.

        Both effects are applied atomically: either both are committed or
        neither is. Raises `InsufficientFundsError` if the debit would leave a
        negative balance. Returns the updated user.
        """

        ...


class LedgerRepository(UserRepository, DepositRepository, WithdrawRepository, Protocol):
    """The full ledger store used by the application layer."""
