from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class UserStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class DepositStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class WithdrawStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass
class User:
    """
    Domain representation of a registered member.

    `uid` is the platform user id (Telegram). The model is independent of
    any particular transport or database schema; repositories map it to
    rows/documents.
    """

    uid: int
    username: str
    balance: int = 0
    referral_balance: int = 0
    referred_by: Optional[int] = None
    status: UserStatus = UserStatus.INACTIVE
    registration_date: datetime = field(default_factory=datetime.now)
    last_check_in: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


@dataclass
class Deposit:
    """
    A plan purchase or re-activation awaiting out-of-band verification.

    Status transitions (approve/reject) are made outside this system.
    """

    uid: int
    amount: int
    date: datetime
    is_reactivation: bool
    status: DepositStatus = DepositStatus.PENDING
    id: Optional[int] = None


@dataclass
class Withdraw:
    """A payout request. Created together with the debit of the owner's balance."""

    uid: int
    amount: int
    upi_id: str
    name: str
    date: datetime
    status: WithdrawStatus = WithdrawStatus.PENDING
    id: Optional[int] = None
