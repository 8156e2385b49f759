from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from .errors import RejectionKind
from .models import User, Withdraw
from .policy import DEFAULT_POLICY, LedgerPolicy


@dataclass(frozen=True)
class Decision:
    """
    Outcome of an eligibility rule.

    `amount` carries a fixed amount computed by the rule (e.g. the first
    withdrawal of the month), or None when the caller must supply one.
    """

    approved: bool
    reason: Optional[RejectionKind] = None
    amount: Optional[int] = None

    @classmethod
    def approve(cls, amount: Optional[int] = None) -> "Decision":
        return cls(approved=True, amount=amount)

    @classmethod
    def reject(cls, reason: RejectionKind) -> "Decision":
        return cls(approved=False, reason=reason)


def month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """Return `[start, end)` of the calendar month containing `now`."""

    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end


def can_check_in(
    user: User,
    now: datetime,
    policy: LedgerPolicy = DEFAULT_POLICY,
) -> Decision:
    """
    Daily check-in: never on the holiday, once per calendar day, active only.

    The caller applies the reward; this function has no side effects.
    """

    if now.day == policy.holiday_day:
        return Decision.reject(RejectionKind.INELIGIBLE_WINDOW)
    if user.last_check_in is not None and user.last_check_in.date() == now.date():
        return Decision.reject(RejectionKind.ALREADY_ACTED_TODAY)
    if not user.is_active:
        return Decision.reject(RejectionKind.INACTIVE_ACCOUNT)
    return Decision.approve(policy.check_in_reward)


def can_purchase(user: Optional[User]) -> Decision:
    # No calendar window is enforced for purchases.
    if user is None:
        return Decision.reject(RejectionKind.NOT_REGISTERED)
    return Decision.approve()


def can_reactivate(user: Optional[User]) -> Decision:
    if user is None:
        return Decision.reject(RejectionKind.NOT_REGISTERED)
    return Decision.approve()


def can_start_withdrawal(
    user: User,
    withdrawals_this_month: Sequence[Withdraw],
    now: datetime,
    policy: LedgerPolicy = DEFAULT_POLICY,
) -> Decision:
    """
    Gate for opening a payout dialog.

    Approval carries the fixed amount for the first withdrawal of the month;
    for later withdrawals `amount` is None and the user chooses it.
    """

    if not policy.withdraw_window_start <= now.day <= policy.withdraw_window_end:
        return Decision.reject(RejectionKind.INELIGIBLE_WINDOW)
    if not user.is_active:
        return Decision.reject(RejectionKind.INACTIVE_ACCOUNT)
    if any(w.date.day == now.day for w in withdrawals_this_month):
        return Decision.reject(RejectionKind.LIMIT_EXCEEDED)
    if len(withdrawals_this_month) >= policy.withdraw_monthly_limit:
        return Decision.reject(RejectionKind.LIMIT_EXCEEDED)

    if not withdrawals_this_month:
        if user.balance < policy.withdraw_first_amount:
            return Decision.reject(RejectionKind.INSUFFICIENT_FUNDS)
        return Decision.approve(policy.withdraw_first_amount)

    return Decision.approve()


def can_withdraw_amount(
    user: User,
    amount: int,
    withdrawals_this_month: Sequence[Withdraw],
    policy: LedgerPolicy = DEFAULT_POLICY,
) -> Decision:
    """Validate a concrete amount against the bounds and the user's balance."""

    if not withdrawals_this_month:
        if amount != policy.withdraw_first_amount:
            return Decision.reject(RejectionKind.LIMIT_EXCEEDED)
    elif not policy.withdraw_min <= amount <= policy.withdraw_max:
        return Decision.reject(RejectionKind.LIMIT_EXCEEDED)

    if user.balance < amount:
        return Decision.reject(RejectionKind.INSUFFICIENT_FUNDS)
    return Decision.approve(amount)


def can_withdraw(
    user: User,
    amount: int,
    withdrawals_this_month: Sequence[Withdraw],
    now: datetime,
    policy: LedgerPolicy = DEFAULT_POLICY,
) -> Decision:
    """Composite rule evaluated right before the debit is applied."""

    decision = can_start_withdrawal(user, withdrawals_this_month, now, policy)
    if not decision.approved:
        return decision
    return can_withdraw_amount(user, amount, withdrawals_this_month, policy)


def can_move_referral_to_balance(
    user: User,
    policy: LedgerPolicy = DEFAULT_POLICY,
) -> Decision:
    if user.referral_balance < policy.referral_transfer_unit:
        return Decision.reject(RejectionKind.INSUFFICIENT_FUNDS)
    return Decision.approve(policy.referral_transfer_unit)
