from __future__ import annotations

import functools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Sequence

from domain import eligibility
from domain.errors import (
    DuplicateIdentityError,
    InsufficientFundsError,
    RejectionKind,
    SessionLostError,
    StorageError,
)
from domain.models import Deposit, User, UserStatus, Withdraw
from domain.policy import DEFAULT_POLICY, LedgerPolicy
from domain.repositories import LedgerRepository

from . import messages
from .dialogs import (
    DialogSession,
    Flow,
    Step,
    advance,
    parse_input,
    purchase_session,
    reactivation_session,
    registration_session,
    withdrawal_session,
)
from .sessions import SessionStore, UserLocks

logger = logging.getLogger(__name__)

MOVE_TO_BALANCE = "move_to_balance"


class Menu(str, Enum):
    """Keyboards the transport should show alongside a reply."""

    MAIN = "main"
    DEPOSIT = "deposit"
    PURCHASE = "purchase"
    WITHDRAW = "withdraw"


@dataclass
class Button:
    """An inline action button; `owner_uid` is the only user allowed to press it."""

    label: str
    action: str
    owner_uid: int


@dataclass
class Reply:
    """
    A single outbound message.

    The application layer never depends on concrete SDK types; the transport
    maps `menu` and `buttons` to its own keyboard objects.
    """

    text: str
    parse_mode: Optional[str] = None
    menu: Optional[Menu] = None
    buttons: List[Button] = field(default_factory=list)
    disable_preview: bool = False


@dataclass
class ActionResult:
    """Generic result type for user-triggered actions."""

    success: bool
    replies: List[Reply] = field(default_factory=list)
    rejection: Optional[RejectionKind] = None

    @classmethod
    def ok(cls, *replies: Reply) -> "ActionResult":
        return cls(success=True, replies=list(replies))

    @classmethod
    def rejected(cls, kind: RejectionKind, text: str, **reply_kwargs) -> "ActionResult":
        return cls(success=False, replies=[Reply(text, **reply_kwargs)], rejection=kind)


@dataclass
class PaymentLinks:
    payment_link: str
    reactivation_payment_link: str
    proof_form_link: str


def _serialized(method: Callable) -> Callable:
    """
    Run a per-user action under that user's lock.

    Storage failures are logged and turned into a "try again later" reply;
    repositories guarantee nothing was partially committed.
    """

    @functools.wraps(method)
    def wrapper(self: "LedgerService", uid: int, *args, **kwargs):
        with self._locks.hold(uid):
            try:
                return method(self, uid, *args, **kwargs)
            except StorageError:
                logger.exception("Storage failure in %s for user %s", method.__name__, uid)
                return ActionResult.rejected(
                    RejectionKind.STORAGE_FAILURE, messages.STORAGE_FAILURE
                )

    return wrapper


def _not_registered() -> ActionResult:
    return ActionResult.rejected(
        RejectionKind.NOT_REGISTERED, messages.NOT_REGISTERED, menu=Menu.MAIN
    )


class LedgerService:
    """
    Orchestrates every user-facing action.

    Each public method loads the user, consults the eligibility rules,
    optionally drives the dialog state machine and performs at most one
    ledger mutation. Calls for the same user are serialised.
    """

    def __init__(
        self,
        repo: LedgerRepository,
        sessions: SessionStore,
        links: PaymentLinks,
        policy: LedgerPolicy = DEFAULT_POLICY,
        clock: Callable[[], datetime] = datetime.now,
        locks: Optional[UserLocks] = None,
    ) -> None:
        self._repo = repo
        self._sessions = sessions
        self._links = links
        self._policy = policy
        self._clock = clock
        self._locks = locks or UserLocks()

    # Registration

    def _parse_referrer(self, uid: int, payload: Optional[str]) -> Optional[int]:
        if not payload or not payload.strip().isdigit():
            return None
        referrer_uid = int(payload.strip())
        if referrer_uid == uid:
            return None
        if self._repo.find_user_by_id(referrer_uid) is None:
            logger.debug("Ignoring unknown referrer %s for user %s", referrer_uid, uid)
            return None
        return referrer_uid

    @_serialized
    def start(self, uid: int, payload: Optional[str] = None) -> ActionResult:
        """Entry point of the bot: welcome back a member or open registration."""

        self._sessions.purge_expired()

        if self._repo.find_user_by_id(uid) is not None:
            return ActionResult.ok(Reply(messages.WELCOME_BACK, menu=Menu.MAIN))

        if self._repo.count_users() >= self._policy.registration_cap:
            return ActionResult.rejected(
                RejectionKind.CAPACITY_EXCEEDED,
                messages.CAPACITY_EXCEEDED.format(cap=self._policy.registration_cap),
            )

        referrer_uid = self._parse_referrer(uid, payload)
        self._sessions.put(registration_session(uid, referrer_uid))
        return ActionResult.ok(Reply(messages.ASK_USERNAME))

    def _complete_registration(self, session: DialogSession) -> ActionResult:
        uid = session.uid
        username = session.username or ""

        if self._repo.count_users() >= self._policy.registration_cap:
            self._sessions.clear(uid)
            return ActionResult.rejected(
                RejectionKind.CAPACITY_EXCEEDED,
                messages.CAPACITY_EXCEEDED.format(cap=self._policy.registration_cap),
            )

        # The session stays open so the user can pick another name.
        if self._repo.find_user_by_username(username) is not None:
            self._sessions.put(session)
            return ActionResult.rejected(
                RejectionKind.DUPLICATE_IDENTITY, messages.USERNAME_TAKEN
            )

        user = User(
            uid=uid,
            username=username,
            referred_by=session.referrer_uid,
            status=UserStatus.INACTIVE,
            registration_date=self._clock(),
        )
        try:
            self._repo.create_user(user)
        except DuplicateIdentityError:
            if self._repo.find_user_by_id(uid) is not None:
                self._sessions.clear(uid)
                return ActionResult.ok(Reply(messages.WELCOME_BACK, menu=Menu.MAIN))
            self._sessions.put(session)
            return ActionResult.rejected(
                RejectionKind.DUPLICATE_IDENTITY, messages.USERNAME_TAKEN
            )

        self._sessions.clear(uid)
        logger.info("Registered user %s as %r (referrer=%s)", uid, username, user.referred_by)
        return ActionResult.ok(
            Reply(messages.registered(username), parse_mode=messages.MARKDOWN),
            Reply(messages.MAIN_MENU, parse_mode=messages.MARKDOWN, menu=Menu.MAIN),
        )

    # Free-text input

    @_serialized
    def handle_text(self, uid: int, text: str) -> Optional[ActionResult]:
        """
        Feed free text to the user's dialog.

        Returns None when there is no dialog or the text is not what the
        current step expects; the session is then left untouched.
        """

        try:
            session = self._sessions.get(uid)
        except SessionLostError:
            logger.info("Dialog session of user %s expired", uid)
            return ActionResult.rejected(
                RejectionKind.SESSION_LOST, messages.SESSION_LOST, menu=Menu.MAIN
            )
        finally:
            self._sessions.purge_expired()
        if session is None:
            return None

        value = parse_input(session, text, self._policy)
        if value is None:
            return None

        if session.flow == Flow.REGISTRATION:
            advance(session, value)
            return self._complete_registration(session)

        user = self._repo.find_user_by_id(uid)
        if user is None:
            self._sessions.clear(uid)
            return _not_registered()

        if session.flow in (Flow.PURCHASE, Flow.REACTIVATION):
            return self._continue_deposit(session, value)
        return self._continue_withdrawal(user, session, value)

    # Check-in

    @_serialized
    def check_in(self, uid: int) -> ActionResult:
        user = self._repo.find_user_by_id(uid)
        if user is None:
            return _not_registered()

        now = self._clock()
        decision = eligibility.can_check_in(user, now, self._policy)
        if not decision.approved:
            logger.debug("Check-in of user %s rejected: %s", uid, decision.reason)
            text = {
                RejectionKind.INELIGIBLE_WINDOW: messages.CHECK_IN_HOLIDAY.format(
                    day=self._policy.holiday_day
                ),
                RejectionKind.ALREADY_ACTED_TODAY: messages.CHECK_IN_ALREADY,
                RejectionKind.INACTIVE_ACCOUNT: messages.CHECK_IN_INACTIVE,
            }[decision.reason]
            return ActionResult.rejected(
                decision.reason, text, parse_mode=messages.MARKDOWN, menu=Menu.MAIN
            )

        user.balance += decision.amount
        user.last_check_in = now
        self._repo.save_user(user)
        logger.info("User %s checked in, balance=%s", uid, user.balance)

        return ActionResult.ok(
            Reply(messages.check_in_success(decision.amount), parse_mode=messages.MARKDOWN),
            Reply(messages.updated_balance(user.balance), parse_mode=messages.MARKDOWN),
        )

    # Purchase / re-activation

    @_serialized
    def start_purchase(self, uid: int) -> ActionResult:
        user = self._repo.find_user_by_id(uid)
        if not eligibility.can_purchase(user).approved:
            return _not_registered()

        self._sessions.put(purchase_session(uid))
        return ActionResult.ok(
            Reply(
                messages.ask_plan(user.username, self._policy.plan_name),
                parse_mode=messages.MARKDOWN,
            )
        )

    @_serialized
    def start_reactivation(self, uid: int) -> ActionResult:
        user = self._repo.find_user_by_id(uid)
        if not eligibility.can_reactivate(user).approved:
            return _not_registered()

        self._sessions.put(reactivation_session(uid))
        return ActionResult.ok(
            Reply(
                messages.ask_reactivation_plan(
                    user.username, self._policy.reactivation_plan_name
                ),
                parse_mode=messages.MARKDOWN,
            )
        )

    def _continue_deposit(self, session: DialogSession, value) -> ActionResult:
        reactivation = session.flow == Flow.REACTIVATION

        if not advance(session, value):
            self._sessions.put(session)
            if reactivation:
                text = messages.ask_reactivate(self._policy.reactivation_price)
            else:
                text = messages.ask_proceed(self._policy.plan_price)
            return ActionResult.ok(Reply(text, parse_mode=messages.MARKDOWN))

        amount = self._policy.reactivation_price if reactivation else self._policy.plan_price
        deposit = self._repo.add_deposit(
            Deposit(
                uid=session.uid,
                amount=amount,
                date=self._clock(),
                is_reactivation=reactivation,
            ),
            retain=self._policy.deposit_retention,
        )
        self._sessions.clear(session.uid)
        logger.info(
            "Created deposit %s for user %s (amount=%s, reactivation=%s)",
            deposit.id,
            session.uid,
            amount,
            reactivation,
        )

        if reactivation:
            text = messages.reactivation_instructions(
                amount,
                self._links.reactivation_payment_link,
                self._links.proof_form_link,
            )
        else:
            text = messages.payment_instructions(
                self._links.payment_link, self._links.proof_form_link
            )
        return ActionResult.ok(
            Reply(text, parse_mode=messages.MARKDOWN, disable_preview=True)
        )

    @_serialized
    def deposit_history(self, uid: int) -> ActionResult:
        if self._repo.find_user_by_id(uid) is None:
            return _not_registered()

        deposits = self._repo.find_deposits_by_user(uid)
        if not deposits:
            return ActionResult.ok(Reply(messages.NO_DEPOSITS))
        return ActionResult.ok(
            Reply(messages.deposit_history(deposits), parse_mode=messages.MARKDOWN)
        )

    # Withdrawal

    def _withdrawals_this_month(self, uid: int, now: datetime) -> List[Withdraw]:
        start, end = eligibility.month_bounds(now)
        return self._repo.find_withdraws_by_user_in_range(uid, start, end)

    def _withdraw_rejected(
        self,
        decision: eligibility.Decision,
        withdrawals: Sequence[Withdraw],
        now: datetime,
        amount: Optional[int] = None,
    ) -> ActionResult:
        same_day = any(w.date.day == now.day for w in withdrawals)
        return ActionResult.rejected(
            decision.reason,
            messages.withdraw_rejection(
                decision.reason, self._policy, same_day=same_day, amount=amount
            ),
        )

    @_serialized
    def start_payout(self, uid: int) -> ActionResult:
        user = self._repo.find_user_by_id(uid)
        if user is None:
            return _not_registered()

        now = self._clock()
        withdrawals = self._withdrawals_this_month(uid, now)
        decision = eligibility.can_start_withdrawal(user, withdrawals, now, self._policy)
        if not decision.approved:
            logger.debug("Payout of user %s rejected: %s", uid, decision.reason)
            return self._withdraw_rejected(decision, withdrawals, now)

        self._sessions.put(withdrawal_session(uid, decision.amount))
        if decision.amount is not None:
            return ActionResult.ok(Reply(messages.eligible_fixed_amount(decision.amount)))
        return ActionResult.ok(Reply(messages.ask_amount(self._policy)))

    def _continue_withdrawal(self, user: User, session: DialogSession, value) -> ActionResult:
        now = self._clock()

        if session.step == Step.AWAITING_AMOUNT:
            withdrawals = self._withdrawals_this_month(user.uid, now)
            decision = eligibility.can_withdraw_amount(
                user, int(value), withdrawals, self._policy
            )
            if decision.reason == RejectionKind.LIMIT_EXCEEDED:
                return ActionResult.rejected(
                    decision.reason, messages.invalid_amount(self._policy)
                )
            if decision.reason == RejectionKind.INSUFFICIENT_FUNDS:
                return ActionResult.rejected(decision.reason, messages.INSUFFICIENT_BALANCE)

        if not advance(session, value):
            self._sessions.put(session)
            if session.step == Step.AWAITING_UPI:
                return ActionResult.ok(Reply(messages.ASK_UPI))
            return ActionResult.ok(Reply(messages.ASK_PAYEE_NAME))

        # Terminal step: re-check everything under the lock before debiting.
        self._sessions.clear(user.uid)
        withdrawals = self._withdrawals_this_month(user.uid, now)
        decision = eligibility.can_withdraw(
            user, session.amount, withdrawals, now, self._policy
        )
        if not decision.approved:
            logger.info("Withdrawal of user %s rejected at completion: %s", user.uid, decision.reason)
            return self._withdraw_rejected(decision, withdrawals, now, session.amount)

        withdraw = Withdraw(
            uid=user.uid,
            amount=session.amount,
            upi_id=session.upi_id,
            name=session.name,
            date=now,
        )
        try:
            updated = self._repo.record_withdrawal(withdraw)
        except InsufficientFundsError:
            return ActionResult.rejected(
                RejectionKind.INSUFFICIENT_FUNDS, messages.INSUFFICIENT_BALANCE
            )

        logger.info(
            "Recorded withdrawal of %s for user %s, balance=%s",
            withdraw.amount,
            user.uid,
            updated.balance,
        )
        return ActionResult.ok(Reply(messages.WITHDRAW_SUCCESS))

    @_serialized
    def withdraw_history(self, uid: int) -> ActionResult:
        if self._repo.find_user_by_id(uid) is None:
            return _not_registered()

        withdrawals = self._repo.find_withdraws_by_user(
            uid, sort_desc=True, limit=self._policy.withdraw_history_size
        )
        if not withdrawals:
            return ActionResult.ok(Reply(messages.NO_WITHDRAWALS))
        return ActionResult.ok(
            Reply(messages.withdraw_history(withdrawals), parse_mode=messages.MARKDOWN)
        )

    # Account views

    @_serialized
    def balance(self, uid: int) -> ActionResult:
        user = self._repo.find_user_by_id(uid)
        if user is None:
            return _not_registered()
        return ActionResult.ok(Reply(messages.balance(user), parse_mode=messages.MARKDOWN))

    @_serialized
    def affiliate(
        self,
        uid: int,
        bot_username: str,
        handle: Optional[str] = None,
    ) -> ActionResult:
        user = self._repo.find_user_by_id(uid)
        if user is None:
            return _not_registered()

        referrals = self._repo.count_referrals(uid)
        link = f"https://t.me/{bot_username}?start={uid}"
        text = messages.affiliate(
            handle or f"user{uid}",
            referrals,
            user.referral_balance,
            link,
            self._policy,
        )
        button = Button(messages.MOVE_TO_BALANCE_BUTTON, MOVE_TO_BALANCE, uid)
        return ActionResult.ok(
            Reply(
                text,
                parse_mode=messages.MARKDOWN,
                buttons=[button],
                disable_preview=True,
            )
        )

    @_serialized
    def move_to_balance(self, uid: int) -> ActionResult:
        user = self._repo.find_user_by_id(uid)
        if user is None:
            return _not_registered()

        decision = eligibility.can_move_referral_to_balance(user, self._policy)
        if not decision.approved:
            return ActionResult.rejected(
                decision.reason,
                messages.move_insufficient(self._policy.referral_transfer_unit),
            )

        user.referral_balance -= decision.amount
        user.balance += decision.amount
        self._repo.save_user(user)
        logger.info(
            "Moved %s from referral balance of user %s (referral=%s, balance=%s)",
            decision.amount,
            uid,
            user.referral_balance,
            user.balance,
        )
        return ActionResult.ok(Reply(messages.moved_to_balance(decision.amount)))

    @_serialized
    def profile(self, uid: int) -> ActionResult:
        user = self._repo.find_user_by_id(uid)
        if user is None:
            return _not_registered()
        return ActionResult.ok(Reply(messages.profile(user), parse_mode=messages.MARKDOWN))
