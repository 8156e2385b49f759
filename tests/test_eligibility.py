import unittest
from datetime import datetime

from domain.eligibility import (
    can_check_in,
    can_move_referral_to_balance,
    can_purchase,
    can_reactivate,
    can_start_withdrawal,
    can_withdraw,
    can_withdraw_amount,
    month_bounds,
)
from domain.errors import RejectionKind
from domain.models import User, UserStatus, Withdraw


def _user(**kwargs) -> User:
    defaults = dict(
        uid=1,
        username="alice",
        status=UserStatus.ACTIVE,
        registration_date=datetime(2026, 1, 1),
    )
    defaults.update(kwargs)
    return User(**defaults)


def _withdraw(day: int, amount: int = 400) -> Withdraw:
    return Withdraw(
        uid=1,
        amount=amount,
        upi_id="x@y.com",
        name="John Smith",
        date=datetime(2026, 10, day, 9, 30),
    )


class CheckInRuleTests(unittest.TestCase):
    def test_active_user_may_check_in_and_gets_reward(self):
        decision = can_check_in(_user(), datetime(2026, 10, 10, 8))
        self.assertTrue(decision.approved)
        self.assertEqual(decision.amount, 40)

    def test_never_on_the_sixth(self):
        decision = can_check_in(_user(), datetime(2026, 11, 6, 8))
        self.assertEqual(decision.reason, RejectionKind.INELIGIBLE_WINDOW)

    def test_once_per_calendar_day(self):
        user = _user(last_check_in=datetime(2026, 10, 10, 0, 5))
        decision = can_check_in(user, datetime(2026, 10, 10, 23, 55))
        self.assertEqual(decision.reason, RejectionKind.ALREADY_ACTED_TODAY)

        # Less than 24 hours later but on the next calendar day.
        self.assertTrue(can_check_in(user, datetime(2026, 10, 11, 0, 1)).approved)

    def test_inactive_user_rejected(self):
        decision = can_check_in(_user(status=UserStatus.INACTIVE), datetime(2026, 10, 10))
        self.assertEqual(decision.reason, RejectionKind.INACTIVE_ACCOUNT)


class PurchaseRuleTests(unittest.TestCase):
    def test_registered_user_may_purchase_any_day(self):
        self.assertTrue(can_purchase(_user(status=UserStatus.INACTIVE)).approved)
        self.assertTrue(can_reactivate(_user()).approved)

    def test_unknown_user_rejected(self):
        self.assertEqual(can_purchase(None).reason, RejectionKind.NOT_REGISTERED)
        self.assertEqual(can_reactivate(None).reason, RejectionKind.NOT_REGISTERED)


class WithdrawalRuleTests(unittest.TestCase):
    def test_first_withdrawal_is_fixed_amount(self):
        decision = can_start_withdrawal(_user(balance=1000), [], datetime(2026, 10, 10))
        self.assertTrue(decision.approved)
        self.assertEqual(decision.amount, 400)

    def test_first_withdrawal_needs_400(self):
        decision = can_start_withdrawal(_user(balance=399), [], datetime(2026, 10, 10))
        self.assertEqual(decision.reason, RejectionKind.INSUFFICIENT_FUNDS)

    def test_window_is_day_2_to_25(self):
        user = _user(balance=1000)
        for day in (1, 26, 31):
            decision = can_start_withdrawal(user, [], datetime(2026, 10, day))
            self.assertEqual(decision.reason, RejectionKind.INELIGIBLE_WINDOW, day)
        for day in (2, 25):
            self.assertTrue(can_start_withdrawal(user, [], datetime(2026, 10, day)).approved)

    def test_inactive_user_rejected(self):
        user = _user(balance=1000, status=UserStatus.INACTIVE)
        decision = can_start_withdrawal(user, [], datetime(2026, 10, 10))
        self.assertEqual(decision.reason, RejectionKind.INACTIVE_ACCOUNT)

    def test_one_withdrawal_per_day(self):
        decision = can_start_withdrawal(
            _user(balance=1000), [_withdraw(10)], datetime(2026, 10, 10, 18)
        )
        self.assertEqual(decision.reason, RejectionKind.LIMIT_EXCEEDED)

    def test_two_withdrawals_per_month(self):
        decision = can_start_withdrawal(
            _user(balance=5000),
            [_withdraw(3), _withdraw(5, 700)],
            datetime(2026, 10, 10),
        )
        self.assertEqual(decision.reason, RejectionKind.LIMIT_EXCEEDED)

    def test_second_withdrawal_lets_user_choose(self):
        decision = can_start_withdrawal(_user(balance=100), [_withdraw(3)], datetime(2026, 10, 10))
        self.assertTrue(decision.approved)
        self.assertIsNone(decision.amount)

    def test_amount_bounds_and_balance(self):
        user = _user(balance=900)
        previous = [_withdraw(3)]
        self.assertTrue(can_withdraw_amount(user, 650, previous).approved)
        self.assertTrue(can_withdraw_amount(user, 900, previous).approved)
        self.assertEqual(
            can_withdraw_amount(user, 649, previous).reason, RejectionKind.LIMIT_EXCEEDED
        )
        self.assertEqual(
            can_withdraw_amount(user, 1101, previous).reason, RejectionKind.LIMIT_EXCEEDED
        )
        self.assertEqual(
            can_withdraw_amount(user, 1000, previous).reason, RejectionKind.INSUFFICIENT_FUNDS
        )

    def test_first_of_month_only_accepts_fixed_amount(self):
        user = _user(balance=5000)
        self.assertTrue(can_withdraw(user, 400, [], datetime(2026, 10, 10)).approved)
        self.assertEqual(
            can_withdraw(user, 700, [], datetime(2026, 10, 10)).reason,
            RejectionKind.LIMIT_EXCEEDED,
        )

    def test_month_bounds_wrap_year(self):
        start, end = month_bounds(datetime(2026, 12, 31, 23, 59))
        self.assertEqual(start, datetime(2026, 12, 1))
        self.assertEqual(end, datetime(2027, 1, 1))


class ReferralRuleTests(unittest.TestCase):
    def test_requires_100(self):
        self.assertEqual(
            can_move_referral_to_balance(_user(referral_balance=99)).reason,
            RejectionKind.INSUFFICIENT_FUNDS,
        )
        decision = can_move_referral_to_balance(_user(referral_balance=100))
        self.assertTrue(decision.approved)
        self.assertEqual(decision.amount, 100)


if __name__ == "__main__":
    unittest.main()
