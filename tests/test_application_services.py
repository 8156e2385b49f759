import threading
import unittest
from datetime import datetime, timedelta

from application.services import LedgerService, Menu, PaymentLinks
from application.sessions import SessionStore
from domain.errors import RejectionKind
from domain.models import Deposit, User, UserStatus, Withdraw

from fakes import InMemoryLedgerRepository

LINKS = PaymentLinks(
    payment_link="https://pay.example/plan",
    reactivation_payment_link="https://pay.example/reactivate",
    proof_form_link="https://forms.example/proof",
)


class LedgerServiceTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.now = datetime(2026, 10, 10, 12, 0)
        self.repo = InMemoryLedgerRepository()
        self.sessions = SessionStore(clock=lambda: self.now)
        self.service = LedgerService(
            self.repo, self.sessions, LINKS, clock=lambda: self.now
        )

    def add_user(self, uid=12345, username="alice", **kwargs) -> User:
        user = User(
            uid=uid,
            username=username,
            registration_date=datetime(2026, 1, 1),
            **kwargs,
        )
        self.repo.create_user(user)
        return user

    def stored(self, uid=12345) -> User:
        return self.repo.users[uid]


class RegistrationTests(LedgerServiceTestCase):
    def test_new_user_registers_inactive_with_zero_balance(self):
        result = self.service.start(1)
        self.assertTrue(result.success)

        result = self.service.handle_text(1, "alice")
        self.assertTrue(result.success)
        self.assertEqual(len(result.replies), 2)
        self.assertEqual(result.replies[-1].menu, Menu.MAIN)

        user = self.stored(1)
        self.assertEqual(user.username, "alice")
        self.assertEqual(user.balance, 0)
        self.assertEqual(user.status, UserStatus.INACTIVE)
        self.assertIsNone(user.referred_by)
        self.assertEqual(user.registration_date, self.now)
        self.assertEqual(len(self.sessions), 0)

    def test_duplicate_username_reprompts_and_keeps_referrer(self):
        self.add_user(uid=7, username="alice")
        self.service.start(1, "7")

        result = self.service.handle_text(1, "alice")
        self.assertFalse(result.success)
        self.assertEqual(result.rejection, RejectionKind.DUPLICATE_IDENTITY)
        self.assertNotIn(1, self.repo.users)

        result = self.service.handle_text(1, "bob")
        self.assertTrue(result.success)
        self.assertEqual(self.stored(1).referred_by, 7)
        self.assertEqual(self.repo.count_referrals(7), 1)

    def test_unknown_or_self_referrer_is_dropped(self):
        self.service.start(1, "999")
        self.service.handle_text(1, "alice")
        self.assertIsNone(self.stored(1).referred_by)

        self.service.start(2, "2")
        self.service.handle_text(2, "bob")
        self.assertIsNone(self.stored(2).referred_by)

    def test_registration_cap(self):
        for uid in range(1, 21):
            self.add_user(uid=uid, username=f"user{uid}")

        result = self.service.start(21)
        self.assertFalse(result.success)
        self.assertEqual(result.rejection, RejectionKind.CAPACITY_EXCEEDED)
        self.assertIsNone(self.service.handle_text(21, "newcomer"))
        self.assertEqual(self.repo.count_users(), 20)

    def test_cap_reached_while_choosing_username(self):
        for uid in range(1, 20):
            self.add_user(uid=uid, username=f"user{uid}")
        self.service.start(100)
        self.add_user(uid=20, username="user20")

        result = self.service.handle_text(100, "late")
        self.assertEqual(result.rejection, RejectionKind.CAPACITY_EXCEEDED)
        self.assertNotIn(100, self.repo.users)

    def test_registered_user_is_welcomed_back(self):
        self.add_user(uid=1)
        result = self.service.start(1)
        self.assertTrue(result.success)
        self.assertEqual(result.replies[0].menu, Menu.MAIN)
        self.assertEqual(len(self.sessions), 0)


class CheckInTests(LedgerServiceTestCase):
    def test_check_in_once_per_day(self):
        self.add_user(status=UserStatus.ACTIVE)

        result = self.service.check_in(12345)
        self.assertTrue(result.success)
        self.assertEqual(len(result.replies), 2)
        self.assertEqual(self.stored().balance, 40)
        self.assertEqual(self.stored().last_check_in, self.now)

        result = self.service.check_in(12345)
        self.assertEqual(result.rejection, RejectionKind.ALREADY_ACTED_TODAY)
        self.assertEqual(self.stored().balance, 40)

        self.now += timedelta(days=1)
        self.assertTrue(self.service.check_in(12345).success)
        self.assertEqual(self.stored().balance, 80)

    def test_no_check_in_on_holiday(self):
        self.add_user(status=UserStatus.ACTIVE)
        self.now = datetime(2026, 11, 6, 9)
        result = self.service.check_in(12345)
        self.assertEqual(result.rejection, RejectionKind.INELIGIBLE_WINDOW)
        self.assertEqual(self.stored().balance, 0)

    def test_inactive_and_unregistered(self):
        self.add_user()
        self.assertEqual(
            self.service.check_in(12345).rejection, RejectionKind.INACTIVE_ACCOUNT
        )
        self.assertEqual(self.service.check_in(1).rejection, RejectionKind.NOT_REGISTERED)

    def test_storage_failure_is_reported(self):
        self.add_user(status=UserStatus.ACTIVE)
        self.repo.fail_next = True
        result = self.service.check_in(12345)
        self.assertEqual(result.rejection, RejectionKind.STORAGE_FAILURE)
        self.assertEqual(self.stored().balance, 0)


class DepositFlowTests(LedgerServiceTestCase):
    def test_purchase_creates_pending_deposit(self):
        self.add_user(status=UserStatus.ACTIVE, balance=390)

        self.assertTrue(self.service.start_purchase(12345).success)
        self.assertTrue(self.service.handle_text(12345, "Starter Pack").success)
        result = self.service.handle_text(12345, "Proceed")

        self.assertTrue(result.success)
        self.assertIn(LINKS.payment_link, result.replies[0].text)
        self.assertTrue(result.replies[0].disable_preview)
        deposits = self.repo.find_deposits_by_user(12345)
        self.assertEqual(len(deposits), 1)
        self.assertEqual(deposits[0].amount, 390)
        self.assertFalse(deposits[0].is_reactivation)
        self.assertIsNone(self.service.handle_text(12345, "Proceed"))

    def test_reactivation_creates_150_deposit(self):
        self.add_user()
        self.service.start_reactivation(12345)
        self.assertIsNone(self.service.handle_text(12345, "Starter Pack"))
        self.service.handle_text(12345, "starter pack re-activate")
        result = self.service.handle_text(12345, "re-activate")

        self.assertIn(LINKS.reactivation_payment_link, result.replies[0].text)
        deposit = self.repo.find_deposits_by_user(12345)[0]
        self.assertEqual(deposit.amount, 150)
        self.assertTrue(deposit.is_reactivation)

    def test_only_four_newest_deposits_are_kept(self):
        self.add_user()
        for i in range(6):
            self.now += timedelta(minutes=1)
            self.service.start_purchase(12345)
            self.service.handle_text(12345, "starter pack")
            self.service.handle_text(12345, "proceed")

        deposits = self.repo.find_deposits_by_user(12345)
        self.assertEqual(len(deposits), 4)
        self.assertEqual(deposits[0].date, datetime(2026, 10, 10, 12, 3))

    def test_unrelated_text_is_ignored_mid_flow(self):
        self.add_user()
        self.service.start_purchase(12345)
        self.assertIsNone(self.service.handle_text(12345, "hello there"))
        self.assertIsNone(self.service.handle_text(12345, "proceed"))
        self.assertTrue(self.service.handle_text(12345, "starter pack").success)

    def test_text_without_session_is_noop(self):
        self.add_user()
        self.assertIsNone(self.service.handle_text(12345, "proceed"))
        self.assertIsNone(self.service.handle_text(999, "starter pack"))

    def test_expired_session_is_reported(self):
        self.add_user()
        self.service.start_purchase(12345)
        self.now += timedelta(hours=1)

        result = self.service.handle_text(12345, "starter pack")
        self.assertEqual(result.rejection, RejectionKind.SESSION_LOST)
        self.assertIsNone(self.service.handle_text(12345, "starter pack"))

    def test_any_text_sweeps_expired_sessions(self):
        self.add_user()
        self.add_user(uid=2, username="bob")
        self.service.start_purchase(12345)
        self.now += timedelta(hours=1)
        self.service.start_purchase(2)

        self.assertTrue(self.service.handle_text(2, "starter pack").success)
        self.assertEqual(len(self.sessions), 1)
        self.assertIsNone(self.service.handle_text(12345, "starter pack"))

    def test_purchase_requires_registration(self):
        result = self.service.start_purchase(1)
        self.assertEqual(result.rejection, RejectionKind.NOT_REGISTERED)
        self.assertEqual(len(self.sessions), 0)

    def test_deposit_history(self):
        self.add_user()
        self.assertTrue(self.service.deposit_history(12345).success)
        self.repo.create_deposit(
            Deposit(uid=12345, amount=390, date=self.now, is_reactivation=False)
        )
        result = self.service.deposit_history(12345)
        self.assertIn("₹390", result.replies[0].text)
        self.assertIn("Purchasing", result.replies[0].text)


class WithdrawalFlowTests(LedgerServiceTestCase):
    def pay_out(self, *texts):
        result = self.service.start_payout(12345)
        for text in texts:
            result = self.service.handle_text(12345, text)
        return result

    def test_first_withdrawal_of_month_is_400(self):
        self.add_user(status=UserStatus.ACTIVE, balance=1000)

        result = self.service.start_payout(12345)
        self.assertIn("₹400", result.replies[0].text)
        self.service.handle_text(12345, "x@y.com")
        result = self.service.handle_text(12345, "John Smith")

        self.assertTrue(result.success)
        self.assertEqual(self.stored().balance, 600)
        withdraw = self.repo.withdraws[0]
        self.assertEqual(withdraw.amount, 400)
        self.assertEqual(withdraw.upi_id, "x@y.com")
        self.assertEqual(withdraw.name, "John Smith")
        self.assertEqual(len(self.sessions), 0)

    def test_second_withdrawal_same_day_rejected(self):
        self.add_user(status=UserStatus.ACTIVE, balance=1000)
        self.pay_out("x@y.com", "John Smith")

        result = self.service.start_payout(12345)
        self.assertEqual(result.rejection, RejectionKind.LIMIT_EXCEEDED)
        self.assertIn("once per day", result.replies[0].text)
        self.assertEqual(self.stored().balance, 600)

    def test_second_withdrawal_of_month_chooses_amount(self):
        self.add_user(status=UserStatus.ACTIVE, balance=1400)
        self.pay_out("x@y.com", "John Smith")
        self.now += timedelta(days=1)

        self.service.start_payout(12345)
        result = self.service.handle_text(12345, "600")
        self.assertEqual(result.rejection, RejectionKind.LIMIT_EXCEEDED)
        result = self.service.handle_text(12345, "1200")
        self.assertEqual(result.rejection, RejectionKind.LIMIT_EXCEEDED)
        result = self.service.handle_text(12345, "1100")
        self.assertEqual(result.rejection, RejectionKind.INSUFFICIENT_FUNDS)

        self.service.handle_text(12345, "700")
        self.service.handle_text(12345, "john@upi")
        result = self.service.handle_text(12345, "John")
        self.assertTrue(result.success)
        self.assertEqual(self.stored().balance, 300)

        self.now += timedelta(days=1)
        result = self.service.start_payout(12345)
        self.assertEqual(result.rejection, RejectionKind.LIMIT_EXCEEDED)

    def test_outside_window_inactive_and_poor(self):
        self.add_user(status=UserStatus.ACTIVE, balance=399)
        self.assertEqual(
            self.service.start_payout(12345).rejection, RejectionKind.INSUFFICIENT_FUNDS
        )

        self.now = datetime(2026, 10, 26)
        self.assertEqual(
            self.service.start_payout(12345).rejection, RejectionKind.INELIGIBLE_WINDOW
        )

        self.add_user(uid=2, username="bob", balance=1000)
        self.now = datetime(2026, 10, 10)
        self.assertEqual(
            self.service.start_payout(2).rejection, RejectionKind.INACTIVE_ACCOUNT
        )
        self.assertEqual(len(self.sessions), 0)

    def test_balance_spent_mid_dialog_is_rechecked(self):
        self.add_user(status=UserStatus.ACTIVE, balance=1000)
        self.service.start_payout(12345)
        self.service.handle_text(12345, "x@y.com")
        self.repo.users[12345].balance = 100

        result = self.service.handle_text(12345, "John Smith")
        self.assertEqual(result.rejection, RejectionKind.INSUFFICIENT_FUNDS)
        self.assertEqual(self.stored().balance, 100)
        self.assertEqual(self.repo.withdraws, [])

    def test_storage_failure_leaves_no_debit(self):
        self.add_user(status=UserStatus.ACTIVE, balance=1000)
        self.service.start_payout(12345)
        self.service.handle_text(12345, "x@y.com")
        self.repo.fail_next = True

        result = self.service.handle_text(12345, "John Smith")
        self.assertEqual(result.rejection, RejectionKind.STORAGE_FAILURE)
        self.assertEqual(self.stored().balance, 1000)
        self.assertEqual(self.repo.withdraws, [])

    def test_withdraw_history_shows_newest_four(self):
        self.add_user()
        self.assertTrue(self.service.withdraw_history(12345).success)
        for day in range(1, 7):
            self.repo.create_withdraw(
                Withdraw(
                    uid=12345,
                    amount=100 * day,
                    upi_id="x@y.com",
                    name="A",
                    date=datetime(2026, 9, day),
                )
            )
        text = self.service.withdraw_history(12345).replies[0].text
        self.assertIn("₹600", text)
        self.assertNotIn("₹200", text)


class AccountViewTests(LedgerServiceTestCase):
    def test_move_to_balance(self):
        self.add_user(referral_balance=150)

        result = self.service.move_to_balance(12345)
        self.assertTrue(result.success)
        self.assertEqual(self.stored().referral_balance, 50)
        self.assertEqual(self.stored().balance, 100)

        result = self.service.move_to_balance(12345)
        self.assertEqual(result.rejection, RejectionKind.INSUFFICIENT_FUNDS)
        self.assertEqual(self.stored().referral_balance, 50)

    def test_affiliate_shows_referrals_and_button(self):
        self.add_user(referral_balance=60)
        self.add_user(uid=2, username="bob", referred_by=12345)

        result = self.service.affiliate(12345, "grow_bot", "alice_tg")
        reply = result.replies[0]
        self.assertIn("https://t.me/grow\\_bot?start=12345", reply.text)
        self.assertIn("*1*", reply.text)
        self.assertEqual(reply.buttons[0].owner_uid, 12345)

    def test_balance_and_profile(self):
        self.add_user(balance=250, status=UserStatus.ACTIVE)
        self.assertIn("₹250", self.service.balance(12345).replies[0].text)
        text = self.service.profile(12345).replies[0].text
        self.assertIn("12345", text)
        self.assertIn("Active", text)
        self.assertIn("01 Jan 2026", text)

    def test_views_require_registration(self):
        for action in (
            self.service.balance,
            self.service.profile,
            self.service.move_to_balance,
            self.service.deposit_history,
            self.service.withdraw_history,
            self.service.start_payout,
        ):
            self.assertEqual(action(1).rejection, RejectionKind.NOT_REGISTERED)

    def test_username_is_escaped_for_markdown(self):
        self.add_user(username="a\\b_c*")
        text = self.service.balance(12345).replies[0].text
        self.assertIn("*a\\b\\_c\\**", text)


class ConcurrencyTests(LedgerServiceTestCase):
    def run_concurrently(self, action, count=10):
        barrier = threading.Barrier(count)
        results = []

        def worker():
            barrier.wait()
            results.append(action())

        threads = [threading.Thread(target=worker) for _ in range(count)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)
        return results

    def test_concurrent_check_ins_credit_once(self):
        self.add_user(status=UserStatus.ACTIVE)

        results = self.run_concurrently(lambda: self.service.check_in(12345))

        self.assertEqual(len(results), 10)
        self.assertEqual(sum(1 for r in results if r.success), 1)
        self.assertEqual(self.stored().balance, 40)
        self.assertEqual(len(self.service._locks), 0)

    def test_double_submitted_withdrawal_debits_once(self):
        self.add_user(status=UserStatus.ACTIVE, balance=1000)
        self.service.start_payout(12345)
        self.service.handle_text(12345, "x@y.com")

        results = self.run_concurrently(
            lambda: self.service.handle_text(12345, "John Smith"), count=2
        )

        completed = [r for r in results if r is not None]
        self.assertEqual(len(completed), 1)
        self.assertTrue(completed[0].success)
        self.assertEqual(self.stored().balance, 600)
        self.assertEqual(len(self.repo.withdraws), 1)

    def test_unknown_users_leave_no_locks_behind(self):
        for uid in range(500):
            self.service.balance(uid)
        self.assertEqual(len(self.service._locks), 0)


if __name__ == "__main__":
    unittest.main()
