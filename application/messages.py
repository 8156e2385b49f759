from __future__ import annotations

from typing import Any, Iterable, Optional

from domain.errors import RejectionKind
from domain.models import Deposit, User, Withdraw
from domain.policy import LedgerPolicy

MARKDOWN = "Markdown"

_MARKDOWN_SPECIAL = ("_", "*", "`", "[")


def escape_markdown(value: Any) -> str:
    """Escape user-provided text for Telegram's legacy Markdown mode."""

    text = str(value)
    for char in _MARKDOWN_SPECIAL:
        text = text.replace(char, "\\" + char)
    return text


NOT_REGISTERED = "❌ You are not registered! Send /start to register."
STORAGE_FAILURE = "⚠️ An unexpected error occurred. Please try again later."
SESSION_LOST = "⚠️ Your session expired. Please start again from the menu."
CAPACITY_EXCEEDED = "🚫 Registration limit reached! Only {cap} users can join this bot."
ASK_USERNAME = "📝 Please enter a unique username:"
USERNAME_TAKEN = "❌ This username is already taken. Please enter another one:"
WELCOME_BACK = "👋 Welcome back! Use the menu below to navigate."
MAIN_MENU = "🏠 *Main Menu:*"


def registered(username: str) -> str:
    return (
        f"🎉 Welcome, *{escape_markdown(username)}*! "
        "Your account has been registered successfully."
    )


# Check-in

CHECK_IN_HOLIDAY = "❌ No rewards on the {day}th of every month. 🚫💰\n\n🔄 Come back tomorrow! ⏳😊"
CHECK_IN_ALREADY = "✅ You have already checked in today. Come back tomorrow!"
CHECK_IN_INACTIVE = "Your account is inactive ❎. Purchase a plan to activate your account ☺️"


def check_in_success(reward: int) -> str:
    return (
        "✅ *You have successfully checked in!* 🎉\n\n"
        f"💰 Your balance has been increased by *+₹{reward}*. 📈\n\n"
        "🔄 *Come back tomorrow to check-in again!* ⏳😊"
    )


def updated_balance(balance: int) -> str:
    return (
        f"💵 *Your updated balance is now: ₹{balance}* 🎊🚀\n\n"
        "🔹 Keep checking in daily to earn more rewards! 🎁"
    )


# Purchase / re-activation


def ask_plan(username: str, plan_name: str) -> str:
    return (
        f"Hello {escape_markdown(username)} 👋,\n"
        "🚀 Good luck on your investment journey! 💰📈\n\n"
        "💡 Type the plan you want to purchase ⬇️✨\n\n"
        f"Available Plans => *{plan_name}*"
    )


def ask_reactivation_plan(username: str, plan_name: str) -> str:
    return (
        f"Hello {escape_markdown(username)} 👋,\n"
        "🔄 Ready to continue your investment journey? 💰📈\n\n"
        "💡 Type the plan you want to re-activate ⬇️✨\n\n"
        f"Available Plans => *{plan_name}*"
    )


def ask_proceed(price: int) -> str:
    return f"💰 You need to deposit ₹{price} to continue.\n🔗 Type *Proceed* to get the payment link. ✅"


def ask_reactivate(price: int) -> str:
    return (
        f"💰 You need to deposit ₹{price} to re-activate your plan.\n\n"
        "🔗 Type *Re-Activate* to get the payment link. ✅"
    )


def payment_instructions(payment_link: str, form_link: str) -> str:
    return (
        "💳 *Payment Instructions:*\n\n"
        "1️⃣ Click the link below to complete your deposit:\n"
        f"🔗 Payment Link:\n{escape_markdown(payment_link)}\n\n"
        "2️⃣ After payment, submit your payment proof here:\n"
        f"📝 Google Form Link:\n{escape_markdown(form_link)}\n\n"
        "3️⃣ Your account will be activated within *24-48 hours* after verification. ✅"
    )


def reactivation_instructions(price: int, payment_link: str, form_link: str) -> str:
    return (
        "💳 *Re-activation Payment Instructions:*\n\n"
        f"1️⃣ Click the link below to complete your ₹{price} payment:\n"
        f"🔗 Payment Link:\n{escape_markdown(payment_link)}\n\n"
        "2️⃣ After payment, submit your payment proof here:\n"
        f"📝 Google Form Link:\n{escape_markdown(form_link)}\n\n"
        "3️⃣ Your plan will be reactivated within *24-48 hours* after verification. ✅"
    )


NO_DEPOSITS = "❌ No deposit records found."


def deposit_history(deposits: Iterable[Deposit]) -> str:
    lines = ["📂 *Your Deposit History:*", ""]
    for deposit in deposits:
        lines.append(f"💰 *Amount:* ₹{deposit.amount}")
        lines.append(f"📅 *Date:* {deposit.date:%Y-%m-%d}")
        lines.append(f"✅ *Status:* {deposit.status.value.capitalize()}")
        lines.append(
            f"🔄 *Type:* {'Re-activating' if deposit.is_reactivation else 'Purchasing'}"
        )
        lines.append("-------------------------")
    return "\n".join(lines)


# Withdrawal


def withdraw_rejection(
    kind: RejectionKind,
    policy: LedgerPolicy,
    *,
    same_day: bool = False,
    amount: Optional[int] = None,
) -> str:
    if kind == RejectionKind.INELIGIBLE_WINDOW:
        return (
            f"❌ Withdrawals are allowed only from the {policy.withdraw_window_start}nd "
            f"to {policy.withdraw_window_end}th of each month."
        )
    if kind == RejectionKind.INACTIVE_ACCOUNT:
        return "❌ Your account is inactive. Purchase a plan to activate withdrawals!"
    if kind == RejectionKind.LIMIT_EXCEEDED and same_day:
        return "❌ You can only withdraw once per day. Try again tomorrow!"
    if kind == RejectionKind.LIMIT_EXCEEDED:
        return (
            f"❌ You have reached the limit of {policy.withdraw_monthly_limit} "
            "withdrawals per month."
        )
    if kind == RejectionKind.INSUFFICIENT_FUNDS:
        return f"❌ Insufficient balance! Minimum required: ₹{amount or policy.withdraw_first_amount}."
    return STORAGE_FAILURE


def eligible_fixed_amount(amount: int) -> str:
    return f"You are eligible to withdraw ₹{amount}. Enter your UPI ID 🔢💳."


def ask_amount(policy: LedgerPolicy) -> str:
    return f"Enter the amount to withdraw (₹{policy.withdraw_min} - ₹{policy.withdraw_max}) 🤑."


def invalid_amount(policy: LedgerPolicy) -> str:
    return f"❌ Enter a valid amount between ₹{policy.withdraw_min} - ₹{policy.withdraw_max}."


INSUFFICIENT_BALANCE = "❌ Insufficient balance!"
ASK_UPI = "Enter your UPI ID 🔢💳."
ASK_PAYEE_NAME = "Enter your name as per UPI ID 📝✨."
WITHDRAW_SUCCESS = "🎉 Withdrawal Successful! Your request will be processed within 24-72 hours."
NO_WITHDRAWALS = "❌ No withdrawal history found."


def withdraw_history(withdrawals: Iterable[Withdraw]) -> str:
    lines = ["📂 *Your Withdrawal History:*", ""]
    for withdraw in withdrawals:
        lines.append(f"💰 *Amount:* ₹{withdraw.amount}")
        lines.append(f"📅 *Date:* {withdraw.date:%Y-%m-%d}")
        lines.append(f"🔄 *Status:* {withdraw.status.value}")
        lines.append("💳 *Type:* UPI")
        lines.append("------------------------")
    return "\n".join(lines)


# Account views


def balance(user: User) -> str:
    return (
        f"Hey *{escape_markdown(user.username)}*! 👋😊💰\n\n"
        "✨ *Your Current Balance* ✨\n"
        f"💵📈 ₹{user.balance}"
    )


def affiliate(
    handle: str,
    referrals: int,
    earnings: int,
    referral_link: str,
    policy: LedgerPolicy,
) -> str:
    return (
        f"👥 *Hello {escape_markdown(handle)}!* \n\n🌟 *Refer & Earn!* 🌟\n\n"
        f"📌 You have referred: *{referrals}* users\n"
        f"💰 Earnings from referrals: *₹{earnings}*\n\n"
        f"📢 Share your referral link and earn rewards:\n🔗 {escape_markdown(referral_link)}\n\n"
        f"*💵 Earn ₹{policy.referral_reward} for each friend who activates their account!* 🎉\n\n"
        f"⚠️ *Minimum ₹{policy.referral_transfer_unit} is required to move to balance. 💰🔻*"
    )


MOVE_TO_BALANCE_BUTTON = "🔄 Move to Balance"


def moved_to_balance(unit: int) -> str:
    return f"✅ ₹{unit} has been moved to your balance successfully!"


def move_insufficient(unit: int) -> str:
    return f"❌ You need at least ₹{unit} in referral earnings to move to balance!"


def profile(user: User) -> str:
    status = "✅ Active" if user.is_active else "❌ Inactive"
    member_since = (
        user.registration_date.strftime("%d %b %Y") if user.registration_date else "Unknown"
    )
    return (
        "👤 *Your Profile* 📌\n\n"
        f"👤 *Username:* {escape_markdown(user.username) or 'N/A'}\n"
        f"🆔 *UID:* {user.uid}\n"
        f"📌 *Status:* {status}\n"
        f"📅 *Member since:* {member_since}"
    )
