from __future__ import annotations

from typing import Dict, List

from telebot.types import ReplyKeyboardMarkup

from application.messages import escape_markdown
from application.services import Menu
from domain.policy import DEFAULT_POLICY, LedgerPolicy

# Reply keyboard button labels; the handlers match on these exact texts.
CHECK_IN = "✅ Check-in"
ABOUT = "ℹ️ About"
DEPOSIT = "💰 Deposit"
WITHDRAW = "📤 Withdraw"
BALANCE = "📊 Balance"
AFFILIATE = "👥 Affiliate"
PROFILE = "📌 Profile"

DEPOSIT_RULES = "📜 Rules"
PLANS = "📊 Plans"
PURCHASE = "💳 Purchase"
DEPOSIT_HISTORY = "📂 Deposit History"
BACK_TO_MAIN = "⬅ Back to Main Menu"

PURCHASE_PLAN = "🆕 Purchase Plan"
REACTIVATE_PLAN = "🔄 Re-activate Plan"
BACK_TO_DEPOSIT = "⬅ Back to Deposit"

WITHDRAW_RULES = "📜 Withdraw Rules"
PAYOUT = "💰 Payout"
WITHDRAW_HISTORY = "📂 Withdraw History"

_LAYOUTS: Dict[Menu, List[List[str]]] = {
    Menu.MAIN: [
        [CHECK_IN, ABOUT],
        [DEPOSIT, WITHDRAW],
        [BALANCE, AFFILIATE],
        [PROFILE],
    ],
    Menu.DEPOSIT: [
        [DEPOSIT_RULES, PLANS],
        [PURCHASE, DEPOSIT_HISTORY],
        [BACK_TO_MAIN],
    ],
    Menu.PURCHASE: [
        [PURCHASE_PLAN, REACTIVATE_PLAN],
        [BACK_TO_DEPOSIT],
    ],
    Menu.WITHDRAW: [
        [WITHDRAW_RULES, PAYOUT],
        [WITHDRAW_HISTORY],
        [BACK_TO_MAIN],
    ],
}


def build_keyboard(menu: Menu) -> ReplyKeyboardMarkup:
    markup = ReplyKeyboardMarkup(resize_keyboard=True, one_time_keyboard=False)
    for row in _LAYOUTS[menu]:
        markup.row(*row)
    return markup


def about_text(support_email: str, policy: LedgerPolicy = DEFAULT_POLICY) -> str:
    return (
        "ℹ️ *About TSHM\\_GROW* ℹ️\n\n"
        "📌 *How It Works:*\n"
        f"- Deposit ₹{policy.plan_price} and earn ₹{policy.check_in_reward} daily.\n"
        "- Withdraw your earnings anytime after reaching the requirements.\n"
        "- Refer friends and earn additional rewards.\n\n"
        "💼 *Features:*\n"
        "✔ Secure transactions\n"
        "✔ Fast withdrawals\n"
        "✔ Passive earnings\n\n"
        "📌 *Rules:*\n"
        "- Must read the deposit 💰, withdraw 📤, and affiliate 👥 rules 📜 for any queries.\n"
        "- Once registered, come every day to check-in ✅ and get your reward 💵.\n"
        "- If a user doesn't check-in ✅, their reward 💵 will not be ❌ credited.\n"
        f"- Company holiday is on *{policy.holiday_day}th of every month ☺️*.\n"
        "- No reward will be distributed on company holidays.\n\n"
        f"📞 *Support:* Contact {escape_markdown(support_email)} for queries.\n\n"
        "🚀 *Start earning today!*"
    )


DEPOSIT_MENU_TEXT = "💰 *Deposit Menu:* Choose an option below:"
WITHDRAW_MENU_TEXT = "💸 *Withdraw Menu:* Choose an option below:"
BACK_TO_MAIN_TEXT = "🔙 Returning to the main menu..."

DEPOSIT_RULES_TEXT = (
    "📜 *Deposit Rules:* \n"
    "- Rule 1: Send the payment 💳 screenshot in the google form link.\n"
    "- Rule 2: User's sending multiple transaction for the same plan will not get refunded ❌.\n"
    "- Rule 3: Once deposit is completed your account will be activated within 24-48hrs. "
    "Wait patiently....☺️"
)


def plans_text(policy: LedgerPolicy = DEFAULT_POLICY) -> str:
    return (
        "📊 *Plans:*\n\n"
        f"ℹ️ {policy.plan_name}: ℹ️\n"
        f"💰 Plan Amount: ₹{policy.plan_price}\n"
        "📆 Validity: Last date of every month.\n"
        f"💵 Daily Revenue: ₹{policy.check_in_reward}.\n\n"
        "🔔 Note:\n"
        "1️⃣ Must check-in ✅ daily after purchasing the plan.\n"
        "2️⃣ For better revenue 💹, don't purchase the plan after the 15th of every month.\n"
        f"3️⃣ Must re-activate 🔄 the plan by depositing ₹{policy.reactivation_price} "
        "on the 1st of every month, otherwise no withdrawals will be accepted. 🚫💰\n"
        "4️⃣ Re-activation period: 🗓️ 1st to 3rd of every month.\n"
        "5️⃣ Users who don't re-activate the plan ❌ stop earning ⏸️ and have to "
        "re-purchase the entire plan 🛒 to become active ✅ again.\n\n"
        "More plans coming soon....."
    )


PURCHASE_TEXT = (
    "💳 *Purchase Instructions:* \n\n"
    "1️⃣ *Purchase Plan* → For users to purchase a plan.\n"
    "2️⃣ *Re-activate Plan* → For users renewing their plan."
)


def withdraw_rules_text(policy: LedgerPolicy = DEFAULT_POLICY) -> str:
    return (
        "📜 *Withdraw Rules:*\n\n"
        f"1️⃣ Withdrawals allowed only from the {policy.withdraw_window_start}nd to "
        f"{policy.withdraw_window_end}th of each month.\n"
        "2️⃣ Only active users can withdraw funds ✅.\n"
        "3️⃣ Approval within 24-72 hours ⏳.\n"
        "4️⃣ Name on withdrawal must match UPI name ⚠️.\n"
        "5️⃣ 10% processing fee (subject to change 📉).\n"
        f"6️⃣ First withdrawal fixed at ₹{policy.withdraw_first_amount}.\n"
        f"7️⃣ Future withdrawals: Min ₹{policy.withdraw_min} | Max ₹{policy.withdraw_max}.\n"
        "8️⃣ Daily Limit: 1 withdrawal per day.\n"
        f"9️⃣ Monthly Limit: {policy.withdraw_monthly_limit} withdrawals per month.\n"
        "🔟 Limits may change as the platform grows 🚀."
    )


HELP_TEXT = (
    "/start            - register or open the main menu\n"
    "/help             - show this message\n"
    "Use the keyboard buttons to check in, deposit, withdraw and manage referrals."
)
