from __future__ import annotations

import logging
from typing import Callable, Optional

import telebot
from telebot import util
from telebot.types import InlineKeyboardButton, InlineKeyboardMarkup

from application import messages
from application.services import (
    MOVE_TO_BALANCE,
    ActionResult,
    LedgerService,
    Menu,
    Reply,
)
from domain.policy import DEFAULT_POLICY, LedgerPolicy
from interfaces.telegram import menus
from interfaces.telegram.callback_data import (
    MOVE_TO_BALANCE_PREFIX,
    encode_move_to_balance,
    parse_move_to_balance,
)

logger = logging.getLogger(__name__)

_BUTTON_ENCODERS = {
    MOVE_TO_BALANCE: encode_move_to_balance,
}


def _button(label: str) -> Callable:
    return lambda message: message.text == label


def create_telegram_bot(
    bot_token: str,
    service: LedgerService,
    support_email: str,
    policy: LedgerPolicy = DEFAULT_POLICY,
) -> telebot.TeleBot:
    """
    Configure and return a TeleBot instance wired to the application layer.

    This module contains only Telegram-specific concerns: parsing Telegram
    messages/callbacks, mapping them to `LedgerService` actions and rendering
    the resulting replies with keyboards.
    """

    bot = telebot.TeleBot(bot_token)
    bot_username: Optional[str] = None

    def get_bot_username() -> str:
        nonlocal bot_username
        if bot_username is None:
            bot_username = bot.get_me().username
        return bot_username

    def render(chat_id: int, reply: Reply) -> None:
        markup = None
        if reply.buttons:
            markup = InlineKeyboardMarkup()
            for button in reply.buttons:
                encode = _BUTTON_ENCODERS[button.action]
                markup.add(
                    InlineKeyboardButton(button.label, callback_data=encode(button.owner_uid))
                )
        elif reply.menu is not None:
            markup = menus.build_keyboard(reply.menu)

        bot.send_message(
            chat_id,
            reply.text,
            parse_mode=reply.parse_mode,
            reply_markup=markup,
            disable_web_page_preview=reply.disable_preview or None,
        )

    def send_result(chat_id: int, result: Optional[ActionResult]) -> None:
        if result is None:
            return
        for reply in result.replies:
            render(chat_id, reply)

    def run(message, action: Callable[[int], Optional[ActionResult]]) -> None:
        # Keep a broad catch so one failing update never stops polling.
        try:
            send_result(message.chat.id, action(message.from_user.id))
        except Exception:
            logger.exception("Failed to handle message from %s", message.from_user.id)
            bot.send_message(message.chat.id, messages.STORAGE_FAILURE)

    def show(message, text: str, menu: Optional[Menu] = None) -> None:
        render(message.chat.id, Reply(text, parse_mode=messages.MARKDOWN, menu=menu))

    @bot.message_handler(commands=["start"])
    def handle_start(message):
        payload = util.extract_arguments(message.text or "")
        run(message, lambda uid: service.start(uid, payload or None))

    @bot.message_handler(commands=["help"])
    def handle_help(message):
        bot.send_message(message.chat.id, menus.HELP_TEXT)

    # Main menu

    @bot.message_handler(func=_button(menus.CHECK_IN))
    def handle_check_in(message):
        run(message, service.check_in)

    @bot.message_handler(func=_button(menus.ABOUT))
    def handle_about(message):
        show(message, menus.about_text(support_email, policy), Menu.MAIN)

    @bot.message_handler(func=_button(menus.BALANCE))
    def handle_balance(message):
        run(message, service.balance)

    @bot.message_handler(func=_button(menus.AFFILIATE))
    def handle_affiliate(message):
        handle = message.from_user.username
        run(message, lambda uid: service.affiliate(uid, get_bot_username(), handle))

    @bot.message_handler(func=_button(menus.PROFILE))
    def handle_profile(message):
        run(message, service.profile)

    @bot.message_handler(func=_button(menus.BACK_TO_MAIN))
    def handle_back_to_main(message):
        render(message.chat.id, Reply(menus.BACK_TO_MAIN_TEXT, menu=Menu.MAIN))

    # Deposit menu

    @bot.message_handler(func=lambda m: m.text in (menus.DEPOSIT, menus.BACK_TO_DEPOSIT))
    def handle_deposit_menu(message):
        show(message, menus.DEPOSIT_MENU_TEXT, Menu.DEPOSIT)

    @bot.message_handler(func=_button(menus.DEPOSIT_RULES))
    def handle_deposit_rules(message):
        show(message, menus.DEPOSIT_RULES_TEXT, Menu.DEPOSIT)

    @bot.message_handler(func=_button(menus.PLANS))
    def handle_plans(message):
        show(message, menus.plans_text(policy), Menu.DEPOSIT)

    @bot.message_handler(func=_button(menus.PURCHASE))
    def handle_purchase(message):
        show(message, menus.PURCHASE_TEXT, Menu.PURCHASE)

    @bot.message_handler(func=_button(menus.PURCHASE_PLAN))
    def handle_purchase_plan(message):
        run(message, service.start_purchase)

    @bot.message_handler(func=_button(menus.REACTIVATE_PLAN))
    def handle_reactivate_plan(message):
        run(message, service.start_reactivation)

    @bot.message_handler(func=_button(menus.DEPOSIT_HISTORY))
    def handle_deposit_history(message):
        run(message, service.deposit_history)

    # Withdraw menu

    @bot.message_handler(func=_button(menus.WITHDRAW))
    def handle_withdraw_menu(message):
        show(message, menus.WITHDRAW_MENU_TEXT, Menu.WITHDRAW)

    @bot.message_handler(func=_button(menus.WITHDRAW_RULES))
    def handle_withdraw_rules(message):
        show(message, menus.withdraw_rules_text(policy), Menu.WITHDRAW)

    @bot.message_handler(func=_button(menus.PAYOUT))
    def handle_payout(message):
        run(message, service.start_payout)

    @bot.message_handler(func=_button(menus.WITHDRAW_HISTORY))
    def handle_withdraw_history(message):
        run(message, service.withdraw_history)

    # Registered last: any other text goes to the user's dialog, if any.
    @bot.message_handler(
        content_types=["text"],
        func=lambda m: not (m.text or "").startswith("/"),
    )
    def handle_text(message):
        run(message, lambda uid: service.handle_text(uid, message.text))

    @bot.callback_query_handler(
        func=lambda call: (call.data or "").startswith(MOVE_TO_BALANCE_PREFIX)
    )
    def handle_move_to_balance(call):
        try:
            owner_uid = parse_move_to_balance(call.data)
        except ValueError:
            bot.answer_callback_query(call.id, "Invalid selection.")
            return

        if owner_uid != call.from_user.id:
            bot.answer_callback_query(call.id, "❌ This button is not for you.", show_alert=True)
            return

        try:
            result = service.move_to_balance(call.from_user.id)
            text = result.replies[0].text if result.replies else messages.STORAGE_FAILURE
        except Exception:
            logger.exception("Failed to move referral balance of %s", call.from_user.id)
            text = messages.STORAGE_FAILURE
        bot.answer_callback_query(call.id, text, show_alert=True)

    return bot
