from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Union

from domain.policy import DEFAULT_POLICY, LedgerPolicy


class Flow(str, Enum):
    REGISTRATION = "registration"
    PURCHASE = "purchase"
    REACTIVATION = "reactivation"
    WITHDRAWAL = "withdrawal"


class Step(str, Enum):
    AWAITING_USERNAME = "awaiting_username"
    AWAITING_PLAN = "awaiting_plan"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    AWAITING_AMOUNT = "awaiting_amount"
    AWAITING_UPI = "awaiting_upi"
    AWAITING_NAME = "awaiting_name"


class InputKind(str, Enum):
    USERNAME = "username"
    PLAN_NAME = "plan_name"
    CONFIRMATION = "confirmation"
    AMOUNT = "amount"
    UPI_ID = "upi_id"
    PAYEE_NAME = "payee_name"


AMOUNT_PATTERN = re.compile(r"^\d+$")
UPI_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+$")
PAYEE_NAME_PATTERN = re.compile(r"^[A-Za-z ]+$")


@dataclass
class DialogSession:
    """
    Transient progress of one user through a multi-step flow.

    Only the fields relevant to the flow are filled in.
    """

    uid: int
    flow: Flow
    step: Step
    plan: Optional[str] = None
    amount: Optional[int] = None
    upi_id: Optional[str] = None
    name: Optional[str] = None
    username: Optional[str] = None
    referrer_uid: Optional[int] = None
    updated_at: datetime = field(default_factory=datetime.now)


_EXPECTED = {
    Step.AWAITING_USERNAME: InputKind.USERNAME,
    Step.AWAITING_PLAN: InputKind.PLAN_NAME,
    Step.AWAITING_CONFIRMATION: InputKind.CONFIRMATION,
    Step.AWAITING_AMOUNT: InputKind.AMOUNT,
    Step.AWAITING_UPI: InputKind.UPI_ID,
    Step.AWAITING_NAME: InputKind.PAYEE_NAME,
}

# (flow, step) -> next step; None marks the terminal step of the flow.
_TRANSITIONS = {
    (Flow.REGISTRATION, Step.AWAITING_USERNAME): None,
    (Flow.PURCHASE, Step.AWAITING_PLAN): Step.AWAITING_CONFIRMATION,
    (Flow.PURCHASE, Step.AWAITING_CONFIRMATION): None,
    (Flow.REACTIVATION, Step.AWAITING_PLAN): Step.AWAITING_CONFIRMATION,
    (Flow.REACTIVATION, Step.AWAITING_CONFIRMATION): None,
    (Flow.WITHDRAWAL, Step.AWAITING_AMOUNT): Step.AWAITING_UPI,
    (Flow.WITHDRAWAL, Step.AWAITING_UPI): Step.AWAITING_NAME,
    (Flow.WITHDRAWAL, Step.AWAITING_NAME): None,
}


def registration_session(uid: int, referrer_uid: Optional[int]) -> DialogSession:
    return DialogSession(
        uid=uid,
        flow=Flow.REGISTRATION,
        step=Step.AWAITING_USERNAME,
        referrer_uid=referrer_uid,
    )


def purchase_session(uid: int) -> DialogSession:
    return DialogSession(uid=uid, flow=Flow.PURCHASE, step=Step.AWAITING_PLAN)


def reactivation_session(uid: int) -> DialogSession:
    return DialogSession(uid=uid, flow=Flow.REACTIVATION, step=Step.AWAITING_PLAN)


def withdrawal_session(uid: int, fixed_amount: Optional[int]) -> DialogSession:
    """
    Open a payout dialog.

    With a fixed amount (first withdrawal of the month) the amount step is
    skipped and the dialog starts by asking for the UPI id.
    """

    if fixed_amount is not None:
        return DialogSession(
            uid=uid,
            flow=Flow.WITHDRAWAL,
            step=Step.AWAITING_UPI,
            amount=fixed_amount,
        )
    return DialogSession(uid=uid, flow=Flow.WITHDRAWAL, step=Step.AWAITING_AMOUNT)


def expected_input(session: DialogSession) -> InputKind:
    return _EXPECTED[session.step]


def _plan_word(session: DialogSession, policy: LedgerPolicy) -> str:
    if session.flow == Flow.REACTIVATION:
        return policy.reactivation_plan_name
    return policy.plan_name


def _confirmation_word(session: DialogSession, policy: LedgerPolicy) -> str:
    if session.flow == Flow.REACTIVATION:
        return policy.reactivation_confirmation
    return policy.plan_confirmation


def parse_input(
    session: DialogSession,
    text: str,
    policy: LedgerPolicy = DEFAULT_POLICY,
) -> Optional[Union[str, int]]:
    """
    Interpret `text` as the input the current step expects.

    Returns the parsed value, or None when the text is not of the expected
    kind. A None result must leave the session untouched.
    """

    text = (text or "").strip()
    if not text:
        return None

    kind = expected_input(session)
    if kind == InputKind.USERNAME:
        return text
    if kind == InputKind.PLAN_NAME:
        plan = _plan_word(session, policy)
        return plan if text.lower() == plan.lower() else None
    if kind == InputKind.CONFIRMATION:
        word = _confirmation_word(session, policy)
        return word if text.lower() == word.lower() else None
    if kind == InputKind.AMOUNT:
        return int(text) if AMOUNT_PATTERN.match(text) else None
    if kind == InputKind.UPI_ID:
        return text if UPI_PATTERN.match(text) else None
    if kind == InputKind.PAYEE_NAME:
        return text if PAYEE_NAME_PATTERN.match(text) else None
    return None


def advance(session: DialogSession, value: Union[str, int]) -> bool:
    """
    Store `value` for the current step and move to the next one.

    Returns True when the step just completed was the last one of the flow;
    the session is then left on that step for the caller to finish.
    """

    kind = expected_input(session)
    if kind == InputKind.USERNAME:
        session.username = str(value)
    elif kind == InputKind.PLAN_NAME:
        session.plan = str(value)
    elif kind == InputKind.AMOUNT:
        session.amount = int(value)
    elif kind == InputKind.UPI_ID:
        session.upi_id = str(value)
    elif kind == InputKind.PAYEE_NAME:
        session.name = str(value)

    next_step = _TRANSITIONS[(session.flow, session.step)]
    if next_step is None:
        return True
    session.step = next_step
    return False
