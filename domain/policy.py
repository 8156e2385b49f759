from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Fixed business constants of the plan.

    Kept in one place so rules, dialogs and texts agree on the numbers.
    """

    registration_cap: int = 20

    check_in_reward: int = 40
    holiday_day: int = 6

    plan_name: str = "Starter Pack"
    plan_price: int = 390
    plan_confirmation: str = "proceed"
    reactivation_plan_name: str = "Starter Pack Re-Activate"
    reactivation_price: int = 150
    reactivation_confirmation: str = "re-activate"
    deposit_retention: int = 4

    withdraw_first_amount: int = 400
    withdraw_min: int = 650
    withdraw_max: int = 1100
    withdraw_window_start: int = 2
    withdraw_window_end: int = 25
    withdraw_monthly_limit: int = 2
    withdraw_history_size: int = 4

    referral_transfer_unit: int = 100
    # Shown to users only; activation is handled out-of-band.
    referral_reward: int = 20


DEFAULT_POLICY = LedgerPolicy()
