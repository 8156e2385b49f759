from __future__ import annotations

MOVE_TO_BALANCE_PREFIX = "move_to_balance"


def encode_move_to_balance(owner_uid: int) -> str:
    """
    Encode a "move referral earnings to balance" callback.

    Format: move_to_balance:{owner_uid}
    """

    return f"{MOVE_TO_BALANCE_PREFIX}:{owner_uid}"


def parse_move_to_balance(data: str) -> int:
    parts = data.split(":")
    if len(parts) != 2 or parts[0] != MOVE_TO_BALANCE_PREFIX or not parts[1].isdigit():
        raise ValueError(f"Invalid move-to-balance callback data: {data}")
    return int(parts[1])
