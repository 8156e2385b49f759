from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from dotenv import load_dotenv

from application.services import PaymentLinks

DEFAULT_PAYMENT_LINK = "https://superprofile.bio/vp/67db95df6268760013723595"
DEFAULT_REACTIVATION_PAYMENT_LINK = "https://superprofile.bio/vp/67db95713522a40013bbfaf7"
DEFAULT_PROOF_FORM_LINK = "https://forms.gle/oiVxY9s2NEUykm3m8"
DEFAULT_SUPPORT_EMAIL = "tshmgrow@gmail.com"


@dataclass
class Settings:
    """Process configuration read from the environment (and `.env`)."""

    bot_token: str
    db_path: str
    postgres_params: Optional[dict]
    session_ttl: timedelta
    log_level: str
    links: PaymentLinks
    support_email: str


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _postgres_params() -> Optional[dict]:
    dbname = os.environ.get("PGDATABASE")
    if not dbname:
        return None
    params = {
        "dbname": dbname,
        "host": os.environ.get("PGHOST", "localhost"),
        "port": _int_env("PGPORT", 5432),
    }
    if os.environ.get("PGUSER"):
        params["user"] = os.environ["PGUSER"]
    if os.environ.get("PGPASSWORD"):
        params["password"] = os.environ["PGPASSWORD"]
    return params


def load_settings() -> Settings:
    load_dotenv()

    bot_token = os.environ.get("BOT_TOKEN")
    if not bot_token:
        raise RuntimeError("BOT_TOKEN environment variable is not set.")

    return Settings(
        bot_token=bot_token,
        db_path=os.environ.get("DB_PATH", "growbot.db"),
        postgres_params=_postgres_params(),
        session_ttl=timedelta(seconds=_int_env("SESSION_TTL_SECONDS", 900)),
        log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        links=PaymentLinks(
            payment_link=os.environ.get("PAYMENT_LINK", DEFAULT_PAYMENT_LINK),
            reactivation_payment_link=os.environ.get(
                "REACTIVATION_PAYMENT_LINK", DEFAULT_REACTIVATION_PAYMENT_LINK
            ),
            proof_form_link=os.environ.get("PROOF_FORM_LINK", DEFAULT_PROOF_FORM_LINK),
        ),
        support_email=os.environ.get("SUPPORT_EMAIL", DEFAULT_SUPPORT_EMAIL),
    )
