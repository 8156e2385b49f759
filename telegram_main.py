import logging

from application.services import LedgerService
from application.sessions import SessionStore
from config import load_settings
from infrastructure.db.ledger_repository_postgres import PostgresLedgerRepository
from infrastructure.db.ledger_repository_sqlite import SqliteLedgerRepository
from interfaces.telegram.handlers import create_telegram_bot

logger = logging.getLogger(__name__)


def main() -> None:
    settings = load_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if settings.postgres_params:
        repo = PostgresLedgerRepository(settings.postgres_params)
        logger.info("Using Postgres database %s", settings.postgres_params["dbname"])
    else:
        repo = SqliteLedgerRepository(settings.db_path)
        logger.info("Using SQLite database %s", settings.db_path)

    service = LedgerService(
        repo,
        SessionStore(ttl=settings.session_ttl),
        settings.links,
    )

    bot = create_telegram_bot(settings.bot_token, service, settings.support_email)
    logger.info("Bot is running...")
    bot.infinity_polling()


if __name__ == "__main__":
    main()
