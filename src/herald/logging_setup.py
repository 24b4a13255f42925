import logging
import os

from .common.bot import bot_configured, get_bot
from .common.telegram_logging_handler import TelegramLogHandler

debug = False
_telegram_handler: TelegramLogHandler | None = None


def mute_logging_for_tests():
    """Disable Logfire/Telegram logging side effects when running the test suite.

    Tests can alternatively set the ``SKIP_LOGFIRE`` environment variable to one of
    ``{"1", "true", "yes", "on"}`` to achieve the same effect without calling
    this helper explicitly.
    """
    global debug
    debug = True


def _should_skip_logfire() -> bool:
    """Determine whether Logfire initialization should be skipped for this process."""
    if debug:
        return True

    skip_env = os.getenv("SKIP_LOGFIRE", "").strip().lower()
    if skip_env in {"1", "true", "yes", "on"}:
        return True

    if "PYTEST_CURRENT_TEST" in os.environ:
        return True

    return False


def setup_logging(log_chat_id: int | str | None = None):
    global _telegram_handler
    if _should_skip_logfire():
        logging.basicConfig(level=logging.DEBUG)
        return

    import logfire

    logfire.configure()

    handlers: list[logging.Handler] = [logfire.LogfireLoggingHandler()]
    if log_chat_id is not None and bot_configured():
        _telegram_handler = TelegramLogHandler(bot=get_bot(), chat_id=log_chat_id)
        _telegram_handler.setFormatter(
            logging.Formatter(
                "[%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
            )
        )
        handlers.append(_telegram_handler)

    logging.basicConfig(handlers=handlers, level=logging.DEBUG)
    logfire.install_auto_tracing(
        modules=["herald.announce", "herald.handlers"],
        min_duration=0.01,
        check_imported_modules="ignore",
    )


def register_telegram_logging_loop(loop):
    if _telegram_handler:
        _telegram_handler.set_event_loop(loop)


# Silence known chatty loggers
CHATTY_LOGGERS = [
    "hpack.hpack",
    "httpcore.http2",
    "httpcore.connection",
    "aiohttp.access",
    "aiogram.event",
]
for logger_name in CHATTY_LOGGERS:
    logging.getLogger(logger_name).setLevel(logging.WARNING)
