# autoflake: skip_file

# Initialize environment variables
import dotenv

dotenv.load_dotenv()

from .common.settings import Settings

settings = Settings.from_env()

# Initialize logging
import logging

from .logging_setup import setup_logging

setup_logging(settings.review_chat_id)
logger = logging.getLogger(__name__)

# Start the server
from aiohttp import web

from .announce import PipelineCoordinator
from .common.bot import bot_configured, get_bot
from .common.humanizer import TelegramGateway
from .common.llms import generate_announcement
from .common.notifications import TelegramReviewNotifier
from .server import create_app


def build_coordinator(settings: Settings) -> PipelineCoordinator:
    gateway = TelegramGateway(get_bot()) if bot_configured() else None
    notifier = None
    if gateway is not None and settings.review_chat_id is not None:
        notifier = TelegramReviewNotifier(get_bot(), settings.review_chat_id)
    if gateway is None:
        logger.warning("BOT_TOKEN not set, announcements will not be delivered")

    return PipelineCoordinator.build(
        settings,
        gateway=gateway,
        generator=generate_announcement,
        notifier=notifier,
    )


app = create_app(build_coordinator(settings))

if __name__ == "__main__":
    web.run_app(app, host="0.0.0.0", port=settings.port)
