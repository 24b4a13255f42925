import asyncio
import hmac
import json
import logging
import time
from typing import Optional

import logfire
from aiogram.dispatcher.event.bases import UNHANDLED
from aiohttp import web

from .announce import AnnounceError, PipelineCoordinator
from .common.bot import bot_configured, close_bot, get_bot
from .common.llms import get_ai_config
from .common.mp import mp
from .handlers import dp
from .logging_setup import register_telegram_logging_loop

logger = logging.getLogger(__name__)

COORDINATOR = web.AppKey("coordinator", PipelineCoordinator)

routes = web.RouteTableDef()

# Telegram webhook timeout is 60 seconds
# We'll use 55 seconds as our timeout to have some buffer
WEBHOOK_TIMEOUT = 55


def extract_bearer_token(header: str) -> str:
    return header[7:] if header.startswith("Bearer ") else header


def is_authorized(request: web.Request, expected: str) -> bool:
    token = extract_bearer_token(request.headers.get("Authorization", ""))
    return hmac.compare_digest(token.encode(), expected.encode())


@routes.get("/health")
async def healthcheck(request: web.Request) -> web.Response:
    """Report configuration and pipeline state for health checks."""
    coordinator = request.app[COORDINATOR]
    try:
        return web.json_response(
            {
                "status": "ok",
                "ai_key_set": bool(get_ai_config().key),
                "ai_model": get_ai_config().model,
                "webhook_configured": bool(coordinator.settings.webhook_auth_token),
                "redis": await coordinator.style.health(),
                "pipeline": coordinator.status().to_dict(),
            }
        )
    except Exception as e:
        logger.warning(f"Health check degraded: {e}")
        return web.json_response({"status": "degraded", "error": str(e)})


@routes.post("/webhook")
async def handle_webhook(request: web.Request) -> web.Response:
    """Receive a social-media post from the upstream automation service"""
    coordinator = request.app[COORDINATOR]

    secret = coordinator.settings.webhook_auth_token
    if not secret:
        return web.json_response(
            {"error": "webhook_not_configured", "message": "WEBHOOK_AUTH_TOKEN not configured"},
            status=503,
        )
    if not is_authorized(request, secret):
        return web.json_response(
            {"error": "unauthorized", "message": "invalid webhook secret"}, status=401
        )

    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return web.json_response(
            {"error": "invalid_payload", "message": "invalid JSON body"}, status=400
        )

    start_time = time.time()
    with logfire.span("Webhook: inbound post", payload=payload) as span:
        try:
            outcome = await coordinator.submit_inbound(payload)
        except AnnounceError as e:
            span.tags = [e.kind]
            log = logger.warning if e.http_status >= 500 else logger.info
            log(f"Inbound post rejected: {e.kind}: {e}")
            mp.track("webhook", f"webhook_{e.kind}", {"message": str(e)})
            return web.json_response(e.to_dict(), status=e.http_status)
        except Exception as e:
            span.tags = ["unhandled_exception"]
            span.record_exception(e)
            logger.error(f"Announcement failed: {e}", exc_info=True)
            return web.json_response(
                {"error": "internal_error", "message": "announcement failed"}, status=500
            )

        span.tags = [outcome.status]
        elapsed = time.time() - start_time
        logger.info(f"Inbound post {outcome.status} in {elapsed:.2f}s")
        mp.track(
            "webhook",
            f"webhook_{outcome.status}",
            {"channels_posted": outcome.channels_posted, "elapsed": elapsed},
        )
        return web.json_response(outcome.to_dict())


@routes.post("/telegram")
async def handle_update(request: web.Request) -> web.Response:
    """Handle incoming Telegram update"""
    if not await request.read():
        return web.Response()

    try:
        update = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.warning("Received non-JSON Telegram update")
        return web.json_response({"error": "Invalid JSON body"}, status=400)

    # Validate that this is a proper Telegram update
    if not isinstance(update, dict) or "update_id" not in update:
        logger.warning(f"Received invalid update format: {update}")
        return web.json_response(
            {"error": "Invalid update format", "required_field": "update_id"},
            status=400,
        )

    with logfire.span("Update: handling...", update=update) as span:
        try:
            result = await asyncio.wait_for(
                dp.feed_raw_update(
                    get_bot(), update, coordinator=request.app[COORDINATOR]
                ),
                timeout=WEBHOOK_TIMEOUT,
            )
        except asyncio.TimeoutError:
            span.tags = ["webhook_timeout"]
            logger.warning(f"Update processing timed out after {WEBHOOK_TIMEOUT}s")
            return web.json_response(
                {"error": "Processing timed out", "retry": True}, status=503
            )
        except Exception as e:
            span.tags = ["unhandled_exception"]
            span.record_exception(e)
            logger.error(f"Unhandled error processing update: {e}", exc_info=True)
            # Telegram would redeliver on non-2xx; the error is already logged
            return web.json_response({"message": "Error processing request"})

        if result == UNHANDLED:
            span.tags = ["unhandled"]
        elif isinstance(result, str):
            span.tags = [result]
        return web.json_response({"message": "Processed successfully"})


async def _on_startup_register_logging(app: web.Application) -> None:
    register_telegram_logging_loop(asyncio.get_running_loop())


async def _on_startup_load_style(app: web.Application) -> None:
    await app[COORDINATOR].style.load()


async def _on_startup_setup_webhook(app: web.Application) -> None:
    """Point the Telegram bot at /telegram when a public URL is configured"""
    webhook_url = app[COORDINATOR].settings.telegram_webhook_url
    if not webhook_url or not bot_configured():
        logger.info("Telegram webhook not configured, operator commands disabled")
        return
    try:
        logger.info(f"Setting webhook URL to: {webhook_url}")
        await get_bot().set_webhook(webhook_url)
        logger.info("Webhook setup completed successfully")
    except Exception as e:
        logger.error(f"Failed to set webhook: {e}")
        raise


async def _on_startup_start_scheduler(app: web.Application) -> None:
    app[COORDINATOR].scheduler.start()


async def _on_startup_log_server_started(app: web.Application) -> None:
    logging.warning("Server started")


async def _shutdown(app: web.Application) -> None:
    """Gracefully shutdown all resources."""
    logger.warning("Starting graceful shutdown...")
    coordinator = app[COORDINATOR]
    await coordinator.scheduler.stop()
    await coordinator.fanout.drain()

    async with asyncio.TaskGroup() as tg:
        tg.create_task(close_bot())
        tg.create_task(coordinator.style.close())


def create_app(
    coordinator: PipelineCoordinator, *, start_background: Optional[bool] = None
) -> web.Application:
    """
    Build the web application around an already constructed coordinator.

    ``start_background=False`` skips the Telegram webhook registration and the
    scheduler task, which is what tests want.
    """
    app = web.Application()
    app[COORDINATOR] = coordinator
    app.add_routes(routes)

    app.on_startup.append(_on_startup_register_logging)
    app.on_startup.append(_on_startup_load_style)
    if start_background is not False:
        app.on_startup.append(_on_startup_setup_webhook)
        app.on_startup.append(_on_startup_start_scheduler)
    app.on_startup.append(_on_startup_log_server_started)
    app.on_shutdown.append(_shutdown)
    return app
