import asyncio
import logging

from .alert_manager import AlertEngine
from .collector import Collector
from .config import (
    COLLECTOR_BATCH_SIZE,
    COLLECTOR_INITIAL_DELAY_SECONDS,
    COLLECTOR_INTERVAL_SECONDS,
    DATABASE_FILE,
    DB_PRUNE_INTERVAL_HOURS,
    DB_RETENTION_DAYS,
    TELEGRAM_BOT_TOKEN,
)
from .notification_handler import NotificationHandler
from .persistence import Persistence
from .rpc_client import PodRPCClient
from .scheduler import CollectionScheduler
from .telegram_bot import TelegramBot

log = logging.getLogger("PodMonitor.Tasks")


async def database_pruner_task(app):
    log.info("Database pruner task started.")
    while True:
        try:
            deleted = await app["persistence"].prune()
            if deleted:
                log.info(f"[DB_PRUNER] Removed expired rows: {deleted}")
        except Exception:
            log.error("Error in database pruner task:", exc_info=True)
        await asyncio.sleep(3600 * DB_PRUNE_INTERVAL_HOURS)


async def start_background_tasks(app):
    log.info("Starting background tasks...")
    app["tasks"] = []

    app["persistence"] = Persistence(DATABASE_FILE, retention_days=DB_RETENTION_DAYS)
    await app["persistence"].connect()

    app["rpc_client"] = PodRPCClient(app["networks"])
    await app["rpc_client"].start()

    app["alert_engine"] = AlertEngine(NotificationHandler(TELEGRAM_BOT_TOKEN))
    app["collector"] = Collector(
        app["rpc_client"],
        app["persistence"],
        alert_engine=app["alert_engine"],
        networks=list(app["networks"]),
        batch_size=COLLECTOR_BATCH_SIZE,
    )
    app["scheduler"] = CollectionScheduler(
        app["collector"],
        interval_seconds=COLLECTOR_INTERVAL_SECONDS,
        initial_delay_seconds=COLLECTOR_INITIAL_DELAY_SECONDS,
    )
    app["scheduler"].start()

    app["tasks"].append(asyncio.create_task(database_pruner_task(app)))

    if TELEGRAM_BOT_TOKEN:
        app["telegram_bot"] = TelegramBot(
            TELEGRAM_BOT_TOKEN, app["alert_engine"], app["persistence"], app["collector"]
        )
        app["tasks"].append(asyncio.create_task(app["telegram_bot"].poll_forever()))
        log.info("Telegram bot: enabled")
    else:
        log.info("Telegram bot: disabled (no TELEGRAM_BOT_TOKEN)")

    log.info(f"Background tasks started for networks: {', '.join(app['networks'])}")


async def cleanup_background_tasks(app):
    log.warning("Application cleanup started.")

    if "scheduler" in app:
        await app["scheduler"].stop()

    for task in app.get("tasks", []):
        task.cancel()
    if "tasks" in app:
        await asyncio.gather(*app["tasks"], return_exceptions=True)
    log.info("Asyncio background tasks cancelled.")

    if "telegram_bot" in app:
        await app["telegram_bot"].stop()
    if "rpc_client" in app:
        await app["rpc_client"].stop()
    if "persistence" in app:
        await app["persistence"].close()
