import asyncio
import logging
from logging.handlers import RotatingFileHandler

from stickerbot import db
from stickerbot.bot import assets, bot, engine
from stickerbot.config import LOGS_DIR, config
from stickerbot.web import serve

logger = logging.getLogger('stickerbot')


def setup_logging():
    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    file_handler = RotatingFileHandler(
        LOGS_DIR / 'stickerbot.log', maxBytes=5 * 1024 * 1024, backupCount=3, encoding='utf-8'
    )
    file_handler.setFormatter(
        logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    )
    logging.getLogger().addHandler(file_handler)
    logging.getLogger('telethon').setLevel(logging.WARNING)


async def sweeper():
    interval = config.sweep_interval_minutes * 60
    max_age = config.session_ttl_hours * 3600
    while True:
        await asyncio.sleep(interval)
        try:
            await engine.sweep()
            assets.sweep(max_age)
        except Exception:
            logger.exception('Periodic cleanup failed')


async def main():
    setup_logging()
    await db.create_all()
    await bot.start(config.bot_token)
    engine.bot_username = config.bot_username or bot.me.username
    logger.info('Bot started as @%s', engine.bot_username)

    tasks = [asyncio.create_task(sweeper()), asyncio.create_task(serve())]
    try:
        await bot.run_until_disconnected()
    finally:
        for task in tasks:
            task.cancel()
        await db.engine.dispose()


asyncio.run(main())
