import logging
from typing import Any

from telethon import errors
from telethon.tl.functions.messages import GetStickerSetRequest
from telethon.tl.types import DocumentAttributeSticker, InputStickerSetShortName

from stickerbot import repository
from stickerbot.assets import AssetStore
from stickerbot.bot_client import Album, BotClient, CallbackQuery, Command, Message, MiddlewareCallback, NewMessage
from stickerbot.config import SESSION_FILE, TEMP_DIR, config
from stickerbot.conversation import ConversationEngine
from stickerbot.db import new_session
from stickerbot.interfaces import MediaItem, MediaKind
from stickerbot.platform import TelegramFileSource, TelegramPackAPI, TelegramReplySink, media_kind
from stickerbot.publisher import PackPublisher

logger = logging.getLogger(__name__)

COMMANDS = ('start', 'help', 'cancel', 'status')


async def register_user_middleware(event: Any, callback: MiddlewareCallback):
    sender = getattr(event, 'sender', None) or await event.get_sender()
    if sender is not None and not getattr(sender, 'bot', False):
        async with new_session():
            await repository.upsert_user(
                sender.id,
                getattr(sender, 'username', None),
                getattr(sender, 'first_name', None),
                getattr(sender, 'last_name', None),
            )
    await callback()


bot = BotClient(str(SESSION_FILE), config.api_id, config.api_hash)
bot.add_middleware(register_user_middleware)

assets = AssetStore(TEMP_DIR)
engine = ConversationEngine(
    TelegramFileSource(bot, config.download_timeout),
    TelegramReplySink(bot),
    PackPublisher(TelegramPackAPI(bot)),
    assets,
    bot_username=config.bot_username,
    session_ttl=config.session_ttl_hours * 3600,
    default_emoji=config.default_emoji,
)


async def sticker_set_name(attr: DocumentAttributeSticker) -> str | None:
    stickerset = attr.stickerset
    if isinstance(stickerset, InputStickerSetShortName):
        return stickerset.short_name
    try:
        result = await bot(GetStickerSetRequest(stickerset, hash=0))
    except errors.RPCError:
        # stickers sent without a set resolve to InputStickerSetEmpty
        logger.debug('Could not resolve sticker set %r', stickerset)
        return None
    return result.set.short_name


async def to_media_item(message: Message) -> MediaItem | None:
    file = message.file
    if file is None or message.web_preview:
        return None
    item = MediaItem(
        file_ref=message,
        kind=media_kind(file.mime_type, is_photo=message.photo is not None),
        size=file.size,
        file_name=file.name,
    )
    if message.sticker:
        item.is_sticker = True
        attr = next(
            (a for a in message.sticker.attributes if isinstance(a, DocumentAttributeSticker)),
            None,
        )
        if attr is not None:
            item.emoji = attr.alt or None
            item.sticker_set = await sticker_set_name(attr)
    if item.kind is MediaKind.OTHER:
        logger.info('Unsupported attachment %s from %s', file.mime_type, message.chat_id)
    return item


def _on_command(name: str):
    async def handler(e: Command.Event):
        await engine.handle_command(e.chat_id, e.sender_id, e.command)

    handler.__name__ = f'on_{name}'
    return handler


for _name in COMMANDS:
    bot.add_event_handler(_on_command(_name), Command(_name, pm_only=True))


@bot.on(Command(r'\w+', regex=True, pm_only=True))
async def on_unknown_command(e: Command.Event):
    await engine.handle_command(e.chat_id, e.sender_id, e.command)


@bot.on(CallbackQuery())
async def on_callback(e: CallbackQuery.Event):
    await engine.handle_callback(e.chat_id, e.sender_id, e.data.decode())


@bot.on(Album(pm_only=True))
async def on_album(e: Album.Event):
    items = [item for item in [await to_media_item(m) for m in e.messages] if item]
    await engine.handle_media(e.chat_id, e.sender_id, items)


@bot.on(NewMessage(incoming=True, pm_only=True, func=lambda e: not e.message.grouped_id))
async def on_message(e: NewMessage.Event):
    message = e.message
    if message.media and not message.web_preview:
        item = await to_media_item(message)
        await engine.handle_media(e.chat_id, e.sender_id, [item] if item else [])
    elif message.raw_text and not message.raw_text.startswith('/'):
        await engine.handle_text(e.chat_id, e.sender_id, message.raw_text)


__all__ = ['bot', 'engine', 'assets', 'to_media_item']
