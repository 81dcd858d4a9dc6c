"""
Telegram adapters for the conversation core: downloads through the bot
account, replies with inline buttons and the stickers.* MTProto methods
for pack management.
"""

import asyncio
import logging
from pathlib import Path
from typing import Sequence

from telethon import Button, TelegramClient, errors, utils
from telethon.tl import types
from telethon.tl.functions import messages, stickers
from telethon.tl.types.messages import StickerSet as FullStickerSet

from stickerbot.errors import InputError, PlatformError
from stickerbot.interfaces import (
    Action,
    FileInfo,
    MediaKind,
    StickerItem,
    StickerSetInfo,
    StickerSetItem,
)

logger = logging.getLogger(__name__)

TGS_MIME = 'application/x-tgsticker'
WEBM_MIME = 'video/webm'


def media_kind(mime_type: str | None, is_photo: bool = False) -> MediaKind:
    if is_photo:
        return MediaKind.IMAGE
    if not mime_type:
        return MediaKind.OTHER
    if mime_type == TGS_MIME:
        return MediaKind.TGS
    if mime_type == WEBM_MIME or mime_type.startswith('video/'):
        return MediaKind.VIDEO
    if mime_type.startswith('image/'):
        return MediaKind.IMAGE
    return MediaKind.OTHER


def to_buttons(actions: Sequence[Sequence[Action]] | None):
    if not actions:
        return None
    rows = []
    for row in actions:
        buttons = []
        for action in row:
            if action.url:
                buttons.append(Button.url(action.label, action.url))
            else:
                buttons.append(Button.inline(action.label, (action.data or '').encode()))
        rows.append(buttons)
    return rows


class TelegramFileSource:
    """file_ref is the telethon Message carrying the media"""

    def __init__(self, client: TelegramClient, timeout: float = 30.0):
        self.client = client
        self.timeout = timeout

    async def resolve(self, file_ref) -> FileInfo:
        file = file_ref.file
        if file is None:
            raise InputError('This message has no file attached.', code='kind')
        return FileInfo(
            size=file.size or 0,
            kind=media_kind(file.mime_type, is_photo=file_ref.photo is not None),
        )

    async def download(self, file_ref) -> bytes:
        try:
            data = await asyncio.wait_for(
                self.client.download_media(file_ref, file=bytes), self.timeout
            )
        except asyncio.TimeoutError:
            raise InputError('Download timed out, please try again.', code='timeout')
        if not data:
            raise InputError('Could not download the file.', code='download')
        return data


class TelegramReplySink:
    def __init__(self, client: TelegramClient):
        self.client = client

    async def send_document(self, chat_id: int, document: bytes | Path, filename: str):
        await self.client.send_file(
            chat_id,
            document,
            force_document=True,
            attributes=[types.DocumentAttributeFilename(filename)],
        )

    async def send_text(
        self, chat_id: int, text: str, actions: Sequence[Sequence[Action]] | None = None
    ):
        await self.client.send_message(
            chat_id, text, buttons=to_buttons(actions), parse_mode=None, link_preview=False
        )


class TelegramPackAPI:
    """
    stickers.* methods called as the bot. Every RPC failure surfaces as
    PlatformError carrying Telegram's error code (e.g. STICKERSET_INVALID).
    """

    def __init__(self, client: TelegramClient):
        self.client = client

    async def _request(self, request):
        try:
            return await self.client(request)
        except errors.RPCError as e:
            raise PlatformError(e.message or type(e).__name__, str(e))

    async def _upload(self, owner_id: int, item: StickerItem) -> types.InputDocument:
        file = await self.client.upload_file(item.data, file_name=item.file_name)
        media = await self._request(
            messages.UploadMediaRequest(
                peer=await self.client.get_input_entity(owner_id),
                media=types.InputMediaUploadedDocument(
                    file=file,
                    mime_type=item.mime_type,
                    attributes=[types.DocumentAttributeFilename(item.file_name)],
                ),
            )
        )
        return utils.get_input_document(media.document)

    async def _set_item(self, owner_id: int, item: StickerItem, emoji: str):
        return types.InputStickerSetItem(
            document=await self._upload(owner_id, item), emoji=emoji
        )

    async def create_sticker_set(
        self, owner_id: int, name: str, title: str, item: StickerItem, emoji: str
    ):
        await self._request(
            stickers.CreateStickerSetRequest(
                user_id=await self.client.get_input_entity(owner_id),
                title=title,
                short_name=name,
                stickers=[await self._set_item(owner_id, item, emoji)],
            )
        )
        logger.info('Created sticker set %s for %s', name, owner_id)

    async def add_sticker_to_set(
        self, owner_id: int, name: str, item: StickerItem, emoji: str
    ):
        await self._request(
            stickers.AddStickerToSetRequest(
                stickerset=types.InputStickerSetShortName(name),
                sticker=await self._set_item(owner_id, item, emoji),
            )
        )

    async def get_sticker_set(self, name: str) -> StickerSetInfo:
        result = await self._request(
            messages.GetStickerSetRequest(
                stickerset=types.InputStickerSetShortName(name), hash=0
            )
        )
        if not isinstance(result, FullStickerSet):
            raise PlatformError('STICKERSET_INVALID', f'sticker set {name} not found')
        emojis = {}
        for pack in result.packs:
            for doc_id in pack.documents:
                emojis.setdefault(doc_id, pack.emoticon)
        mimes = {doc.mime_type for doc in result.documents}
        return StickerSetInfo(
            name=result.set.short_name,
            title=result.set.title,
            items=[
                StickerSetItem(utils.pack_bot_file_id(doc), emojis.get(doc.id))
                for doc in result.documents
            ],
            is_animated=TGS_MIME in mimes,
            is_video=WEBM_MIME in mimes,
        )

    @staticmethod
    def _input_document(file_id: str) -> types.InputDocument:
        document = utils.resolve_bot_file_id(file_id)
        if not isinstance(document, types.Document):
            raise PlatformError('STICKER_FILE_INVALID', f'{file_id} is not a sticker')
        return utils.get_input_document(document)

    async def delete_sticker(self, file_id: str):
        await self._request(
            stickers.RemoveStickerFromSetRequest(sticker=self._input_document(file_id))
        )

    async def set_position(self, file_id: str, position: int):
        await self._request(
            stickers.ChangeStickerPositionRequest(
                sticker=self._input_document(file_id), position=position
            )
        )


__all__ = [
    'media_kind',
    'to_buttons',
    'TelegramFileSource',
    'TelegramReplySink',
    'TelegramPackAPI',
]
