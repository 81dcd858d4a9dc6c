import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from stickerbot import db, repository
from stickerbot.errors import (
    InputError,
    PersistenceError,
    PlatformError,
    PlatformFailure,
    PublishError,
)
from stickerbot.interfaces import PackPlatformAPI, StickerItem
from stickerbot.models import Sticker, StickerPack, StickerType

logger = logging.getLogger(__name__)

PLATFORM_FAILURES: dict[str, tuple[PlatformFailure, str]] = {
    'PACK_SHORT_NAME_INVALID': (PlatformFailure.INVALID_NAME, 'The pack name is invalid.'),
    'PACK_TITLE_INVALID': (PlatformFailure.INVALID_NAME, 'The pack title is invalid.'),
    'PACK_SHORT_NAME_OCCUPIED': (
        PlatformFailure.NAME_OCCUPIED, 'A pack with this name already exists.'
    ),
    'SHORTNAME_OCCUPY_FAILED': (
        PlatformFailure.NAME_OCCUPIED, 'A pack with this name already exists.'
    ),
    'STICKERSET_INVALID': (PlatformFailure.SET_NOT_FOUND, 'This sticker pack does not exist.'),
    'STICKERSETS_TOO_MUCH': (
        PlatformFailure.TOO_MANY_SETS, 'You have reached the maximum number of sticker packs.'
    ),
    'STICKERS_TOO_MUCH': (
        PlatformFailure.TOO_MANY_STICKERS, 'This pack already has the maximum number of stickers.'
    ),
    'STICKERPACK_STICKERS_TOO_MUCH': (
        PlatformFailure.TOO_MANY_STICKERS, 'This pack already has the maximum number of stickers.'
    ),
    'STICKER_PNG_DIMENSIONS': (
        PlatformFailure.INVALID_DIMENSIONS, 'The sticker image has invalid dimensions.'
    ),
    'STICKER_PNG_NOPNG': (
        PlatformFailure.INVALID_DIMENSIONS, 'The sticker image has an invalid format.'
    ),
    'STICKER_TGS_NOTGS': (
        PlatformFailure.INVALID_ANIMATED, 'The animated sticker is not a valid TGS file.'
    ),
    'STICKER_TGS_NODOC': (
        PlatformFailure.INVALID_ANIMATED, 'The animated sticker is not a valid TGS file.'
    ),
    'STICKER_VIDEO_NOWEBM': (
        PlatformFailure.INVALID_ANIMATED, 'The video sticker is not a valid WebM file.'
    ),
    'STICKER_VIDEO_LONG': (PlatformFailure.INVALID_ANIMATED, 'The video sticker is too long.'),
    'STICKER_FILE_INVALID': (
        PlatformFailure.INVALID_ANIMATED, 'The sticker file was rejected by Telegram.'
    ),
}


def translate_platform_error(e: PlatformError) -> PublishError:
    known = PLATFORM_FAILURES.get(e.code)
    if known is None:
        return PublishError(e.message, code=e.code)
    failure, reason = known
    return PublishError(reason, code=e.code, failure=failure)


@dataclass
class PublishResult:
    pack: StickerPack
    sticker: Sticker


@dataclass
class ImportResult:
    pack: StickerPack
    can_edit: bool


class PackPublisher:
    """
    Talks to the platform first, then records the outcome locally. The two
    steps are not atomic: a failed local write after a successful publish is
    logged as a reconciliation gap and never compensated on the platform.
    """

    def __init__(self, platform: PackPlatformAPI):
        self.platform = platform

    async def _call(self, coro):
        try:
            return await coro
        except PlatformError as e:
            logger.warning('Platform call failed: %s %s', e.code, e.message)
            raise translate_platform_error(e)

    async def _appended_file_id(self, name: str) -> str | None:
        """The platform appends new stickers, so the added one is the last item"""
        try:
            info = await self.platform.get_sticker_set(name)
        except PlatformError:
            logger.warning('Could not re-read sticker set %s', name, exc_info=True)
            return None
        if info.items:
            return info.items[-1].file_id
        return None

    async def create_pack(
        self, owner_id: int, name: str, title: str, item: StickerItem, emoji: str
    ) -> PublishResult:
        await self._call(
            self.platform.create_sticker_set(owner_id, name, title, item, emoji)
        )
        file_id = await self._appended_file_id(name)
        try:
            async with db.new_session():
                pack = await repository.create_pack(
                    owner_id,
                    name,
                    title,
                    is_animated=item.type is StickerType.ANIMATED,
                    is_video=item.type is StickerType.VIDEO,
                )
                sticker = await repository.add_sticker(pack.id, file_id, emoji, item.type)
        except SQLAlchemyError as e:
            logger.error(
                'Reconciliation gap: set %s exists on the platform but was not saved',
                name, exc_info=True,
            )
            raise PersistenceError('Could not save the sticker pack.', code=type(e).__name__)
        logger.info('User %s created pack %s', owner_id, name)
        return PublishResult(pack, sticker)

    async def add_sticker(
        self, owner_id: int, name: str, item: StickerItem, emoji: str
    ) -> PublishResult:
        pack = await repository.get_pack_by_name(name)
        if pack is None:
            raise InputError('This pack is not in your collection.', code='unknown_pack')
        if not await repository.can_user_edit(owner_id, name):
            raise InputError('You cannot edit this pack.', code='not_editable')

        await self._call(self.platform.add_sticker_to_set(owner_id, name, item, emoji))
        file_id = await self._appended_file_id(name)
        try:
            sticker = await repository.add_sticker(pack.id, file_id, emoji, item.type)
        except SQLAlchemyError as e:
            logger.error(
                'Reconciliation gap: sticker %s added to %s but not saved',
                file_id, name, exc_info=True,
            )
            raise PersistenceError('Could not save the sticker.', code=type(e).__name__)
        return PublishResult(pack, sticker)

    async def import_pack(self, user_id: int, name: str) -> ImportResult:
        info = await self._call(self.platform.get_sticker_set(name))
        try:
            async with db.new_session():
                pack = await repository.add_external_pack(
                    user_id,
                    info.name or name,
                    info.title,
                    is_animated=info.is_animated,
                    is_video=info.is_video,
                )
                can_edit = await repository.can_user_edit(user_id, pack.name)
                if can_edit:
                    await repository.set_can_edit(user_id, pack.id, True)
        except SQLAlchemyError as e:
            logger.error('Failed to record imported pack %s', name, exc_info=True)
            raise PersistenceError('Could not save the sticker pack.', code=type(e).__name__)
        logger.info('User %s imported pack %s (editable: %s)', user_id, pack.name, can_edit)
        return ImportResult(pack, can_edit)


__all__ = [
    'PLATFORM_FAILURES',
    'translate_platform_error',
    'PublishResult',
    'ImportResult',
    'PackPublisher',
]
