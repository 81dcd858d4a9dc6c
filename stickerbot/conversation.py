"""
Per-chat conversation state machine.

A session is a pair of (mode, pack step). Three kinds of inbound events drive
it: callback actions, media messages and free text; commands are routed to the
same transitions. Every event for one chat runs under that chat's lock so a
session is never mutated by two handlers at once.
"""

import asyncio
import enum
import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Iterator, Protocol, Sequence, TypeVar

from stickerbot import media, repository
from stickerbot.assets import AssetStore
from stickerbot.errors import ConversionError, InputError, StickerBotError
from stickerbot.interfaces import Action, FileSource, MediaItem, MediaKind, ReplySink
from stickerbot.publisher import PackPublisher
from stickerbot.utils import (
    extract_pack_name,
    generate_pack_name,
    pack_link,
    sanitize_pack_name,
    validate_pack_title,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')

SESSION_TTL = 6 * 60 * 60
# batch items smaller than this share of the largest item are thumbnails
THUMBNAIL_RATIO = 10

SELECT_ICON = 'select_icon'
SELECT_STICKER = 'select_sticker'
SELECT_PACKS = 'select_packs'
START_OVER = 'start_over'
CONVERT_MORE = 'convert_more'
CREATE_PACK = 'create_pack'
LIST_PACKS = 'list_packs'
ADD_EXTERNAL_PACK = 'add_external_pack'
FINISH_ADDING = 'finish_adding'
CANCEL = 'cancel'
SELECT_PACK = 'select_pack:'
TOGGLE_FAVORITE = 'fav_pack:'
REMOVE_PACK = 'remove_pack:'


class Mode(str, enum.Enum):
    NONE = 'none'
    ICON = 'icon'
    STICKER = 'sticker'
    PACKS = 'packs'


class PackStep(str, enum.Enum):
    NONE = 'none'
    AWAITING_NAME = 'awaiting_name'
    AWAITING_EXTERNAL_PACK = 'awaiting_external_pack'
    WAITING_FIRST_STICKER = 'waiting_first_sticker'
    ADDING_STICKERS = 'adding_stickers'


CONVERT_PROFILES = {
    Mode.ICON: media.ICON,
    Mode.STICKER: media.STICKER,
}


@dataclass
class Session:
    chat_id: int
    mode: Mode = Mode.NONE
    pack_step: PackStep = PackStep.NONE
    current_pack_name: str | None = None
    pack_title: str | None = None
    buffered_images: list = field(default_factory=list)
    staged_files: list[Path] = field(default_factory=list)
    last_activity: float = field(default_factory=time.time)

    def touch(self, now: float | None = None):
        self.last_activity = time.time() if now is None else now

    def clear_pack_state(self):
        self.pack_step = PackStep.NONE
        self.current_pack_name = None
        self.pack_title = None

    def reset(self):
        self.mode = Mode.NONE
        self.clear_pack_state()
        self.buffered_images.clear()

    def start_adding(self, pack_name: str):
        if not pack_name:
            raise ValueError('adding stickers needs a pack name')
        self.mode = Mode.PACKS
        self.current_pack_name = pack_name
        self.pack_step = PackStep.ADDING_STICKERS


class SessionStore(Protocol):
    def get(self, chat_id: int) -> Session | None: ...

    def put(self, session: Session) -> None: ...

    def delete(self, chat_id: int) -> None: ...

    def values(self) -> list[Session]: ...


class MemorySessionStore:
    def __init__(self):
        self._sessions: dict[int, Session] = {}

    def get(self, chat_id: int) -> Session | None:
        return self._sessions.get(chat_id)

    def put(self, session: Session):
        self._sessions[session.chat_id] = session

    def delete(self, chat_id: int):
        self._sessions.pop(chat_id, None)

    def values(self) -> list[Session]:
        return list(self._sessions.values())

    def __len__(self):
        return len(self._sessions)

    def __contains__(self, chat_id):
        return chat_id in self._sessions


@dataclass
class ItemFailure:
    index: int
    error: StickerBotError


@dataclass
class BatchResult:
    successes: list = field(default_factory=list)
    failures: list[ItemFailure] = field(default_factory=list)
    skipped: int = 0


def is_thumbnail(item: MediaItem, largest: int) -> bool:
    return item.size is not None and largest > 0 and item.size * THUMBNAIL_RATIO < largest


async def process_batch(
    items: Sequence[MediaItem], worker: Callable[[MediaItem], Awaitable[T]]
) -> BatchResult:
    """
    Run worker over items in order. A failing item is recorded and the rest
    still run; thumbnail-sized items are skipped and counted apart.
    """
    result = BatchResult()
    largest = max((i.size or 0 for i in items), default=0)
    for index, item in enumerate(items):
        if len(items) > 1 and is_thumbnail(item, largest):
            result.skipped += 1
            continue
        try:
            result.successes.append(await worker(item))
        except StickerBotError as e:
            logger.info('Item %d failed: %r', index, e)
            result.failures.append(ItemFailure(index, e))
        except Exception:
            logger.exception('Unexpected error on batch item %d', index)
            result.failures.append(
                ItemFailure(index, ConversionError('Something went wrong with this file.'))
            )
    return result


def main_menu() -> list[list[Action]]:
    return [
        [Action('Icon Format (100x100)', SELECT_ICON)],
        [Action('Sticker Format (512x512 with buffer)', SELECT_STICKER)],
        [Action('Manage Sticker Packs', SELECT_PACKS)],
    ]


def pack_menu() -> list[list[Action]]:
    return [
        [Action('Create New Pack', CREATE_PACK)],
        [Action('Add to Existing Pack', LIST_PACKS)],
        [Action('Import Pack', ADD_EXTERNAL_PACK)],
        [Action('Return to Main Menu', START_OVER)],
    ]


def after_convert_menu() -> list[list[Action]]:
    return [
        [Action('Return to Main Menu', START_OVER)],
        [Action('Convert More Images', CONVERT_MORE)],
    ]


def adding_menu(pack_name: str) -> list[list[Action]]:
    return [
        [Action('Done', FINISH_ADDING)],
        [Action('View Pack', url=pack_link(pack_name))],
    ]


def back_to_packs_menu() -> list[list[Action]]:
    return [
        [Action('Return to Pack Management', SELECT_PACKS)],
        [Action('Return to Main Menu', START_OVER)],
    ]


def format_failures(failures: list[ItemFailure]) -> str:
    return '\n'.join(f'• File {f.index + 1}: {f.error.reason}' for f in failures)


class ConversationEngine:
    def __init__(
        self,
        files: FileSource,
        replies: ReplySink,
        publisher: PackPublisher,
        assets: AssetStore,
        *,
        sessions: SessionStore | None = None,
        bot_username: str = '',
        session_ttl: float = SESSION_TTL,
        default_emoji: str = '😊',
    ):
        self.files = files
        self.replies = replies
        self.publisher = publisher
        self.assets = assets
        self.sessions = sessions if sessions is not None else MemorySessionStore()
        self.bot_username = bot_username
        self.session_ttl = session_ttl
        self.default_emoji = default_emoji
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ── sessions ─────────────────────────────────────────────────────────────

    def get_session(self, chat_id: int, now: float | None = None) -> Session:
        session = self.sessions.get(chat_id)
        if session is None:
            session = Session(chat_id)
            self.sessions.put(session)
        session.touch(now)
        return session

    async def sweep(self, now: float | None = None) -> int:
        """Drop sessions idle longer than the TTL along with their staged files"""
        now = time.time() if now is None else now
        removed = 0
        for session in self.sessions.values():
            if now - session.last_activity <= self.session_ttl:
                continue
            lock = self._locks.get(session.chat_id)
            if lock is not None and lock.locked():
                continue
            self.assets.delete_many(session.staged_files)
            session.staged_files.clear()
            self.sessions.delete(session.chat_id)
            self._locks.pop(session.chat_id, None)
            removed += 1
        if removed:
            logger.info('Swept %d idle sessions', removed)
        return removed

    @contextmanager
    def _owned(self, session: Session, path: Path) -> Iterator[Path]:
        session.staged_files.append(path)
        try:
            yield path
        finally:
            self.assets.delete(path)
            if path in session.staged_files:
                session.staged_files.remove(path)

    async def _say(self, chat_id: int, text: str, actions=None):
        await self.replies.send_text(chat_id, text, actions)

    async def _download(self, item: MediaItem) -> bytes:
        info = await self.files.resolve(item.file_ref)
        media.check_source_size(info.size)
        if info.kind is MediaKind.OTHER:
            raise InputError('Only images, stickers and videos are supported.', code='kind')
        return await self.files.download(item.file_ref)

    # ── events ───────────────────────────────────────────────────────────────

    async def handle_command(self, chat_id: int, user_id: int, command: str):
        async with self._locks[chat_id]:
            session = self.get_session(chat_id)
            command = command.lower()
            logger.info('Chat %s command /%s in mode=%s', chat_id, command, session.mode.value)
            if command == 'start':
                session.reset()
                await self._say(
                    chat_id, 'Welcome! Please select a mode for image conversion:', main_menu()
                )
            elif command == 'help':
                await self._say(chat_id, self.help_text(session), self._help_actions(session))
            elif command == 'cancel':
                await self._cancel(session)
            elif command == 'status':
                await self._say(chat_id, self.status_text(session), [[Action('Return to Main Menu', START_OVER)]])
            else:
                await self._say(chat_id, 'Unknown command. Use /help to see what I can do.')

    async def handle_callback(self, chat_id: int, user_id: int, data: str):
        async with self._locks[chat_id]:
            session = self.get_session(chat_id)
            logger.info(
                'Chat %s action %s (mode=%s, step=%s)',
                chat_id, data, session.mode.value, session.pack_step.value,
            )
            try:
                await self._on_action(session, user_id, data)
            except StickerBotError as e:
                await self._say(chat_id, e.reason)

    async def handle_text(self, chat_id: int, user_id: int, text: str):
        async with self._locks[chat_id]:
            session = self.get_session(chat_id)
            await self._on_text(session, user_id, text)

    async def handle_media(self, chat_id: int, user_id: int, items: Sequence[MediaItem]):
        async with self._locks[chat_id]:
            session = self.get_session(chat_id)
            await self._on_media(session, user_id, list(items))

    # ── transitions ──────────────────────────────────────────────────────────

    async def _on_action(self, session: Session, user_id: int, data: str):
        chat_id = session.chat_id
        if data == SELECT_ICON or data == SELECT_STICKER:
            session.clear_pack_state()
            session.mode = Mode.ICON if data == SELECT_ICON else Mode.STICKER
            label = 'Icon Format' if session.mode is Mode.ICON else 'Sticker Format'
            await self._say(
                chat_id, f'You have selected {label}. Please send one or more images to convert.'
            )
        elif data == SELECT_PACKS:
            session.mode = Mode.PACKS
            session.clear_pack_state()
            await self._say(chat_id, 'Sticker Pack Management', pack_menu())
        elif data == START_OVER:
            session.reset()
            await self._say(chat_id, 'Please select a mode for image conversion:', main_menu())
        elif data == CONVERT_MORE:
            if session.mode in CONVERT_PROFILES:
                await self._say(
                    chat_id,
                    f'You are still in {session.mode.value} mode. Please send more images to convert.',
                )
            else:
                await self._say(chat_id, 'Please select a mode for image conversion:', main_menu())
        elif data == CREATE_PACK:
            session.mode = Mode.PACKS
            session.clear_pack_state()
            session.pack_step = PackStep.AWAITING_NAME
            await self._say(chat_id, 'Please enter a name for your new sticker pack:')
        elif data == ADD_EXTERNAL_PACK:
            session.mode = Mode.PACKS
            session.clear_pack_state()
            session.pack_step = PackStep.AWAITING_EXTERNAL_PACK
            await self._say(
                chat_id,
                'Forward a sticker from the pack or send its link '
                '(https://t.me/addstickers/PackName).',
            )
        elif data == LIST_PACKS:
            session.mode = Mode.PACKS
            await self._list_packs(session, user_id)
        elif data.startswith(SELECT_PACK):
            await self._select_pack(session, user_id, data[len(SELECT_PACK):])
        elif data == FINISH_ADDING:
            session.clear_pack_state()
            await self._say(
                chat_id, 'Sticker pack updated! What would you like to do next?', back_to_packs_menu()
            )
        elif data == CANCEL:
            await self._cancel(session)
        elif data.startswith(TOGGLE_FAVORITE):
            favorite = await repository.toggle_favorite(user_id, data[len(TOGGLE_FAVORITE):])
            await self._say(
                chat_id, 'Pack added to favorites.' if favorite else 'Pack removed from favorites.'
            )
        elif data.startswith(REMOVE_PACK):
            await repository.remove_membership(user_id, data[len(REMOVE_PACK):])
            await self._say(chat_id, 'Pack removed from your collection.', back_to_packs_menu())
        else:
            await self._say(chat_id, 'Invalid selection.')

    async def _cancel(self, session: Session):
        session.clear_pack_state()
        if session.mode is Mode.PACKS:
            await self._say(session.chat_id, 'Operation cancelled.', back_to_packs_menu())
        else:
            await self._say(session.chat_id, 'Operation cancelled. Use /start to begin again.')

    async def _list_packs(self, session: Session, user_id: int):
        views = await repository.get_user_packs(user_id)
        if not views:
            await self._say(
                session.chat_id,
                "You don't have any sticker packs yet. Create one first.",
                [[Action('Create New Pack', CREATE_PACK)], [Action('Return to Main Menu', START_OVER)]],
            )
            return
        rows = []
        for view in views:
            star = '⭐ ' if view.is_favorite else ''
            if view.can_edit:
                first = Action(f'{star}{view.pack.title}', SELECT_PACK + view.pack.id)
            else:
                first = Action(f'{star}{view.pack.title} 👁', url=view.pack.url)
            rows.append([
                first,
                Action('☆' if not view.is_favorite else '★', TOGGLE_FAVORITE + view.pack.id),
                Action('✖', REMOVE_PACK + view.pack.id),
            ])
        rows.append([Action('Return to Pack Management', SELECT_PACKS)])
        await self._say(session.chat_id, 'Select a sticker pack to add stickers to:', rows)

    async def _select_pack(self, session: Session, user_id: int, pack_id: str):
        pack = await repository.get_pack(pack_id)
        if pack is None or not await repository.can_user_edit(user_id, pack.name):
            await self._say(
                session.chat_id, 'You cannot add stickers to this pack.', back_to_packs_menu()
            )
            return
        session.start_adding(pack.name)
        await self._say(
            session.chat_id,
            f'Selected pack "{pack.title}". Send stickers or images to add to this pack.',
            adding_menu(pack.name),
        )

    async def _on_text(self, session: Session, user_id: int, text: str):
        chat_id = session.chat_id
        if session.mode is Mode.PACKS and session.pack_step is PackStep.AWAITING_NAME:
            title = validate_pack_title(text)
            if title is None:
                await self._say(chat_id, 'Pack name is too short. Please use at least 3 characters.')
                return
            if not sanitize_pack_name(title):
                await self._say(
                    chat_id,
                    'Pack name needs at least one latin letter or digit for its link. Please try another name.',
                )
                return
            session.pack_title = title
            session.current_pack_name = generate_pack_name(title, self.bot_username)
            session.pack_step = PackStep.WAITING_FIRST_STICKER
            await self._say(
                chat_id,
                f'Pack name "{title}" is ready! Now send your first sticker or image to create the pack.',
            )
        elif session.mode is Mode.PACKS and session.pack_step is PackStep.AWAITING_EXTERNAL_PACK:
            name = extract_pack_name(text)
            if name is None:
                await self._say(
                    chat_id,
                    'Invalid sticker pack format. Please send a link like '
                    'https://t.me/addstickers/PackName or forward a sticker from the pack.',
                )
                return
            await self._import(session, user_id, name)
        elif session.mode in CONVERT_PROFILES:
            await self._say(
                chat_id,
                'Please send an image or sticker to process. If you need to start over, use /start.',
            )
        elif session.mode is Mode.PACKS:
            await self._say(chat_id, 'Please choose an option below.', pack_menu())
        else:
            await self._say(chat_id, 'Please select a mode first.', main_menu())

    async def _import(self, session: Session, user_id: int, name: str):
        try:
            result = await self.publisher.import_pack(user_id, name)
        except StickerBotError as e:
            session.clear_pack_state()
            await self._say(
                session.chat_id,
                f'Error: {e.reason}',
                [[Action('Try Again', ADD_EXTERNAL_PACK)], [Action('Return to Pack Management', SELECT_PACKS)]],
            )
            return
        pack = result.pack
        if result.can_edit:
            session.start_adding(pack.name)
            await self._say(
                session.chat_id,
                f'Pack "{pack.title}" added to your collection! Send stickers to add them to this pack.',
                adding_menu(pack.name),
            )
        else:
            session.clear_pack_state()
            await self._say(
                session.chat_id,
                f'Pack "{pack.title}" added to your collection for reference. '
                f'Only packs created by you with this bot can be edited.',
                [[Action('View Pack', url=pack.url)], [Action('Return to Pack Management', SELECT_PACKS)]],
            )

    async def _on_media(self, session: Session, user_id: int, items: list[MediaItem]):
        chat_id = session.chat_id
        if not items:
            await self._say(chat_id, 'No valid files were found in your message. Please send an image.')
            return
        if session.mode is Mode.NONE:
            await self._say(chat_id, 'Please select a mode first.', main_menu())
            return
        if session.mode is Mode.PACKS:
            if session.pack_step in (PackStep.WAITING_FIRST_STICKER, PackStep.ADDING_STICKERS):
                await self._ingest(session, user_id, items)
            elif session.pack_step is PackStep.AWAITING_EXTERNAL_PACK:
                sticker = next((i for i in items if i.sticker_set), None)
                if sticker is None:
                    await self._say(
                        chat_id,
                        "This sticker doesn't belong to a pack. Please forward a sticker "
                        'from a pack or send a pack link.',
                    )
                    return
                await self._import(session, user_id, sticker.sticker_set)
            else:
                await self._say(chat_id, 'Please choose an option first.', pack_menu())
            return
        await self._convert(session, user_id, items, CONVERT_PROFILES[session.mode])

    async def _convert(self, session: Session, user_id: int, items: list[MediaItem], profile: media.Profile):
        chat_id = session.chat_id
        session.buffered_images = [i.file_ref for i in items]
        await self._say(chat_id, 'Processing your image(s), please wait...')

        async def worker(item: MediaItem):
            try:
                if item.kind in (MediaKind.TGS, MediaKind.VIDEO):
                    raise ConversionError(
                        'Animated and video stickers cannot be converted to images.',
                        code='animated',
                    )
                data = await self._download(item)
                path = await media.convert_to_asset(data, profile, self.assets, user_id)
                with self._owned(session, path):
                    await self.replies.send_document(
                        chat_id, path, f'{profile.name}-{user_id}-{int(time.time())}.{profile.extension}'
                    )
                return path.name
            finally:
                if item.file_ref in session.buffered_images:
                    session.buffered_images.remove(item.file_ref)

        result = await process_batch(items, worker)
        session.buffered_images.clear()
        if result.successes:
            await self._say(
                chat_id, f'Successfully processed {len(result.successes)} image(s).', after_convert_menu()
            )
        if result.failures:
            await self._say(
                chat_id,
                f'Failed to process {len(result.failures)} image(s):\n{format_failures(result.failures)}',
            )

    async def _ingest(self, session: Session, user_id: int, items: list[MediaItem]):
        chat_id = session.chat_id
        created = session.pack_step is PackStep.WAITING_FIRST_STICKER
        await self._say(chat_id, 'Processing sticker(s) for your pack...')

        async def worker(item: MediaItem):
            data = await self._download(item)
            sticker = await media.prepare_sticker(
                data, item.kind.sticker_type, self.assets, user_id
            )
            emoji = item.emoji or self.default_emoji
            if session.pack_step is PackStep.WAITING_FIRST_STICKER:
                result = await self.publisher.create_pack(
                    user_id, session.current_pack_name, session.pack_title, sticker, emoji
                )
                session.start_adding(result.pack.name)
            else:
                result = await self.publisher.add_sticker(
                    user_id, session.current_pack_name, sticker, emoji
                )
            return result

        result = await process_batch(items, worker)
        name = session.current_pack_name
        if result.successes:
            if created and session.pack_step is PackStep.ADDING_STICKERS:
                text = (
                    f'Pack "{session.pack_title}" created! '
                    f'Send more stickers to add to this pack.'
                )
                if len(result.successes) > 1:
                    text += f' {len(result.successes) - 1} more sticker(s) added.'
            else:
                text = (
                    f'{len(result.successes)} sticker(s) added to the pack! '
                    f'Send more or press "Done" when finished.'
                )
            await self._say(chat_id, text, adding_menu(name))
        if result.failures:
            await self._say(
                chat_id,
                f'Failed to add {len(result.failures)} sticker(s):\n{format_failures(result.failures)}',
            )

    # ── texts ────────────────────────────────────────────────────────────────

    @staticmethod
    def help_text(session: Session) -> str:
        text = (
            'This bot helps you convert images into Telegram stickers and emojis.\n\n'
            'Available commands:\n'
            '/start - Start the bot and select a mode\n'
            '/help - Show this help message\n'
            '/cancel - Cancel current operation\n'
            '/status - Show the current state\n\n'
            'Available modes:\n'
            '• Icon Format - Convert images to 100x100px format for Telegram emojis\n'
            '• Sticker Format - Convert images to 512px wide stickers with a transparent buffer\n'
            '• Sticker Packs - Create and manage your own sticker packs'
        )
        if session.mode is Mode.ICON:
            text += '\n\nYou are in Icon Format mode. Send any image to convert it to 100x100px.'
        elif session.mode is Mode.STICKER:
            text += '\n\nYou are in Sticker Format mode. Send any image to convert it to a sticker.'
        elif session.mode is Mode.PACKS:
            text += '\n\nYou are in Sticker Pack Management mode.'
            hints = {
                PackStep.AWAITING_NAME: ' Enter a name for your new sticker pack.',
                PackStep.WAITING_FIRST_STICKER: (
                    f' Send your first sticker image to create the pack "{session.pack_title}".'
                ),
                PackStep.ADDING_STICKERS: (
                    f' You are adding stickers to pack "{session.current_pack_name}".'
                ),
                PackStep.AWAITING_EXTERNAL_PACK: (
                    ' Send a sticker or link to add an external pack to your collection.'
                ),
            }
            text += hints.get(session.pack_step, '')
        return text

    @staticmethod
    def _help_actions(session: Session):
        if session.mode is Mode.PACKS:
            return [[Action('Return to Pack Management', SELECT_PACKS)]]
        return None

    @staticmethod
    def status_text(session: Session) -> str:
        if session.mode is Mode.NONE:
            return 'Current bot status:\n• No mode selected. Use /start to select a mode.'
        lines = ['Current bot status:', f'• Mode: {session.mode.value}']
        if session.mode is Mode.PACKS:
            lines.append(f'• Pack step: {session.pack_step.value}')
            if session.current_pack_name:
                lines.append(f'• Current pack: {session.current_pack_name}')
            if session.pack_title:
                lines.append(f'• Pack title: {session.pack_title}')
        return '\n'.join(lines)


__all__ = [
    'Mode',
    'PackStep',
    'Session',
    'SessionStore',
    'MemorySessionStore',
    'BatchResult',
    'ItemFailure',
    'process_batch',
    'ConversationEngine',
]
