"""
Contracts between the conversation core and whatever bot framework hosts it
"""

import enum
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, Sequence

from stickerbot.models.pack import StickerType


class MediaKind(str, enum.Enum):
    IMAGE = 'image'
    TGS = 'tgs'
    VIDEO = 'video'
    OTHER = 'other'

    @property
    def sticker_type(self) -> StickerType:
        return {
            MediaKind.TGS: StickerType.ANIMATED,
            MediaKind.VIDEO: StickerType.VIDEO,
        }.get(self, StickerType.STATIC)


@dataclass
class FileInfo:
    size: int
    kind: MediaKind


@dataclass
class MediaItem:
    """One attachment of an inbound message"""

    file_ref: object
    kind: MediaKind = MediaKind.IMAGE
    size: int | None = None
    file_name: str | None = None
    # set for stickers: the pack they belong to and their emoji
    sticker_set: str | None = None
    emoji: str | None = None
    is_sticker: bool = False


@dataclass
class StickerItem:
    """A payload ready to be uploaded into a sticker set"""

    type: StickerType
    data: bytes

    @property
    def file_name(self) -> str:
        return {
            StickerType.ANIMATED: 'sticker.tgs',
            StickerType.VIDEO: 'sticker.webm',
        }.get(self.type, 'sticker.webp')

    @property
    def mime_type(self) -> str:
        return {
            StickerType.ANIMATED: 'application/x-tgsticker',
            StickerType.VIDEO: 'video/webm',
        }.get(self.type, 'image/webp')


@dataclass
class Action:
    """A labeled button; data re-enters the engine as a callback, url opens a link"""

    label: str
    data: str | None = None
    url: str | None = None


@dataclass
class StickerSetItem:
    file_id: str
    emoji: str | None = None


@dataclass
class StickerSetInfo:
    name: str
    title: str
    items: list[StickerSetItem] = field(default_factory=list)
    is_animated: bool = False
    is_video: bool = False


class FileSource(Protocol):
    async def resolve(self, file_ref) -> FileInfo: ...

    async def download(self, file_ref) -> bytes: ...


class ReplySink(Protocol):
    async def send_document(
        self, chat_id: int, document: bytes | Path, filename: str
    ) -> None: ...

    async def send_text(
        self, chat_id: int, text: str, actions: Sequence[Sequence[Action]] | None = None
    ) -> None: ...


class PackPlatformAPI(Protocol):
    """Raises stickerbot.errors.PlatformError on failures reported by the platform"""

    async def create_sticker_set(
        self, owner_id: int, name: str, title: str, item: StickerItem, emoji: str
    ) -> None: ...

    async def add_sticker_to_set(
        self, owner_id: int, name: str, item: StickerItem, emoji: str
    ) -> None: ...

    async def get_sticker_set(self, name: str) -> StickerSetInfo: ...

    async def delete_sticker(self, file_id: str) -> None: ...

    async def set_position(self, file_id: str, position: int) -> None: ...


__all__ = [
    'MediaKind',
    'FileInfo',
    'MediaItem',
    'StickerItem',
    'Action',
    'StickerSetItem',
    'StickerSetInfo',
    'FileSource',
    'ReplySink',
    'PackPlatformAPI',
]
