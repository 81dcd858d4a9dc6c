import enum
from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from stickerbot.models.base import Base, utcnow
from stickerbot.utils import pack_link


class StickerType(str, enum.Enum):
    STATIC = 'static'
    ANIMATED = 'animated'
    VIDEO = 'video'


class StickerPack(Base):
    __tablename__ = 'sticker_packs'
    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True)
    name: Mapped[str] = mapped_column(sa.String(64), unique=True)
    title: Mapped[str]
    # None for packs imported by reference
    owner_id: Mapped[Optional[int]] = mapped_column(sa.BigInteger, sa.ForeignKey('users.id'))
    is_animated: Mapped[bool] = mapped_column(default=False)
    is_video: Mapped[bool] = mapped_column(default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, nullable=False
    )
    last_modified: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, nullable=False
    )

    @property
    def url(self) -> str:
        return pack_link(self.name)


class Sticker(Base):
    __tablename__ = 'stickers'
    id: Mapped[str] = mapped_column(sa.String(32), primary_key=True)
    pack_id: Mapped[str] = mapped_column(
        sa.String(32), sa.ForeignKey('sticker_packs.id', ondelete='CASCADE'), index=True
    )
    file_id: Mapped[str | None]
    emoji: Mapped[str] = mapped_column(default='😊')
    position: Mapped[int]
    type: Mapped[str] = mapped_column(sa.String(16), default=StickerType.STATIC.value)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, nullable=False
    )
    __table_args__ = (sa.UniqueConstraint('pack_id', 'position'),)


__all__ = ['StickerType', 'StickerPack', 'Sticker']
