from datetime import datetime

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from stickerbot.models.base import Base, utcnow


class UserPack(Base):
    """
    Membership of a user in a pack: grants visibility and, with can_edit,
    the right to add stickers to it
    """
    __tablename__ = 'user_packs'
    user_id: Mapped[int] = mapped_column(
        sa.BigInteger, sa.ForeignKey('users.id'), primary_key=True
    )
    pack_id: Mapped[str] = mapped_column(
        sa.String(32), sa.ForeignKey('sticker_packs.id', ondelete='CASCADE'), primary_key=True
    )
    can_edit: Mapped[bool] = mapped_column(default=False)
    is_favorite: Mapped[bool] = mapped_column(default=False)
    added_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=utcnow, nullable=False
    )


__all__ = ['UserPack']
