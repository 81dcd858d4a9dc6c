from datetime import datetime, timezone
from typing import TypeVar, Type, Sequence
from uuid import uuid4

from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.orm.interfaces import ORMOption

from stickerbot import db

T = TypeVar('T', bound='Base')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Random, non-sequential primary key so ids leak neither order nor count"""
    return f'{prefix}_{uuid4().hex[:20]}'


class Base(DeclarativeBase):
    @classmethod
    async def get(
        cls: Type[T],
        pkey: int | str | tuple[int | str, ...],
        *,
        options: Sequence[ORMOption] | None = None
    ) -> T | None:
        return await db.session.get(cls, pkey, options=options)


__all__ = ['Base', 'utcnow', 'new_id']
