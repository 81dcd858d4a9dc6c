import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, func, select, update

from stickerbot import db
from stickerbot.db import transactional
from stickerbot.errors import InputError
from stickerbot.models import StickerPack, Sticker, StickerType, User, UserPack
from stickerbot.models.base import new_id, utcnow

logger = logging.getLogger(__name__)


@dataclass
class UserPackView:
    pack: StickerPack
    can_edit: bool
    is_favorite: bool


@dataclass
class PackStats:
    total_packs: int
    total_stickers: int
    total_users: int


@transactional
async def upsert_user(
    user_id: int,
    username: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
) -> User:
    user = await User.get(user_id)
    if not user:
        user = User(
            id=user_id, username=username, first_name=first_name, last_name=last_name
        )
        db.session.add(user)
        await db.session.flush()
        logger.info('Created user %s (%s)', user_id, username or 'no username')
        return user
    # profile fields are refreshed, never blanked
    for attr, value in (('username', username), ('first_name', first_name), ('last_name', last_name)):
        if value is not None and getattr(user, attr) != value:
            setattr(user, attr, value)
    return user


async def _get_membership(user_id: int, pack_id: str) -> UserPack | None:
    return await UserPack.get((user_id, pack_id))


async def _add_membership(user_id: int, pack_id: str, can_edit: bool) -> UserPack:
    membership = UserPack(user_id=user_id, pack_id=pack_id, can_edit=can_edit)
    db.session.add(membership)
    await db.session.flush()
    return membership


@transactional
async def get_pack_by_name(name: str) -> StickerPack | None:
    return await db.fetch_val(select(StickerPack).where(StickerPack.name == name))


@transactional
async def get_pack(pack_id: str) -> StickerPack | None:
    return await StickerPack.get(pack_id)


@transactional
async def create_pack(
    user_id: int,
    name: str,
    title: str,
    *,
    owned: bool = True,
    can_edit: bool = True,
    is_animated: bool = False,
    is_video: bool = False,
) -> StickerPack:
    """
    Create the pack and the creator's membership atomically. When a pack with
    this name is already known only the membership is added.
    """
    await upsert_user(user_id)
    existing = await get_pack_by_name(name)
    if existing:
        if not await _get_membership(user_id, existing.id):
            await _add_membership(user_id, existing.id, can_edit)
            logger.info('User %s linked to existing pack %s', user_id, name)
        return existing

    pack = StickerPack(
        id=new_id('pack'),
        name=name,
        title=title,
        owner_id=user_id if owned else None,
        is_animated=is_animated,
        is_video=is_video,
    )
    db.session.add(pack)
    await db.session.flush()
    await _add_membership(user_id, pack.id, can_edit)
    logger.info("Created sticker pack '%s' (%s) with id %s", title, name, pack.id)
    return pack


async def add_external_pack(
    user_id: int,
    name: str,
    title: str | None = None,
    *,
    is_animated: bool = False,
    is_video: bool = False,
) -> StickerPack:
    """Reference a pack made elsewhere: no owner, read-only membership"""
    return await create_pack(
        user_id,
        name,
        title or name,
        owned=False,
        can_edit=False,
        is_animated=is_animated,
        is_video=is_video,
    )


@transactional
async def add_sticker(
    pack_id: str,
    file_id: str | None,
    emoji: str = '😊',
    type_: StickerType = StickerType.STATIC,
) -> Sticker:
    last = await db.fetch_val(
        select(func.max(Sticker.position)).where(Sticker.pack_id == pack_id)
    )
    sticker = Sticker(
        id=new_id('stk'),
        pack_id=pack_id,
        file_id=file_id,
        emoji=emoji,
        position=0 if last is None else last + 1,
        type=StickerType(type_).value,
    )
    db.session.add(sticker)
    await db.session.execute(
        update(StickerPack)
        .where(StickerPack.id == pack_id)
        .values(last_modified=utcnow())
    )
    await db.session.flush()
    logger.info(
        'Added %s sticker to pack %s at position %s', sticker.type, pack_id, sticker.position
    )
    return sticker


@transactional
async def next_position(pack_id: str) -> int:
    last = await db.fetch_val(
        select(func.max(Sticker.position)).where(Sticker.pack_id == pack_id)
    )
    return 0 if last is None else last + 1


@transactional
async def remove_membership(user_id: int, pack_id: str) -> bool:
    """
    Drop the user's membership. The pack itself goes away with its stickers
    once no membership references it.
    Returns True when the pack was deleted.
    """
    await db.session.execute(
        delete(UserPack).where(UserPack.user_id == user_id, UserPack.pack_id == pack_id)
    )
    remaining = await db.fetch_val(
        select(func.count()).select_from(UserPack).where(UserPack.pack_id == pack_id)
    )
    logger.info('Removed user %s from pack %s', user_id, pack_id)
    if remaining:
        return False
    # owner_id is not consulted: an owned pack is dropped the same as a foreign one
    await db.session.execute(delete(Sticker).where(Sticker.pack_id == pack_id))
    await db.session.execute(delete(StickerPack).where(StickerPack.id == pack_id))
    logger.info('Deleted sticker pack %s', pack_id)
    return True


@transactional
async def toggle_favorite(user_id: int, pack_id: str) -> bool:
    membership = await _get_membership(user_id, pack_id)
    if not membership:
        raise InputError('you do not have access to this pack', code='no_membership')
    membership.is_favorite = not membership.is_favorite
    await db.session.flush()
    logger.info(
        'User %s %s pack %s',
        user_id, 'favorited' if membership.is_favorite else 'unfavorited', pack_id,
    )
    return membership.is_favorite


@transactional
async def set_can_edit(user_id: int, pack_id: str, can_edit: bool = True):
    membership = await _get_membership(user_id, pack_id)
    if membership:
        membership.can_edit = can_edit
    else:
        await _add_membership(user_id, pack_id, can_edit)
    await db.session.flush()


@transactional
async def can_user_edit(user_id: int, name: str) -> bool:
    pack = await get_pack_by_name(name)
    if not pack:
        return False
    if pack.owner_id == user_id:
        return True
    membership = await _get_membership(user_id, pack.id)
    return bool(membership and membership.can_edit)


@transactional
async def get_user_packs(user_id: int) -> list[UserPackView]:
    rows = await db.fetch_all(
        select(StickerPack, UserPack.can_edit, UserPack.is_favorite)
        .join(UserPack, UserPack.pack_id == StickerPack.id)
        .where(UserPack.user_id == user_id)
        .order_by(UserPack.is_favorite.desc(), StickerPack.last_modified.desc())
    )
    return [UserPackView(pack, bool(can_edit), bool(fav)) for pack, can_edit, fav in rows]


@transactional
async def get_pack_stickers(pack_id: str) -> list[Sticker]:
    return list(
        await db.fetch_vals(
            select(Sticker).where(Sticker.pack_id == pack_id).order_by(Sticker.position)
        )
    )


@transactional
async def get_stats() -> PackStats:
    async def count(model) -> int:
        return await db.fetch_val(select(func.count()).select_from(model)) or 0

    return PackStats(
        total_packs=await count(StickerPack),
        total_stickers=await count(Sticker),
        total_users=await count(User),
    )


__all__ = [
    'UserPackView',
    'PackStats',
    'upsert_user',
    'get_pack_by_name',
    'get_pack',
    'create_pack',
    'add_external_pack',
    'add_sticker',
    'next_position',
    'remove_membership',
    'toggle_favorite',
    'set_can_edit',
    'can_user_edit',
    'get_user_packs',
    'get_pack_stickers',
    'get_stats',
]
