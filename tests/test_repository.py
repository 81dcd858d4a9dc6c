"""
Tests for pack persistence against a throwaway SQLite database.
"""

import asyncio
from unittest.mock import patch

import pytest

from stickerbot import db, repository
from stickerbot.errors import InputError
from stickerbot.models import StickerPack, StickerType, UserPack


class TestUsers:
    """Tests for upsert_user."""

    @pytest.mark.asyncio
    async def test_create_and_refresh(self, database):
        await repository.upsert_user(1, 'alice', 'Alice')
        user = await repository.upsert_user(1, 'alice2')
        assert user.username == 'alice2'
        assert user.first_name == 'Alice'

    @pytest.mark.asyncio
    async def test_missing_fields_do_not_blank(self, database):
        await repository.upsert_user(1, 'alice', 'Alice', 'Smith')
        user = await repository.upsert_user(1)
        assert (user.username, user.first_name, user.last_name) == ('alice', 'Alice', 'Smith')


class TestPacks:
    """Tests for pack creation, membership and permissions."""

    @pytest.mark.asyncio
    async def test_create_pack_adds_editable_membership(self, database):
        pack = await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        assert pack.owner_id == 1
        assert await repository.can_user_edit(1, 'cats_1_by_bot')
        async with db.new_session():
            membership = await UserPack.get((1, pack.id))
        assert membership.can_edit is True
        assert membership.is_favorite is False

    @pytest.mark.asyncio
    async def test_creation_is_atomic(self, database):
        with patch.object(repository, '_add_membership', side_effect=RuntimeError('boom')):
            with pytest.raises(RuntimeError):
                await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        assert await repository.get_pack_by_name('cats_1_by_bot') is None

    @pytest.mark.asyncio
    async def test_external_pack_is_read_only(self, database):
        pack = await repository.add_external_pack(2, 'someone_elses', 'Theirs')
        assert pack.owner_id is None
        assert not await repository.can_user_edit(2, 'someone_elses')
        views = await repository.get_user_packs(2)
        assert [(v.pack.name, v.can_edit) for v in views] == [('someone_elses', False)]

    @pytest.mark.asyncio
    async def test_existing_pack_only_adds_membership(self, database):
        first = await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        second = await repository.add_external_pack(2, 'cats_1_by_bot', 'Other title')
        assert second.id == first.id
        assert second.title == 'Cats'
        assert await repository.can_user_edit(1, 'cats_1_by_bot')
        assert not await repository.can_user_edit(2, 'cats_1_by_bot')

    @pytest.mark.asyncio
    async def test_set_can_edit(self, database):
        pack = await repository.add_external_pack(2, 'imported', 'Imported')
        await repository.set_can_edit(2, pack.id, True)
        assert await repository.can_user_edit(2, 'imported')

    @pytest.mark.asyncio
    async def test_unknown_pack_is_not_editable(self, database):
        assert not await repository.can_user_edit(1, 'nope')


class TestStickers:
    """Tests for sticker positions and last_modified."""

    @pytest.mark.asyncio
    async def test_positions_are_sequential(self, database):
        pack = await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        assert await repository.next_position(pack.id) == 0
        for i in range(3):
            await repository.add_sticker(pack.id, f'file{i}', '🐱', StickerType.STATIC)
        stickers = await repository.get_pack_stickers(pack.id)
        assert [s.position for s in stickers] == [0, 1, 2]
        assert [s.file_id for s in stickers] == ['file0', 'file1', 'file2']
        assert await repository.next_position(pack.id) == 3

    @pytest.mark.asyncio
    async def test_add_sticker_bumps_last_modified(self, database):
        pack = await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        before = (await repository.get_pack(pack.id)).last_modified
        await asyncio.sleep(0.01)
        await repository.add_sticker(pack.id, 'file0')
        async with db.new_session():
            after = (await StickerPack.get(pack.id)).last_modified
        assert after > before

    @pytest.mark.asyncio
    async def test_sticker_type_and_emoji(self, database):
        pack = await repository.create_pack(1, 'anim_1_by_bot', 'Anim', is_animated=True)
        sticker = await repository.add_sticker(pack.id, 'f', type_=StickerType.ANIMATED)
        assert sticker.type == 'animated'
        assert sticker.emoji == '😊'


class TestListing:
    """Tests for get_user_packs ordering and favorites."""

    @pytest.mark.asyncio
    async def test_ordering(self, database):
        a = await repository.create_pack(1, 'a_1_by_bot', 'A')
        await asyncio.sleep(0.01)
        b = await repository.create_pack(1, 'b_1_by_bot', 'B')
        await asyncio.sleep(0.01)
        c = await repository.create_pack(1, 'c_1_by_bot', 'C')
        await asyncio.sleep(0.01)
        # a becomes the most recently modified, c is favorite
        await repository.add_sticker(a.id, 'file')
        assert await repository.toggle_favorite(1, c.id) is True

        names = [v.pack.name for v in await repository.get_user_packs(1)]
        assert names == ['c_1_by_bot', 'a_1_by_bot', 'b_1_by_bot']

        views = await repository.get_user_packs(1)
        assert views[0].is_favorite and not views[1].is_favorite
        assert b.id in {v.pack.id for v in views}

    @pytest.mark.asyncio
    async def test_toggle_twice(self, database):
        pack = await repository.create_pack(1, 'a_1_by_bot', 'A')
        assert await repository.toggle_favorite(1, pack.id) is True
        assert await repository.toggle_favorite(1, pack.id) is False

    @pytest.mark.asyncio
    async def test_toggle_without_membership(self, database):
        pack = await repository.create_pack(1, 'a_1_by_bot', 'A')
        with pytest.raises(InputError) as exc:
            await repository.toggle_favorite(2, pack.id)
        assert exc.value.code == 'no_membership'

    @pytest.mark.asyncio
    async def test_only_own_packs_listed(self, database):
        await repository.create_pack(1, 'a_1_by_bot', 'A')
        assert await repository.get_user_packs(2) == []


class TestRemoval:
    """Tests for remove_membership."""

    @pytest.mark.asyncio
    async def test_last_owner_removal_deletes_pack(self, database):
        pack = await repository.create_pack(1, 'a_1_by_bot', 'A')
        await repository.add_sticker(pack.id, 'f0')
        assert await repository.remove_membership(1, pack.id) is True
        assert await repository.get_pack(pack.id) is None
        assert await repository.get_pack_stickers(pack.id) == []

    @pytest.mark.asyncio
    async def test_shared_pack_survives(self, database):
        pack = await repository.create_pack(1, 'a_1_by_bot', 'A')
        await repository.add_external_pack(2, 'a_1_by_bot')
        assert await repository.remove_membership(1, pack.id) is False
        assert await repository.get_pack(pack.id) is not None
        assert [v.pack.id for v in await repository.get_user_packs(2)] == [pack.id]

    @pytest.mark.asyncio
    async def test_last_membership_of_foreign_pack_deletes_it(self, database):
        pack = await repository.create_pack(1, 'a_1_by_bot', 'A')
        await repository.add_sticker(pack.id, 'f0')
        await repository.add_external_pack(2, 'a_1_by_bot')
        assert await repository.remove_membership(1, pack.id) is False
        assert await repository.get_pack_stickers(pack.id) != []
        # user 2 does not own the pack but holds the last membership
        assert await repository.remove_membership(2, pack.id) is True
        assert await repository.get_pack(pack.id) is None
        assert await repository.get_pack_stickers(pack.id) == []

    @pytest.mark.asyncio
    async def test_last_membership_deletes_pack_even_when_owned(self, database):
        pack = await repository.create_pack(1, 'a_1_by_bot', 'A')
        await repository.add_sticker(pack.id, 'f0')
        await repository.add_external_pack(2, 'a_1_by_bot')
        assert await repository.remove_membership(2, pack.id) is False
        assert (await repository.get_pack(pack.id)).owner_id == 1
        # the owner leaving last still removes the row
        assert await repository.remove_membership(1, pack.id) is True
        assert await repository.get_pack(pack.id) is None
        assert await repository.get_pack_stickers(pack.id) == []


class TestStats:
    """Tests for get_stats."""

    @pytest.mark.asyncio
    async def test_counts(self, database):
        pack = await repository.create_pack(1, 'a_1_by_bot', 'A')
        await repository.add_external_pack(2, 'b_1_by_other')
        await repository.add_sticker(pack.id, 'f0')
        stats = await repository.get_stats()
        assert (stats.total_packs, stats.total_stickers, stats.total_users) == (2, 1, 2)
