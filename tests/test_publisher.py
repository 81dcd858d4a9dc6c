"""
Tests for PackPublisher: platform error mapping and local bookkeeping.
"""

import logging
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from stickerbot import repository
from stickerbot.errors import (
    ErrorKind,
    InputError,
    PersistenceError,
    PlatformError,
    PlatformFailure,
    PublishError,
)
from stickerbot.interfaces import StickerItem, StickerSetInfo, StickerSetItem
from stickerbot.models import StickerType
from stickerbot.publisher import PackPublisher, translate_platform_error

ITEM = StickerItem(StickerType.STATIC, b'webp-bytes')


def make_platform(items=None, title='Cats', name='cats_1_by_bot'):
    platform = AsyncMock()
    platform.get_sticker_set.return_value = StickerSetInfo(
        name=name,
        title=title,
        items=[StickerSetItem(file_id) for file_id in (items or ['file0'])],
    )
    return platform


class TestErrorMapping:
    """Tests for translate_platform_error."""

    def test_known_codes(self):
        cases = {
            'PACK_SHORT_NAME_OCCUPIED': PlatformFailure.NAME_OCCUPIED,
            'PACK_SHORT_NAME_INVALID': PlatformFailure.INVALID_NAME,
            'STICKERSET_INVALID': PlatformFailure.SET_NOT_FOUND,
            'STICKERS_TOO_MUCH': PlatformFailure.TOO_MANY_STICKERS,
            'STICKERSETS_TOO_MUCH': PlatformFailure.TOO_MANY_SETS,
            'STICKER_PNG_DIMENSIONS': PlatformFailure.INVALID_DIMENSIONS,
            'STICKER_VIDEO_LONG': PlatformFailure.INVALID_ANIMATED,
        }
        for code, failure in cases.items():
            error = translate_platform_error(PlatformError(code))
            assert error.failure is failure
            assert error.code == code
            assert error.kind is ErrorKind.PLATFORM

    def test_unknown_code_keeps_message(self):
        error = translate_platform_error(PlatformError('FLOOD_WAIT_X', 'A wait of 30 seconds'))
        assert error.failure is PlatformFailure.UNKNOWN
        assert error.reason == 'A wait of 30 seconds'
        assert error.code == 'FLOOD_WAIT_X'


class TestCreatePack:
    """Tests for PackPublisher.create_pack."""

    @pytest.mark.asyncio
    async def test_records_pack_and_first_sticker(self, database):
        platform = make_platform()
        publisher = PackPublisher(platform)

        result = await publisher.create_pack(1, 'cats_1_by_bot', 'Cats', ITEM, '🐱')

        platform.create_sticker_set.assert_awaited_once_with(
            1, 'cats_1_by_bot', 'Cats', ITEM, '🐱'
        )
        assert result.pack.name == 'cats_1_by_bot'
        assert result.sticker.file_id == 'file0'
        assert result.sticker.position == 0
        assert await repository.can_user_edit(1, 'cats_1_by_bot')

    @pytest.mark.asyncio
    async def test_platform_rejection_records_nothing(self, database):
        platform = make_platform()
        platform.create_sticker_set.side_effect = PlatformError('PACK_SHORT_NAME_OCCUPIED')
        publisher = PackPublisher(platform)

        with pytest.raises(PublishError) as exc:
            await publisher.create_pack(1, 'cats_1_by_bot', 'Cats', ITEM, '🐱')

        assert exc.value.failure is PlatformFailure.NAME_OCCUPIED
        assert await repository.get_pack_by_name('cats_1_by_bot') is None

    @pytest.mark.asyncio
    async def test_missing_file_id_is_tolerated(self, database):
        platform = make_platform()
        platform.get_sticker_set.side_effect = PlatformError('STICKERSET_INVALID')
        result = await PackPublisher(platform).create_pack(1, 'cats_1_by_bot', 'Cats', ITEM, '🐱')
        assert result.sticker.file_id is None

    @pytest.mark.asyncio
    async def test_reconciliation_gap(self, database, caplog):
        platform = make_platform()
        publisher = PackPublisher(platform)
        failing = AsyncMock(side_effect=OperationalError('INSERT', {}, Exception('disk full')))

        with patch.object(repository, 'add_sticker', failing):
            with caplog.at_level(logging.ERROR, logger='stickerbot.publisher'):
                with pytest.raises(PersistenceError):
                    await publisher.create_pack(1, 'cats_1_by_bot', 'Cats', ITEM, '🐱')

        platform.create_sticker_set.assert_awaited_once()
        assert 'Reconciliation gap' in caplog.text
        # pack and sticker rows are written together or not at all
        assert await repository.get_pack_by_name('cats_1_by_bot') is None


class TestAddSticker:
    """Tests for PackPublisher.add_sticker."""

    @pytest.mark.asyncio
    async def test_appends_with_next_file_id(self, database):
        platform = make_platform(items=['file0', 'file1'])
        publisher = PackPublisher(platform)
        pack = await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        await repository.add_sticker(pack.id, 'file0')

        result = await publisher.add_sticker(1, 'cats_1_by_bot', ITEM, '🐶')

        platform.add_sticker_to_set.assert_awaited_once_with(1, 'cats_1_by_bot', ITEM, '🐶')
        assert result.sticker.position == 1
        assert result.sticker.file_id == 'file1'
        assert result.sticker.emoji == '🐶'

    @pytest.mark.asyncio
    async def test_file_id_survives_earlier_gap(self, database):
        # the platform holds one sticker the local rows never recorded
        platform = make_platform(items=['file0', 'file1', 'file_gap', 'file_new'])
        pack = await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        await repository.add_sticker(pack.id, 'file0')
        await repository.add_sticker(pack.id, 'file1')

        result = await PackPublisher(platform).add_sticker(1, 'cats_1_by_bot', ITEM, '🐶')

        assert result.sticker.file_id == 'file_new'
        assert result.sticker.position == 2

    @pytest.mark.asyncio
    async def test_unknown_pack(self, database):
        platform = make_platform()
        with pytest.raises(InputError) as exc:
            await PackPublisher(platform).add_sticker(1, 'nope', ITEM, '🐶')
        assert exc.value.code == 'unknown_pack'
        platform.add_sticker_to_set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_read_only_pack(self, database):
        platform = make_platform()
        await repository.add_external_pack(1, 'theirs')
        with pytest.raises(InputError) as exc:
            await PackPublisher(platform).add_sticker(1, 'theirs', ITEM, '🐶')
        assert exc.value.code == 'not_editable'
        platform.add_sticker_to_set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_full_pack(self, database):
        platform = make_platform()
        platform.add_sticker_to_set.side_effect = PlatformError('STICKERS_TOO_MUCH')
        await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        with pytest.raises(PublishError) as exc:
            await PackPublisher(platform).add_sticker(1, 'cats_1_by_bot', ITEM, '🐶')
        assert exc.value.failure is PlatformFailure.TOO_MANY_STICKERS


class TestImportPack:
    """Tests for PackPublisher.import_pack."""

    @pytest.mark.asyncio
    async def test_foreign_pack_is_reference_only(self, database):
        platform = make_platform(name='theirs', title='Their pack')
        result = await PackPublisher(platform).import_pack(1, 'theirs')
        assert result.can_edit is False
        assert result.pack.owner_id is None
        assert result.pack.title == 'Their pack'

    @pytest.mark.asyncio
    async def test_own_pack_stays_editable(self, database):
        await repository.create_pack(1, 'cats_1_by_bot', 'Cats')
        result = await PackPublisher(make_platform()).import_pack(1, 'cats_1_by_bot')
        assert result.can_edit is True

    @pytest.mark.asyncio
    async def test_missing_set(self, database):
        platform = make_platform()
        platform.get_sticker_set.side_effect = PlatformError('STICKERSET_INVALID')
        with pytest.raises(PublishError) as exc:
            await PackPublisher(platform).import_pack(1, 'missing')
        assert exc.value.failure is PlatformFailure.SET_NOT_FOUND
        assert await repository.get_user_packs(1) == []
