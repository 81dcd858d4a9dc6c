"""
Unit tests for pack naming helpers.
"""

import re

from stickerbot.utils import (
    extract_pack_name,
    generate_pack_name,
    is_valid_pack_name,
    pack_link,
    sanitize_pack_name,
    validate_pack_title,
)


class TestPackNames:
    """Tests for slug generation."""

    def test_sanitize(self):
        assert sanitize_pack_name('My Cool Pack!') == 'mycoolpack'
        assert sanitize_pack_name('Котики 2024') == '2024'
        assert len(sanitize_pack_name('a' * 100)) == 40

    def test_generate(self):
        name = generate_pack_name('My Cool Pack', 'StickerBot', number=7)
        assert name == 'mycoolpack_7_by_StickerBot'

    def test_generate_random_suffix(self):
        name = generate_pack_name('Cats', 'bot')
        slug, number, by, bot = name.split('_')
        assert slug == 'cats'
        assert 0 <= int(number) <= 999
        assert (by, bot) == ('by', 'bot')

    def test_is_valid(self):
        assert is_valid_pack_name('cats_by_bot')
        assert not is_valid_pack_name('Cats')
        assert not is_valid_pack_name('')
        assert not is_valid_pack_name('a' * 65)
        assert not is_valid_pack_name('has space')

    def test_title(self):
        assert validate_pack_title('  Cats  ') == 'Cats'
        assert validate_pack_title('ab') is None
        assert validate_pack_title('   ab  ') is None


class TestExtractPackName:
    """Tests for link / slug parsing."""

    def test_links(self):
        assert extract_pack_name('https://t.me/addstickers/cats_by_bot') == 'cats_by_bot'
        assert extract_pack_name('t.me/addstickers/Cats') == 'Cats'
        assert extract_pack_name('http://www.telegram.me/addstickers/dogs/') == 'dogs'
        assert extract_pack_name('  https://telegram.dog/addstickers/x1  ') == 'x1'

    def test_bare_slug(self):
        assert extract_pack_name('cats_by_bot') == 'cats_by_bot'

    def test_rejects(self):
        assert extract_pack_name('hello world') is None
        assert extract_pack_name('https://example.com/addstickers/cats') is None
        assert extract_pack_name('https://t.me/addemoji/cats') is None
        assert extract_pack_name('') is None

    def test_link_round_trip(self):
        assert extract_pack_name(pack_link('cats_by_bot')) == 'cats_by_bot'


def test_generated_name_with_fixed_number():
    assert re.fullmatch(
        r'mycoolpack_42_by_stickerbot', generate_pack_name('My Cool Pack!!', 'stickerbot', number=42)
    )
