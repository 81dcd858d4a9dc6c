import random
import re
from typing import Optional

PACK_NAME_RE = re.compile(r'^[a-z0-9_]{1,64}$')
PACK_LINK_RE = re.compile(
    r'^(?:https?://)?(?:www\.)?(?:t\.me|telegram\.me|telegram\.dog)/addstickers/([A-Za-z0-9_]{1,64})/?$',
    re.IGNORECASE,
)
MIN_TITLE_LENGTH = 3
TITLE_SLUG_LENGTH = 40


def sanitize_pack_name(title: str) -> str:
    """Lowercase the title and keep only [a-z0-9], at most 40 characters"""
    return re.sub(r'[^a-z0-9]', '', title.lower())[:TITLE_SLUG_LENGTH]


def generate_pack_name(
    title: str, bot_username: str, number: Optional[int] = None
) -> str:
    if number is None:
        number = random.randint(0, 999)
    return f'{sanitize_pack_name(title)}_{number}_by_{bot_username}'


def is_valid_pack_name(name: str) -> bool:
    return bool(PACK_NAME_RE.fullmatch(name))


def extract_pack_name(text: str) -> Optional[str]:
    """
    Accepts a bare slug or an addstickers link and returns the slug,
    or None when the text is neither.
    """
    text = text.strip()
    m = PACK_LINK_RE.match(text)
    if m:
        # platform slugs are case-insensitive, links keep them as typed
        return m.group(1)
    if is_valid_pack_name(text):
        return text
    return None


def pack_link(name: str) -> str:
    return f'https://t.me/addstickers/{name}'


def validate_pack_title(title: str) -> Optional[str]:
    title = title.strip()
    if len(title) < MIN_TITLE_LENGTH:
        return None
    return title


__all__ = [
    'PACK_NAME_RE',
    'MIN_TITLE_LENGTH',
    'sanitize_pack_name',
    'generate_pack_name',
    'is_valid_pack_name',
    'extract_pack_name',
    'pack_link',
    'validate_pack_title',
]
