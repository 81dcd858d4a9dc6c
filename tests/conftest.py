"""
Shared test fixtures and configuration.
"""

import io
import os
import tempfile

import pytest
import pytest_asyncio
from PIL import Image

# Set test environment variables before importing stickerbot modules
_TEST_DIR = tempfile.mkdtemp(prefix='stickerbot_test_')
os.environ.setdefault('API_ID', '1')
os.environ.setdefault('API_HASH', 'test-api-hash')
os.environ.setdefault('BOT_TOKEN', '1:test-token')
os.environ.setdefault('DATA_DIR', _TEST_DIR)
os.environ.setdefault('DB_URL', f'sqlite+aiosqlite:///{_TEST_DIR}/test.db')

from stickerbot import db  # noqa: E402


@pytest_asyncio.fixture
async def database():
    await db.create_all()
    yield db
    await db.drop_all()
    await db.engine.dispose()


def make_image(width: int, height: int, color=(255, 0, 0, 255), fmt: str = 'PNG') -> bytes:
    out = io.BytesIO()
    mode = 'RGBA' if fmt == 'PNG' else 'RGB'
    Image.new(mode, (width, height), color if mode == 'RGBA' else color[:3]).save(out, format=fmt)
    return out.getvalue()


@pytest.fixture
def png():
    return make_image
