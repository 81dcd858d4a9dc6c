"""
Tests for the HTTP health and stats endpoints.
"""

import httpx
import pytest

from stickerbot import repository
from stickerbot.web import app


def client():
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url='http://test')


class TestWeb:
    """Tests for the FastAPI app."""

    @pytest.mark.asyncio
    async def test_health(self):
        async with client() as c:
            response = await c.get('/health')
        assert response.status_code == 200
        assert response.json() == {'status': 'ok'}

    @pytest.mark.asyncio
    async def test_stats(self, database):
        pack = await repository.create_pack(1, 'a_1_by_bot', 'A')
        await repository.add_sticker(pack.id, 'f0')
        async with client() as c:
            response = await c.get('/stats')
        assert response.json() == {'packs': 1, 'stickers': 1, 'users': 1}
