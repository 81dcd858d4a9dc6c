from fastapi import FastAPI
import uvicorn

from stickerbot import repository
from stickerbot.config import config


app = FastAPI(title='stickerbot')


@app.get('/health')
async def health():
    return {'status': 'ok'}


@app.get('/stats')
async def stats():
    result = await repository.get_stats()
    return {
        'packs': result.total_packs,
        'stickers': result.total_stickers,
        'users': result.total_users,
    }


async def serve():
    server = uvicorn.Server(
        uvicorn.Config(app, host=config.host, port=config.port, log_config=None)
    )
    await server.serve()


if __name__ == '__main__':
    uvicorn.run(app, host=config.host, port=config.port)
