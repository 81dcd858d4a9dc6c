import functools
from contextlib import asynccontextmanager
from contextvars import ContextVar

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from stickerbot.config import config

engine = create_async_engine(config.db_url)
_async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

_session_ctx: ContextVar[AsyncSession | None] = ContextVar('session', default=None)


class _AsyncSessionWrapper:
    def __getattr__(self, item):
        current = _session_ctx.get()
        if current is None:
            raise RuntimeError('No database session bound, use new_session()')
        return getattr(current, item)


session: AsyncSession = _AsyncSessionWrapper()


@asynccontextmanager
async def new_session():
    """
    Open a session bound to the current context and run everything inside it
    as one transaction. Any exception rolls the transaction back and is
    re-raised.
    """
    async with _async_session() as request_session:
        token = _session_ctx.set(request_session)
        try:
            async with request_session.begin():
                yield request_session
        finally:
            _session_ctx.reset(token)


def has_session() -> bool:
    return _session_ctx.get() is not None


def transactional(func):
    """
    Run the decorated coroutine in its own transaction, or join the one already
    bound to the context so compound operations compose.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        if has_session():
            return await func(*args, **kwargs)
        async with new_session():
            return await func(*args, **kwargs)

    return wrapper


async def create_all():
    from stickerbot.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_all():
    from stickerbot.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def fetch_val(expr, values: dict = None):
    res = await session.execute(expr, values)
    return res.scalars().first()


async def fetch_vals(expr, values: dict = None, unique: bool = False):
    res = await session.execute(expr, values)
    if unique:
        res = res.unique()
    return res.scalars().all()


async def fetch_all(expr, values: dict = None):
    res = await session.execute(expr, values)
    return res.fetchall()


__all__ = [
    'engine',
    'new_session',
    'session',
    'has_session',
    'transactional',
    'create_all',
    'drop_all',
    'fetch_val',
    'fetch_vals',
    'fetch_all',
]
