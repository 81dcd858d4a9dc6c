import functools
import logging
import re
from typing import Callable, Awaitable, Type

import telethon.sessions
from telethon import TelegramClient, events
from telethon.events import StopPropagation
from telethon.events.common import EventCommon, EventBuilder, name_inner_event
from telethon.tl import types, custom

logger = logging.getLogger(__name__)

EventHandler = Callable[[EventCommon], Awaitable[None]]
MiddlewareCallback = Callable[[], Awaitable[None]]
Middleware = Callable[[EventCommon, MiddlewareCallback], Awaitable[None]]

DEFAULT_ERROR_TEXT = 'Something went wrong. Please try again later.'


def is_raw(event_builder: EventBuilder | Type[EventBuilder]):
    return event_builder is events.Raw or isinstance(event_builder, events.Raw)


def _error_text(client: 'BotClient') -> str:
    return client.error_text or DEFAULT_ERROR_TEXT


async def _report_error(event: EventCommon, builder: EventBuilder):
    client: BotClient = event.client
    if isinstance(builder, CallbackQuery) and isinstance(event, CallbackQuery.Event):
        if builder.auto_error_message:
            await event.answer(_error_text(client))
        return
    if isinstance(builder, (NewMessage, Album)) and getattr(builder, 'auto_error_message', False):
        if event.chat_id:
            await client.send_message(event.chat_id, _error_text(client))


async def _handler_wrapper(
    event: EventCommon, builder: EventBuilder, callback: MiddlewareCallback
):
    """
    Last link of the middleware chain: answers callback queries and turns any
    unhandled exception into a logged error plus a generic reply.
    """
    try:
        res = await callback()
        if (
            isinstance(builder, CallbackQuery)
            and isinstance(event, CallbackQuery.Event)
            and builder.auto_answer
        ):
            if res is not None and not isinstance(res, str):
                raise ValueError(
                    'CallbackQuery handler should return a string when auto_answer is True'
                )
            await event.answer(res)
    except StopPropagation:
        raise
    except Exception:
        if isinstance(callback, functools.partial):
            func = callback.func
        else:
            func = callback
        func_name = getattr(func, '__name__', repr(func))
        logger.exception('Unhandled exception on %s', func_name)
        try:
            await _report_error(event, builder)
        except Exception:
            logger.exception('Failed to report error to chat')
    finally:
        stop_propagation = isinstance(builder, Command) and builder.stop_propagation
        if stop_propagation:
            raise StopPropagation


class BotClient(TelegramClient):
    me: types.User
    _middlewares: list[Middleware]

    def __init__(
        self,
        session: str | telethon.sessions.Session,
        api_id: int,
        api_hash: str,
        error_text: str | None = None,
        **kwargs,
    ):
        self._middlewares = []
        self.error_text = error_text
        super().__init__(session, api_id, api_hash, **kwargs)
        self.parse_mode = 'html'

    async def start(self, bot_token: str):
        await super().start(bot_token=bot_token)
        self.me = await self.get_me()

    async def _handle_event(
        self, handler: EventHandler, builder: EventBuilder, event: EventCommon
    ):
        callback = functools.partial(handler, event)
        callback = functools.partial(_handler_wrapper, event, builder, callback)
        if not is_raw(builder):
            for middleware in reversed(self._middlewares):
                callback = functools.partial(middleware, event, callback)
        await callback()

    def add_event_handler(
        self, callback: EventHandler, event_builder: EventBuilder = None
    ):
        if is_raw(event_builder):
            logger.warning(
                'Handler for events.Raw added. Middlewares will not be applied for that event.'
            )
        handler = functools.partial(
            self._handle_event,
            callback,
            event_builder,
        )
        return super().add_event_handler(handler, event_builder)

    def add_middleware(self, middleware: Middleware):
        self._middlewares.append(middleware)


class Message(custom.Message):
    """
    This class only exists to provide type hints
    """

    client: BotClient


def filter_pm_only(self, event) -> bool:
    return not self.pm_only or event.is_private


@name_inner_event
class NewMessage(events.NewMessage):
    def __init__(
        self,
        chats=None,
        *,
        blacklist_chats: bool = False,
        func: 'Callable[[NewMessage.Event], bool]' = None,
        incoming: bool = None,
        outgoing: bool = None,
        from_users=None,
        forwards: bool = None,
        pattern: re.Pattern | str = None,
        pm_only: bool = False,
        auto_error_message: bool = True,
    ):
        self.pm_only = pm_only
        self.auto_error_message = auto_error_message
        super().__init__(
            chats,
            blacklist_chats=blacklist_chats,
            func=func,
            incoming=incoming,
            outgoing=outgoing,
            from_users=from_users,
            forwards=forwards,
            pattern=pattern,
        )

    def filter(self, event: 'NewMessage.Event'):
        if not filter_pm_only(self, event.message):
            return False
        return super().filter(event)

    class Event(events.NewMessage.Event):
        client: BotClient
        message: Message
        pattern_match: re.Match


@name_inner_event
class Command(NewMessage):
    def __init__(
        self,
        command: str,
        *,
        prefix: str = '/',
        regex: bool = False,
        stop_propagation: bool = True,
        pm_only: bool = False,
        func: 'Callable[[NewMessage.Event], bool]' = None,
    ):
        self.command = command
        self.prefix = prefix
        self.regex = re.compile(command) if regex else None
        self.stop_propagation = stop_propagation
        super().__init__(pm_only=pm_only, func=func)

    def filter(self, event: 'Command.Event'):
        if not filter_pm_only(self, event.message):
            return False
        message: Message = event.message
        client: BotClient = event.client
        if message.out or message.fwd_from:
            return
        try:
            full_command, *args = message.raw_text.split(maxsplit=1)
        except ValueError:
            return
        if full_command[0] != self.prefix:
            return
        command, _, mention = full_command[1:].partition('@')
        if self.regex:
            match = self.regex.fullmatch(command)
            if not match:
                return
            event.pattern_match = match
        elif command.lower() != self.command.lower():
            return
        if mention and mention.lower() != (client.me.username or '').lower():
            return
        event.command = command
        event.args = args[0] if args else ''
        return True

    class Event(NewMessage.Event):
        client: BotClient
        command: str
        args: str

        def __init__(self, message):
            super().__init__(message)
            self.command = None
            self.args = None


@name_inner_event
class Album(events.Album):
    """Media group delivered as one event"""

    def __init__(
        self,
        chats=None,
        *,
        blacklist_chats: bool = False,
        func: 'Callable[[Album.Event], bool]' = None,
        pm_only: bool = False,
        auto_error_message: bool = True,
    ):
        self.pm_only = pm_only
        self.auto_error_message = auto_error_message
        super().__init__(chats, blacklist_chats=blacklist_chats, func=func)

    def filter(self, event: 'Album.Event'):
        if not filter_pm_only(self, event):
            return False
        return super().filter(event)

    class Event(events.Album.Event):
        client: BotClient
        messages: list[Message]


@name_inner_event
class CallbackQuery(events.CallbackQuery):
    """Every button press; the handler routes on the payload itself"""

    def __init__(
        self,
        chats=None,
        *,
        blacklist_chats=False,
        func: 'Callable[[CallbackQuery.Event], bool]' = None,
        auto_answer=True,
        auto_error_message=True,
    ):
        self.auto_answer = auto_answer
        self.auto_error_message = auto_error_message
        super().__init__(chats, blacklist_chats=blacklist_chats, func=func)

    class Event(events.CallbackQuery.Event):
        client: BotClient
        query: types.UpdateBotCallbackQuery


__all__ = [
    'EventHandler',
    'MiddlewareCallback',
    'Middleware',
    'BotClient',
    'Message',
    'NewMessage',
    'Command',
    'Album',
    'CallbackQuery',
]
