import enum


class ErrorKind(enum.Enum):
    INPUT = 'input'
    CONVERSION = 'conversion'
    PLATFORM = 'platform'
    PERSISTENCE = 'persistence'
    CLEANUP = 'cleanup'


class StickerBotError(Exception):
    """
    Base error carrying a kind callers can branch on, a human readable reason
    and, for platform failures, the raw platform error code for diagnostics.
    """

    kind: ErrorKind = ErrorKind.INPUT

    def __init__(self, reason: str, *, code: str | None = None, kind: ErrorKind | None = None):
        super().__init__(reason)
        self.reason = reason
        self.code = code
        if kind is not None:
            self.kind = kind

    def __repr__(self):
        return f'{type(self).__name__}(kind={self.kind.value!r}, reason={self.reason!r}, code={self.code!r})'


class InputError(StickerBotError):
    kind = ErrorKind.INPUT


class ConversionError(StickerBotError):
    kind = ErrorKind.CONVERSION


class PlatformFailure(enum.Enum):
    INVALID_NAME = 'invalid_name'
    NAME_OCCUPIED = 'name_occupied'
    SET_NOT_FOUND = 'set_not_found'
    TOO_MANY_SETS = 'too_many_sets'
    TOO_MANY_STICKERS = 'too_many_stickers'
    INVALID_DIMENSIONS = 'invalid_dimensions'
    INVALID_ANIMATED = 'invalid_animated'
    UNKNOWN = 'unknown'


class PublishError(StickerBotError):
    kind = ErrorKind.PLATFORM

    def __init__(
        self, reason: str, *, code: str | None = None, failure: PlatformFailure = PlatformFailure.UNKNOWN
    ):
        super().__init__(reason, code=code)
        self.failure = failure


class PersistenceError(StickerBotError):
    kind = ErrorKind.PERSISTENCE


class PlatformError(Exception):
    """Raised by PackPlatformAPI implementations with the raw platform code."""

    def __init__(self, code: str, message: str = ''):
        super().__init__(message or code)
        self.code = code
        self.message = message or code


__all__ = [
    'ErrorKind',
    'StickerBotError',
    'InputError',
    'ConversionError',
    'PlatformFailure',
    'PublishError',
    'PersistenceError',
    'PlatformError',
]
