from stickerbot.models.base import Base
from stickerbot.models.user import User
from stickerbot.models.pack import StickerPack, Sticker, StickerType
from stickerbot.models.user_pack import UserPack

__all__ = ['Base', 'User', 'StickerPack', 'Sticker', 'StickerType', 'UserPack']
