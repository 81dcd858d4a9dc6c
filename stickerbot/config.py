from pathlib import Path
from pydantic_settings import BaseSettings


class Config(BaseSettings):
    db_url: str = 'sqlite+aiosqlite:///data/stickerpacks.db'
    data_dir: Path = Path('data')
    debug: bool = False

    api_id: int
    api_hash: str
    bot_token: str
    # resolved from get_me() at start when empty
    bot_username: str = ''

    host: str = '127.0.0.1'
    port: int = 8000

    ffmpeg_path: str = 'ffmpeg'
    ffprobe_path: str = 'ffprobe'
    download_timeout: float = 30.0

    session_ttl_hours: float = 6
    sweep_interval_minutes: float = 60
    default_emoji: str = '😊'


config = Config(_env_file='.env')
SESSION_FILE = config.data_dir / 'bot.session'
TEMP_DIR = config.data_dir / 'temp'
LOGS_DIR = config.data_dir / 'logs'

config.data_dir.mkdir(parents=True, exist_ok=True)
TEMP_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)

__all__ = ['config', 'SESSION_FILE', 'TEMP_DIR', 'LOGS_DIR']
