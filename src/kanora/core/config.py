import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Project Paths
    BASE_DIR: Path = Path(__file__).resolve().parent.parent.parent
    DATA_DIR: Path = Path(
        os.getenv("KANORA_DATA_DIR", str(BASE_DIR.parent / "data"))
    )

    # Database
    DB_NAME: str = "kanora.db"

    @property
    def DB_PATH(self) -> Path:
        return self.DATA_DIR / self.DB_NAME

    @property
    def DB_URL(self) -> str:
        # Use forward slashes so Windows paths work in the URL (no backslash escapes)
        path = self.DB_PATH.resolve().as_posix()
        return f"sqlite+aiosqlite:///{path}"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_RETENTION: str = "10 days"
    LOG_ROTATION: str = "10 MB"

    DB_ECHO: bool = False  # SQLAlchemy query logging

    # Music folders
    MUSIC_INBOX_PATH: Path = DATA_DIR / "music" / "inbox"
    MUSIC_LIBRARY_PATH: Path = DATA_DIR / "music" / "library"

    # Defaults for the dynamic system settings (overridden by system_settings rows)
    AUTO_ORGANIZE: bool = True
    ENABLE_TRANSCODING: bool = True

    # Inbox watcher
    WATCH_DEBOUNCE_SECONDS: float = 3.0
    WATCH_EVENT_BUFFER: int = 1024

    # Job queue
    JOB_MAX_ATTEMPTS: int = 3
    JOB_BACKOFF_BASE_SECONDS: float = 1.0  # delay = base * 2^attempts

    # I/O
    HASH_CHUNK_SIZE: int = 64 * 1024
    STREAM_CHUNK_SIZE: int = 64 * 1024

    # External tools
    FFMPEG_BINARY: str = "ffmpeg"


settings = Settings()

# Ensure data directory exists
settings.DATA_DIR.mkdir(parents=True, exist_ok=True)
