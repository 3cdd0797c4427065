"""Configuration settings for the app."""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

# Define base directory
BASE_DIR = Path(__file__).parent.parent.parent

# Load environment variables from .env file
env_file = ".env.test" if os.getenv("ENV") == "test" else ".env"
load_dotenv(env_file)


# Define data directories from environment variables
DATA_DIR = Path(os.getenv("DATA_DIR", "./data"))
LESSONS_DIR = Path(os.getenv("LESSONS_DIR", str(DATA_DIR / "lessons")))

# Lesson player settings
MAX_ADAPTIVE_RETRIES = 2  # times a missed exercise is put back into the queue
RECENT_RESULTS_LIMIT = 10


def get_parent_ids() -> List[int]:
    """Get parent Telegram IDs from environment variable."""
    return [int(id_) for id_ in os.getenv("PARENT_TELEGRAM_IDS", "").split(",") if id_.strip()]


def ensure_directories() -> None:
    """Ensure all required directories exist."""
    directories = [
        DATA_DIR,
        LESSONS_DIR,
    ]

    for directory in directories:
        directory.mkdir(parents=True, exist_ok=True)


@dataclass
class PathSettings:
    """Path configuration settings."""
    base_dir: Path = BASE_DIR
    data_dir: Path = DATA_DIR
    lessons_dir: Path = LESSONS_DIR


@dataclass
class DatabaseSettings:
    """Database configuration settings."""
    url: str = os.getenv("DATABASE_URL", "sqlite:///kidlingo.db")
    echo: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = os.getenv("LOG_LEVEL", "INFO")
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    dir: Optional[str] = os.getenv("LOG_DIR", None)
    rotation: str = os.getenv("LOG_ROTATION", "midnight")
    interval: int = int(os.getenv("LOG_INTERVAL", "1"))
    backup_count: int = int(os.getenv("LOG_BACKUP_COUNT", "7"))


@dataclass
class BotSettings:
    """Bot configuration settings."""
    token: str = os.getenv("TELEGRAM_BOT_TOKEN", "")
    parent_ids: List[int] = field(default_factory=get_parent_ids)  # users who get the parent dashboard


@dataclass
class LessonSettings:
    """Lesson player settings."""
    max_adaptive_retries: int = int(os.getenv("MAX_ADAPTIVE_RETRIES", str(MAX_ADAPTIVE_RETRIES)))
    recent_results_limit: int = int(os.getenv("RECENT_RESULTS_LIMIT", str(RECENT_RESULTS_LIMIT)))


@dataclass
class MonitoringSettings:
    """Prometheus metrics settings."""
    enabled: bool = os.getenv("METRICS_ENABLED", "false").lower() == "true"
    port: int = int(os.getenv("METRICS_PORT", "9090"))


def get_path_settings() -> PathSettings:
    """Get path settings."""
    return PathSettings()


def get_database_settings() -> DatabaseSettings:
    """Get database settings."""
    return DatabaseSettings()


def get_logging_settings() -> LoggingSettings:
    """Get logging settings."""
    return LoggingSettings()


def get_bot_settings() -> BotSettings:
    """Get bot settings."""
    return BotSettings()


def get_lesson_settings() -> LessonSettings:
    """Get lesson settings."""
    return LessonSettings()


def get_monitoring_settings() -> MonitoringSettings:
    """Get monitoring settings."""
    return MonitoringSettings()


@dataclass
class Settings:
    """Main settings class that combines all configuration settings."""
    paths: PathSettings = field(default_factory=get_path_settings)
    database: DatabaseSettings = field(default_factory=get_database_settings)
    logging: LoggingSettings = field(default_factory=get_logging_settings)
    bot: BotSettings = field(default_factory=get_bot_settings)
    lessons: LessonSettings = field(default_factory=get_lesson_settings)
    monitoring: MonitoringSettings = field(default_factory=get_monitoring_settings)

    def validate(self) -> None:
        """Validate settings and raise ValueError if invalid."""
        if not self.bot.token:
            raise ValueError("TELEGRAM_BOT_TOKEN is required")

        if self.lessons.max_adaptive_retries < 0:
            raise ValueError("MAX_ADAPTIVE_RETRIES cannot be negative")

        if self.lessons.recent_results_limit < 1:
            raise ValueError("RECENT_RESULTS_LIMIT must be positive")


# Create global settings instance
settings = Settings()
