"""
Centralized configuration for the Bloker game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.timings.BETTING_SECONDS)
"""

import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)


def get_env(key: str, default: str = "") -> str:
    """Get environment variable with default."""
    return os.environ.get(key, default)


def get_env_bool(key: str, default: bool = False) -> bool:
    """Get boolean environment variable."""
    val = os.environ.get(key, "").lower()
    if val in ("true", "1", "yes", "on"):
        return True
    if val in ("false", "0", "no", "off"):
        return False
    return default


def get_env_int(key: str, default: int = 0) -> int:
    """Get integer environment variable."""
    try:
        return int(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class GameTimings:
    """Phase deadlines and background sweep cadence, in seconds."""
    SETTINGS_VOTE_SECONDS: int = 60
    BETTING_SECONDS: int = 25
    SWEEP_INTERVAL_SECONDS: int = 5
    FINISHED_SESSION_TTL_SECONDS: int = 5


@dataclass
class GameDefaults:
    """Settings applied when a side lets the vote deadline pass."""
    num_decks: int = 1
    allow_peek: bool = True
    max_decks: int = 4


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Backing services (empty = in-process fallbacks)
    REDIS_URL: str = ""
    POSTGRES_URL: str = ""

    # Starting balance for players new to the ledger
    STARTING_CREDITS: int = 2500

    timings: GameTimings = field(default_factory=GameTimings)
    game_defaults: GameDefaults = field(default_factory=GameDefaults)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            REDIS_URL=get_env("REDIS_URL", ""),
            POSTGRES_URL=get_env("POSTGRES_URL", ""),
            STARTING_CREDITS=get_env_int("STARTING_CREDITS", 2500),
            timings=GameTimings(
                SETTINGS_VOTE_SECONDS=get_env_int("SETTINGS_VOTE_SECONDS", 60),
                BETTING_SECONDS=get_env_int("BETTING_SECONDS", 25),
                SWEEP_INTERVAL_SECONDS=get_env_int("SWEEP_INTERVAL_SECONDS", 5),
                FINISHED_SESSION_TTL_SECONDS=get_env_int("FINISHED_SESSION_TTL_SECONDS", 5),
            ),
            game_defaults=GameDefaults(
                num_decks=get_env_int("DEFAULT_NUM_DECKS", 1),
                allow_peek=get_env_bool("DEFAULT_ALLOW_PEEK", True),
                max_decks=get_env_int("MAX_DECKS", 4),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
