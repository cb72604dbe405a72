"""
Centralized configuration for the Busfahrer game server.

Configuration is loaded from (in order of precedence):
1. Environment variables
2. .env file (if exists)
3. Default values

Usage:
    from config import config
    print(config.PORT)
    print(config.rules.PYRAMID_HEIGHT)
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


def get_env_float(key: str, default: float = 0.0) -> float:
    """Get float environment variable."""
    try:
        return float(os.environ.get(key, str(default)))
    except ValueError:
        return default


@dataclass
class GameRules:
    """
    Rule policy knobs.

    The drink formulas and thresholds are house rules rather than fixed
    facts, so every number the engine uses lives here.
    """
    PYRAMID_HEIGHT: int = 4
    CARDS_PER_PLAYER: int = 0           # 0 = split the rest of the deck evenly
    REVEAL_MODE: str = "any"            # "any" player or only the "master"
    BUSFAHRER_MODE: str = "most"        # "most", "fewest" or "random"
    PHASE3_PENALTY_LIMIT: int = 30
    PHASE3_ESCALATING_PENALTY: bool = True
    PHASE3_GRACE_SECONDS: float = 30.0


@dataclass
class ServerConfig:
    """Server configuration."""
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    # Session settings
    MAX_PLAYERS_PER_SESSION: int = 8
    MAX_SPECTATORS_PER_SESSION: int = 20
    MIN_PLAYERS_TO_START: int = 2
    SESSION_CODE_LENGTH: int = 5

    rules: GameRules = field(default_factory=GameRules)

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """Load configuration from environment variables."""
        return cls(
            HOST=get_env("HOST", "0.0.0.0"),
            PORT=get_env_int("PORT", 8000),
            DEBUG=get_env_bool("DEBUG", False),
            LOG_LEVEL=get_env("LOG_LEVEL", "INFO"),
            ENVIRONMENT=get_env("ENVIRONMENT", "development"),
            MAX_PLAYERS_PER_SESSION=get_env_int("MAX_PLAYERS_PER_SESSION", 8),
            MAX_SPECTATORS_PER_SESSION=get_env_int("MAX_SPECTATORS_PER_SESSION", 20),
            MIN_PLAYERS_TO_START=get_env_int("MIN_PLAYERS_TO_START", 2),
            SESSION_CODE_LENGTH=get_env_int("SESSION_CODE_LENGTH", 5),
            rules=GameRules(
                PYRAMID_HEIGHT=get_env_int("PYRAMID_HEIGHT", 4),
                CARDS_PER_PLAYER=get_env_int("CARDS_PER_PLAYER", 0),
                REVEAL_MODE=get_env("REVEAL_MODE", "any"),
                BUSFAHRER_MODE=get_env("BUSFAHRER_MODE", "most"),
                PHASE3_PENALTY_LIMIT=get_env_int("PHASE3_PENALTY_LIMIT", 30),
                PHASE3_ESCALATING_PENALTY=get_env_bool("PHASE3_ESCALATING_PENALTY", True),
                PHASE3_GRACE_SECONDS=get_env_float("PHASE3_GRACE_SECONDS", 30.0),
            ),
        )


# Global config instance - loaded once at module import
config = ServerConfig.from_env()


def reload_config() -> ServerConfig:
    """Reload configuration from environment (useful for testing)."""
    global config
    config = ServerConfig.from_env()
    return config
