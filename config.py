import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping

ENV_PREFIX = "TASKS"


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env(environ: Mapping[str, str], name: str, default: str) -> str:
    raw = environ.get(_k(name))
    if raw is None or raw.strip() == "":
        return default
    return raw.strip()


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(_k(name))
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    db_path: str = "todo.db"
    jwt_secret: str = "your-secret-key"
    jwt_leeway: int = 0
    token_ttl: int = 24 * 60 * 60
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"
    environment: str = "development"
    host: str = "127.0.0.1"
    port: int = 8000

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables (TASKS_* prefix)."""
    if environ is None:
        environ = os.environ
    defaults = Settings()
    return Settings(
        db_path=_env(environ, "DB_PATH", defaults.db_path),
        jwt_secret=_env(environ, "JWT_SECRET", defaults.jwt_secret),
        jwt_leeway=_env_int(environ, "JWT_LEEWAY", defaults.jwt_leeway),
        token_ttl=_env_int(environ, "TOKEN_TTL", defaults.token_ttl),
        api_prefix=_env(environ, "API_PREFIX", defaults.api_prefix).rstrip("/"),
        log_level=_env(environ, "LOG_LEVEL", defaults.log_level).upper(),
        environment=_env(environ, "ENV", defaults.environment).lower(),
        host=_env(environ, "HOST", defaults.host),
        port=_env_int(environ, "PORT", defaults.port),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
