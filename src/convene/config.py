import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load the appropriate .env file on module import
env = os.environ.get("CONVENE_ENV", "development").lower()
env_file = f".env.{env}"
if os.path.exists(env_file):
    load_dotenv(env_file)
else:
    # Fall back to the default .env file
    load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class Config:
    environment: str
    database_url: str
    redis_url: str
    cache_backend: str = "memory"
    cache_prefix: str = "convene"
    max_hierarchy_depth: int = 32
    activity_log_enabled: bool = True
    activity_log_buffer_size: int = 20
    default_audience_color: str = "#3788d8"

    @classmethod
    def from_env(cls) -> "Config":
        return cls(
            environment=env,
            database_url=os.environ.get(
                "DATABASE_URL", "postgresql://localhost:5432/convene"
            ),
            redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
            cache_backend=os.environ.get("CACHE_BACKEND", "memory").lower(),
            cache_prefix=os.environ.get("CACHE_PREFIX", "convene"),
            max_hierarchy_depth=int(os.environ.get("MAX_HIERARCHY_DEPTH", "32")),
            activity_log_enabled=_env_flag("ACTIVITY_LOG_ENABLED", True),
            activity_log_buffer_size=int(os.environ.get("ACTIVITY_LOG_BUFFER_SIZE", "20")),
            default_audience_color=os.environ.get("DEFAULT_AUDIENCE_COLOR", "#3788d8"),
        )


config = Config.from_env()
