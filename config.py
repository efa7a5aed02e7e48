import os
from dataclasses import dataclass, field
from typing import Optional, Tuple

from keep_alive_runner import KeepAliveConfig

# --- Environment Configuration ---


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_hours(name: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    """Parses a comma separated list of UTC hours, e.g. "0,12"."""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    hours = []
    for part in raw.split(","):
        part = part.strip()
        if not part:
            continue
        try:
            hour = int(part)
        except ValueError:
            raise ValueError(f"{name} must be a list of hours, got {raw!r}") from None
        if not 0 <= hour <= 23:
            raise ValueError(f"{name} hours must be between 0 and 23, got {hour}")
        hours.append(hour)
    if not hours:
        raise ValueError(f"{name} must name at least one hour")
    return tuple(sorted(set(hours)))


@dataclass(frozen=True)
class Settings:
    discord_token: Optional[str]
    database_path: str = "alivethread.db"
    port: int = 3000
    batch_size: int = 5
    delay_between_items: float = 3.0
    delay_between_batches: float = 10.0
    keep_alive_hours: Tuple[int, ...] = field(default=(0, 12))
    wrap_around: bool = True
    shutdown_timeout: float = 15.0
    log_level: str = "INFO"
    version: str = "1.0.0"

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            discord_token=os.getenv("DISCORD_BOT_TOKEN"),
            database_path=os.getenv("DATABASE_PATH") or "alivethread.db",
            port=_env_int("PORT", 3000),
            batch_size=_env_int("KEEP_ALIVE_BATCH_SIZE", 5),
            delay_between_items=_env_float("KEEP_ALIVE_ITEM_DELAY", 3.0),
            delay_between_batches=_env_float("KEEP_ALIVE_BATCH_DELAY", 10.0),
            keep_alive_hours=_env_hours("KEEP_ALIVE_HOURS", (0, 12)),
            wrap_around=_env_bool("KEEP_ALIVE_WRAP_AROUND", True),
            shutdown_timeout=_env_float("SHUTDOWN_TIMEOUT", 15.0),
            log_level=(os.getenv("LOG_LEVEL") or "INFO").upper(),
            version=os.getenv("BOT_VERSION") or "1.0.0",
        )

    def keep_alive_config(self) -> KeepAliveConfig:
        """Runner defaults; a manual trigger may still override them per run."""
        return KeepAliveConfig(
            batch_size=self.batch_size,
            delay_between_items=self.delay_between_items,
            delay_between_batches=self.delay_between_batches,
            wrap_around=self.wrap_around,
        )
