import pytest

from config import Settings
from keep_alive_runner import KeepAliveConfig

ENV_VARS = (
    "DISCORD_BOT_TOKEN",
    "DATABASE_PATH",
    "PORT",
    "KEEP_ALIVE_BATCH_SIZE",
    "KEEP_ALIVE_ITEM_DELAY",
    "KEEP_ALIVE_BATCH_DELAY",
    "KEEP_ALIVE_HOURS",
    "KEEP_ALIVE_WRAP_AROUND",
    "SHUTDOWN_TIMEOUT",
    "LOG_LEVEL",
    "BOT_VERSION",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = Settings.from_env()
    assert settings.discord_token is None
    assert settings.port == 3000
    assert settings.keep_alive_hours == (0, 12)
    assert settings.keep_alive_config() == KeepAliveConfig(
        batch_size=5, delay_between_items=3.0, delay_between_batches=10.0, wrap_around=True
    )


def test_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "token")
    monkeypatch.setenv("KEEP_ALIVE_BATCH_SIZE", "10")
    monkeypatch.setenv("KEEP_ALIVE_ITEM_DELAY", "1.5")
    monkeypatch.setenv("KEEP_ALIVE_HOURS", "18, 6,6")
    monkeypatch.setenv("KEEP_ALIVE_WRAP_AROUND", "no")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = Settings.from_env()

    assert settings.discord_token == "token"
    assert settings.keep_alive_hours == (6, 18)
    assert settings.log_level == "DEBUG"
    config = settings.keep_alive_config()
    assert config.batch_size == 10
    assert config.delay_between_items == 1.5
    assert config.wrap_around is False


@pytest.mark.parametrize(
    "name, value",
    [
        ("PORT", "http"),
        ("KEEP_ALIVE_BATCH_DELAY", "soon"),
        ("KEEP_ALIVE_HOURS", "25"),
        ("KEEP_ALIVE_HOURS", "noon"),
    ],
)
def test_malformed_values_name_the_variable(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=name):
        Settings.from_env()


def test_invalid_batch_size_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("KEEP_ALIVE_BATCH_SIZE", "0")
    with pytest.raises(ValueError):
        Settings.from_env().keep_alive_config()
