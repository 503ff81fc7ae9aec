"""Scout — configuration loader.

Two layers:

- ``Config``: process settings read from environment variables (and an
  optional ``.env`` file via python-dotenv).  Immutable after load.
- ``ScoutSettings``: the operator-tunable options persisted as a small JSON
  document and written back whenever they change at runtime.
"""

import dataclasses
import json
import logging
import os
import pathlib
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger("scout.config")

_FEED_VARS = ("SCOUT_FEED_URL", "SCOUT_FEED_FILE")


@dataclass(frozen=True)
class Config:
    """Immutable process configuration."""

    feed_url: Optional[str]
    feed_file: Optional[str]
    engine: str
    db_path: str
    settings_path: str
    signal_feed_path: str
    shadow_log_path: str
    tick_interval_ms: int
    candle_capacity: int
    bucket_seconds: int
    log_level: str
    api_port: int

    @property
    def bucket_ms(self) -> int:
        """Candle bucket size in milliseconds."""
        return self.bucket_seconds * 1000


def load_config(env_path: Optional[str] = None) -> Config:
    """Load configuration from environment variables / ``.env`` file.

    Args:
        env_path: Optional path to a ``.env`` file.  When *None*,
                  python-dotenv searches the working directory.

    Returns:
        A frozen ``Config`` instance.

    Raises:
        ValueError: If no tick source is configured.
    """
    load_dotenv(dotenv_path=env_path)

    feed_url = os.environ.get("SCOUT_FEED_URL") or None
    feed_file = os.environ.get("SCOUT_FEED_FILE") or None
    if feed_url is None and feed_file is None:
        raise ValueError(
            "Missing required environment variable(s): "
            f"{' or '.join(_FEED_VARS)}"
        )

    return Config(
        feed_url=feed_url,
        feed_file=feed_file,
        engine=os.environ.get("SCOUT_ENGINE", "sequence"),
        db_path=os.environ.get("SCOUT_DB_PATH", "data/scout.db"),
        settings_path=os.environ.get("SCOUT_SETTINGS_PATH", "data/settings.json"),
        signal_feed_path=os.environ.get(
            "SCOUT_SIGNAL_FEED_PATH", "data/signal_feed.json"
        ),
        shadow_log_path=os.environ.get(
            "SCOUT_SHADOW_LOG_PATH", "data/shadow_log.jsonl"
        ),
        tick_interval_ms=int(os.environ.get("SCOUT_TICK_INTERVAL_MS", "1500")),
        candle_capacity=int(os.environ.get("SCOUT_CANDLE_CAPACITY", "2000")),
        bucket_seconds=int(os.environ.get("SCOUT_BUCKET_SECONDS", "60")),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
        api_port=int(os.environ.get("API_PORT", "8080")),
    )


# ── Persistent settings ─────────────────────────────────────────────────

# JSON key → dataclass field
_SETTINGS_KEYS = {
    "signalIntervalMinutes": "signal_interval_minutes",
    "tradeDurationMinutes": "trade_duration_minutes",
    "warmupCandlesCount": "warmup_candles_count",
    "minConfidencePercent": "min_confidence_percent",
    "minPayoutPercent": "min_payout_percent",
}


@dataclass(frozen=True)
class ScoutSettings:
    """Operator-tunable options, persisted as camelCase JSON."""

    signal_interval_minutes: int = 1
    trade_duration_minutes: int = 3
    warmup_candles_count: int = 50
    min_confidence_percent: int = 70
    min_payout_percent: int = 80

    def __post_init__(self) -> None:
        for name in (
            "signal_interval_minutes",
            "trade_duration_minutes",
            "warmup_candles_count",
        ):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValueError(f"{name} must be an integer >= 1, got {value!r}")
        for name in ("min_confidence_percent", "min_payout_percent"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"{name} must be a number, got {value!r}")
            if not 0 <= value <= 100:
                raise ValueError(f"{name} must be within 0..100, got {value!r}")

    def updated(self, **changes) -> "ScoutSettings":
        """Return a validated copy with *changes* applied."""
        return dataclasses.replace(self, **changes)

    def merged(self, data: dict) -> "ScoutSettings":
        """Apply a camelCase partial update; unknown keys raise ``ValueError``."""
        unknown = set(data) - set(_SETTINGS_KEYS)
        if unknown:
            raise ValueError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        return self.updated(**{_SETTINGS_KEYS[key]: value for key, value in data.items()})

    def to_dict(self) -> dict:
        """Serialise using the persisted camelCase keys."""
        return {key: getattr(self, field) for key, field in _SETTINGS_KEYS.items()}

    @classmethod
    def from_dict(cls, data: dict) -> "ScoutSettings":
        """Build from a camelCase mapping; unknown keys are ignored."""
        kwargs = {
            field: data[key] for key, field in _SETTINGS_KEYS.items() if key in data
        }
        return cls(**kwargs)


def load_settings(path: str) -> ScoutSettings:
    """Read persisted settings, falling back to defaults on any problem."""
    settings_file = pathlib.Path(path)
    if not settings_file.exists():
        return ScoutSettings()
    try:
        data = json.loads(settings_file.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("settings document is not an object")
        return ScoutSettings.from_dict(data)
    except (OSError, ValueError, TypeError) as exc:
        logger.warning("Ignoring unreadable settings at %s: %s", path, exc)
        return ScoutSettings()


def save_settings(path: str, settings: ScoutSettings) -> None:
    """Write *settings* to *path* (write-then-rename)."""
    settings_file = pathlib.Path(path)
    settings_file.parent.mkdir(parents=True, exist_ok=True)
    tmp = settings_file.with_suffix(settings_file.suffix + ".tmp")
    tmp.write_text(json.dumps(settings.to_dict(), indent=2), encoding="utf-8")
    tmp.replace(settings_file)
