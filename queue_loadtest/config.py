"""
Load-test configuration module.

Defines configuration classes for the supported run profiles (default,
smoke, soak).  Values are read from ``LOADTEST_*`` environment variables
with sensible defaults, then resolved into an immutable :class:`Settings`
object that the executors hand to every journey.

The probabilities and delay ranges of the simulated user live in a
single :class:`BehaviorProfile` table.  It can be loaded from YAML so a
scenario is re-tuned by editing a file rather than code.
"""

from __future__ import annotations

import os
import random
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from queue_loadtest.errors import ConfigurationError

# Base directory of the project
BASE_DIR = Path(__file__).resolve().parent.parent

SEARCH_KEYWORDS: tuple[str, ...] = (
    "아이유", "IU", "콘서트", "2025",
    "BTS", "방탄소년단", "블랙핑크",
    "아티스트", "라이브", "공연",
)


class Config:
    """Base configuration with default settings."""

    BASE_URL: str = os.environ.get("LOADTEST_BASE_URL", "http://localhost:8080/api")
    WS_URL: str = os.environ.get("LOADTEST_WS_URL", "ws://localhost:8080/ws/waitqueue")
    CONCERT_ID: int = int(os.environ.get("LOADTEST_CONCERT_ID", "111"))

    VIRTUAL_USERS: int = int(os.environ.get("LOADTEST_VIRTUAL_USERS", "5"))
    # Wall-clock seconds; journeys still running after this are cut off.
    MAX_DURATION: float = float(os.environ.get("LOADTEST_MAX_DURATION", "600"))
    # Measured in time units, like every behavior delay.
    REALTIME_TIMEOUT: float = float(os.environ.get("LOADTEST_REALTIME_TIMEOUT", "180"))
    # Seconds per time unit.  Shrink it to compress a whole journey.
    TIME_UNIT: float = float(os.environ.get("LOADTEST_TIME_UNIT", "1.0"))

    USERNAME_PREFIX: str = os.environ.get("LOADTEST_USERNAME_PREFIX", "K6TESTUSER")
    PASSWORD: str = os.environ.get("LOADTEST_PASSWORD", "1q2w3e4r!")
    REGISTER_ACCOUNTS: int = int(os.environ.get("LOADTEST_REGISTER_ACCOUNTS", "100"))
    # "form" for deployments whose register endpoint binds a form model.
    REGISTER_ENCODING: str = os.environ.get("LOADTEST_REGISTER_ENCODING", "json")

    SEED: str | None = os.environ.get("LOADTEST_SEED")
    BEHAVIOR_FILE: str | None = os.environ.get("LOADTEST_BEHAVIOR_FILE")
    THRESHOLDS_FILE: str = os.environ.get(
        "LOADTEST_THRESHOLDS_FILE", str(BASE_DIR / "profiles" / "thresholds.yml")
    )


class SmokeConfig(Config):
    """One user with a compressed clock, for checking an environment is alive."""

    VIRTUAL_USERS: int = 1
    TIME_UNIT: float = 0.05
    MAX_DURATION: float = 60.0


class SoakConfig(Config):
    """Larger crowd held for longer against the queue."""

    VIRTUAL_USERS: int = 100
    MAX_DURATION: float = 1800.0


# Configuration mapping for easy access
config = {
    "default": Config,
    "smoke": SmokeConfig,
    "soak": SoakConfig,
}


def get_config(env: str | None = None) -> type[Config]:
    """
    Get the configuration class for the specified profile.

    Args:
        env: Profile name (default, smoke, soak).  If None, uses the
             LOADTEST_ENV environment variable.

    Returns:
        Configuration class for the specified profile.
    """
    if env is None:
        env = os.environ.get("LOADTEST_ENV", "default")
    return config.get(env, config["default"])


# =====================================================================
# Behavior profile
# =====================================================================


@dataclass(frozen=True)
class DelayRange:
    """Inclusive range of a uniformly drawn delay, in time units."""

    low: float
    high: float

    def __post_init__(self) -> None:
        if self.low < 0 or self.high < self.low:
            raise ConfigurationError(f"Invalid delay range [{self.low}, {self.high}]")

    def draw(self, rng: random.Random) -> float:
        return rng.uniform(self.low, self.high)

    @classmethod
    def parse(cls, value: Any) -> DelayRange:
        if isinstance(value, DelayRange):
            return value
        if isinstance(value, (int, float)):
            return cls(float(value), float(value))
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return cls(float(value[0]), float(value[1]))
        raise ConfigurationError(f"Delay must be a number or [low, high], got {value!r}")


_PROBABILITY_FIELDS = (
    "search_probability",
    "filter_probability",
    "ai_summary_probability",
    "seat_peek_probability",
    "abandon_probability",
)


@dataclass(frozen=True)
class BehaviorProfile:
    """
    Probability and pacing table for the simulated ticket buyer.

    Every decision is an independent weighted coin flip and every delay
    is a uniform draw from its range.  Delays are in time units; the
    journey multiplies them by ``Settings.time_unit``.
    """

    search_probability: float = 0.5
    filter_probability: float = 0.3
    ai_summary_probability: float = 0.7
    seat_peek_probability: float = 0.4
    abandon_probability: float = 0.15

    list_delay: DelayRange = DelayRange(1, 3)
    search_delay: DelayRange = DelayRange(2, 5)
    filter_delay: DelayRange = DelayRange(1, 3)
    detail_delay: DelayRange = DelayRange(10, 30)
    ai_summary_delay: DelayRange = DelayRange(3, 8)
    seat_peek_delay: DelayRange = DelayRange(2, 2)
    hesitation_delay: DelayRange = DelayRange(10, 40)
    final_hesitation_delay: DelayRange = DelayRange(1, 3)
    cooldown_delay: DelayRange = DelayRange(1, 1)

    keywords: tuple[str, ...] = field(default=SEARCH_KEYWORDS)

    def __post_init__(self) -> None:
        for name in _PROBABILITY_FIELDS:
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ConfigurationError(f"{name} must be within [0, 1], got {value}")
        if not self.keywords:
            raise ConfigurationError("keywords must not be empty")

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> BehaviorProfile:
        """
        Build a profile from a plain mapping, e.g. parsed YAML.

        Keys that are absent keep their defaults.

        Raises:
            ConfigurationError: On unknown keys or invalid values.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(f"Unknown behavior keys: {', '.join(sorted(unknown))}")

        values: dict[str, Any] = {}
        for key, value in data.items():
            if key.endswith("_delay"):
                values[key] = DelayRange.parse(value)
            elif key == "keywords":
                values[key] = tuple(str(keyword) for keyword in value)
            else:
                try:
                    values[key] = float(value)
                except (TypeError, ValueError) as exc:
                    raise ConfigurationError(f"{key} must be numeric, got {value!r}") from exc
        return cls(**values)

    @classmethod
    def from_yaml(cls, path: str | Path) -> BehaviorProfile:
        with Path(path).open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Behavior file {path} must contain a mapping")
        return cls.from_mapping(data)

    def with_overrides(self, **overrides: Any) -> BehaviorProfile:
        parsed = BehaviorProfile.from_mapping(overrides)
        return replace(self, **{key: getattr(parsed, key) for key in overrides})


# =====================================================================
# Resolved settings
# =====================================================================


@dataclass(frozen=True)
class Settings:
    """Everything one run needs, resolved from a config class plus overrides."""

    base_url: str
    ws_url: str
    concert_id: int
    virtual_users: int
    max_duration: float
    realtime_timeout: float
    time_unit: float
    username_prefix: str
    password: str
    register_accounts: int
    register_encoding: str
    seed: int | None
    thresholds_file: str | None
    behavior: BehaviorProfile = field(default_factory=BehaviorProfile)

    @property
    def realtime_timeout_seconds(self) -> float:
        return self.realtime_timeout * self.time_unit

    @classmethod
    def from_config(cls, config_class: type[Config] = Config, **overrides: Any) -> Settings:
        """
        Resolve settings from *config_class*, applying non-``None`` overrides.

        Args:
            config_class: One of the classes returned by :func:`get_config`.
            **overrides: Lower-case setting names (e.g. ``virtual_users``)
                typically coming from CLI flags.  ``None`` means "not
                given" and leaves the configured value in place.

        Raises:
            ConfigurationError: If an override names no setting, a value
                is out of range, or the behavior file cannot be loaded.
        """
        seed = config_class.SEED
        values: dict[str, Any] = {
            "base_url": config_class.BASE_URL,
            "ws_url": config_class.WS_URL,
            "concert_id": config_class.CONCERT_ID,
            "virtual_users": config_class.VIRTUAL_USERS,
            "max_duration": config_class.MAX_DURATION,
            "realtime_timeout": config_class.REALTIME_TIMEOUT,
            "time_unit": config_class.TIME_UNIT,
            "username_prefix": config_class.USERNAME_PREFIX,
            "password": config_class.PASSWORD,
            "register_accounts": config_class.REGISTER_ACCOUNTS,
            "register_encoding": config_class.REGISTER_ENCODING,
            "seed": int(seed) if seed not in (None, "") else None,
            "thresholds_file": config_class.THRESHOLDS_FILE,
        }

        behavior_file = overrides.pop("behavior_file", None) or config_class.BEHAVIOR_FILE
        behavior = overrides.pop("behavior", None)
        if behavior is None:
            behavior = BehaviorProfile.from_yaml(behavior_file) if behavior_file else BehaviorProfile()

        for key, value in overrides.items():
            if key not in values:
                raise ConfigurationError(f"Unknown setting: {key}")
            if value is not None:
                values[key] = value

        settings = cls(behavior=behavior, **values)
        settings.validate()
        return settings

    def validate(self) -> None:
        if self.virtual_users < 1:
            raise ConfigurationError("virtual_users must be at least 1")
        if self.max_duration <= 0:
            raise ConfigurationError("max_duration must be positive")
        if self.realtime_timeout <= 0:
            raise ConfigurationError("realtime_timeout must be positive")
        if self.time_unit < 0:
            raise ConfigurationError("time_unit must not be negative")
        if self.register_encoding not in ("form", "json"):
            raise ConfigurationError("register_encoding must be 'form' or 'json'")
