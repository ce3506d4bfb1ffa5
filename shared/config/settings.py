"""
Sleep Settings - python-decouple backed configuration for the sleep tracker
Loads time windows, ranking limits and storage options, validated at startup
"""

import logging
from dataclasses import dataclass
from typing import Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from decouple import config, Csv, UndefinedValueError

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Raised when the sleep tracker configuration is out of range."""


@dataclass(frozen=True)
class SleepConfig:
    """Validated runtime configuration for the sleep tracker."""
    morning_span: Tuple[int, int] = (6, 12)
    evening_span: Tuple[int, int] = (21, 3)
    many_evening_threshold: int = 3
    rank_default_top: int = 10
    rank_max_top: int = 50
    rank_show_average: bool = True
    history_days: int = 7
    timezone_name: str = 'UTC'
    database_url: str = 'sqlite:///sleep_record.db'
    db_timeout_seconds: int = 10

    def __post_init__(self):
        self.validate()

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    def validate(self) -> None:
        """Check every option; raise ConfigurationError on the first bad one."""
        for name in ('morning_span', 'evening_span'):
            span = getattr(self, name)
            if len(span) != 2:
                raise ConfigurationError(f"{name} must contain exactly two hours, got {span!r}")
            for hour in span:
                if not isinstance(hour, int) or not 0 <= hour <= 23:
                    raise ConfigurationError(f"{name} hours must be within 0..23, got {span!r}")

        if not 2 <= self.many_evening_threshold <= 10:
            raise ConfigurationError(
                f"many_evening_threshold must be within 2..10, got {self.many_evening_threshold}"
            )

        for name in ('rank_default_top', 'rank_max_top', 'history_days', 'db_timeout_seconds'):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")

        if self.rank_default_top > self.rank_max_top:
            raise ConfigurationError(
                f"rank_default_top ({self.rank_default_top}) exceeds rank_max_top ({self.rank_max_top})"
            )

        try:
            ZoneInfo(self.timezone_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone {self.timezone_name!r}") from e

    @classmethod
    def from_env(cls) -> 'SleepConfig':
        """Build the configuration from environment variables / .env file."""
        try:
            settings = cls(
                morning_span=tuple(config('SLEEP_MORNING_SPAN', default='6,12', cast=Csv(int))),
                evening_span=tuple(config('SLEEP_EVENING_SPAN', default='21,3', cast=Csv(int))),
                many_evening_threshold=config('SLEEP_MANY_EVENING_THRESHOLD', default=3, cast=int),
                rank_default_top=config('SLEEP_RANK_DEFAULT_TOP', default=10, cast=int),
                rank_max_top=config('SLEEP_RANK_MAX_TOP', default=50, cast=int),
                rank_show_average=config('SLEEP_RANK_SHOW_AVERAGE', default=True, cast=bool),
                history_days=config('SLEEP_HISTORY_DAYS', default=7, cast=int),
                timezone_name=config('SLEEP_TIMEZONE', default='UTC'),
                database_url=config('SLEEP_DATABASE_URL', default='sqlite:///sleep_record.db'),
                db_timeout_seconds=config('SLEEP_DB_TIMEOUT_SECONDS', default=10, cast=int),
            )
        except (ValueError, UndefinedValueError) as e:
            if isinstance(e, ConfigurationError):
                raise
            raise ConfigurationError(f"Invalid sleep tracker configuration: {e}") from e

        logger.info(
            f"Loaded sleep config: morning={settings.morning_span}, evening={settings.evening_span}, "
            f"tz={settings.timezone_name}"
        )
        return settings
