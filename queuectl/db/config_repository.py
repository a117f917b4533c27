"""
Config repository.
Key/value runtime configuration read by the worker and retry policy.
"""

import logging
import math

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import (
    CONFIG_DEFAULTS,
    DEFAULT_BACKOFF_BASE,
    DEFAULT_BASE_DELAY_SECONDS,
    DEFAULT_MAX_RETRIES,
    ConfigKey,
)
from queuectl.db.models import ConfigEntry
from queuectl.errors import ValidationError
from queuectl.policy import RetrySettings

logger = logging.getLogger(__name__)


class ConfigRepository:
    """
    Repository for the config table.

    Values are stored verbatim as text. Unknown keys are accepted and kept
    but have no effect on behavior.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key: str) -> str | None:
        """Get a config value, or None if the key is not set."""
        entry = await self._session.get(ConfigEntry, key)
        return entry.value if entry is not None else None

    async def set(self, key: str, value: str) -> ConfigEntry:
        """
        Insert or overwrite a config value.

        Args:
            key: Config key.
            value: Value, stored as text.

        Returns:
            The stored entry.

        Raises:
            ValidationError: If the key is blank.
        """
        if not key or not key.strip():
            raise ValidationError("Config key cannot be empty")

        entry = await self._session.get(ConfigEntry, key)
        if entry is None:
            entry = ConfigEntry(key=key, value=str(value))
            self._session.add(entry)
        else:
            entry.value = str(value)
        await self._session.flush()

        if key not in set(ConfigKey):
            logger.warning("Stored unrecognized config key", extra={"key": key})
        else:
            logger.info("Config updated", extra={"key": key, "value": entry.value})
        return entry

    async def list_all(self) -> dict[str, str]:
        """Get all config values keyed by name."""
        result = await self._session.execute(select(ConfigEntry).order_by(ConfigEntry.key))
        return {entry.key: entry.value for entry in result.scalars().all()}

    async def seed_defaults(self) -> list[str]:
        """
        Insert default values for recognized keys that are absent.

        Existing values are never overwritten.

        Returns:
            The keys that were seeded.
        """
        existing = await self.list_all()
        seeded = []
        for key, value in CONFIG_DEFAULTS.items():
            if key not in existing:
                self._session.add(ConfigEntry(key=str(key), value=value))
                seeded.append(str(key))
        await self._session.flush()
        return seeded

    async def get_retry_settings(self) -> RetrySettings:
        """
        Read the retry knobs, falling back to defaults for missing or
        unparseable values.
        """
        values = await self.list_all()
        return RetrySettings(
            backoff_base=_parse_number(values, ConfigKey.BACKOFF_BASE, DEFAULT_BACKOFF_BASE),
            base_delay_seconds=_parse_number(
                values, ConfigKey.BASE_DELAY_SECONDS, DEFAULT_BASE_DELAY_SECONDS
            ),
            max_retries=int(_parse_number(values, ConfigKey.MAX_RETRIES, DEFAULT_MAX_RETRIES)),
        )


def _parse_number(values: dict[str, str], key: str, default: float) -> float:
    raw = values.get(key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        value = None
    if value is None or not math.isfinite(value):
        logger.warning(
            "Invalid numeric config value, using default",
            extra={"key": key, "value": raw, "default": default},
        )
        return default
    return value
