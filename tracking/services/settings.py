"""
Tracking settings management.

A single ``TrackingSettings`` document holds the user's default trip purpose
and the auto-tracking/notification switches.
"""

from __future__ import annotations

import logging

from date_utils import get_current_utc_time
from db.models import TrackingSettings
from trips.models import TrackingSettingsUpdate, TripPurpose

logger = logging.getLogger(__name__)

SETTINGS_KEY = "tracking"


async def get_tracking_settings() -> TrackingSettings:
    """Return the settings document, creating it with defaults on first use."""
    settings = await TrackingSettings.find_one({"key": SETTINGS_KEY})
    if settings is not None:
        return settings

    settings = TrackingSettings(key=SETTINGS_KEY)
    await settings.insert()
    logger.info("Created default tracking settings")
    return settings


async def update_tracking_settings(update: TrackingSettingsUpdate) -> TrackingSettings:
    """
    Apply the fields present in ``update`` to the settings document.

    Args:
        update: Partial settings; ``None`` fields are left unchanged.

    Returns:
        The saved settings document.
    """
    settings = await get_tracking_settings()
    changes = update.model_dump(exclude_none=True)
    if not changes:
        return settings

    for field, value in changes.items():
        setattr(settings, field, value)
    settings.updated_at = get_current_utc_time()
    await settings.save()
    logger.info("Updated tracking settings: %s", ", ".join(sorted(changes)))
    return settings


class SettingsPurposeProvider:
    """Default-purpose collaborator backed by the tracking settings."""

    async def default_purpose(self) -> TripPurpose:
        settings = await get_tracking_settings()
        return settings.default_purpose


__all__ = [
    "SettingsPurposeProvider",
    "get_tracking_settings",
    "update_tracking_settings",
]
