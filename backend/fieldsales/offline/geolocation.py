"""
Location acquisition for check-in and check-out.

A position is requested from the platform provider with a hard timeout. If
none arrives (timeout, permission denied, no hardware) the agent is asked
for a written justification instead. Declining to justify aborts the action.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

MIN_REASON_LENGTH = 3
JUSTIFICATION_QUESTION = "Could not get a GPS position. Please justify (e.g. no signal, permission denied):"


class GeolocationUnavailable(Exception):
    """The platform could not produce a position."""


class CheckinAborted(Exception):
    """The agent declined to justify a missing position; nothing was recorded."""


@dataclass
class Position:
    lat: float
    lng: float
    accuracy: Optional[float] = None


class GeolocationProvider(Protocol):
    async def get_position(self, high_accuracy: bool = True) -> Position: ...


class JustificationPrompt(Protocol):
    async def ask(self, question: str) -> Optional[str]:
        """Return the agent's answer, or None if the dialog was cancelled."""
        ...


@dataclass
class LocationFix:
    lat: Optional[float] = None
    lng: Optional[float] = None
    no_gps_reason: Optional[str] = None

    @property
    def has_gps(self) -> bool:
        return self.lat is not None and self.lng is not None


class UnavailableGeolocation:
    """Provider for devices without location hardware."""

    async def get_position(self, high_accuracy: bool = True) -> Position:
        raise GeolocationUnavailable("Geolocation is not supported on this device")


async def acquire_location(
    provider: Optional[GeolocationProvider],
    prompt: JustificationPrompt,
    timeout_seconds: float = 15.0,
    high_accuracy: bool = True,
) -> LocationFix:
    """Get a GPS fix, falling back to a justification.

    Raises:
        CheckinAborted: no position and the agent gave no usable justification.
    """
    provider = provider or UnavailableGeolocation()
    try:
        position = await asyncio.wait_for(
            provider.get_position(high_accuracy=high_accuracy),
            timeout=timeout_seconds,
        )
        return LocationFix(lat=position.lat, lng=position.lng)
    except asyncio.TimeoutError:
        logger.info(f"No GPS fix within {timeout_seconds}s")
    except GeolocationUnavailable as e:
        logger.info(f"GPS unavailable: {e}")

    reason = await prompt.ask(JUSTIFICATION_QUESTION)
    reason = (reason or "").strip()
    if not reason:
        raise CheckinAborted("GPS or a justification for its absence is required.")
    if len(reason) < MIN_REASON_LENGTH:
        raise CheckinAborted(f"The justification must have at least {MIN_REASON_LENGTH} characters.")
    return LocationFix(no_gps_reason=reason)
