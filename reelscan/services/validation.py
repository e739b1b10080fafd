from __future__ import annotations

import logging
import math
from typing import Any, Optional

from reelscan.schemas import CompositionMetadata, DimensionOverrides
from reelscan.services.browser import SessionProvider
from reelscan.services.discovery import DiscoveryOptions, select_composition
from reelscan.services.errors import InvalidCompositionError, InvalidDimensionError
from reelscan.services.server import ServerRegistry

LOGGER = logging.getLogger("reelscan.validation")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_dimension(value: Any, name: str, location: str) -> None:
    prefix = f'The "{name}" {location}'
    if not _is_number(value):
        raise InvalidDimensionError(
            name, f"{prefix} must be a number, but you passed a value of type {type(value).__name__}"
        )
    if math.isnan(value):
        raise InvalidDimensionError(name, f"{prefix} must not be NaN, but is NaN.")
    if math.isinf(value):
        raise InvalidDimensionError(name, f"{prefix} must be finite, but is {value}.")
    if value % 1 != 0:
        raise InvalidDimensionError(name, f"{prefix} must be an integer, but is {value}.")
    if value <= 0:
        raise InvalidDimensionError(name, f"{prefix} must be positive, but got {value}.")


def validate_fps(value: Any, location: str) -> None:
    if not _is_number(value) or math.isnan(value) or math.isinf(value):
        raise InvalidCompositionError(f'"fps" {location} must be a finite number, but got {value!r}')
    if value <= 0:
        raise InvalidCompositionError(f'"fps" {location} must be positive, but got {value}')


def validate_duration_in_frames(value: Any, location: str) -> None:
    if not _is_number(value) or math.isnan(value) or math.isinf(value):
        raise InvalidCompositionError(f'"durationInFrames" {location} must be a finite number, but got {value!r}')
    if value % 1 != 0:
        raise InvalidCompositionError(f'"durationInFrames" {location} must be an integer, but got {value}')
    if value < 1:
        raise InvalidCompositionError(f'"durationInFrames" {location} must be at least 1, but got {value}')


def validate_metadata(composition: CompositionMetadata) -> CompositionMetadata:
    location = f'of composition "{composition.id}"'
    validate_dimension(composition.width, "width", location)
    validate_dimension(composition.height, "height", location)
    validate_fps(composition.fps, location)
    validate_duration_in_frames(composition.duration_in_frames, location)
    return composition


def validate_frame(frame: Any, duration_in_frames: int) -> int:
    """Check that ``frame`` can be rendered from a composition of the given duration."""
    if not _is_number(frame):
        raise InvalidCompositionError(f"Argument passed for frame is not a number: {frame!r}")
    if math.isnan(frame) or math.isinf(frame) or frame % 1 != 0:
        raise InvalidCompositionError(f"Argument for frame must be an integer, but got {frame}")
    if frame < 0:
        raise InvalidCompositionError(f"Frame {int(frame)} cannot be negative")
    if frame > duration_in_frames - 1:
        raise InvalidCompositionError(
            f"Cannot use frame {int(frame)}: Duration of composition is {int(duration_in_frames)}, "
            f"therefore the highest frame that can be rendered is {int(duration_in_frames) - 1}"
        )
    return int(frame)


def apply_overrides(composition: CompositionMetadata, overrides: Optional[DimensionOverrides]) -> CompositionMetadata:
    if overrides is None:
        return composition
    update = {}
    if overrides.width is not None:
        update["width"] = overrides.width
    if overrides.height is not None:
        update["height"] = overrides.height
    return composition.model_copy(update=update) if update else composition


async def validate_composition(
    bundle_location: str,
    identifier: str,
    overrides: Optional[DimensionOverrides] = None,
    options: Optional[DiscoveryOptions] = None,
    *,
    frame: Optional[Any] = None,
    session_provider: Optional[SessionProvider] = None,
    servers: Optional[ServerRegistry] = None,
) -> CompositionMetadata:
    """Resolve one composition, apply forced dimensions and validate the result.

    When ``frame`` is given it must be renderable from the resolved duration.
    """
    discovered = await select_composition(
        bundle_location,
        identifier,
        options,
        session_provider=session_provider,
        servers=servers,
    )
    resolved = validate_metadata(apply_overrides(discovered, overrides))
    if frame is not None:
        validate_frame(frame, resolved.duration_in_frames)
    LOGGER.info(
        "Validated composition %s: %sx%s @ %sfps, %s frames",
        resolved.id,
        resolved.width,
        resolved.height,
        resolved.fps,
        resolved.duration_in_frames,
    )
    return resolved
