from __future__ import annotations

from typing import Any

import pytest

from reelscan.schemas import CompositionMetadata, DimensionOverrides
from reelscan.services.browser import SessionProvider
from reelscan.services.discovery import DiscoveryOptions, select_composition
from reelscan.services.errors import CompositionNotFoundError, InvalidCompositionError, InvalidDimensionError
from reelscan.services.server import ServerRegistry
from reelscan.services.validation import (
    apply_overrides,
    validate_composition,
    validate_dimension,
    validate_frame,
    validate_metadata,
)

from stubs import ServerCounter, StubLauncher, make_composition


async def _validate(launcher: StubLauncher, identifier: str, overrides: Any = None) -> CompositionMetadata:
    return await validate_composition(
        "/bundles/demo",
        identifier,
        overrides,
        DiscoveryOptions(),
        session_provider=SessionProvider(launcher),
        servers=ServerRegistry(ServerCounter()),
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_width_override_keeps_discovered_height() -> None:
    launcher = StubLauncher(compositions=[make_composition("main")])

    resolved = await _validate(launcher, "main", DimensionOverrides(width=1920))

    assert (resolved.width, resolved.height) == (1920, 1000)
    assert resolved.fps == 30
    assert resolved.duration_in_frames == 30


@pytest.mark.unit
@pytest.mark.asyncio
async def test_without_overrides_metadata_is_unchanged() -> None:
    launcher = StubLauncher(compositions=[make_composition("main", width=1280, height=720)])

    resolved = await _validate(launcher, "main")

    assert resolved.model_dump(by_alias=True) == CompositionMetadata.model_validate(
        make_composition("main", width=1280, height=720)
    ).model_dump(by_alias=True)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unknown_identifier_lists_available_compositions() -> None:
    launcher = StubLauncher(compositions=[make_composition("intro"), make_composition("outro")])

    with pytest.raises(CompositionNotFoundError) as excinfo:
        await select_composition(
            "/bundles/demo",
            "credits",
            session_provider=SessionProvider(launcher),
            servers=ServerRegistry(ServerCounter()),
        )

    assert excinfo.value.available == ["intro", "outro"]
    assert str(excinfo.value) == (
        "Could not find composition with ID credits. The compositions that were found are: intro, outro"
    )
    assert launcher.all_closed()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_invalid_forced_dimension_is_rejected() -> None:
    launcher = StubLauncher()

    with pytest.raises(InvalidDimensionError, match="must not be NaN") as excinfo:
        await _validate(launcher, "main", DimensionOverrides(width=float("nan")))

    assert excinfo.value.name == "width"
    assert launcher.all_closed()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_invalid_discovered_metadata_is_rejected() -> None:
    launcher = StubLauncher(compositions=[make_composition("main", durationInFrames=0)])

    with pytest.raises(InvalidCompositionError, match="durationInFrames"):
        await _validate(launcher, "main")


@pytest.mark.unit
@pytest.mark.parametrize(
    "value, message",
    [
        ("1080", "must be a number"),
        (float("inf"), "must be finite"),
        (1080.5, "must be an integer"),
        (0, "must be positive"),
        (-4, "must be positive"),
    ],
)
def test_dimension_errors(value: Any, message: str) -> None:
    with pytest.raises(InvalidDimensionError, match=message):
        validate_dimension(value, "height", "of composition \"main\"")


@pytest.mark.unit
def test_fps_must_be_positive() -> None:
    composition = CompositionMetadata.model_validate(make_composition("main", fps=0))
    with pytest.raises(InvalidCompositionError, match='"fps"'):
        validate_metadata(composition)


@pytest.mark.unit
def test_apply_overrides_only_touches_given_fields() -> None:
    composition = CompositionMetadata.model_validate(make_composition("main"))

    assert apply_overrides(composition, None) is composition
    assert apply_overrides(composition, DimensionOverrides()) is composition
    assert apply_overrides(composition, DimensionOverrides(height=720)).height == 720


@pytest.mark.unit
def test_validate_frame() -> None:
    assert validate_frame(0, 30) == 0
    assert validate_frame(29.0, 30) == 29

    with pytest.raises(InvalidCompositionError) as excinfo:
        validate_frame(30, 30)
    assert str(excinfo.value) == (
        "Cannot use frame 30: Duration of composition is 30, therefore the highest frame that can be rendered is 29"
    )
    with pytest.raises(InvalidCompositionError, match="cannot be negative"):
        validate_frame(-1, 30)
    with pytest.raises(InvalidCompositionError, match="must be an integer"):
        validate_frame(1.5, 30)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_requested_frame_must_fit_the_resolved_duration() -> None:
    launcher = StubLauncher(compositions=[make_composition("main", durationInFrames=30)])
    servers = ServerRegistry(ServerCounter())

    resolved = await validate_composition(
        "/bundles/demo", "main", frame=29, session_provider=SessionProvider(launcher), servers=servers
    )
    assert resolved.duration_in_frames == 30

    with pytest.raises(InvalidCompositionError, match="highest frame that can be rendered is 29"):
        await validate_composition(
            "/bundles/demo", "main", frame=30, session_provider=SessionProvider(launcher), servers=servers
        )
    assert launcher.all_closed()
