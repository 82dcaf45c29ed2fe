"""Simulated environment sensor for live mode."""

from __future__ import annotations

import random

from plantsense.analysis.models import SensorSample

TEMPERATURE_RANGE: tuple[float, float] = (20.0, 25.0)
HUMIDITY_RANGE: tuple[int, int] = (50, 70)
LIGHT_RANGE: tuple[int, int] = (10_000, 15_000)


def sample_sensors(rng: random.Random | None = None) -> SensorSample:
    """Draw a fresh synthetic reading. Samples are not tied to the captured image."""
    rng = rng or random.Random()  # noqa: S311
    low, high = TEMPERATURE_RANGE
    temperature = round(rng.uniform(low, high), 1)
    return SensorSample(
        temperature=temperature,
        humidity=rng.randint(*HUMIDITY_RANGE),
        light=rng.randint(*LIGHT_RANGE),
    )
