"""Pytest configuration and fixtures for LifeBeacon engine tests."""

import os
import random
import tempfile

import pytest

# Must be set before lifebeacon.config is imported anywhere
os.environ.setdefault("MQTT_ENABLED", "false")
os.environ.setdefault("ANALYSIS_INTERVAL", "60")
os.environ.setdefault("PHYSICS_INTERVAL", "60")
os.environ.setdefault("LOG_FILE", os.path.join(tempfile.gettempdir(), "lifebeacon-test.log"))

from lifebeacon.config import Settings
from lifebeacon.schemas import Acceleration, AudioReading, Location, SensorSample
from lifebeacon.session import BeaconSession


class FakeClock:
    """Clock with manually controlled time (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    """Settings with short intervals and no .env lookup."""
    return Settings(
        _env_file=None,
        MQTT_ENABLED=False,
        RANDOM_SEED=7,
        ANALYSIS_INTERVAL=0.01,
        PHYSICS_INTERVAL=0.01,
        MAP_DEBOUNCE=0.02,
        GPS_REFINE_DELAY=0.02,
        MOTION_SIMULATION_INTERVAL=0.01,
        ORIENTATION_SIMULATION_INTERVAL=0.01,
    )


@pytest.fixture
def session(test_settings, clock):
    return BeaconSession(config=test_settings, rng=random.Random(7), clock=clock)


@pytest.fixture
def make_sample():
    """Factory building a SensorSample from a few scalar inputs."""

    def _make(accel=(0.0, 0.0, 9.81), amplitude=50, battery=100, location=None):
        x, y, z = accel
        magnitude = (x**2 + y**2 + z**2) ** 0.5
        return SensorSample(
            acceleration=Acceleration(x=x, y=y, z=z, magnitude=magnitude, source="linear"),
            audio=AudioReading(amplitude=amplitude),
            battery_level_pct=battery,
            location=location,
        )

    return _make


@pytest.fixture
def hanoi_fix():
    return Location(lat=21.028511, lng=105.804817, accuracy_m=15, timestamp_ms=1)
