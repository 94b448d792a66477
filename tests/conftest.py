from datetime import UTC, datetime

import pytest

from routewatch.types import Coordinates, Vehicle

BASE_TIME = 1_700_000_000.0

# Reference point used across the filtering tests (Cluj-Napoca)
ORIGIN = Coordinates(latitude=46.77, longitude=23.60)

# Meters per degree of latitude on a 6,371 km sphere
METERS_PER_DEGREE_LAT = 6_371_000 * 3.141592653589793 / 180


class FakeClock:
    """Manually advanced clock, callable like time.time."""

    def __init__(self, start: float = BASE_TIME) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def make_vehicle(clock):
    """Factory for vehicles stamped at the fake clock's current time."""

    def _make(
        vehicle_id: str,
        route_id: str = "r1",
        latitude: float = ORIGIN.latitude,
        longitude: float = ORIGIN.longitude,
        age: float = 0.0,
        **kwargs,
    ) -> Vehicle:
        return Vehicle(
            id=vehicle_id,
            route_id=route_id,
            position=Coordinates(latitude=latitude, longitude=longitude),
            timestamp=datetime.fromtimestamp(clock.now - age, tz=UTC),
            **kwargs,
        )

    return _make


@pytest.fixture
def meters_north():
    """Latitude that lies the given number of meters north of ORIGIN."""

    def _lat(meters: float) -> float:
        return ORIGIN.latitude + meters / METERS_PER_DEGREE_LAT

    return _lat


@pytest.fixture
def origin():
    return ORIGIN
