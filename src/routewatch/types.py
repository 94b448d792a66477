"""Shared Pydantic models for routewatch."""

from __future__ import annotations

import time
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ── Enums ──


class RouteClassification(StrEnum):
    BUSY = "busy"
    QUIET = "quiet"


class DirectionStatus(StrEnum):
    ARRIVING = "arriving"
    AT_STOP = "at_stop"
    DEPARTED = "departed"
    UNKNOWN = "unknown"


class ConfidenceLevel(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# ── Geographic / transit models ──


class Coordinates(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float
    accuracy: float | None = None


class Vehicle(BaseModel):
    """A live vehicle position, already validated at ingress."""

    model_config = ConfigDict(frozen=True)

    id: str
    route_id: str
    position: Coordinates
    timestamp: datetime
    trip_id: str | None = None
    speed: float | None = None
    bearing: float | None = None


class Station(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    position: Coordinates


class StopTime(BaseModel):
    model_config = ConfigDict(frozen=True)

    trip_id: str
    stop_id: str
    sequence: int
    arrival_time: str | None = None  # HH:MM:SS, may exceed 24h per GTFS


# ── Route activity ──


class RouteActivityInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    route_id: str
    vehicle_count: int
    classification: RouteClassification
    computed_at: float = Field(default_factory=time.time)


class RouteActivitySnapshot(BaseModel):
    routes: dict[str, RouteActivityInfo] = Field(default_factory=dict)
    total_vehicles: int = 0
    busy_routes: list[str] = Field(default_factory=list)
    quiet_routes: list[str] = Field(default_factory=list)
    timestamp: float = Field(default_factory=time.time)


class VehicleDataQuality(BaseModel):
    is_position_valid: bool
    is_timestamp_recent: bool
    has_required_fields: bool
    staleness_score: float  # 1.0 fresh, 0.0 stale

    @property
    def is_valid(self) -> bool:
        return self.is_position_valid and self.is_timestamp_recent and self.has_required_fields


class RouteTransitionEvent(BaseModel):
    """A route moving between busy and quiet. Never mutated after creation."""

    model_config = ConfigDict(frozen=True)

    route_id: str
    previous_classification: RouteClassification
    new_classification: RouteClassification
    previous_vehicle_count: int
    new_vehicle_count: int
    timestamp: float = Field(default_factory=time.time)
    config_change: dict[str, Any] | None = None


# ── Geometry / direction results ──


class ProximityResult(BaseModel):
    distance: float
    within_radius: bool
    bearing: float | None = None


class StopSequenceItem(BaseModel):
    stop_id: str
    sequence: int
    is_current: bool = False
    is_destination: bool = False


class DirectionAnalysisResult(BaseModel):
    direction: DirectionStatus = DirectionStatus.UNKNOWN
    confidence: ConfidenceLevel = ConfidenceLevel.LOW
    estimated_minutes: int = 0
    stop_sequence: list[StopSequenceItem] | None = None


# ── Filtering results ──


class FilteringDecision(BaseModel):
    vehicle_id: str
    route_id: str
    route_classification: RouteClassification | None = None
    distance_filter_applied: bool = False
    distance_to_nearest: float | None = None
    included: bool = True
    reason: str = ""


class UserFeedback(BaseModel):
    total_routes: int = 0
    busy_routes: int = 0
    quiet_routes: int = 0
    distance_filtered_vehicles: int = 0
    empty_state_message: str | None = None
    route_status_messages: dict[str, str] = Field(default_factory=dict)


class FilteringResult(BaseModel):
    vehicles: list[Vehicle] = Field(default_factory=list)
    decisions: dict[str, FilteringDecision] = Field(default_factory=dict)
    feedback: UserFeedback = Field(default_factory=UserFeedback)
    filtering_skipped: bool = False
