import itertools
from dataclasses import dataclass, field
from enum import Enum

from navigation.navd.errors import InvalidPlan
from navigation.navd.helpers import Coordinate


class TravelMode(str, Enum):
  DRIVING = 'driving'
  WALKING = 'walking'
  CYCLING = 'cycling'
  TRANSIT = 'transit'


class SessionState(str, Enum):
  IDLE = 'idle'
  ACTIVE = 'active'
  ARRIVED = 'arrived'
  CANCELLED = 'cancelled'
  FAILED = 'failed'

  @property
  def terminal(self) -> bool:
    return self in (SessionState.ARRIVED, SessionState.CANCELLED, SessionState.FAILED)


@dataclass(frozen=True)
class PositionSample:
  latitude: float
  longitude: float
  accuracy_meters: float
  timestamp: float  # seconds
  heading_degrees: float | None = None
  speed_meters_per_second: float | None = None

  @property
  def coordinate(self) -> Coordinate:
    return Coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class RouteStep:
  index: int
  instruction: str
  maneuver_anchor: Coordinate
  cumulative_distance_meters: float
  cumulative_duration_seconds: float
  maneuver: str = ''
  modifier: str = 'none'
  distance_meters: float = 0.0
  duration_seconds: float = 0.0


@dataclass(frozen=True)
class RoutePlan:
  origin: Coordinate
  destination: Coordinate
  steps: tuple[RouteStep, ...]
  total_distance_meters: float
  total_duration_seconds: float
  mode: TravelMode = TravelMode.DRIVING
  geometry: tuple[Coordinate, ...] = ()

  def __post_init__(self):
    object.__setattr__(self, 'steps', tuple(self.steps))
    object.__setattr__(self, 'geometry', tuple(self.geometry))
    object.__setattr__(self, 'mode', TravelMode(self.mode))
    for expected, step in enumerate(self.steps):
      if step.index != expected:
        raise InvalidPlan(f"step indices must be contiguous from 0, got {step.index} at position {expected}")

  @property
  def last_index(self) -> int:
    return len(self.steps) - 1

  def remaining_duration(self, step_index: int, distance_to_next_maneuver: float | None) -> float:
    """Plan duration left when heading for steps[step_index]."""
    step = self.steps[step_index]
    remaining = max(0.0, self.total_duration_seconds - step.cumulative_duration_seconds)
    if distance_to_next_maneuver and self.total_distance_meters > 0 and self.total_duration_seconds > 0:
      average_speed = self.total_distance_meters / self.total_duration_seconds
      remaining += distance_to_next_maneuver / average_speed
    return remaining

  def distance_from_route(self, coordinate: Coordinate) -> float:
    points = self.geometry or tuple(step.maneuver_anchor for step in self.steps) + (self.destination,)
    return min(coordinate.distance_to(point) for point in points)

  def bounding_box(self, from_index: int = 0) -> tuple[float, float, float, float]:
    """(min_lat, min_lon, max_lat, max_lon) of the route from a step onward."""
    points = [step.maneuver_anchor for step in self.steps[from_index:]] + [self.destination]
    lats = [p.latitude for p in points]
    lons = [p.longitude for p in points]
    return min(lats), min(lons), max(lats), max(lons)


@dataclass(frozen=True)
class NavigationSnapshot:
  session_id: int
  state: SessionState
  active_step_index: int
  instruction: str | None
  distance_to_next_maneuver: float | None
  distance_to_destination: float | None
  eta_seconds: float | None
  remaining_duration_seconds: float | None
  accuracy_degraded: bool
  position: Coordinate | None


_session_ids = itertools.count(1)


@dataclass
class NavigationSession:
  plan: RoutePlan
  state: SessionState = SessionState.IDLE
  active_step_index: int = 0
  last_position_sample: PositionSample | None = None
  last_reroute_check_timestamp: float | None = None
  distance_to_next_maneuver: float | None = None
  distance_to_destination: float | None = None
  eta_seconds: float | None = None
  accuracy_degraded: bool = False
  session_id: int = field(default_factory=lambda: next(_session_ids))

  @property
  def active_step(self) -> RouteStep:
    return self.plan.steps[self.active_step_index]

  def snapshot(self) -> NavigationSnapshot:
    remaining = None
    if self.plan.steps:
      remaining = self.plan.remaining_duration(self.active_step_index, self.distance_to_next_maneuver)
    sample = self.last_position_sample
    return NavigationSnapshot(
      session_id=self.session_id,
      state=self.state,
      active_step_index=self.active_step_index,
      instruction=self.active_step.instruction if self.plan.steps else None,
      distance_to_next_maneuver=self.distance_to_next_maneuver,
      distance_to_destination=self.distance_to_destination,
      eta_seconds=self.eta_seconds,
      remaining_duration_seconds=remaining,
      accuracy_degraded=self.accuracy_degraded,
      position=sample.coordinate if sample else None,
    )
