import logging
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass

from navigation.navd.models import RoutePlan, SessionState


class NavigationEvent:
  pass


@dataclass(frozen=True)
class SessionStateChanged(NavigationEvent):
  session_id: int
  previous: SessionState
  current: SessionState


@dataclass(frozen=True)
class StepAdvanced(NavigationEvent):
  step_index: int
  previous_index: int
  instruction: str


@dataclass(frozen=True)
class UpcomingManeuver(NavigationEvent):
  step_index: int
  instruction: str
  threshold_meters: float
  distance_meters: float
  maneuver: str = ''
  modifier: str = 'none'


@dataclass(frozen=True)
class Arrived(NavigationEvent):
  session_id: int
  timestamp: float


@dataclass(frozen=True)
class AccuracyChanged(NavigationEvent):
  degraded: bool
  accuracy_meters: float | None = None
  reason: str = ''


@dataclass(frozen=True)
class BetterRouteAvailable(NavigationEvent):
  candidate: RoutePlan
  savings_seconds: float
  reason: str = 'faster'


@dataclass(frozen=True)
class AlternativeRouteFound(NavigationEvent):
  """Route from the current position while off route, proposed whatever it saves."""
  candidate: RoutePlan
  savings_seconds: float
  reason: str = 'off_route'


@dataclass(frozen=True)
class Rerouted(NavigationEvent):
  plan: RoutePlan


@dataclass(frozen=True)
class RouteDeviation(NavigationEvent):
  distance_from_route: float
  duration_seconds: float
  suggested_action: str  # 'return' | 'alternative' | 'recalculate'


@dataclass(frozen=True)
class WrongWay(NavigationEvent):
  heading: float
  expected_heading: float


@dataclass(frozen=True)
class BackOnRoute(NavigationEvent):
  pass


@dataclass(frozen=True)
class TrafficAlert(NavigationEvent):
  incident_id: str
  description: str
  severity: str
  delay_seconds: float


@dataclass(frozen=True)
class AnnouncementMade(NavigationEvent):
  text: str
  step_index: int | None
  kind: str
  spoken: bool


@dataclass(frozen=True)
class NavigationFailed(NavigationEvent):
  session_id: int
  error: Exception


class EventRegistry:
  """Typed callback registry; listeners register for an event class or one of its bases."""

  def __init__(self):
    self._listeners: dict[type, list[Callable]] = defaultdict(list)

  def subscribe(self, event_type: type, callback: Callable) -> Callable[[], None]:
    self._listeners[event_type].append(callback)

    def unsubscribe():
      if callback in self._listeners[event_type]:
        self._listeners[event_type].remove(callback)
    return unsubscribe

  def emit(self, event: NavigationEvent) -> None:
    for event_type in type(event).__mro__:
      for callback in list(self._listeners.get(event_type, ())):
        try:
          callback(event)
        except Exception as e:
          logging.error(f"Listener {callback!r} failed on {type(event).__name__}: {e}", exc_info=True)

  def clear(self) -> None:
    self._listeners.clear()
