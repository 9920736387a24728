"""Collaborators the navigation core talks to but does not implement."""
from abc import ABC, abstractmethod
from dataclasses import dataclass

from navigation.navd.helpers import Coordinate
from navigation.navd.models import RoutePlan, TravelMode


class DirectionsProvider(ABC):
  @abstractmethod
  async def route(self, origin: Coordinate, destination: Coordinate, mode: TravelMode,
                  waypoints: list[Coordinate] | None = None) -> RoutePlan:
    """Compute a route; raises NoRouteFound, RateLimited or ProviderUnavailable."""


@dataclass(frozen=True)
class TrafficIncident:
  incident_id: str
  location: Coordinate
  description: str
  severity: str = 'moderate'
  delay_seconds: float = 0.0


class TrafficProvider(ABC):
  @abstractmethod
  async def get_traffic_incidents(self, bbox: tuple[float, float, float, float]) -> list[TrafficIncident]:
    """Incidents inside (min_lat, min_lon, max_lat, max_lon)."""


class SpeechPort(ABC):
  @abstractmethod
  async def speak(self, text: str) -> None:
    """Completes when the utterance finishes; raises on synthesis failure."""

  def cancel(self) -> None:
    pass
