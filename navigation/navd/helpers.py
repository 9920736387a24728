import math
from dataclasses import dataclass

EARTH_RADIUS_METERS = 6371000.0

DIRECTIONS = ('none', 'left', 'right', 'straight', 'slight left', 'slight right', 'sharp left', 'sharp right', 'uturn')
COMPASS_POINTS = ('north', 'northeast', 'east', 'southeast', 'south', 'southwest', 'west', 'northwest')


@dataclass(frozen=True)
class Coordinate:
  latitude: float
  longitude: float

  @classmethod
  def from_mapbox_tuple(cls, t: tuple) -> 'Coordinate':
    # Mapbox orders coordinates as (lon, lat)
    return cls(latitude=float(t[1]), longitude=float(t[0]))

  def as_dict(self) -> dict[str, float]:
    return {'latitude': self.latitude, 'longitude': self.longitude}

  def distance_to(self, other: 'Coordinate') -> float:
    """Great-circle distance in meters (haversine)."""
    lat1, lon1 = math.radians(self.latitude), math.radians(self.longitude)
    lat2, lon2 = math.radians(other.latitude), math.radians(other.longitude)
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))

  def bearing_to(self, other: 'Coordinate') -> float:
    """Initial bearing in degrees, 0 = north, clockwise."""
    lat1, lat2 = math.radians(self.latitude), math.radians(other.latitude)
    dlon = math.radians(other.longitude - self.longitude)
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    return (math.degrees(math.atan2(y, x)) + 360) % 360

  def __str__(self) -> str:
    return f"({self.latitude:.6f}, {self.longitude:.6f})"


def angle_difference(a: float, b: float) -> float:
  """Unsigned difference between two bearings, 0-180."""
  diff = abs(a - b) % 360
  return 360 - diff if diff > 180 else diff


def signed_angle_difference(from_heading: float, to_heading: float) -> float:
  """Signed difference, positive is clockwise, in (-180, 180]."""
  diff = (to_heading - from_heading) % 360
  return diff - 360 if diff > 180 else diff


def compass_direction(heading: float) -> str:
  return COMPASS_POINTS[int(round((heading % 360) / 45)) % 8]


def string_to_direction(direction: str | None) -> str:
  if not direction:
    return 'none'
  direction = direction.lower().strip()
  return direction if direction in DIRECTIONS else 'none'
