import asyncio
import logging
from urllib.parse import quote
import requests

from navigation.common.params.params import Params
from navigation.navd.errors import NoRouteFound, ProviderUnavailable, RateLimited
from navigation.navd.helpers import Coordinate, string_to_direction
from navigation.navd.interfaces import DirectionsProvider
from navigation.navd.models import RoutePlan, RouteStep, TravelMode

DIRECTIONS_URL = 'https://api.mapbox.com/directions/v5/mapbox/{profile}/{coordinates}'
GEOCODING_URL = 'https://api.mapbox.com/geocoding/v5/mapbox.places/{query}.json'

PROFILES = {
  TravelMode.DRIVING: 'driving',
  TravelMode.WALKING: 'walking',
  TravelMode.CYCLING: 'cycling',
}


class MapboxIntegration(DirectionsProvider):
  def __init__(self, params: Params | None = None, timeout: float = 10):
    self.params = params or Params()
    self.timeout = timeout

  def get_public_token(self) -> str:
    token = self.params.get('MapboxToken', return_default=True)
    return str(token) if token else ''

  async def geocode(self, place_name: str, proximity: Coordinate | None = None) -> Coordinate | None:
    return await asyncio.to_thread(self.lookup_place, place_name, proximity)

  def lookup_place(self, place_name: str, proximity: Coordinate | None = None) -> Coordinate | None:
    token = self.get_public_token()
    if not place_name or not token:
      return None

    query = GEOCODING_URL.format(query=quote(place_name))
    params = {'access_token': token, 'limit': 1}
    if proximity is not None:
      params['proximity'] = f'{proximity.longitude},{proximity.latitude}'
    try:
      response = requests.get(query, params=params, timeout=self.timeout)
    except requests.RequestException as e:
      logging.error(f"Geocoding request for {place_name!r} failed: {e}")
      return None

    if response.status_code == 200:
      features = response.json().get('features', [])
      if features:
        return Coordinate.from_mapbox_tuple(tuple(features[0]['geometry']['coordinates']))
    return None

  async def route(self, origin: Coordinate, destination: Coordinate, mode: TravelMode,
                  waypoints: list[Coordinate] | None = None) -> RoutePlan:
    return await asyncio.to_thread(self.generate_route, origin, destination, mode, waypoints)

  def generate_route(self, origin: Coordinate, destination: Coordinate, mode: TravelMode = TravelMode.DRIVING,
                     waypoints: list[Coordinate] | None = None) -> RoutePlan:
    token = self.get_public_token()
    if not token:
      raise ProviderUnavailable("Mapbox token is not configured")
    profile = PROFILES.get(TravelMode(mode))
    if profile is None:
      raise NoRouteFound(f"Mapbox has no {TravelMode(mode).value} routing profile")

    points = [origin, *(waypoints or []), destination]
    coordinates = ';'.join(f'{p.longitude},{p.latitude}' for p in points)
    params = {'access_token': token, 'geometries': 'geojson', 'steps': 'true', 'overview': 'full'}

    try:
      response = requests.get(DIRECTIONS_URL.format(profile=profile, coordinates=coordinates), params=params, timeout=self.timeout)
    except requests.RequestException as e:
      raise ProviderUnavailable(f"Mapbox directions request failed: {e}") from e

    if response.status_code == 429:
      raise RateLimited("Mapbox directions rate limit reached")
    try:
      data = response.json()
    except ValueError:
      data = {}

    # 200 responses carry Ok, NoRoute or NoSegment, only Ok has routes
    code = data.get('code')
    if code in ('NoRoute', 'NoSegment'):
      raise NoRouteFound(data.get('message') or code)
    if response.status_code != 200 or code != 'Ok':
      raise ProviderUnavailable(f"Mapbox directions returned HTTP {response.status_code} ({code})")

    return self.parse_route(data, origin, destination, TravelMode(mode))

  @staticmethod
  def parse_route(data: dict, origin: Coordinate, destination: Coordinate, mode: TravelMode) -> RoutePlan:
    routes = data.get('routes', [])
    legs = routes[0].get('legs', []) if routes else []
    if not routes or not legs:
      raise NoRouteFound("Mapbox returned no routes")

    route = routes[0]
    steps: list[RouteStep] = []
    cumulative_distance = 0.0
    cumulative_duration = 0.0
    for leg in legs:
      for step in leg['steps']:
        maneuver = step['maneuver']
        steps.append(RouteStep(
          index=len(steps),
          instruction=maneuver.get('instruction', ''),
          maneuver_anchor=Coordinate.from_mapbox_tuple(tuple(maneuver['location'])),
          cumulative_distance_meters=cumulative_distance,
          cumulative_duration_seconds=cumulative_duration,
          maneuver=maneuver['type'],
          modifier=string_to_direction(maneuver.get('modifier')),
          distance_meters=step['distance'],
          duration_seconds=step['duration'],
        ))
        cumulative_distance += step['distance']
        cumulative_duration += step['duration']

    geometry = route.get('geometry', {}).get('coordinates', [])
    return RoutePlan(
      origin=origin,
      destination=destination,
      steps=tuple(steps),
      total_distance_meters=route['distance'],
      total_duration_seconds=route['duration'],
      mode=mode,
      geometry=tuple(Coordinate.from_mapbox_tuple(tuple(c)) for c in geometry),
    )
