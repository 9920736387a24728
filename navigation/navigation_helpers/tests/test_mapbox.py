import time
import asyncio

import pytest
import requests

from navigation.common.params.params import Params
from navigation.navd.errors import NoRouteFound, ProviderUnavailable, RateLimited
from navigation.navd.helpers import Coordinate
from navigation.navd.models import TravelMode
from navigation.navigation_helpers.mapbox_integration import MapboxIntegration

ORIGIN = Coordinate(34.23305, -119.17557)
DESTINATION = Coordinate(34.21843, -119.03986)

DIRECTIONS_RESPONSE = {
  'code': 'Ok',
  'routes': [{
    'distance': 1500.0,
    'duration': 180.0,
    'geometry': {'type': 'LineString', 'coordinates': [[-119.17557, 34.23305], [-119.1, 34.22], [-119.03986, 34.21843]]},
    'legs': [{
      'steps': [
        {'distance': 1000.0, 'duration': 120.0,
         'maneuver': {'type': 'depart', 'instruction': 'Head east on Gonzales Road', 'location': [-119.17557, 34.23305]}},
        {'distance': 500.0, 'duration': 60.0,
         'maneuver': {'type': 'turn', 'modifier': 'left', 'instruction': 'Turn left onto Ventura Boulevard',
                      'location': [-119.1, 34.22]}},
        {'distance': 0.0, 'duration': 0.0,
         'maneuver': {'type': 'arrive', 'modifier': 'right', 'instruction': 'Your destination is on the right',
                      'location': [-119.03986, 34.21843]}},
      ],
    }],
  }],
}


class FakeResponse:
  def __init__(self, status_code=200, payload=None):
    self.status_code = status_code
    self.payload = payload

  def json(self):
    if self.payload is None:
      raise ValueError("no json")
    return self.payload


class TestMapbox:
  def setup_method(self):
    self.calls = []
    self.delay = 0.0
    self.response = FakeResponse(200, DIRECTIONS_RESPONSE)

  def make_mapbox(self, tmp_path, monkeypatch, token='pk.test'):
    monkeypatch.delenv('CI', raising=False)
    params = Params(tmp_path)
    params.put('MapboxToken', token)

    def fake_get(url, params=None, timeout=None):
      self.calls.append((url, params, timeout))
      if self.delay:
        time.sleep(self.delay)
      if isinstance(self.response, Exception):
        raise self.response
      return self.response

    monkeypatch.setattr(requests, 'get', fake_get)
    return MapboxIntegration(params, timeout=3)

  def test_route_is_parsed(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    plan = mapbox.generate_route(ORIGIN, DESTINATION, TravelMode.DRIVING)

    assert len(plan.steps) == 3
    assert [s.index for s in plan.steps] == [0, 1, 2]
    assert [s.cumulative_distance_meters for s in plan.steps] == [0.0, 1000.0, 1500.0]
    assert [s.cumulative_duration_seconds for s in plan.steps] == [0.0, 120.0, 180.0]
    assert plan.steps[1].maneuver_anchor == Coordinate(34.22, -119.1)
    assert plan.steps[1].modifier == 'left'
    assert plan.steps[0].modifier == 'none'
    assert plan.total_distance_meters == 1500.0
    assert plan.total_duration_seconds == 180.0
    assert plan.destination == DESTINATION
    assert plan.geometry[0] == ORIGIN

  def test_request(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    mapbox.generate_route(ORIGIN, DESTINATION, TravelMode.WALKING, waypoints=[Coordinate(34.22, -119.1)])

    url, params, timeout = self.calls[0]
    assert url == ('https://api.mapbox.com/directions/v5/mapbox/walking/'
                   '-119.17557,34.23305;-119.1,34.22;-119.03986,34.21843')
    assert params['access_token'] == 'pk.test'
    assert params['steps'] == 'true'
    assert timeout == 3

  def test_async_route(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    plan = asyncio.run(mapbox.route(ORIGIN, DESTINATION, TravelMode.CYCLING))
    assert plan.mode == TravelMode.CYCLING
    assert '/cycling/' in self.calls[0][0]

  def test_no_route(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    self.response = FakeResponse(200, {'code': 'NoRoute', 'message': 'No route found'})
    with pytest.raises(NoRouteFound):
      mapbox.generate_route(ORIGIN, DESTINATION)

  def test_transit_is_not_routable(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    with pytest.raises(NoRouteFound):
      mapbox.generate_route(ORIGIN, DESTINATION, TravelMode.TRANSIT)
    assert not self.calls

  def test_rate_limited(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    self.response = FakeResponse(429)
    with pytest.raises(RateLimited):
      mapbox.generate_route(ORIGIN, DESTINATION)

  def test_provider_unavailable(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    self.response = FakeResponse(500)
    with pytest.raises(ProviderUnavailable):
      mapbox.generate_route(ORIGIN, DESTINATION)

    self.response = requests.ConnectionError("offline")
    with pytest.raises(ProviderUnavailable):
      mapbox.generate_route(ORIGIN, DESTINATION)

  def test_missing_token(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch, token='')
    with pytest.raises(ProviderUnavailable):
      mapbox.generate_route(ORIGIN, DESTINATION)

  def test_geocode(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    self.response = FakeResponse(200, {'features': [{'geometry': {'coordinates': [-119.03986, 34.21843]}}]})

    assert mapbox.lookup_place('740 E Ventura Blvd. Camarillo, CA', proximity=ORIGIN) == DESTINATION
    url, params, _ = self.calls[0]
    assert url.endswith('740%20E%20Ventura%20Blvd.%20Camarillo%2C%20CA.json')
    assert params['proximity'] == '-119.17557,34.23305'

  def test_geocode_failures(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    self.response = FakeResponse(200, {'features': []})
    assert mapbox.lookup_place('nowhere') is None
    self.response = requests.Timeout("slow")
    assert mapbox.lookup_place('nowhere') is None
    assert mapbox.lookup_place('') is None

  def test_geocode_does_not_block_the_event_loop(self, tmp_path, monkeypatch):
    mapbox = self.make_mapbox(tmp_path, monkeypatch)
    self.response = FakeResponse(200, {'features': [{'geometry': {'coordinates': [-119.03986, 34.21843]}}]})
    self.delay = 0.5

    async def scenario():
      ticks = 0

      async def ticker():
        nonlocal ticks
        while True:
          ticks += 1
          await asyncio.sleep(0.05)

      task = asyncio.create_task(ticker())
      coordinate = await mapbox.geocode('740 E Ventura Blvd. Camarillo, CA')
      task.cancel()
      return coordinate, ticks

    coordinate, ticks = asyncio.run(scenario())
    assert coordinate == DESTINATION
    assert ticks >= 5, f"loop only ticked {ticks} times during a 0.5s lookup"
