#!/usr/bin/env python3
import asyncio
import logging

from navigation.common.params.params import Params
from navigation.navd.config import NavConfig
from navigation.navd.errors import PermissionDenied, PositionError
from navigation.navd.events import AlternativeRouteFound, BetterRouteAvailable, Rerouted, SessionStateChanged
from navigation.navd.helpers import Coordinate
from navigation.navd.interfaces import SpeechPort, TrafficProvider
from navigation.navd.models import NavigationSession, PositionSample, RoutePlan, TravelMode
from navigation.navd.position_source import PositionSource
from navigation.navd.session import SessionController
from navigation.navigation_helpers.mapbox_integration import MapboxIntegration
from navigation.navigation_helpers.nav_instructions import NavigationInstructions


class NavManager:
  def __init__(self, position_source: PositionSource, params: Params | None = None, config: NavConfig | None = None,
               mapbox: MapboxIntegration | None = None, speech: SpeechPort | None = None,
               traffic: TrafficProvider | None = None):
    self.params = params or Params()
    self.config = config or NavConfig.load()
    self.mapbox = mapbox or MapboxIntegration(self.params)
    self.position_source = position_source
    self.frame = 0
    self.is_metric = self.params.get_bool('IsMetric')
    self.instructions = NavigationInstructions(is_metric=self.is_metric)

    self.controller = SessionController(position_source, self.mapbox, speech=speech, config=self.config, traffic=traffic,
                                        instructions=self.instructions, muted=self.params.get_bool('NavMuted'))
    self.pending_route: RoutePlan | None = None
    self.controller.events.subscribe(BetterRouteAvailable, self._on_better_route)
    self.controller.events.subscribe(AlternativeRouteFound, self._on_better_route)
    self.controller.events.subscribe(Rerouted, self._clear_pending_route)
    self.controller.events.subscribe(SessionStateChanged, self._clear_pending_route)

  async def locate(self, timeout: float | None = None) -> PositionSample:
    """Wait for one position sample, e.g. to use as the route origin."""
    loop = asyncio.get_running_loop()
    fix: asyncio.Future = loop.create_future()

    def on_sample(sample):
      if not fix.done():
        fix.set_result(sample)

    def on_error(error: PositionError):
      # transient errors may still be followed by a fix
      if isinstance(error, PermissionDenied) and not fix.done():
        fix.set_exception(error)

    unsubscribe = self.position_source.observe_positions(on_sample, self.config.position, on_error=on_error)
    try:
      return await asyncio.wait_for(fix, timeout=timeout or self.config.first_fix_timeout_s)
    finally:
      unsubscribe()

  async def _resolve_destination(self, destination, origin: Coordinate) -> Coordinate:
    if isinstance(destination, Coordinate):
      return destination
    if isinstance(destination, dict):
      if 'latitude' in destination and 'longitude' in destination:
        return Coordinate(float(destination['latitude']), float(destination['longitude']))
      destination = destination.get('place_name')

    coordinate = await self.mapbox.geocode(destination, proximity=origin) if destination else None
    if coordinate is None:
      raise ValueError(f"Failed to geocode destination: {destination}")
    return coordinate

  async def navigate_to(self, destination, origin: Coordinate | None = None, mode: TravelMode | None = None) -> NavigationSession:
    """Geocode, request the initial route and start a session. Provider errors are fatal here."""
    if origin is None:
      origin = (await self.locate()).coordinate
    mode = TravelMode(mode or self.params.get('NavTravelMode') or TravelMode.DRIVING)

    target = await self._resolve_destination(destination, origin)
    plan = await self.mapbox.route(origin, target, mode)
    logging.warning(f"Route to {target}: {len(plan.steps)} steps, {plan.total_distance_meters:.0f} m, {plan.total_duration_seconds:.0f}s")
    return await self.controller.start(plan)

  def accept_pending_route(self) -> bool:
    if self.pending_route is None:
      return False
    candidate, self.pending_route = self.pending_route, None
    self.controller.accept_route(candidate)
    return True

  def cancel(self) -> None:
    self.controller.cancel()

  def set_muted(self, muted: bool) -> None:
    self.controller.dispatcher.muted = muted
    self.params.put('NavMuted', bool(muted))

  def update(self):
    """Called at the daemon rate, reloads user settings every 15 frames."""
    self.frame += 1
    if self.frame % 15 == 0:
      self.is_metric = self.params.get_bool('IsMetric')
      self.instructions.is_metric = self.is_metric
      muted = self.params.get_bool('NavMuted')
      if muted != self.controller.dispatcher.muted:
        self.controller.dispatcher.muted = muted

  def _on_better_route(self, event: BetterRouteAvailable | AlternativeRouteFound):
    self.pending_route = event.candidate
    if self.params.get_bool('NavAutoAcceptReroute'):
      self.accept_pending_route()

  def _clear_pending_route(self, event):
    if isinstance(event, SessionStateChanged) and not event.current.terminal:
      return
    self.pending_route = None

  def get_navigation_status(self):
    """Get current navigation status including position, progress, and next turn"""
    snapshot = self.controller.snapshot()
    if snapshot is None:
      return {"state": "idle"}

    plan = self.controller.session.plan
    step = plan.steps[snapshot.active_step_index]
    progress_percent = 0.0
    if plan.total_distance_meters > 0 and snapshot.distance_to_next_maneuver is not None:
      travelled = step.cumulative_distance_meters - snapshot.distance_to_next_maneuver
      progress_percent = min(100.0, max(0.0, travelled / plan.total_distance_meters * 100))

    return {
      "state": snapshot.state.value,
      "current_position": snapshot.position.as_dict() if snapshot.position else None,
      "destination": plan.destination.as_dict(),
      "route_info": {
        "total_steps": len(plan.steps),
        "total_distance": plan.total_distance_meters,
        "total_duration": plan.total_duration_seconds,
        "mode": plan.mode.value,
      },
      "progress": {
        "active_step_index": snapshot.active_step_index,
        "distance_to_next_maneuver": snapshot.distance_to_next_maneuver,
        "distance_to_destination": snapshot.distance_to_destination,
        "eta_seconds": snapshot.eta_seconds,
        "remaining_duration": snapshot.remaining_duration_seconds,
        "route_progress_percent": progress_percent,
      },
      "current_instruction": {
        "instruction": step.instruction,
        "maneuver": step.maneuver,
        "location": step.maneuver_anchor.as_dict(),
      },
      "upcoming_turn": step.modifier,
      "accuracy_degraded": snapshot.accuracy_degraded,
      "better_route_available": self.pending_route is not None,
    }
