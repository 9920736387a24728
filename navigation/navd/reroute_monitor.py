import time
import asyncio
import logging
from collections import deque

from common.ratekeeper import Ratekeeper
from navigation.navd.config import ModeThresholds, NavConfig
from navigation.navd.errors import ProviderError
from navigation.navd.events import (AlternativeRouteFound, BackOnRoute, BetterRouteAvailable, EventRegistry, NavigationEvent,
                                    RouteDeviation, TrafficAlert, WrongWay)
from navigation.navd.helpers import angle_difference
from navigation.navd.interfaces import DirectionsProvider, TrafficProvider
from navigation.navd.models import NavigationSession, PositionSample, SessionState

ACTION_RANK = {'return': 0, 'alternative': 1, 'recalculate': 2}


class RerouteMonitor:
  """Periodic better-route checks plus per-sample deviation and wrong-way analysis."""

  def __init__(self, directions: DirectionsProvider, events: EventRegistry, config: NavConfig,
               traffic: TrafficProvider | None = None, clock=time.monotonic):
    self.directions = directions
    self.events = events
    self.config = config
    self.traffic = traffic
    self.clock = clock
    self.session: NavigationSession | None = None
    self.history: deque[PositionSample] = deque(maxlen=config.position_history_size)
    self._task: asyncio.Task | None = None
    self._wake: asyncio.Event | None = None
    self._deviation_started: float | None = None
    self._suggested_action: str | None = None
    self._wrong_way = False
    self._seen_incidents: set[str] = set()

  @property
  def running(self) -> bool:
    return self._task is not None and not self._task.done()

  @property
  def suggested_action(self) -> str | None:
    return self._suggested_action

  def load(self, session: NavigationSession) -> None:
    self.session = session
    self.history.clear()
    self._seen_incidents = set()
    self.reset_for_plan()

  def reset_for_plan(self) -> None:
    self._deviation_started = None
    self._suggested_action = None
    self._wrong_way = False

  def start(self) -> None:
    self.stop()
    self._wake = asyncio.Event()
    self._task = asyncio.get_running_loop().create_task(self._run(self.session))

  def stop(self) -> None:
    if self._task is not None:
      self._task.cancel()
      self._task = None
    self._wake = None

  async def _run(self, session: NavigationSession):
    rk = Ratekeeper(self.config.reroute_interval_s)
    logging.warning(f"reroute monitor started for session {session.session_id}, every {self.config.reroute_interval_s:.0f}s")
    while session is self.session and session.state == SessionState.ACTIVE:
      await rk.async_keep_time(self._wake)
      if session is not self.session or session.state != SessionState.ACTIVE:
        break
      try:
        await self.check()
      except Exception as e:
        logging.error(f"Reroute check failed: {e}", exc_info=True)

  async def check(self) -> NavigationEvent | None:
    """One reroute evaluation against the current position."""
    session = self.session
    if session is None or session.state != SessionState.ACTIVE or session.last_position_sample is None:
      return None

    plan = session.plan
    position = session.last_position_sample.coordinate
    session.last_reroute_check_timestamp = self.clock()

    await self._check_traffic(session)

    try:
      candidate = await asyncio.wait_for(self.directions.route(position, plan.destination, plan.mode),
                                         timeout=self.config.provider_timeout_s)
    except asyncio.TimeoutError:
      logging.warning(f"Reroute request timed out after {self.config.provider_timeout_s:.0f}s, keeping current route")
      return None
    except ProviderError as e:
      logging.warning(f"Reroute request failed ({type(e).__name__}: {e}), keeping current route")
      return None

    if session is not self.session or session.state != SessionState.ACTIVE or session.plan is not plan:
      logging.info("Discarding reroute candidate computed for a stale session or plan")
      return None
    if not candidate.steps:
      logging.warning("Reroute candidate has no steps, ignoring")
      return None

    remaining = plan.remaining_duration(session.active_step_index, session.distance_to_next_maneuver)
    savings = remaining - candidate.total_duration_seconds

    if savings > self.config.reroute_savings_threshold_s:
      event = BetterRouteAvailable(candidate=candidate, savings_seconds=savings)
      logging.warning(f"Better route available, saves {savings:.0f}s")
    elif self._suggested_action == 'recalculate':
      event = AlternativeRouteFound(candidate=candidate, savings_seconds=savings)
      logging.warning(f"Off route, alternative route from current position ({savings:.0f}s difference)")
    else:
      logging.debug(f"Candidate route saves {savings:.0f}s, below {self.config.reroute_savings_threshold_s:.0f}s threshold")
      return None

    self.events.emit(event)
    return event

  async def _check_traffic(self, session: NavigationSession) -> None:
    if self.traffic is None:
      return
    bbox = session.plan.bounding_box(session.active_step_index)
    try:
      incidents = await asyncio.wait_for(self.traffic.get_traffic_incidents(bbox), timeout=self.config.provider_timeout_s)
    except (ProviderError, asyncio.TimeoutError) as e:
      logging.warning(f"Traffic lookup failed: {e!r}")
      return
    except Exception as e:
      # traffic is advisory, the reroute request still runs
      logging.error(f"Traffic provider error: {e}", exc_info=True)
      return

    if session is not self.session or session.state != SessionState.ACTIVE:
      return
    for incident in incidents:
      if incident.incident_id in self._seen_incidents:
        continue
      self._seen_incidents.add(incident.incident_id)
      self.events.emit(TrafficAlert(incident_id=incident.incident_id, description=incident.description,
                                    severity=incident.severity, delay_seconds=incident.delay_seconds))

  def record(self, sample: PositionSample) -> None:
    """Feed a sample into the deviation history. Called after the tracker update."""
    session = self.session
    if session is None or session.state != SessionState.ACTIVE:
      return
    previous = self.history[-1] if self.history else None
    self.history.append(sample)
    thresholds = self.config.thresholds_for(session.plan.mode)
    self._check_deviation(sample, thresholds)
    self._check_wrong_way(sample, previous, thresholds)

  def _check_deviation(self, sample: PositionSample, thresholds: ModeThresholds) -> None:
    distance = self.session.plan.distance_from_route(sample.coordinate)
    if distance <= thresholds.deviation_distance_m:
      if self._deviation_started is not None:
        self._deviation_started = None
        self._suggested_action = None
        logging.info("Back on route")
        self.events.emit(BackOnRoute())
      return

    if self._deviation_started is None:
      self._deviation_started = sample.timestamp
    duration = sample.timestamp - self._deviation_started

    action = 'return'
    if distance > thresholds.recalculate_distance_m or duration > self.config.deviation_recalculate_after_s:
      action = 'recalculate'
    elif duration > self.config.deviation_alternative_after_s:
      action = 'alternative'

    # only escalations are reported
    if self._suggested_action is not None and ACTION_RANK[action] <= ACTION_RANK[self._suggested_action]:
      return
    self._suggested_action = action
    logging.warning(f"Off route by {distance:.0f} m for {duration:.0f}s, suggesting {action}")
    self.events.emit(RouteDeviation(distance_from_route=distance, duration_seconds=duration, suggested_action=action))
    if action == 'recalculate' and self._wake is not None:
      self._wake.set()

  def _check_wrong_way(self, sample: PositionSample, previous: PositionSample | None, thresholds: ModeThresholds) -> None:
    position = sample.coordinate
    heading = sample.heading_degrees
    speed = sample.speed_meters_per_second
    if previous is not None:
      moved = previous.coordinate.distance_to(position)
      if heading is None and moved > 1.0:
        heading = previous.coordinate.bearing_to(position)
      if speed is None and sample.timestamp > previous.timestamp:
        speed = moved / (sample.timestamp - previous.timestamp)
    if heading is None or speed is None or speed < max(thresholds.min_speed_mps, 0.1):
      return

    anchor = self.session.active_step.maneuver_anchor
    if position.distance_to(anchor) < self.config.advance_threshold_m:
      return
    expected = position.bearing_to(anchor)
    wrong = angle_difference(heading, expected) > thresholds.wrong_way_threshold_deg

    if wrong and not self._wrong_way:
      self._wrong_way = True
      logging.warning(f"Wrong way: heading {heading:.0f}, expected {expected:.0f}")
      self.events.emit(WrongWay(heading=heading, expected_heading=expected))
    elif not wrong and self._wrong_way:
      self._wrong_way = False
      self.events.emit(BackOnRoute())
