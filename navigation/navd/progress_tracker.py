import logging
from collections.abc import Callable

from navigation.navd.config import NavConfig
from navigation.navd.errors import PositionError
from navigation.navd.events import AccuracyChanged, Arrived, EventRegistry, StepAdvanced, UpcomingManeuver
from navigation.navd.helpers import Coordinate
from navigation.navd.models import NavigationSession, PositionSample, SessionState


class ProgressTracker:
  """Per-sample progress state machine for the active session.

  Owns the position-derived session fields: active_step_index,
  last_position_sample, the distances, ETA and accuracy flag.
  """

  def __init__(self, events: EventRegistry, config: NavConfig, on_arrival: Callable[[NavigationSession], None]):
    self.events = events
    self.config = config
    self.on_arrival = on_arrival
    self.session: NavigationSession | None = None
    self._announced: set[float] = set()
    self._arrival_emitted = False

  def load(self, session: NavigationSession) -> None:
    self.session = session
    self._arrival_emitted = False
    self.reset_for_plan()

  def reset_for_plan(self) -> None:
    """Called after the controller swaps in a new plan."""
    session = self.session
    session.active_step_index = 0
    session.distance_to_next_maneuver = None
    self._announced = set()

  def update(self, sample: PositionSample) -> None:
    session = self.session
    if session is None or session.state != SessionState.ACTIVE:
      return

    session.last_position_sample = sample
    self._update_accuracy(sample)

    position = sample.coordinate
    session.distance_to_destination = position.distance_to(session.plan.destination)

    speed = sample.speed_meters_per_second
    if speed is not None and speed > self.config.min_moving_speed_mps:
      session.eta_seconds = session.distance_to_destination / speed

    self._advance(position)

    if session.distance_to_destination < self.config.arrival_threshold_m:
      if not self._arrival_emitted:
        self._arrival_emitted = True
        logging.warning(f"Arrived at destination {session.plan.destination} ({session.distance_to_destination:.1f} m)")
        self.events.emit(Arrived(session_id=session.session_id, timestamp=sample.timestamp))
        self.on_arrival(session)
      return

    self._pre_announce()

  def position_lost(self, error: PositionError) -> None:
    session = self.session
    if session is None or session.state != SessionState.ACTIVE:
      return
    logging.warning(f"Position unavailable, continuing on last known sample: {error}")
    if not session.accuracy_degraded:
      session.accuracy_degraded = True
      self.events.emit(AccuracyChanged(degraded=True, reason=str(error)))

  def _update_accuracy(self, sample: PositionSample) -> None:
    degraded = sample.accuracy_meters > self.config.degraded_accuracy_m
    if degraded != self.session.accuracy_degraded:
      self.session.accuracy_degraded = degraded
      reason = 'low accuracy' if degraded else ''
      self.events.emit(AccuracyChanged(degraded=degraded, accuracy_meters=sample.accuracy_meters, reason=reason))

  def _advance(self, position: Coordinate) -> None:
    session = self.session
    plan = session.plan
    threshold = self.config.advance_threshold_m

    # GPS jump: already at a later anchor, skip the ones in between
    for ahead in range(plan.last_index, session.active_step_index, -1):
      if position.distance_to(plan.steps[ahead].maneuver_anchor) < threshold:
        logging.warning(f"Position jumped from step {session.active_step_index} to step {ahead}")
        self._move_to(ahead)
        break

    distance = position.distance_to(session.active_step.maneuver_anchor)
    while distance < threshold and session.active_step_index < plan.last_index:
      self._move_to(session.active_step_index + 1)
      distance = position.distance_to(session.active_step.maneuver_anchor)
    session.distance_to_next_maneuver = distance

  def _move_to(self, index: int) -> None:
    session = self.session
    previous = session.active_step_index
    session.active_step_index = index
    self._announced = set()
    step = session.active_step
    logging.info(f"Step {previous} -> {index}: {step.instruction}")
    self.events.emit(StepAdvanced(step_index=index, previous_index=previous, instruction=step.instruction))

  def _pre_announce(self) -> None:
    session = self.session
    distance = session.distance_to_next_maneuver
    crossed = [t for t in self.config.announce_thresholds_m if distance < t and t not in self._announced]
    if not crossed:
      return

    # thresholds are high to low, only the tightest crossed one is announced
    tightest = crossed[-1]
    self._announced.update(t for t in self.config.announce_thresholds_m if t >= tightest)
    step = session.active_step
    self.events.emit(UpcomingManeuver(step_index=step.index, instruction=step.instruction, threshold_meters=tightest,
                                      distance_meters=distance, maneuver=step.maneuver, modifier=step.modifier))
