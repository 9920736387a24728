import asyncio
import logging

from navigation.navd.announcements import AnnouncementDispatcher
from navigation.navd.config import NavConfig
from navigation.navd.errors import InvalidPlan, InvalidTransition, PermissionDenied, PositionError, PositionTimeout
from navigation.navd.events import EventRegistry, NavigationFailed, Rerouted, SessionStateChanged
from navigation.navd.interfaces import DirectionsProvider, SpeechPort, TrafficProvider
from navigation.navd.models import NavigationSession, NavigationSnapshot, PositionSample, RoutePlan, SessionState
from navigation.navd.position_source import PositionOptions, PositionSource
from navigation.navd.progress_tracker import ProgressTracker
from navigation.navd.reroute_monitor import RerouteMonitor
from navigation.navigation_helpers.nav_instructions import NavigationInstructions


class SessionController:
  """Owns one navigation session at a time and wires the components together.

  Idle -> Active -> {Arrived, Cancelled, Failed}. A terminal session is never
  resumed; start() again creates a new one.
  """

  def __init__(self, position_source: PositionSource, directions: DirectionsProvider, speech: SpeechPort | None = None,
               config: NavConfig | None = None, traffic: TrafficProvider | None = None,
               instructions: NavigationInstructions | None = None, muted: bool = False,
               position_options: PositionOptions | None = None):
    self.config = config or NavConfig.load()
    self.position_source = position_source
    self.position_options = position_options or self.config.position
    self.events = EventRegistry()
    self.tracker = ProgressTracker(self.events, self.config, on_arrival=self._on_arrival)
    self.monitor = RerouteMonitor(directions, self.events, self.config, traffic=traffic)
    self.dispatcher = AnnouncementDispatcher(speech, self.events, self.config, instructions, muted=muted)
    self.session: NavigationSession | None = None
    self._unsubscribe = None
    self._first_fix: asyncio.Future | None = None

  @property
  def state(self) -> SessionState:
    return self.session.state if self.session is not None else SessionState.IDLE

  def snapshot(self) -> NavigationSnapshot | None:
    return self.session.snapshot() if self.session is not None else None

  async def start(self, plan: RoutePlan) -> NavigationSession:
    if self.state == SessionState.ACTIVE:
      raise InvalidTransition("a navigation session is already active, cancel it first")
    if not plan.steps:
      raise InvalidPlan("a route plan needs at least one step")

    session = NavigationSession(plan=plan)
    self.session = session
    self.tracker.load(session)
    self.monitor.load(session)
    self.dispatcher.stop()
    self.dispatcher.reset()
    self._transition(session, SessionState.ACTIVE)

    first_fix = asyncio.get_running_loop().create_future()
    self._first_fix = first_fix
    self._unsubscribe = self.position_source.observe_positions(
      lambda sample: self._on_position(session, sample),
      self.position_options,
      on_error=lambda error: self._on_position_error(session, error),
    )
    self.monitor.start()
    logging.warning(f"navigation session {session.session_id} started: {len(plan.steps)} steps, "
                    f"{plan.total_distance_meters:.0f} m, {plan.mode.value}")

    try:
      await asyncio.wait_for(first_fix, timeout=self.config.first_fix_timeout_s)
    except asyncio.TimeoutError:
      self.tracker.position_lost(PositionTimeout(f"no position fix within {self.config.first_fix_timeout_s:.0f}s"))
    finally:
      if self._first_fix is first_fix:
        self._first_fix = None
    return session

  def cancel(self) -> None:
    session = self.session
    if session is not None and session.state == SessionState.CANCELLED:
      return
    if session is None or session.state != SessionState.ACTIVE:
      raise InvalidTransition(f"cannot cancel navigation in state {self.state.value}")
    self._finish(session, SessionState.CANCELLED)

  def accept_route(self, candidate: RoutePlan) -> None:
    """Replace the active plan with an accepted reroute candidate."""
    session = self.session
    if session is None or session.state != SessionState.ACTIVE:
      raise InvalidTransition(f"cannot reroute in state {self.state.value}")
    if not candidate.steps:
      raise InvalidPlan("a route plan needs at least one step")

    session.plan = candidate
    self.tracker.reset_for_plan()
    self.monitor.reset_for_plan()
    logging.warning(f"session {session.session_id} rerouted: {len(candidate.steps)} steps, {candidate.total_duration_seconds:.0f}s")
    self.events.emit(Rerouted(plan=candidate))
    if session.last_position_sample is not None:
      self.tracker.update(session.last_position_sample)

  def close(self) -> None:
    if self.state == SessionState.ACTIVE:
      self.cancel()
    self.dispatcher.close()

  def _on_position(self, session: NavigationSession, sample: PositionSample) -> None:
    if session is not self.session or session.state != SessionState.ACTIVE:
      return
    self.tracker.update(sample)
    self.monitor.record(sample)
    if self._first_fix is not None and not self._first_fix.done():
      self._first_fix.set_result(sample)

  def _on_position_error(self, session: NavigationSession, error: PositionError) -> None:
    if session is not self.session or session.state != SessionState.ACTIVE:
      return
    if not isinstance(error, PermissionDenied):
      self.tracker.position_lost(error)
      return

    logging.error(f"Location permission denied, ending navigation session {session.session_id}: {error}")
    if self._first_fix is not None and not self._first_fix.done():
      self._first_fix.set_exception(error)
    self._finish(session, SessionState.FAILED)
    self.events.emit(NavigationFailed(session_id=session.session_id, error=error))

  def _on_arrival(self, session: NavigationSession) -> None:
    if session is self.session and session.state == SessionState.ACTIVE:
      self._finish(session, SessionState.ARRIVED)

  def _finish(self, session: NavigationSession, state: SessionState) -> None:
    if self._unsubscribe is not None:
      self._unsubscribe()
      self._unsubscribe = None
    self.monitor.stop()
    if state != SessionState.ARRIVED:
      # the arrival announcement is allowed to finish
      self.dispatcher.stop()
    self._transition(session, state)
    if self._first_fix is not None and not self._first_fix.done():
      self._first_fix.set_result(None)

  def _transition(self, session: NavigationSession, state: SessionState) -> None:
    previous = session.state
    if previous.terminal:
      raise InvalidTransition(f"session {session.session_id} already {previous.value}")
    session.state = state
    logging.warning(f"navigation session {session.session_id}: {previous.value} -> {state.value}")
    self.events.emit(SessionStateChanged(session_id=session.session_id, previous=previous, current=state))
