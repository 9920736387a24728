import time
import asyncio
import logging
from dataclasses import dataclass

from navigation.navd.config import NavConfig
from navigation.navd.errors import AnnouncementFailure
from navigation.navd.events import (AlternativeRouteFound, AnnouncementMade, Arrived, BackOnRoute, BetterRouteAvailable, EventRegistry,
                                    Rerouted, RouteDeviation, StepAdvanced, TrafficAlert, UpcomingManeuver, WrongWay)
from navigation.navd.interfaces import SpeechPort
from navigation.navigation_helpers.nav_instructions import NavigationInstructions


@dataclass(frozen=True)
class Announcement:
  text: str
  kind: str
  step_index: int | None = None


class AnnouncementDispatcher:
  """Turns navigation events into speech, without repeats or overlapping audio.

  At most one announcement waits while another is being spoken; a newer one
  replaces it. Muting stops audio but AnnouncementMade events keep firing.
  """

  def __init__(self, speech: SpeechPort | None, events: EventRegistry, config: NavConfig,
               instructions: NavigationInstructions | None = None, muted: bool = False, clock=time.monotonic):
    self.speech = speech
    self.events = events
    self.config = config
    self.instructions = instructions or NavigationInstructions()
    self.clock = clock
    self._muted = muted
    self._announced: set[tuple[int, str]] = set()
    self._last_by_kind: dict[str, float] = {}
    self._current_step = 0
    self._wrong_way_count = 0
    self._speaking: asyncio.Task | None = None
    self._pending: Announcement | None = None
    self._unsubscribers = [
      events.subscribe(StepAdvanced, self._on_step_advanced),
      events.subscribe(UpcomingManeuver, self._on_upcoming_maneuver),
      events.subscribe(Arrived, self._on_arrived),
      events.subscribe(BetterRouteAvailable, self._on_better_route),
      events.subscribe(AlternativeRouteFound, self._on_alternative_route),
      events.subscribe(Rerouted, self._on_rerouted),
      events.subscribe(RouteDeviation, self._on_route_deviation),
      events.subscribe(WrongWay, self._on_wrong_way),
      events.subscribe(BackOnRoute, self._on_back_on_route),
      events.subscribe(TrafficAlert, self._on_traffic_alert),
    ]

  @property
  def muted(self) -> bool:
    return self._muted

  @muted.setter
  def muted(self, value: bool) -> None:
    self._muted = bool(value)
    if self._muted:
      self.stop()

  def toggle_mute(self) -> bool:
    self.muted = not self._muted
    return self._muted

  @property
  def speaking(self) -> bool:
    return self._speaking is not None and not self._speaking.done()

  @property
  def pending(self) -> Announcement | None:
    return self._pending

  def reset(self) -> None:
    """Forget per-plan state; called for a new session or a new plan."""
    self._announced = set()
    self._current_step = 0
    self._wrong_way_count = 0

  def stop(self) -> None:
    self._pending = None
    if self._speaking is not None:
      self._speaking.cancel()
      self._speaking = None
      if self.speech is not None:
        self.speech.cancel()

  def close(self) -> None:
    self.stop()
    for unsubscribe in self._unsubscribers:
      unsubscribe()
    self._unsubscribers = []

  def announce(self, text: str, kind: str, step_index: int | None = None) -> bool:
    key = (self._current_step if step_index is None else step_index, text)
    if key in self._announced:
      logging.debug(f"Skipping repeated announcement: {text}")
      return False

    cooldown = self.config.announcement_cooldowns_s.get(kind)
    if cooldown:
      now = self.clock()
      last = self._last_by_kind.get(kind)
      if last is not None and now - last < cooldown:
        return False
      self._last_by_kind[kind] = now

    self._announced.add(key)
    spoken = not self._muted and self.speech is not None
    self.events.emit(AnnouncementMade(text=text, step_index=step_index, kind=kind, spoken=spoken))
    if spoken:
      self._enqueue(Announcement(text=text, kind=kind, step_index=step_index))
    return True

  def _enqueue(self, announcement: Announcement) -> None:
    if self.speaking:
      if self._pending is not None:
        logging.info(f"Dropping pending announcement: {self._pending.text}")
      self._pending = announcement
      return
    self._speaking = asyncio.get_running_loop().create_task(self._speak(announcement))

  async def _speak(self, announcement: Announcement):
    current = announcement
    while current is not None:
      try:
        await self.speech.speak(current.text)
      except Exception as e:
        failure = AnnouncementFailure(f"could not speak {current.text!r}: {e}")
        logging.error(str(failure), exc_info=True)
      current, self._pending = self._pending, None

  def _on_step_advanced(self, event: StepAdvanced):
    self._current_step = event.step_index

  def _on_upcoming_maneuver(self, event: UpcomingManeuver):
    text = self.instructions.upcoming_maneuver(event.instruction, event.threshold_meters, event.maneuver, event.modifier)
    self.announce(text, 'maneuver', event.step_index)

  def _on_arrived(self, event: Arrived):
    self.announce(self.instructions.arrival(), 'arrival')

  def _on_better_route(self, event: BetterRouteAvailable):
    self.announce(self.instructions.better_route(event.savings_seconds), 'reroute')

  def _on_alternative_route(self, event: AlternativeRouteFound):
    self.announce(self.instructions.alternative_route(), 'reroute')

  def _on_rerouted(self, event: Rerouted):
    self.reset()
    self.announce(self.instructions.rerouted(), 'rerouted')

  def _on_route_deviation(self, event: RouteDeviation):
    text = self.instructions.route_deviation(event.distance_from_route, event.duration_seconds, event.suggested_action)
    self.announce(text, 'deviation')

  def _on_wrong_way(self, event: WrongWay):
    self._wrong_way_count += 1
    self.announce(self.instructions.wrong_way(event.heading, event.expected_heading, self._wrong_way_count), 'wrong_way')

  def _on_back_on_route(self, event: BackOnRoute):
    self._wrong_way_count = 0
    self.announce(self.instructions.back_on_route(), 'back_on_route')

  def _on_traffic_alert(self, event: TrafficAlert):
    self.announce(self.instructions.traffic_alert(event.description, event.delay_seconds), 'traffic')
