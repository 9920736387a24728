import asyncio

from navigation.navd.announcements import AnnouncementDispatcher
from navigation.navd.config import NavConfig
from navigation.navd.events import (AlternativeRouteFound, AnnouncementMade, Arrived, BackOnRoute, BetterRouteAvailable,
                                    EventRegistry, Rerouted, StepAdvanced, UpcomingManeuver, WrongWay)
from navigation.navd.tests.fakes import FakeSpeech, make_plan


async def settle():
  for _ in range(10):
    await asyncio.sleep(0)


def upcoming(step_index=1, threshold=100.0, instruction='Turn left onto Main Street'):
  return UpcomingManeuver(step_index=step_index, instruction=instruction, threshold_meters=threshold,
                          distance_meters=threshold - 5, maneuver='turn', modifier='left')


class TestAnnouncementDispatcher:
  def setup_method(self):
    self.events = EventRegistry()
    self.made = []
    self.events.subscribe(AnnouncementMade, self.made.append)
    self.now = 0.0

  def make_dispatcher(self, speech=None, muted=False):
    self.speech = speech if speech is not None else FakeSpeech()
    return AnnouncementDispatcher(self.speech, self.events, NavConfig.load(), muted=muted, clock=lambda: self.now)

  def test_upcoming_maneuver_is_spoken(self):
    async def scenario():
      self.make_dispatcher()
      self.events.emit(upcoming())
      await settle()

    asyncio.run(scenario())
    assert self.speech.spoken == ['In 100 meters, turn left']
    assert self.made[0].kind == 'maneuver'
    assert self.made[0].step_index == 1
    assert self.made[0].spoken

  def test_same_crossing_twice_is_announced_once(self):
    async def scenario():
      self.make_dispatcher()
      self.events.emit(upcoming())
      self.events.emit(upcoming())
      await settle()

    asyncio.run(scenario())
    assert len(self.made) == 1
    assert self.speech.spoken == ['In 100 meters, turn left']

  def test_same_text_on_a_new_step_is_announced(self):
    async def scenario():
      self.make_dispatcher()
      self.events.emit(upcoming(step_index=1))
      await settle()
      self.events.emit(upcoming(step_index=2))
      await settle()

    asyncio.run(scenario())
    assert len(self.speech.spoken) == 2

  def test_one_pending_announcement_most_recent_wins(self):
    async def scenario():
      dispatcher = self.make_dispatcher(FakeSpeech(block=True))
      dispatcher.announce('first', 'maneuver', 0)
      await settle()
      assert dispatcher.speaking

      dispatcher.announce('second', 'maneuver', 1)
      dispatcher.announce('third', 'maneuver', 2)
      assert dispatcher.pending.text == 'third'
      assert self.speech.started == ['first'], "nothing may overlap the current utterance"

      self.speech.release()
      await settle()
      self.speech.release()
      await settle()
      assert not dispatcher.speaking

    asyncio.run(scenario())
    assert self.speech.spoken == ['first', 'third']
    # every announcement is still reported
    assert [m.text for m in self.made] == ['first', 'second', 'third']

  def test_muted_reports_but_does_not_speak(self):
    async def scenario():
      self.make_dispatcher(muted=True)
      self.events.emit(upcoming())
      await settle()

    asyncio.run(scenario())
    assert not self.speech.started
    assert len(self.made) == 1
    assert not self.made[0].spoken

  def test_toggle_mute_stops_current_speech(self):
    async def scenario():
      dispatcher = self.make_dispatcher(FakeSpeech(block=True))
      dispatcher.announce('first', 'maneuver', 0)
      dispatcher.announce('second', 'maneuver', 1)
      await settle()

      assert dispatcher.toggle_mute()
      assert dispatcher.pending is None
      assert not dispatcher.speaking
      assert self.speech.cancelled == 1

      assert not dispatcher.toggle_mute()

    asyncio.run(scenario())
    assert self.speech.spoken == []

  def test_speech_failure_is_isolated(self):
    async def scenario():
      dispatcher = self.make_dispatcher(FakeSpeech(error=RuntimeError("tts crashed")))
      dispatcher.announce('first', 'maneuver', 0)
      await settle()
      assert not dispatcher.speaking
      self.speech.error = None
      dispatcher.announce('second', 'maneuver', 1)
      await settle()

    asyncio.run(scenario())
    assert self.speech.started == ['first', 'second']
    assert self.speech.spoken == ['second']

  def test_cooldown_per_kind(self):
    async def scenario():
      self.make_dispatcher()
      self.events.emit(WrongWay(heading=270, expected_heading=90))
      self.now += 5
      self.events.emit(WrongWay(heading=270, expected_heading=90))
      self.now += 6
      self.events.emit(WrongWay(heading=270, expected_heading=90))
      await settle()

    asyncio.run(scenario())
    wrong_way = [m for m in self.made if m.kind == 'wrong_way']
    assert len(wrong_way) == 2
    assert wrong_way[0].text != wrong_way[1].text, "repeated wrong way warnings escalate"

  def test_step_advance_scopes_deduplication(self):
    async def scenario():
      dispatcher = self.make_dispatcher()
      self.events.emit(BackOnRoute())
      self.events.emit(BackOnRoute())
      self.events.emit(StepAdvanced(step_index=1, previous_index=0, instruction='Turn left'))
      self.events.emit(BackOnRoute())
      await settle()
      dispatcher.close()

    asyncio.run(scenario())
    assert len([m for m in self.made if m.kind == 'back_on_route']) == 2

  def test_reroute_resets_deduplication(self):
    async def scenario():
      self.make_dispatcher()
      self.events.emit(upcoming(step_index=0))
      self.events.emit(Rerouted(plan=make_plan([(0, 0), (0, 0.001)], (0, 0.002))))
      self.events.emit(upcoming(step_index=0))
      await settle()

    asyncio.run(scenario())
    assert [m.kind for m in self.made] == ['maneuver', 'rerouted', 'maneuver']

  def test_arrival(self):
    async def scenario():
      self.make_dispatcher()
      self.events.emit(Arrived(session_id=1, timestamp=0.0))
      await settle()

    asyncio.run(scenario())
    assert self.speech.spoken == ['You have arrived at your destination']

  def test_close_unsubscribes(self):
    async def scenario():
      dispatcher = self.make_dispatcher()
      dispatcher.close()
      self.events.emit(upcoming())
      await settle()

    asyncio.run(scenario())
    assert not self.made

  def test_better_and_alternative_routes(self):
    candidate = make_plan([(0, 0), (0, 0.01)], (0, 0.02))

    async def scenario():
      self.make_dispatcher()
      self.events.emit(BetterRouteAvailable(candidate=candidate, savings_seconds=180))
      await settle()
      self.now += 60
      self.events.emit(AlternativeRouteFound(candidate=candidate, savings_seconds=0))
      await settle()

    asyncio.run(scenario())
    assert self.speech.spoken == ['A faster route is available, saving about 3 minutes.',
                                  'You are off route. A new route from your location is ready.']
    assert [m.kind for m in self.made] == ['reroute', 'reroute']
