import asyncio

import pytest

from navigation.navd.config import NavConfig
from navigation.navd.errors import InvalidPlan, InvalidTransition, NoRouteFound, PermissionDenied, PositionUnavailable
from navigation.navd.events import Arrived, NavigationEvent, NavigationFailed, Rerouted, SessionStateChanged
from navigation.navd.helpers import Coordinate
from navigation.navd.models import RoutePlan, SessionState
from navigation.navd.position_source import PositionSource
from navigation.navd.session import SessionController
from navigation.navd.tests.fakes import FakeDirections, FakeSpeech, make_plan, sample


async def settle():
  for _ in range(10):
    await asyncio.sleep(0)


class TestSessionController:
  def setup_method(self):
    self.source = PositionSource()
    self.directions = FakeDirections(NoRouteFound("offline"))
    self.plan = make_plan([(0, 0), (0, 0.001)], (0, 0.002))

  def make_controller(self, speech=None, **overrides):
    controller = SessionController(self.source, self.directions, speech=speech, config=NavConfig.load(**overrides))
    self.received = []
    controller.events.subscribe(NavigationEvent, self.received.append)
    return controller

  def of_type(self, event_type):
    return [e for e in self.received if isinstance(e, event_type)]

  async def start(self, controller, plan=None, first=(0, 0)):
    starting = asyncio.create_task(controller.start(plan or self.plan))
    await asyncio.sleep(0)
    if first is not None:
      self.source.emit(sample(*first, t=0))
    return await starting

  def test_scenario_advance_then_arrive(self):
    async def scenario():
      controller = self.make_controller()
      session = await self.start(controller)
      assert session.state == SessionState.ACTIVE
      assert session.active_step_index == 1

      self.source.emit(sample(0, 0.0009, t=1))
      assert controller.state == SessionState.ACTIVE
      self.source.emit(sample(0, 0.0019, t=2))
      return controller, session

    controller, session = asyncio.run(scenario())
    assert session.state == SessionState.ARRIVED
    assert len(self.of_type(Arrived)) == 1
    assert self.source.subscriber_count == 0
    assert not controller.monitor.running
    assert [(e.previous, e.current) for e in self.of_type(SessionStateChanged)] == [
      (SessionState.IDLE, SessionState.ACTIVE), (SessionState.ACTIVE, SessionState.ARRIVED)]

  def test_arrival_is_spoken(self):
    async def scenario():
      speech = FakeSpeech()
      controller = self.make_controller(speech=speech)
      await self.start(controller)
      self.source.emit(sample(0, 0.0019, t=1))
      await settle()
      return speech

    speech = asyncio.run(scenario())
    assert speech.spoken[-1] == 'You have arrived at your destination'

  def test_empty_plan_is_rejected(self):
    empty = RoutePlan(origin=Coordinate(0, 0), destination=Coordinate(0, 0.001), steps=(),
                      total_distance_meters=0, total_duration_seconds=0)

    async def scenario():
      controller = self.make_controller()
      with pytest.raises(InvalidPlan):
        await controller.start(empty)
      return controller

    controller = asyncio.run(scenario())
    assert controller.state == SessionState.IDLE
    assert controller.session is None
    assert self.source.subscriber_count == 0

  def test_permission_denied_before_first_fix(self):
    async def scenario():
      controller = self.make_controller()
      starting = asyncio.create_task(controller.start(self.plan))
      await asyncio.sleep(0)
      self.source.fail(PermissionDenied("user said no"))
      with pytest.raises(PermissionDenied):
        await starting
      return controller

    controller = asyncio.run(scenario())
    assert controller.state == SessionState.FAILED
    assert controller.state.terminal
    assert self.source.subscriber_count == 0
    assert not controller.monitor.running
    assert len(self.of_type(NavigationFailed)) == 1

  def test_permission_denied_mid_session(self):
    async def scenario():
      controller = self.make_controller()
      await self.start(controller)
      self.source.fail(PermissionDenied("revoked"))
      return controller

    controller = asyncio.run(scenario())
    assert controller.state == SessionState.FAILED
    assert self.source.subscriber_count == 0
    assert isinstance(self.of_type(NavigationFailed)[0].error, PermissionDenied)

  def test_first_fix_timeout_keeps_session_active(self):
    async def scenario():
      controller = self.make_controller(first_fix_timeout_s=0.01)
      session = await self.start(controller, first=None)
      controller.cancel()
      return session

    session = asyncio.run(scenario())
    assert session.accuracy_degraded
    assert session.last_position_sample is None

  def test_position_unavailable_does_not_fail_session(self):
    async def scenario():
      controller = self.make_controller()
      session = await self.start(controller, plan=make_plan([(0, 0), (0, 0.01)], (0, 0.02)))
      self.source.fail(PositionUnavailable("tunnel"))
      assert session.state == SessionState.ACTIVE
      assert session.accuracy_degraded

      self.source.emit(sample(0, 0.001, t=1))
      assert not session.accuracy_degraded
      controller.cancel()

    asyncio.run(scenario())

  def test_cancel_stops_all_updates(self):
    async def scenario():
      controller = self.make_controller()
      session = await self.start(controller, plan=make_plan([(0, 0), (0, 0.01)], (0, 0.02)))
      controller.cancel()
      assert not controller.monitor.running
      assert self.source.subscriber_count == 0

      count = len(self.received)
      self.source.emit(sample(0, 0.0195, t=5))
      await settle()
      return session, count

    session, count = asyncio.run(scenario())
    assert session.state == SessionState.CANCELLED
    assert session.last_position_sample.timestamp == 0
    assert session.active_step_index == 1
    assert len(self.received) == count, "no events after cancel"

  def test_cancel_is_idempotent_once_cancelled(self):
    async def scenario():
      controller = self.make_controller()
      await self.start(controller, plan=make_plan([(0, 0), (0, 0.01)], (0, 0.02)))
      controller.cancel()
      controller.cancel()
      return controller

    controller = asyncio.run(scenario())
    assert controller.state == SessionState.CANCELLED
    assert len(self.of_type(SessionStateChanged)) == 2

  def test_cancel_outside_active_is_invalid(self):
    controller = self.make_controller()
    with pytest.raises(InvalidTransition):
      controller.cancel()

    async def scenario():
      await self.start(controller)
      self.source.emit(sample(0, 0.0019, t=1))
      with pytest.raises(InvalidTransition):
        controller.cancel()

    asyncio.run(scenario())
    assert controller.state == SessionState.ARRIVED

  def test_start_while_active_is_invalid(self):
    async def scenario():
      controller = self.make_controller()
      await self.start(controller, plan=make_plan([(0, 0), (0, 0.01)], (0, 0.02)))
      with pytest.raises(InvalidTransition):
        await controller.start(self.plan)
      controller.cancel()

    asyncio.run(scenario())

  def test_restart_creates_a_new_session(self):
    async def scenario():
      controller = self.make_controller()
      first = await self.start(controller)
      self.source.emit(sample(0, 0.0019, t=1))
      second = await self.start(controller, plan=make_plan([(0, 0), (0, 0.01)], (0, 0.02)))
      return controller, first, second

    controller, first, second = asyncio.run(scenario())
    assert first is not second
    assert first.session_id != second.session_id
    assert first.state == SessionState.ARRIVED
    assert second.state == SessionState.ACTIVE
    assert controller.session is second

  def test_accept_route_resets_progress(self):
    route = make_plan([(0, 0), (0, 0.01), (0, 0.02)], (0, 0.03))
    candidate = make_plan([(0, 0.0051), (0, 0.015)], (0, 0.03))

    async def scenario():
      controller = self.make_controller()
      session = await self.start(controller, plan=route)
      self.source.emit(sample(0, 0.005, t=1))
      assert session.active_step_index == 1

      controller.accept_route(candidate)
      controller.cancel()
      return session

    session = asyncio.run(scenario())
    assert session.plan is candidate
    assert [e.plan for e in self.of_type(Rerouted)] == [candidate]
    # progress was recomputed against the new plan from the last sample
    assert session.active_step_index == 1
    assert session.distance_to_next_maneuver > 1000

  def test_accept_route_requires_active_session(self):
    controller = self.make_controller()
    with pytest.raises(InvalidTransition):
      controller.accept_route(self.plan)

  def test_snapshot(self):
    async def scenario():
      controller = self.make_controller()
      assert controller.snapshot() is None
      await self.start(controller, plan=make_plan([(0, 0), (0, 0.01)], (0, 0.02)))
      snapshot = controller.snapshot()
      controller.cancel()
      return snapshot

    snapshot = asyncio.run(scenario())
    assert snapshot.state == SessionState.ACTIVE
    assert snapshot.active_step_index == 1
    assert snapshot.position == Coordinate(0, 0)
