import time
import asyncio
import logging

import messaging.messenger as messenger
from common.ratekeeper import Ratekeeper
from navigation.common.params.params import Params
from navigation.nav_manager import NavManager
from navigation.navd.errors import NavigationError
from navigation.navd.events import SessionStateChanged
from navigation.navd.models import SessionState
from navigation.navd.position_source import ZmqPositionSource
from navigation.navd.speech import SubprocessSpeech


class Navigationd:
  """Runs navigation sessions for the NavDestination param and publishes NavigationStatus."""

  def __init__(self, params: Params | None = None, nav: NavManager | None = None, pm=None):
    self.params = params or Params()
    self.pm = pm or messenger.PubMaster('navigationd')
    self.rk = Ratekeeper(1.0 / self.pm.rate_hz)
    self.nav = nav or NavManager(ZmqPositionSource('livelocationd'), params=self.params, speech=SubprocessSpeech())
    self.nav.controller.events.subscribe(SessionStateChanged, self._on_state_changed)

    # last destination a session was started for, a failed destination is not retried until the param changes
    self.destination = None
    self.starting: asyncio.Task | None = None

  def _on_state_changed(self, event: SessionStateChanged):
    if not event.current.terminal:
      return
    logging.warning(f"navigation to {self.destination} ended: {event.current.value}")
    if event.current == SessionState.ARRIVED:
      self.params.remove('NavDestination')
      self.destination = None

  def check_destination(self):
    destination = self.params.get('NavDestination')
    if not destination:
      if self.nav.controller.state == SessionState.ACTIVE:
        self.nav.cancel()
      self.destination = None
      return
    if destination == self.destination or self.starting is not None:
      return

    if self.nav.controller.state == SessionState.ACTIVE:
      self.nav.cancel()
    self.destination = destination
    self.starting = asyncio.get_running_loop().create_task(self._start(destination))

  async def _start(self, destination):
    try:
      await self.nav.navigate_to(destination)
    except (NavigationError, ValueError, asyncio.TimeoutError) as e:
      logging.error(f"Could not start navigation to {destination}: {e!r}")
    finally:
      self.starting = None

  def status_message(self):
    status = self.nav.get_navigation_status()
    msg = self.pm.new_message()
    msg.timestamp = int(time.time() * 1000)
    msg.state = status["state"]
    if status["state"] == "idle":
      return msg

    progress = status["progress"]
    msg.activeStepIndex = progress["active_step_index"]
    msg.instruction = status["current_instruction"]["instruction"]
    msg.upcomingTurn = status["upcoming_turn"]
    msg.distanceToNextManeuver = progress["distance_to_next_maneuver"] or 0.0
    msg.distanceToDestination = progress["distance_to_destination"] or 0.0
    msg.etaSeconds = progress["eta_seconds"] or 0.0
    msg.routeProgressPercent = progress["route_progress_percent"]
    msg.accuracyDegraded = status["accuracy_degraded"]
    msg.betterRouteAvailable = status["better_route_available"]
    return msg

  async def run(self):
    logging.warning("navigationd init")

    while True:
      self.check_destination()
      self.nav.update()
      self.pm.publish(self.status_message())
      await self.rk.async_keep_time()


def main():
  nav = Navigationd()
  asyncio.run(nav.run())
