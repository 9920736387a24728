import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass

from navigation.navd.errors import PermissionDenied, PositionError, PositionTimeout, PositionUnavailable
from navigation.navd.models import PositionSample

PositionCallback = Callable[[PositionSample], None]
ErrorCallback = Callable[[PositionError], None]


@dataclass(frozen=True)
class PositionOptions:
  high_accuracy: bool = True
  min_interval_ms: float = 0.0
  timeout_ms: float = 10000.0


class _Subscriber:
  def __init__(self, callback: PositionCallback, options: PositionOptions, on_error: ErrorCallback | None):
    self.callback = callback
    self.options = options
    self.on_error = on_error
    self.last_delivered: float | None = None
    self.active = True

  def accepts(self, sample: PositionSample) -> bool:
    if self.last_delivered is None or self.options.min_interval_ms <= 0:
      return True
    return (sample.timestamp - self.last_delivered) * 1000 >= self.options.min_interval_ms


class PositionSource:
  """Fans a device position stream out to throttled subscribers.

  Subclasses feed samples in through emit() and errors through fail(). The
  base class is usable on its own as a manually driven source (replay,
  simulation, tests).
  """

  def __init__(self):
    self._subscribers: list[_Subscriber] = []

  @property
  def subscriber_count(self) -> int:
    return len(self._subscribers)

  def observe_positions(self, callback: PositionCallback, options: PositionOptions | None = None,
                        on_error: ErrorCallback | None = None) -> Callable[[], None]:
    subscriber = _Subscriber(callback, options or PositionOptions(), on_error)
    self._subscribers.append(subscriber)
    if len(self._subscribers) == 1:
      self._start()

    def unsubscribe():
      if not subscriber.active:
        return
      subscriber.active = False
      self._subscribers.remove(subscriber)
      if not self._subscribers:
        self._stop()
    return unsubscribe

  def emit(self, sample: PositionSample) -> None:
    for subscriber in list(self._subscribers):
      if not subscriber.active or not subscriber.accepts(sample):
        continue
      subscriber.last_delivered = sample.timestamp
      subscriber.callback(sample)

  def fail(self, error: PositionError) -> None:
    for subscriber in list(self._subscribers):
      if subscriber.active and subscriber.on_error is not None:
        subscriber.on_error(error)

  @property
  def timeout_ms(self) -> float:
    # Tightest timeout requested by any subscriber
    timeouts = [s.options.timeout_ms for s in self._subscribers if s.options.timeout_ms > 0]
    return min(timeouts) if timeouts else 0.0

  def _start(self) -> None:
    pass

  def _stop(self) -> None:
    pass


class ZmqPositionSource(PositionSource):
  """Position source fed by LiveLocation messages from the livelocationd service."""

  def __init__(self, service='livelocationd', registry_path=None):
    super().__init__()
    self.service = service
    self.registry_path = registry_path
    self._task: asyncio.Task | None = None

  def _start(self) -> None:
    self._task = asyncio.get_running_loop().create_task(self._receive_loop())

  def _stop(self) -> None:
    if self._task is not None:
      self._task.cancel()
      self._task = None

  async def _receive_loop(self):
    # Imported lazily so the core does not need zmq/capnp unless this source is used
    import messaging.messenger as messenger

    subscriber = messenger.AsyncSubscriber(self.service, registry_path=self.registry_path)
    logging.warning(f"ZmqPositionSource subscribed to {self.service}")
    try:
      while self._subscribers:
        timeout = self.timeout_ms / 1000 if self.timeout_ms > 0 else None
        try:
          sample = await subscriber.receive(decode_live_location, timeout=timeout)
        except asyncio.TimeoutError:
          self.fail(PositionTimeout(f"no {self.service} message within {self.timeout_ms:.0f} ms"))
          continue
        except PositionError as e:
          self.fail(e)
          continue
        self.emit(sample)
    finally:
      subscriber.close()


def decode_live_location(msg) -> PositionSample:
  """LiveLocation capnp reader -> PositionSample, raising for non-ok status."""
  if msg.status == 'permissionDenied':
    raise PermissionDenied("location permission denied by device")
  if msg.status != 'ok':
    raise PositionUnavailable(f"device reported position status {msg.status}")
  return PositionSample(
    latitude=msg.latitude,
    longitude=msg.longitude,
    accuracy_meters=msg.accuracy,
    timestamp=msg.timestamp / 1000.0,
    heading_degrees=msg.heading if msg.hasHeading else None,
    speed_meters_per_second=msg.speed if msg.hasSpeed else None,
  )
