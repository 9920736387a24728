import time
import asyncio
import logging
from pathlib import Path

import capnp
import yaml
import zmq
import zmq.asyncio as zmq_async

SCHEMA_PATH = Path(__file__).with_name("navigation.capnp")
REGISTRY_PATH = Path(__file__).with_name("services.yaml")

schema = capnp.load(str(SCHEMA_PATH))


def load_registry(path=None) -> dict[str, dict]:
  with Path(path or REGISTRY_PATH).open() as file:
    config = yaml.safe_load(file)

  registry: dict[str, dict] = {}

  for service in config["services"]:
    schema_name = service["schema"]
    try:
      schema_type = getattr(schema, schema_name)
    except AttributeError:
      raise ValueError(f"Schema '{schema_name}' not found in capnp for service '{service['name']}'")

    registry[service["name"]] = {
      "port": service["port"],
      "rate_hz": service["rate_hz"],
      "schema_type": schema_type,
    }
  return registry


class PubMaster:
  """Publishes messages to ZMQ publisher socket."""
  def __init__(self, name, registry_path=None) -> None:
    self.registry: dict[str, dict] = load_registry(registry_path)
    if name not in self.registry:
      raise ValueError(f"Unknown service {name}")
    self.name = name
    self.port: int = self.registry[name]["port"]
    self.rate_hz: float = self.registry[name]["rate_hz"]  # Used by clients to determine publish rate (1.0/rate_hz)
    self.schema_type = self.registry[name]["schema_type"]

    self.context = zmq.Context()
    self.socket = self.context.socket(zmq.PUB)
    self.socket.bind(f"tcp://127.0.0.1:{self.port}")

  def new_message(self):
    return self.schema_type.new_message()

  def publish(self, msg) -> bytes:
    serialized = msg.to_bytes()
    self.socket.send(serialized)
    return serialized

  def close(self):
    self.socket.close(linger=0)
    self.context.term()

  def __enter__(self):
    return self

  def __exit__(self, exc_type, exc_val, exc_tb):
    self.close()


class AsyncSubscriber:
  """Receives one service's messages on the running event loop."""
  def __init__(self, name, registry_path=None) -> None:
    registry = load_registry(registry_path)
    if name not in registry:
      raise ValueError(f"Unknown service {name}")
    svc = registry[name]

    self.name = name
    self.schema_type = svc["schema_type"]
    self.rate_hz: float = svc["rate_hz"]
    self.timeout_seconds: float = 10.0 / svc["rate_hz"]
    self.received_at: float | None = None

    self.context = zmq_async.Context()
    self.socket = self.context.socket(zmq.SUB)
    self.socket.connect(f"tcp://localhost:{svc['port']}")
    self.socket.setsockopt(zmq.SUBSCRIBE, b"")  # Subscribe to all messages

  async def receive(self, decode, timeout=None):
    """Wait for the next message and return decode(reader).

    The capnp reader is only valid inside this call, so decode must copy out
    what it needs. Raises asyncio.TimeoutError after `timeout` seconds.
    """
    if timeout is None:
      data = await self.socket.recv()
    else:
      data = await asyncio.wait_for(self.socket.recv(), timeout=timeout)
    self.received_at = time.monotonic()
    with self.schema_type.from_bytes(data) as msg:
      return decode(msg)

  @property
  def alive(self) -> bool:
    return self.received_at is not None and (time.monotonic() - self.received_at) < self.timeout_seconds

  def close(self):
    logging.warning(f"AsyncSubscriber {self.name} shutting down")
    self.socket.close(linger=0)
    self.context.term()
