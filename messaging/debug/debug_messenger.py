import asyncio

from messaging.messenger import AsyncSubscriber


def describe(msg) -> str:
  return (f"{msg.state} step={msg.activeStepIndex} next={msg.distanceToNextManeuver:.0f}m "
          f"dest={msg.distanceToDestination:.0f}m eta={msg.etaSeconds:.0f}s "
          f"progress={msg.routeProgressPercent:.1f}% | {msg.instruction} ({msg.upcomingTurn})")


async def run(service='navigationd'):
  sub = AsyncSubscriber(service)
  try:
    while True:
      try:
        print(f"[{service}] {await sub.receive(describe, timeout=sub.timeout_seconds)}")
      except asyncio.TimeoutError:
        print(f"No recent message for {service}")
  finally:
    sub.close()


def main():
  asyncio.run(run())

if __name__ == "__main__":
  main()
