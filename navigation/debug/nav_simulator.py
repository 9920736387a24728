#!/usr/bin/env python3
import sys
import asyncio
import argparse

from navigation.common.params.params import Params
from navigation.nav_manager import NavManager
from navigation.navd.errors import NavigationError
from navigation.navd.events import AlternativeRouteFound, AnnouncementMade, BetterRouteAvailable, RouteDeviation, StepAdvanced
from navigation.navd.helpers import Coordinate
from navigation.navd.models import PositionSample, SessionState
from navigation.navd.position_source import PositionSource

SPEED_MPS = 13.4  # ~30 mph


class Simulator:
  @staticmethod
  def interpolate_route_points(route_geometry, interval_meters=100):
    """Interpolate points along the route at 100m (or specified) intervals"""

    if not route_geometry or len(route_geometry) < 2:
      return []

    points: list[Coordinate] = []
    total_distance: float = 0.0
    next_target: float = interval_meters

    for start, end in zip(route_geometry, route_geometry[1:]):
      segment_distance = start.distance_to(end)

      while segment_distance > 0 and next_target <= total_distance + segment_distance:
        fraction = (next_target - total_distance) / segment_distance
        points.append(Coordinate(start.latitude + fraction * (end.latitude - start.latitude),
                                 start.longitude + fraction * (end.longitude - start.longitude)))
        next_target += interval_meters

      total_distance += segment_distance

    points.append(route_geometry[-1])
    return points

  @staticmethod
  async def run_simulation(destination, gps_lat=34.16207, gps_lon=-119.19657, interval=0.01, interval_meters=100):
    """Drive a NavManager with positions along the route, return (plan, collected data)"""
    source = PositionSource()
    nav_manager = NavManager(source, params=Params())
    nav_manager.controller.events.subscribe(AnnouncementMade, lambda e: print(f"  >> {e.text}"))
    nav_manager.controller.events.subscribe(StepAdvanced, lambda e: print(f"  -- step {e.previous_index} -> {e.step_index}"))
    nav_manager.controller.events.subscribe(RouteDeviation, lambda e: print(f"  !! off route {e.distance_from_route:.0f}m"))
    nav_manager.controller.events.subscribe(BetterRouteAvailable, lambda e: print(f"  ** better route, saves {e.savings_seconds:.0f}s"))
    nav_manager.controller.events.subscribe(AlternativeRouteFound, lambda e: print("  ** off route, alternative route ready"))

    origin = Coordinate(gps_lat, gps_lon)
    clock = 0.0
    starting = asyncio.create_task(nav_manager.navigate_to(destination, origin=origin))
    # the first fix is what start() waits for
    while nav_manager.controller.state != SessionState.ACTIVE and not starting.done():
      await asyncio.sleep(0.05)
    if nav_manager.controller.state == SessionState.ACTIVE:
      source.emit(PositionSample(gps_lat, gps_lon, accuracy_meters=5.0, timestamp=clock))
    await starting

    plan = nav_manager.controller.session.plan
    print(f"Route has {len(plan.geometry)} points, total distance: {plan.total_distance_meters:.1f}m")
    print("Route steps:")
    for step in plan.steps:
      print(f"{step.index + 1}. {step.instruction} at {step.maneuver_anchor} (cumulative: {step.cumulative_distance_meters:.1f}m)")
    print()

    simulated_positions = Simulator.interpolate_route_points(plan.geometry, interval_meters)
    print(f"Starting simulation with {len(simulated_positions)} GPS updates every {interval_meters}m")

    simulation_data: list = []
    previous = origin
    for index, position in enumerate(simulated_positions):
      if nav_manager.controller.state != SessionState.ACTIVE:
        break
      clock += interval_meters / SPEED_MPS
      source.emit(PositionSample(position.latitude, position.longitude, accuracy_meters=5.0, timestamp=clock,
                                 heading_degrees=previous.bearing_to(position), speed_meters_per_second=SPEED_MPS))
      previous = position

      status = nav_manager.get_navigation_status()
      simulation_data.append({
        'step': index + 1,
        'position': (position.latitude, position.longitude),
        'progress': status.get('progress'),
        'current_instruction': status.get('current_instruction'),
        'upcoming_turn': status.get('upcoming_turn'),
      })

      progress = status['progress']
      print(f"\nUpdate {index + 1}/{len(simulated_positions)} - Position: {position}")
      print(f"Route Progress: {progress['route_progress_percent']:.1f}%")
      print(f"Distance to next maneuver: {progress['distance_to_next_maneuver']:.1f}m")
      print(f"Current Instruction: {status['current_instruction']['instruction']} ({status['upcoming_turn']})")

      # Simulate real-time updates
      await asyncio.sleep(interval)

    print(f"\nSimulation completed, session {nav_manager.controller.state.value}")
    nav_manager.controller.close()
    return plan, simulation_data

  @staticmethod
  def save_animation(animation, output_file):
    """Save animation as video file"""
    try:
      animation.save(output_file, writer='ffmpeg', fps=5, dpi=150, bitrate=1800)
      print(f"High-resolution map animation saved to {output_file}")
      return output_file
    except (OSError, ValueError, RuntimeError) as e:
      print(f"Failed to save animation: {e}")
      return None

  @staticmethod
  def create_map_animation(plan, simulation_data, output_file='navigation/debug/simulation_videos/nav_simulation.mp4'):
    if not plan or not simulation_data:
      return None

    # Plotting stack is only needed for videos
    import contextily as ctx
    import cartopy.crs as ccrs
    import matplotlib.pyplot as plt
    import matplotlib.animation as animation

    lons = [c.longitude for c in plan.geometry]
    lats = [c.latitude for c in plan.geometry]
    sim_lats = [data['position'][0] for data in simulation_data]
    sim_lons = [data['position'][1] for data in simulation_data]

    fig = plt.figure(figsize=(16, 12), dpi=150)
    axes = fig.add_subplot(111, projection=ccrs.PlateCarree())

    axes.plot(lons, lats, 'b-', linewidth=4, alpha=0.8, label='Route', transform=ccrs.PlateCarree())

    for step in plan.steps:
      axes.scatter([step.maneuver_anchor.longitude], [step.maneuver_anchor.latitude], color='red', s=150, marker='^',
                   label='Turn' if step.index == 0 else "", transform=ccrs.PlateCarree())

    vehicle = axes.scatter([], [], color='green', s=200, marker='o', label='Vehicle', transform=ccrs.PlateCarree())

    instruction_text = axes.text(0.02, 0.98, '', transform=axes.transAxes,
                                 fontsize=16, verticalalignment='top',
                                 bbox=dict(boxstyle='round', facecolor='wheat', alpha=0.9))

    axes.set_xlabel('Longitude', fontsize=14)
    axes.set_ylabel('Latitude', fontsize=14)
    axes.set_title('Navigation Simulation', fontsize=18)

    padding = 0.05  # degrees
    axes.set_extent([min(lons) - padding, max(lons) + padding, min(lats) - padding, max(lats) + padding], crs=ccrs.PlateCarree())

    ctx.add_basemap(axes, crs='EPSG:4326', source=ctx.providers.OpenStreetMap.Mapnik, zoom=16)
    axes.legend(fontsize=12)

    def animate(frame):
      data = simulation_data[frame]
      current_lon, current_lat = sim_lons[frame], sim_lats[frame]
      vehicle.set_offsets([[current_lon, current_lat]])

      # Pan map to follow vehicle
      zoom_level = 0.005  # degrees, about 500m
      axes.set_extent([current_lon - zoom_level, current_lon + zoom_level,
                       current_lat - zoom_level, current_lat + zoom_level], crs=ccrs.PlateCarree())

      instruction_text.set_text(
        f'''Step {data['step']}/{len(simulation_data)}
          Position: ({current_lat:.6f}, {current_lon:.6f})
          Progress: {data['progress']['route_progress_percent']:.1f}%
          Current: {data['current_instruction']['instruction']}
          Next: {data['upcoming_turn']}''')
      return vehicle, instruction_text

    animation_output = animation.FuncAnimation(fig, animate, frames=len(simulation_data), interval=200, blit=False, repeat=True)
    return Simulator.save_animation(animation_output, output_file)

  @classmethod
  def main(cls):
    parser = argparse.ArgumentParser(description='Navigation Simulator')
    parser.add_argument('--destination', required=True, help='Destination address')
    parser.add_argument('--gps-lat', type=float, default=34.23305, help='Initial GPS latitude')
    parser.add_argument('--gps-lon', type=float, default=-119.17557, help='Initial GPS longitude')
    parser.add_argument('--output', type=str, default=None, help='Output video file name, needs the debug extra')
    args = parser.parse_args()

    try:
      plan, simulation_data = asyncio.run(cls.run_simulation(args.destination, args.gps_lat, args.gps_lon))
    except KeyboardInterrupt:
      print("\nSimulation stopped by user.")
      return
    except (NavigationError, ValueError) as e:
      print(f"Error: {e}")
      sys.exit(1)

    if not simulation_data or args.output is None:
      return

    output_file = cls.create_map_animation(plan, simulation_data, args.output)
    if output_file:
      print(f"Video saved as {output_file}")
    else:
      print("Failed to create map animation")


if __name__ == "__main__":
  Simulator.main()
