"""
Example demonstrating schedule-driven bus tracking.

This example loads the bundled routes.yaml and replays one morning:
- Buses move along their timetable between stops
- Dwelling buses report "At Stop"
- A round-trip bus turns around at its terminal
- Stop arrivals are stamped and compared against the timetable
- A live GPS report overrides the simulated position
"""

import sys
from pathlib import Path
from datetime import datetime, timedelta

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.common.config_loader import ConfigurationError
from src.tracker.bus_simulator import order_for_display
from src.tracker.status_classifier import describe_arrival
from src.tracker.tracker_service import BusTrackerService


def print_buses(buses, now):
    print(f"\n{now:%I:%M %p}")
    print("-" * 60)
    for bus in order_for_display(buses, now):
        location = bus.current_location
        print(f"  {bus.name}")
        print(f"    {bus.status:<12} next: {bus.next_stop_name:<16} eta: {bus.eta}")
        print(f"    ({location.lat:.4f}, {location.lng:.4f}) {bus.direction}")


def print_stop_history(bus):
    print(f"\n  {bus.name}")
    for stop in bus.stops:
        actual = stop.actual_arrival_time or "--"
        label = describe_arrival(stop.arrival_time, stop.actual_arrival_time)
        print(f"    {stop.name:<16} {stop.arrival_time or '':>8}  {actual:>8}  {label}")


def main():
    """Replay a morning of the bundled routes."""
    config_path = Path(__file__).parent.parent / "data" / "routes.yaml"
    service = BusTrackerService(str(config_path), "bus_trip_history", history_enabled=False)

    try:
        service.load_configuration()
    except ConfigurationError as e:
        print(f"\n✗ Configuration error: {e}")
        return 1

    print(f"Loaded {len(service.buses)} routes from {config_path}")

    today = datetime.now().replace(hour=0, minute=0, second=0, microsecond=0)

    # Tick every minute from 6:00 AM to noon, printing every 20 minutes
    for minute in range(6 * 60 + 1):
        now = today + timedelta(hours=6, minutes=minute)
        buses = service.tick(now=now)
        if minute % 20 == 0:
            print_buses(buses, now)

    print("\nStop history (scheduled, actual):")
    for bus in service.buses:
        print_stop_history(bus)

    # An operator starts broadcasting the Kollam bus
    now = today + timedelta(hours=12, minutes=1)
    service.report_live_position("pta-klm-0800", 8.95, 76.63, updated_at=now)
    buses = service.tick(now=now)
    print("\nWhile driving pta-klm-0800 (position stays where it was reported):")
    print_buses([bus for bus in buses if bus.id == "pta-klm-0800"], now)

    return 0


if __name__ == "__main__":
    exit(main())
